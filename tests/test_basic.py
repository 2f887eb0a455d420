"""
Basic tests to verify the project structure is working.
"""


def test_import_core():
    """Test that core module can be imported."""
    import core
    assert core.create_services is not None


def test_import_backend():
    """Test that the FastAPI app can be imported."""
    from backend.main import app
    paths = {getattr(route, "path", None) for route in app.routes}
    assert "/api/health" in paths
    assert "/api/submissions/{submission_id}/review" in paths


def test_error_status_codes():
    """Test that each workflow error carries its HTTP status."""
    from core.errors import (
        ValidationError, NotFoundError, AuthorizationError, ConflictError,
        CompletionBlocked, StorageError,
    )
    assert ValidationError("x").status_code == 400
    assert NotFoundError("x").status_code == 404
    assert AuthorizationError("x").status_code == 403
    assert ConflictError("x").status_code == 409
    assert CompletionBlocked("no_images", "x").status_code == 409
    assert StorageError("x").status_code == 502
