"""
Workflow error taxonomy.

Core services raise these; the API layer maps them to HTTP status codes.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Malformed identifiers, missing fields, unsupported formats."""
    status_code = 400


class NotFoundError(WorkflowError):
    """Project, image, submission or assignment does not exist."""
    status_code = 404


class AuthorizationError(WorkflowError):
    """Caller lacks the role or ownership required for the operation."""
    status_code = 403


class ConflictError(WorkflowError):
    """Operation is not allowed in the current state."""
    status_code = 409


class CompletionBlocked(ConflictError):
    """A project completion precondition is unmet."""

    def __init__(self, precondition: str, message: str):
        super().__init__(message)
        self.precondition = precondition


class StorageError(WorkflowError):
    """Object storage write or delete failed."""
    status_code = 502

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


def validate_id(value, name: str = "id") -> int:
    """
    Coerce an identifier to a positive int.

    Raises:
        ValidationError: if the value is not a positive integer
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {name}: {value!r}")
    try:
        ident = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value!r}")
    if ident < 1 or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"Invalid {name}: {value!r}")
    return ident
