"""
Tests for image upload, deletion and sparse status updates.
"""

import logging
import os

import pytest

from core.errors import StorageError, ValidationError
from core.images import UploadedFile
from core.models import ImageStatus, AnnotationStatus, ReviewStatus
from core.services import create_services
from core.storage import LocalObjectStorage, annotation_key

ADMIN = 1
ANNOTATOR = 2


class FlakyStorage(LocalObjectStorage):
    """Local storage whose writes fail for keys containing a marker."""

    def __init__(self, root_dir, fail_on):
        super().__init__(root_dir, secret="test-secret")
        self.fail_on = fail_on

    def put(self, bucket, key, data, content_type):
        if self.fail_on in key:
            raise StorageError(f"Simulated write failure for {key}", key=key)
        super().put(bucket, key, data, content_type)


@pytest.fixture
def recompute_calls(services, monkeypatch):
    """Record every statistics recomputation."""
    calls = []
    original = services.stats.recompute

    def spy(project_id):
        calls.append(project_id)
        return original(project_id)

    monkeypatch.setattr(services.stats, "recompute", spy)
    return calls


class TestUpload:
    """Tests for batch upload."""

    def test_upload_creates_images(self, services, project, images):
        assert len(images) == 3
        for i, image in enumerate(images):
            assert image.project_id == project.id
            assert image.filename == f"image_{i}.png"
            assert (image.width, image.height) == (60 + i, 40 + i)
            assert image.status == ImageStatus.UPLOADED
            assert image.annotation_status == AnnotationStatus.UNANNOTATED
            assert image.review_status == ReviewStatus.NOT_REVIEWED
            assert image.uploaded_by == ADMIN
            assert services.storage.exists(services.bucket, image.storage_key)

    def test_storage_key_layout(self, project, images):
        key = images[0].storage_key
        assert key.startswith(f"projects/{project.id}/images/")
        assert key.endswith("_image_0.png")

    def test_filenames_are_sanitized(self, services, project, make_upload):
        uploaded = services.images.upload(project.id, [make_upload("my photo (1).png")], ADMIN)
        assert uploaded[0].filename == "my_photo__1_.png"

    def test_stats_updated(self, services, project, images):
        assert services.store.require_project(project.id).total_images == 3

    def test_recompute_once_per_file(self, services, project, make_upload, recompute_calls):
        services.images.upload(project.id, [make_upload(f"f{i}.png") for i in range(2)], ADMIN)
        assert recompute_calls == [project.id, project.id]

    def test_unreadable_file_is_skipped(self, services, project, make_upload, caplog):
        batch = [
            make_upload("good.png"),
            UploadedFile(filename="bad.png", data=b"not an image"),
            UploadedFile(filename="empty.png", data=b""),
        ]
        with caplog.at_level(logging.ERROR, logger="core.images"):
            uploaded = services.images.upload(project.id, batch, ADMIN)

        assert [img.filename for img in uploaded] == ["good.png"]
        assert "bad.png" in caplog.text
        assert "empty.png" in caplog.text

    def test_partial_batch_on_storage_failure(self, temp_dir, make_upload, caplog):
        """A failed storage write skips only that file."""
        storage = FlakyStorage(os.path.join(temp_dir, "flaky"), fail_on="file_2")
        services = create_services(os.path.join(temp_dir, "flaky.db"), storage, "bucket")
        try:
            project = services.store.create_project(name="Flaky", created_by=ADMIN, classes=[])
            calls = []
            original = services.stats.recompute

            def spy(project_id):
                calls.append(project_id)
                return original(project_id)

            services.stats.recompute = spy
            batch = [make_upload(f"file_{i}.png") for i in range(1, 5)]

            with caplog.at_level(logging.ERROR, logger="core.images"):
                uploaded = services.images.upload(project.id, batch, ADMIN)

            assert [img.filename for img in uploaded] == ["file_1.png", "file_3.png", "file_4.png"]
            assert len(calls) == 3
            assert services.store.require_project(project.id).total_images == 3
            assert any(
                r.levelno == logging.ERROR and "file_2.png" in r.getMessage() for r in caplog.records
            )
        finally:
            services.close()

    def test_explicit_dimensions_skip_decoding(self, services, project):
        uploaded = services.images.upload(
            project.id,
            [UploadedFile(filename="raw.bin", data=b"\x00\x01", width=640, height=480)],
            ADMIN,
        )
        assert (uploaded[0].width, uploaded[0].height) == (640, 480)


class TestDelete:
    """Tests for image deletion."""

    def test_delete_image(self, services, project, images, assignment, box):
        image = images[0]
        services.annotations.save(project.id, image.id, ANNOTATOR, [box()])
        mirror = annotation_key(project.id, image.id)

        assert services.images.delete(image.id)

        assert services.images.get(image.id) is None
        assert not services.storage.exists(services.bucket, image.storage_key)
        assert not services.storage.exists(services.bucket, mirror)
        assert services.annotations.list_for_image(image.id) == []
        reloaded = services.store.require_project(project.id)
        assert reloaded.total_images == 2
        assert reloaded.annotated_images == 0

    def test_delete_shrinks_assignment_progress(self, services, project, images, assignment, box):
        services.annotations.save(project.id, images[1].id, ANNOTATOR, [box()])
        services.images.delete(images[0].id)

        refreshed = services.assignments.refresh_progress(assignment.id)
        assert refreshed.total_images == 2
        assert refreshed.completed_images == 1

    def test_delete_missing_image(self, services, project, recompute_calls):
        assert not services.images.delete(999)
        assert recompute_calls == []


class TestUpdateStatus:
    """Tests for sparse status updates."""

    def test_sparse_update(self, services, images):
        image = images[0]
        updated = services.images.update_status(image.id, {"review_feedback": "check edges"})

        assert updated.review_feedback == "check edges"
        assert updated.status == image.status
        assert updated.annotation_status == image.annotation_status

    def test_update_triggers_recompute(self, services, project, images, recompute_calls):
        services.images.update_status(images[0].id, {"review_status": "APPROVED"})

        assert recompute_calls == [project.id]
        reloaded = services.store.require_project(project.id)
        assert reloaded.approved_images == 1
        assert reloaded.reviewed_images == 1
        assert reloaded.completion_percentage == 33

    def test_none_clears_nullable_field(self, services, assignment, images):
        assert services.images.get(images[0].id).assigned_to == ANNOTATOR
        updated = services.images.update_status(images[0].id, {"assigned_to": None})
        assert updated.assigned_to is None

    def test_none_rejected_for_required_field(self, services, images):
        with pytest.raises(ValidationError):
            services.images.update_status(images[0].id, {"status": None})

    def test_unknown_field_rejected(self, services, images):
        with pytest.raises(ValidationError):
            services.images.update_status(images[0].id, {"filename": "other.png"})

    def test_bad_value_rejected(self, services, images):
        with pytest.raises(ValidationError):
            services.images.update_status(images[0].id, {"review_status": "MAYBE"})

    def test_missing_image(self, services, project):
        assert services.images.update_status(999, {"review_feedback": "x"}) is None


class TestReads:
    """Tests for listing and signed URLs."""

    def test_pagination(self, services, project, images):
        page1, total = services.images.list_project_images(project.id, page=1, limit=2)
        page2, _ = services.images.list_project_images(project.id, page=2, limit=2)

        assert total == 3
        assert len(page1) == 2
        assert len(page2) == 1
        assert {img.id for img in page1 + page2} == {img.id for img in images}

    def test_filters(self, services, project, images, assignment, box):
        services.annotations.save(project.id, images[1].id, ANNOTATOR, [box()])

        completed, total = services.images.list_project_images(
            project.id, filters={"annotation_status": AnnotationStatus.COMPLETED}
        )
        assert total == 1
        assert completed[0].id == images[1].id

        mine, total = services.images.list_user_images(project.id, ANNOTATOR)
        assert total == 3

    def test_unsupported_filter(self, services, project):
        with pytest.raises(ValidationError):
            services.images.list_project_images(project.id, filters={"filename": "x"})

    def test_count_unassigned(self, services, project, images):
        assert services.images.count_unassigned(project.id) == 3
        services.assignments.assign_images(project.id, ANNOTATOR, [images[0].id], ADMIN)
        assert services.images.count_unassigned(project.id) == 2

    def test_signed_url(self, services, images):
        url, expires_at = services.images.signed_image_url(images[0].id, ttl_seconds=60)

        assert url.startswith(f"/api/files/{services.bucket}/{images[0].storage_key}?")
        assert "expires=" in url
        assert "signature=" in url
        assert expires_at is not None
