"""
Tests for annotation save/autosave and the YOLO mirror.
"""

import logging

import pytest

from core.errors import ValidationError, NotFoundError, ConflictError
from core.models import (
    AnnotationStatus, ImageStatus, ProjectStatus, ReviewStatus, YoloObject,
)
from core.storage import annotation_key

ADMIN = 1
ANNOTATOR = 2


def read_mirror_text(services, project_id, image_id):
    return services.storage.get(services.bucket, annotation_key(project_id, image_id)).decode("utf-8")


class TestSave:
    """Tests for AnnotationStore.save."""

    def test_first_save_creates_version_one(self, services, project, images, assignment, box):
        ann = services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()], time_spent=12)

        assert ann.version == 1
        assert ann.time_spent == 12
        assert ann.user_id == ANNOTATOR
        assert len(ann.objects) == 1

    def test_resave_bumps_version_and_accumulates_time(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.save(project.id, image_id, ANNOTATOR, [box()], time_spent=10)
        ann = services.annotations.save(
            project.id, image_id, ANNOTATOR, [box(1), box(2, x=0.25)], time_spent=5
        )

        assert ann.version == 2
        assert ann.time_spent == 15
        assert [obj.class_name for obj in ann.objects] == ["person", "bike"]
        assert len(services.annotations.list_for_image(image_id)) == 1

    def test_save_completes_image(self, services, project, images, assignment, box):
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()], time_spent=7, auto_annotated=True)
        image = services.images.get(images[0].id)

        assert image.status == ImageStatus.ANNOTATED
        assert image.annotation_status == AnnotationStatus.COMPLETED
        assert image.annotated_by == ANNOTATOR
        assert image.annotated_at is not None
        assert image.auto_annotated
        assert image.time_spent == 7

    def test_save_updates_stats_and_project_status(self, services, project, images, assignment, box):
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()])
        reloaded = services.store.require_project(project.id)

        assert reloaded.annotated_images == 1
        assert reloaded.status == ProjectStatus.IN_PROGRESS

    def test_save_refreshes_assignment_progress(self, services, project, images, assignment, box):
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()])
        refreshed = services.assignments.get(assignment.id)

        assert refreshed.completed_images == 1
        assert refreshed.total_images == 3

    def test_save_keeps_review_status_of_unflagged_image(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.images.update_status(image_id, {"review_status": ReviewStatus.APPROVED})
        services.annotations.save(project.id, image_id, ANNOTATOR, [box()])

        assert services.images.get(image_id).review_status == ReviewStatus.APPROVED

    def test_accepts_yolo_objects(self, services, project, images, assignment):
        cls = project.classes[2]
        obj = YoloObject(class_id=cls.id, class_name=cls.name, x=0.1, y=0.2, width=0.3, height=0.4)
        ann = services.annotations.save(project.id, images[0].id, ANNOTATOR, [obj])
        assert ann.objects == [obj]

    def test_empty_object_list(self, services, project, images, assignment):
        ann = services.annotations.save(project.id, images[0].id, ANNOTATOR, [])
        assert ann.objects == []
        assert read_mirror_text(services, project.id, images[0].id) == ""

    @pytest.mark.parametrize("overrides", [{"x": 1.5}, {"width": -0.1}, {"y": "abc"}])
    def test_rejects_bad_coordinates(self, services, project, images, assignment, box, overrides):
        obj = box()
        obj.update(overrides)
        with pytest.raises(ValidationError):
            services.annotations.save(project.id, images[0].id, ANNOTATOR, [obj])

    def test_rejects_missing_class(self, services, project, images, assignment, box):
        obj = box()
        del obj["class_id"]
        with pytest.raises(ValidationError):
            services.annotations.save(project.id, images[0].id, ANNOTATOR, [obj])

    def test_rejects_negative_time(self, services, project, images, assignment, box):
        with pytest.raises(ValidationError):
            services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()], time_spent=-1)

    def test_image_of_other_project(self, services, project, images, box):
        other = services.store.create_project(name="Other", created_by=ADMIN, classes=[{"name": "car"}])
        with pytest.raises(NotFoundError):
            services.annotations.save(other.id, images[0].id, ANNOTATOR, [box()])

    def test_completed_project_is_read_only(self, services, project, images, assignment, box):
        services.store.set_status(project.id, ProjectStatus.COMPLETED)
        with pytest.raises(ConflictError):
            services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()])
        with pytest.raises(ConflictError):
            services.annotations.autosave(project.id, images[0].id, ANNOTATOR, [box()])


class TestYoloMirror:
    """Tests for the plain-text YOLO mirror."""

    def test_mirror_uses_class_index(self, services, project, images, assignment, box):
        services.annotations.save(
            project.id, images[0].id, ANNOTATOR,
            [box(1), box(2, x=0.25, y=0.75, width=0.1, height=0.1)],
        )
        assert read_mirror_text(services, project.id, images[0].id) == (
            "1 0.500000 0.500000 0.200000 0.300000\n2 0.250000 0.750000 0.100000 0.100000"
        )

    def test_mirror_rebuilt_on_resave(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.save(project.id, image_id, ANNOTATOR, [box(0), box(1)])
        services.annotations.save(project.id, image_id, ANNOTATOR, [box(2)])

        assert read_mirror_text(services, project.id, image_id) == "2 0.500000 0.500000 0.200000 0.300000"

    def test_unknown_class_maps_to_zero(self, services, project, images, assignment, box, caplog):
        obj = box(2)
        obj["class_id"] = "no-such-class"
        with caplog.at_level(logging.WARNING, logger="core.yolo"):
            services.annotations.save(project.id, images[0].id, ANNOTATOR, [obj])

        assert read_mirror_text(services, project.id, images[0].id) == "0 0.500000 0.500000 0.200000 0.300000"
        assert "no-such-class" in caplog.text

    def test_mirror_small_coordinates_fixed_point(self, services, project, images, assignment, box):
        services.annotations.save(
            project.id, images[0].id, ANNOTATOR, [box(0, x=0.00005, width=0.00002, height=0.1)]
        )
        content = read_mirror_text(services, project.id, images[0].id)

        assert content == "0 0.000050 0.500000 0.000020 0.100000"
        assert "e-" not in content

    def test_read_mirror(self, services, project, images, assignment, box):
        assert services.annotations.read_mirror(project.id, images[0].id) is None
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box(1)])

        lines = services.annotations.read_mirror(project.id, images[0].id)
        assert len(lines) == 1
        assert lines[0].class_index == 1
        assert (lines[0].x, lines[0].y, lines[0].width, lines[0].height) == (0.5, 0.5, 0.2, 0.3)


class TestAutosave:
    """Tests for AnnotationStore.autosave."""

    def test_autosave_marks_in_progress(self, services, project, images, assignment, box):
        image_id = images[0].id
        ann = services.annotations.autosave(project.id, image_id, ANNOTATOR, [box()], time_spent=3)
        image = services.images.get(image_id)

        assert ann.version == 1
        assert image.annotation_status == AnnotationStatus.IN_PROGRESS
        assert image.status == ImageStatus.ASSIGNED
        assert image.time_spent == 3
        assert services.store.require_project(project.id).annotated_images == 0

    def test_autosave_then_save(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.autosave(project.id, image_id, ANNOTATOR, [box()], time_spent=3)
        ann = services.annotations.save(project.id, image_id, ANNOTATOR, [box(1)], time_spent=4)

        assert ann.version == 2
        assert ann.time_spent == 7
        assert services.images.get(image_id).annotation_status == AnnotationStatus.COMPLETED

    def test_autosave_never_lowers_completed(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.save(project.id, image_id, ANNOTATOR, [box()])
        services.annotations.autosave(project.id, image_id, ANNOTATOR, [box(1)])

        assert services.images.get(image_id).annotation_status == AnnotationStatus.COMPLETED

    def test_autosave_keeps_auto_annotated_flag(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.save(project.id, image_id, ANNOTATOR, [box()], auto_annotated=True)
        ann = services.annotations.autosave(project.id, image_id, ANNOTATOR, [box()])
        assert ann.auto_annotated

    def test_autosave_starts_assignment(self, services, project, images, assignment, box):
        services.annotations.autosave(project.id, images[0].id, ANNOTATOR, [box()])
        assert services.assignments.get(assignment.id).status.value == "IN_PROGRESS"


class TestGet:
    """Tests for author-scoped and reviewer reads."""

    def test_annotator_sees_only_own(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.save(project.id, image_id, ANNOTATOR, [box()])

        assert services.annotations.get(project.id, image_id, ANNOTATOR).user_id == ANNOTATOR
        assert services.annotations.get(project.id, image_id, 3) is None

    def test_admin_gets_latest(self, services, project, images, assignment, box):
        image_id = images[0].id
        services.annotations.save(project.id, image_id, ANNOTATOR, [box()])
        services.annotations.save(project.id, image_id, ADMIN, [box(1)])

        latest = services.annotations.get(project.id, image_id, 99, is_admin=True)
        assert latest.user_id == ADMIN
        assert len(services.annotations.list_for_image(image_id)) == 2

    def test_admin_get_without_annotations(self, services, project, images):
        assert services.annotations.get(project.id, images[0].id, ADMIN, is_admin=True) is None
