"""
Tests for ProjectStore project, class and membership operations.
"""

import pytest

from core.errors import ValidationError, NotFoundError, ConflictError
from core.models import MemberRole, ProjectStatus
from core.storage import annotation_key
from core.store import DEFAULT_COLORS

ADMIN = 1
ANNOTATOR = 2


class TestProjects:
    """Tests for project CRUD."""

    def test_create_project(self, services, project):
        """Test creating a new project."""
        assert project.id == 1
        assert project.name == "Street scenes"
        assert project.status == ProjectStatus.CREATED
        assert project.annotation_format == "YOLO"
        assert [c.name for c in project.classes] == ["car", "person", "bike"]
        assert project.total_images == 0
        assert project.completion_percentage == 0

    def test_classes_get_ids_and_colors(self, project):
        """Test that classes get unique ids and default colors in order."""
        ids = [c.id for c in project.classes]
        assert len(set(ids)) == 3
        assert all(len(i) == 32 for i in ids)
        assert [c.color for c in project.classes] == DEFAULT_COLORS[:3]

    def test_creator_is_reviewer(self, services, project):
        """Test that the creator is added as a reviewer."""
        member = services.store.get_member(project.id, ADMIN)
        assert member is not None
        assert member.role == MemberRole.REVIEWER

    def test_rejects_missing_name(self, services):
        with pytest.raises(ValidationError):
            services.store.create_project(name="  ", created_by=ADMIN, classes=[])

    def test_rejects_unsupported_format(self, services):
        with pytest.raises(ValidationError):
            services.store.create_project(
                name="COCO project", created_by=ADMIN, classes=[], annotation_format="COCO"
            )

    def test_rejects_duplicate_class_names(self, services):
        with pytest.raises(ValidationError):
            services.store.create_project(
                name="Dupes", created_by=ADMIN, classes=[{"name": "car"}, {"name": "Car"}]
            )

    def test_get_missing_project(self, services):
        assert services.store.get_project(42) is None
        with pytest.raises(NotFoundError):
            services.store.require_project(42)

    def test_invalid_project_id(self, services):
        with pytest.raises(ValidationError):
            services.store.get_project(0)
        with pytest.raises(ValidationError):
            services.store.get_project("abc")

    def test_update_keeps_class_ids(self, services, project):
        """Test that editing classes keeps ids of existing classes."""
        car = project.classes[0]
        updated = services.store.update_project(
            project.id,
            description="Updated",
            classes=[{"id": car.id, "name": "automobile"}, {"name": "truck"}],
        )
        assert updated.description == "Updated"
        assert updated.classes[0].id == car.id
        assert updated.classes[0].name == "automobile"
        assert updated.classes[1].id != car.id

    def test_update_cannot_complete(self, services, project):
        """Test that completion is not reachable through update."""
        with pytest.raises(ConflictError):
            services.store.update_project(project.id, status=ProjectStatus.COMPLETED)

    def test_completed_project_cannot_change_status(self, services, project):
        services.store.set_status(project.id, ProjectStatus.COMPLETED)
        with pytest.raises(ConflictError):
            services.store.update_project(project.id, status=ProjectStatus.ARCHIVED)

    def test_custom_class_not_allowed(self, services, project):
        with pytest.raises(ValidationError):
            services.store.add_custom_class(project.id, "scooter")

    def test_custom_class_allowed(self, services, project):
        services.store.update_project(project.id, allow_custom_classes=True)
        cls = services.store.add_custom_class(project.id, "scooter", "#123456")

        assert cls.is_custom
        assert cls.color == "#123456"
        reloaded = services.store.require_project(project.id)
        assert reloaded.classes[-1].id == cls.id
        assert reloaded.classes[0].id == project.classes[0].id

    def test_mark_in_progress(self, services, project):
        services.store.mark_in_progress(project.id)
        assert services.store.require_project(project.id).status == ProjectStatus.IN_PROGRESS


class TestMembers:
    """Tests for project membership."""

    def test_list_members(self, services, project):
        members = services.store.list_members(project.id)
        assert {(m.user_id, m.role) for m in members} == {
            (ADMIN, MemberRole.REVIEWER),
            (ANNOTATOR, MemberRole.ANNOTATOR),
        }

    def test_add_member_updates_role(self, services, project):
        services.store.add_member(project.id, ANNOTATOR, MemberRole.REVIEWER, added_by=ADMIN)
        assert services.store.get_member(project.id, ANNOTATOR).role == MemberRole.REVIEWER
        assert len(services.store.list_members(project.id)) == 2

    def test_remove_member(self, services, project):
        assert services.store.remove_member(project.id, ANNOTATOR)
        assert services.store.get_member(project.id, ANNOTATOR) is None
        assert not services.store.remove_member(project.id, ANNOTATOR)

    def test_list_projects_for_member(self, services, project):
        other = services.store.create_project(name="Other", created_by=ADMIN, classes=[])

        assert [p.id for p in services.store.list_projects(ANNOTATOR)] == [project.id]
        assert [p.id for p in services.store.list_projects()] == [other.id, project.id]
        assert services.store.list_member_project_ids(ADMIN) == [project.id, other.id]


class TestDeleteProject:
    """Tests for cascading project deletion."""

    def test_delete_cascades(self, services, project, assignment, images, box):
        image = images[0]
        services.annotations.save(project.id, image.id, ANNOTATOR, [box()])
        mirror = annotation_key(project.id, image.id)
        assert services.storage.exists(services.bucket, mirror)

        assert services.store.delete_project(project.id, services.storage, services.bucket)

        assert services.store.get_project(project.id) is None
        assert services.images.get(image.id) is None
        assert services.annotations.list_for_image(image.id) == []
        assert services.assignments.get(assignment.id) is None
        assert services.store.list_members(project.id) == []
        assert not services.storage.exists(services.bucket, image.storage_key)
        assert not services.storage.exists(services.bucket, mirror)

    def test_delete_missing_project(self, services):
        assert not services.store.delete_project(99)
