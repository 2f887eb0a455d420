"""
Tests for statistics recomputation and per-user rollups.
"""

import pytest

from core.models import FlaggedImage, SubmissionStatus
from core.stats import completion_percentage
from core.submissions import ReviewDecision

ADMIN = 1
ANNOTATOR = 2


def assert_percentage_consistent(services, project_id):
    project = services.store.require_project(project_id)
    assert project.completion_percentage == completion_percentage(
        project.approved_images, project.total_images
    )


@pytest.mark.parametrize("approved,total,expected", [
    (0, 0, 0),
    (0, 5, 0),
    (1, 3, 33),
    (2, 3, 67),
    (1, 2, 50),
    (1, 8, 13),
    (3, 3, 100),
])
def test_completion_percentage(approved, total, expected):
    assert completion_percentage(approved, total) == expected


class TestRecompute:
    """Counters are derived from image rows."""

    def test_counts(self, services, project, images, assignment, box):
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()])
        services.annotations.save(project.id, images[1].id, ANNOTATOR, [box()])
        stats = services.stats.compute(project.id)

        assert stats.total_images == 3
        assert stats.annotated_images == 2
        assert stats.reviewed_images == 0
        assert stats.approved_images == 0
        assert stats.completion_percentage == 0

    def test_stale_counters_heal(self, services, project, images):
        services.store.conn.execute(
            "UPDATE projects SET total_images = 99, approved_images = 7 WHERE id = ?", (project.id,)
        )
        services.store.commit()

        stats = services.stats.recompute(project.id)

        assert stats.total_images == 3
        reloaded = services.store.require_project(project.id)
        assert reloaded.total_images == 3
        assert reloaded.approved_images == 0

    def test_percentage_invariant_through_workflow(self, services, project, images, assignment, box):
        assert_percentage_consistent(services, project.id)
        for image in images:
            services.annotations.save(project.id, image.id, ANNOTATOR, [box()])
            assert_percentage_consistent(services, project.id)

        submission = services.submissions.submit_for_review(project.id, ANNOTATOR, assignment.id)
        assert_percentage_consistent(services, project.id)

        services.submissions.review(submission.id, ADMIN, ReviewDecision(
            status=SubmissionStatus.APPROVED,
            flagged_images=[FlaggedImage(image_id=images[0].id, reason="Redo")],
        ))
        assert_percentage_consistent(services, project.id)
        assert services.store.require_project(project.id).completion_percentage == 67

        services.images.delete(images[0].id)
        assert_percentage_consistent(services, project.id)
        assert services.store.require_project(project.id).completion_percentage == 100

    def test_count_live_submissions(self, services, project, images, assignment, box):
        assert services.stats.count_live_submissions(project.id) == 0
        for image in images:
            services.annotations.save(project.id, image.id, ANNOTATOR, [box()])
        services.submissions.submit_for_review(project.id, ANNOTATOR, assignment.id)

        assert services.stats.count_live_submissions(project.id) == 1
        assert services.stats.count_live_submissions(project.id, user_id=ANNOTATOR) == 1
        assert services.stats.count_live_submissions(project.id, user_id=ADMIN) == 0


class TestUserRollups:
    """Per-user dashboard and completion views."""

    def test_dashboard_without_projects(self, services):
        stats = services.stats.user_dashboard(5)
        assert stats.total_projects == 0
        assert stats.total_assigned_images == 0

    def test_dashboard(self, services, project, images, assignment, box):
        for image in images:
            services.annotations.save(project.id, image.id, ANNOTATOR, [box()])
        submission = services.submissions.submit_for_review(project.id, ANNOTATOR, assignment.id)
        services.submissions.review(submission.id, ADMIN, ReviewDecision(
            status=SubmissionStatus.APPROVED,
            flagged_images=[FlaggedImage(image_id=images[0].id, reason="Redo")],
        ))

        stats = services.stats.user_dashboard(ANNOTATOR)
        assert stats.total_projects == 1
        assert stats.total_assigned_images == 3
        assert stats.approved_images == 2
        assert stats.rejected_images == 1
        assert stats.completed_images == 1
        assert stats.pending_review_images == 0
        assert stats.projects_with_pending_work == 1

    def test_project_completion_for_user(self, services, project, images, assignment, box):
        assert not services.stats.project_completion_for_user(project.id, 3).has_assigned_images

        for image in images:
            services.annotations.save(project.id, image.id, ANNOTATOR, [box()])
        result = services.stats.project_completion_for_user(project.id, ANNOTATOR)
        assert not result.is_completed
        assert result.pending_images == 3
        assert result.last_submission_status is None

        submission = services.submissions.submit_for_review(project.id, ANNOTATOR, assignment.id)
        services.submissions.review(submission.id, ADMIN, ReviewDecision(status=SubmissionStatus.APPROVED))

        result = services.stats.project_completion_for_user(project.id, ANNOTATOR)
        assert result.is_completed
        assert result.pending_images == 0
        assert result.last_submission_status == SubmissionStatus.APPROVED

    def test_can_submit_with_second_assignment(self, services, project, images, box):
        first = services.assignments.assign_images(project.id, ANNOTATOR, [images[0].id], ADMIN)
        second = services.assignments.assign_images(project.id, ANNOTATOR, [images[1].id], ADMIN)
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()])
        services.annotations.save(project.id, images[1].id, ANNOTATOR, [box()])

        submission = services.submissions.submit_for_review(project.id, ANNOTATOR, first.id)
        status = services.stats.user_submission_status(project.id, ANNOTATOR)
        assert status.can_submit
        assert status.reason is None
        assert status.pending_submission_id == submission.id

        services.submissions.submit_for_review(project.id, ANNOTATOR, second.id)
        status = services.stats.user_submission_status(project.id, ANNOTATOR)
        assert not status.can_submit
        assert "pending" in status.reason

    def test_can_submit_needs_annotated_image_in_open_assignment(self, services, project, images, box):
        first = services.assignments.assign_images(project.id, ANNOTATOR, [images[0].id], ADMIN)
        services.assignments.assign_images(project.id, ANNOTATOR, [images[1].id], ADMIN)
        services.annotations.save(project.id, images[0].id, ANNOTATOR, [box()])
        services.submissions.submit_for_review(project.id, ANNOTATOR, first.id)

        # The second assignment is open but has nothing annotated yet
        assert services.submissions.can_user_submit(project.id, ANNOTATOR) == (
            False, "You have a pending submission awaiting review"
        )
