"""
Statistics aggregation.

Project counters are always recomputed from the current image rows, never
incremented in place, so a stale value heals on the next mutation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import validate_id
from core.models import (
    AnnotationStatus, ReviewStatus, ImageStatus, SubmissionStatus, ProjectStatus,
    LIVE_SUBMISSION_STATUSES, SUBMITTABLE_ASSIGNMENT_STATUSES, ids_from_json, utcnow, to_iso,
)
from core.store import ProjectStore

logger = logging.getLogger(__name__)

_LIVE = tuple(s.value for s in LIVE_SUBMISSION_STATUSES)


def completion_percentage(approved: int, total: int) -> int:
    """round(100 * approved / total), halves rounded up; 0 for an empty project."""
    if total <= 0:
        return 0
    return (200 * approved + total) // (2 * total)


@dataclass
class ProjectStats:
    total_images: int
    annotated_images: int
    reviewed_images: int
    approved_images: int
    completion_percentage: int


@dataclass
class UserSubmissionStatus:
    """Per-user progress within one project."""
    total_assigned: int
    completed: int
    flagged: int
    approved: int
    pending_review: int
    progress: int
    can_submit: bool
    pending_submission_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class UserDashboardStats:
    total_projects: int
    total_assigned_images: int
    completed_images: int
    pending_review_images: int
    rejected_images: int
    approved_images: int
    projects_with_pending_work: int


@dataclass
class ProjectCompletionForUser:
    is_completed: bool
    has_assigned_images: bool
    message: str
    pending_images: Optional[int] = None
    total_assigned: Optional[int] = None
    last_submission_status: Optional[SubmissionStatus] = None


class StatisticsAggregator:
    """Recomputes derived project counters and per-user rollups."""

    def __init__(self, store: ProjectStore):
        self.store = store

    def _count(self, sql: str, params: tuple) -> int:
        return self.store.conn.execute(sql, params).fetchone()[0]

    def compute(self, project_id: int) -> ProjectStats:
        """Count the project's images by state without writing anything."""
        row = self.store.conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(annotation_status = ?), 0) AS annotated,
                COALESCE(SUM(review_status IN (?, ?)), 0) AS reviewed,
                COALESCE(SUM(review_status = ?), 0) AS approved
            FROM images WHERE project_id = ?
            """,
            (
                AnnotationStatus.COMPLETED.value,
                ReviewStatus.APPROVED.value, ReviewStatus.FLAGGED.value,
                ReviewStatus.APPROVED.value,
                project_id,
            )
        ).fetchone()
        return ProjectStats(
            total_images=row['total'],
            annotated_images=row['annotated'],
            reviewed_images=row['reviewed'],
            approved_images=row['approved'],
            completion_percentage=completion_percentage(row['approved'], row['total']),
        )

    def recompute(self, project_id: int) -> ProjectStats:
        """
        Recompute and store a project's counters.

        Args:
            project_id: ID of the project

        Returns:
            The counters written
        """
        project_id = validate_id(project_id, "project id")
        stats = self.compute(project_id)
        self.store.conn.execute(
            """
            UPDATE projects SET
                total_images = ?, annotated_images = ?, reviewed_images = ?,
                approved_images = ?, completion_percentage = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                stats.total_images, stats.annotated_images, stats.reviewed_images,
                stats.approved_images, stats.completion_percentage,
                to_iso(utcnow()), project_id,
            )
        )
        self.store.commit()
        logger.debug(f"Project {project_id} stats: {stats}")
        return stats

    def count_live_submissions(self, project_id: int, user_id: Optional[int] = None) -> int:
        """Submissions still SUBMITTED or UNDER_REVIEW."""
        sql = "SELECT COUNT(*) FROM submissions WHERE project_id = ? AND status IN (?, ?)"
        params = (project_id, *_LIVE)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (user_id,)
        return self._count(sql, params)

    # ==================== Per-user rollups ====================

    def user_submission_status(self, project_id: int, user_id: int) -> UserSubmissionStatus:
        """
        Progress of one annotator in one project.

        can_submit mirrors submit_for_review: it is True when at least one
        of the user's assignments would be accepted right now, and always
        False once the project is completed.
        """
        project = self.store.require_project(project_id)
        user_id = validate_id(user_id, "user id")
        base = "SELECT COUNT(*) FROM images WHERE project_id = ? AND assigned_to = ?"
        params = (project.id, user_id)

        total_assigned = self._count(base, params)
        completed = self._count(
            base + " AND annotation_status = ? AND review_status = ?",
            params + (AnnotationStatus.COMPLETED.value, ReviewStatus.NOT_REVIEWED.value)
        )
        flagged = self._count(base + " AND review_status = ?", params + (ReviewStatus.FLAGGED.value,))
        approved = self._count(base + " AND review_status = ?", params + (ReviewStatus.APPROVED.value,))
        pending_review = self._count(base + " AND status = ?", params + (ImageStatus.UNDER_REVIEW.value,))

        row = self.store.conn.execute(
            """
            SELECT id FROM submissions
            WHERE project_id = ? AND user_id = ? AND status IN (?, ?)
            ORDER BY submitted_at DESC LIMIT 1
            """,
            (project.id, user_id, *_LIVE)
        ).fetchone()
        pending_submission_id = row['id'] if row else None

        reason = None
        if project.status == ProjectStatus.COMPLETED:
            reason = "Project is marked as complete"
        elif total_assigned == 0:
            reason = "No images assigned to you"
        elif not self._submittable_assignment_ids(project.id, user_id):
            if pending_submission_id is not None:
                reason = "You have a pending submission awaiting review"
            else:
                reason = "No annotated images are waiting for review"

        return UserSubmissionStatus(
            total_assigned=total_assigned,
            completed=completed,
            flagged=flagged,
            approved=approved,
            pending_review=pending_review,
            progress=completion_percentage(approved, total_assigned),
            can_submit=reason is None,
            pending_submission_id=pending_submission_id,
            reason=reason,
        )

    def _submittable_assignment_ids(self, project_id: int, user_id: int) -> list[int]:
        """Assignments of the user that submit_for_review would accept."""
        statuses = tuple(s.value for s in SUBMITTABLE_ASSIGNMENT_STATUSES)
        rows = self.store.conn.execute(
            f"""
            SELECT a.id, a.image_ids_json FROM assignments a
            WHERE a.project_id = ? AND a.user_id = ?
            AND a.status IN ({", ".join("?" for _ in statuses)})
            AND NOT EXISTS (
                SELECT 1 FROM submissions s WHERE s.assignment_id = a.id AND s.status IN (?, ?)
            )
            ORDER BY a.id
            """,
            (project_id, user_id, *statuses, *_LIVE)
        ).fetchall()

        submittable = []
        for row in rows:
            image_ids = ids_from_json(row['image_ids_json'])
            if not image_ids:
                continue
            placeholders = ", ".join("?" for _ in image_ids)
            ready = self._count(
                f"""
                SELECT COUNT(*) FROM images i
                WHERE i.id IN ({placeholders})
                AND i.annotation_status = ? AND i.review_status = ?
                AND NOT EXISTS (
                    SELECT 1 FROM submissions s
                    WHERE s.id = i.current_submission_id AND s.status IN (?, ?)
                )
                """,
                (*image_ids, AnnotationStatus.COMPLETED.value, ReviewStatus.NOT_REVIEWED.value, *_LIVE)
            )
            if ready:
                submittable.append(row['id'])
        return submittable

    def user_dashboard(self, user_id: int) -> UserDashboardStats:
        """Rollup across every project the user is a member of."""
        user_id = validate_id(user_id, "user id")
        project_ids = self.store.list_member_project_ids(user_id)
        if not project_ids:
            return UserDashboardStats(0, 0, 0, 0, 0, 0, 0)

        placeholders = ", ".join("?" for _ in project_ids)
        base = f"SELECT COUNT(*) FROM images WHERE project_id IN ({placeholders}) AND assigned_to = ?"
        params = (*project_ids, user_id)

        pending_projects = self._count(
            f"""
            SELECT COUNT(DISTINCT project_id) FROM images
            WHERE project_id IN ({placeholders}) AND assigned_to = ? AND review_status != ?
            """,
            params + (ReviewStatus.APPROVED.value,)
        )

        return UserDashboardStats(
            total_projects=len(project_ids),
            total_assigned_images=self._count(base, params),
            completed_images=self._count(
                base + " AND annotation_status = ? AND review_status != ?",
                params + (AnnotationStatus.COMPLETED.value, ReviewStatus.APPROVED.value)
            ),
            pending_review_images=self._count(base + " AND status = ?", params + (ImageStatus.UNDER_REVIEW.value,)),
            rejected_images=self._count(base + " AND review_status = ?", params + (ReviewStatus.FLAGGED.value,)),
            approved_images=self._count(base + " AND review_status = ?", params + (ReviewStatus.APPROVED.value,)),
            projects_with_pending_work=pending_projects,
        )

    def project_completion_for_user(self, project_id: int, user_id: int) -> ProjectCompletionForUser:
        """Whether all of a user's work in a project is approved."""
        project = self.store.require_project(project_id)
        user_id = validate_id(user_id, "user id")
        base = "SELECT COUNT(*) FROM images WHERE project_id = ? AND assigned_to = ?"

        total_assigned = self._count(base, (project.id, user_id))
        if total_assigned == 0:
            return ProjectCompletionForUser(
                is_completed=False,
                has_assigned_images=False,
                message="No images assigned in this project",
            )

        pending_images = self._count(
            base + " AND review_status != ?",
            (project.id, user_id, ReviewStatus.APPROVED.value)
        )
        row = self.store.conn.execute(
            """
            SELECT status FROM submissions WHERE project_id = ? AND user_id = ?
            ORDER BY submitted_at DESC, id DESC LIMIT 1
            """,
            (project.id, user_id)
        ).fetchone()
        last_status = SubmissionStatus(row['status']) if row else None

        is_completed = pending_images == 0 and last_status == SubmissionStatus.APPROVED
        return ProjectCompletionForUser(
            is_completed=is_completed,
            has_assigned_images=True,
            pending_images=pending_images,
            total_assigned=total_assigned,
            last_submission_status=last_status,
            message=(
                "All work completed and approved in this project"
                if is_completed else "This project still has pending work"
            ),
        )
