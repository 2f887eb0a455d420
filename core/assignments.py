"""
AssignmentLedger - which images are assigned to which annotator.

Allocation is manual: an administrator hands an explicit list of images to
one user. The ledger also keeps each assignment's completion counters.
"""

import logging
import sqlite3
from typing import Optional

from core.errors import ValidationError, NotFoundError, validate_id
from core.images import ImageStore
from core.models import (
    Assignment, AssignmentStatus, AnnotationStatus, ReviewStatus, ImageStatus,
    utcnow, to_iso, from_iso, ids_to_json, ids_from_json,
)
from core.patches import ImagePatch
from core.store import ProjectStore

logger = logging.getLogger(__name__)


def row_to_assignment(row: sqlite3.Row) -> Assignment:
    """Convert database row to Assignment object."""
    return Assignment(
        id=row['id'],
        project_id=row['project_id'],
        user_id=row['user_id'],
        image_ids=ids_from_json(row['image_ids_json']),
        assigned_at=from_iso(row['assigned_at']),
        assigned_by=row['assigned_by'],
        status=AssignmentStatus(row['status']),
        total_images=row['total_images'],
        completed_images=row['completed_images'],
        last_activity=from_iso(row['last_activity']),
    )


class AssignmentLedger:
    """Records image assignments and their progress."""

    def __init__(self, store: ProjectStore, images: ImageStore):
        self.store = store
        self.images = images

    def assign_images(
        self,
        project_id: int,
        user_id: int,
        image_ids: list[int],
        assigned_by: int
    ) -> Assignment:
        """
        Assign images in a project to a user.

        Args:
            project_id: ID of the project
            user_id: Annotator receiving the images
            image_ids: Images to assign, all from this project
            assigned_by: Administrator making the assignment

        Returns:
            Created Assignment
        """
        project = self.store.require_project(project_id)
        user_id = validate_id(user_id, "user id")
        assigned_by = validate_id(assigned_by, "user id")
        if self.store.get_member(project.id, user_id) is None:
            raise ValidationError(f"User {user_id} is not a member of project {project.id}")

        ids = list(dict.fromkeys(validate_id(i, "image id") for i in image_ids))
        if not ids:
            raise ValidationError("No images to assign")
        found = self.images.list_by_ids(ids)
        if len(found) != len(ids) or any(img.project_id != project.id for img in found):
            raise ValidationError("All assigned images must exist in the project")

        now = to_iso(utcnow())
        cursor = self.store.conn.execute(
            """
            INSERT INTO assignments
            (project_id, user_id, image_ids_json, assigned_at, assigned_by, status,
             total_images, completed_images, last_activity)
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                project.id, user_id, ids_to_json(ids), now, assigned_by,
                AssignmentStatus.ASSIGNED.value, len(ids), now,
            )
        )
        self.store.commit()
        assignment_id = cursor.lastrowid

        for image in found:
            patch = ImagePatch(assigned_to=user_id)
            if image.status == ImageStatus.UPLOADED:
                patch = patch.merge(ImagePatch(status=ImageStatus.ASSIGNED))
            self.images.apply_patch(image.id, patch, recompute=False)
        self.images.stats.recompute(project.id)

        logger.info(f"Assigned {len(ids)} images in project {project.id} to user {user_id}")
        return self.refresh_progress(assignment_id)

    # ==================== Reads ====================

    def get(self, assignment_id: int) -> Optional[Assignment]:
        cursor = self.store.conn.execute(
            "SELECT * FROM assignments WHERE id = ?",
            (validate_id(assignment_id, "assignment id"),)
        )
        row = cursor.fetchone()
        return row_to_assignment(row) if row else None

    def require(self, assignment_id: int) -> Assignment:
        assignment = self.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        return assignment

    def list_user_assignments(self, project_id: int, user_id: int) -> list[Assignment]:
        cursor = self.store.conn.execute(
            "SELECT * FROM assignments WHERE project_id = ? AND user_id = ? ORDER BY id",
            (validate_id(project_id, "project id"), validate_id(user_id, "user id"))
        )
        return [row_to_assignment(row) for row in cursor.fetchall()]

    def list_project_assignments(self, project_id: int) -> list[Assignment]:
        cursor = self.store.conn.execute(
            "SELECT * FROM assignments WHERE project_id = ? ORDER BY id",
            (validate_id(project_id, "project id"),)
        )
        return [row_to_assignment(row) for row in cursor.fetchall()]

    # ==================== Progress ====================

    def set_status(self, assignment_id: int, status: AssignmentStatus) -> None:
        self.store.conn.execute(
            "UPDATE assignments SET status = ?, last_activity = ? WHERE id = ?",
            (AssignmentStatus(status).value, to_iso(utcnow()), assignment_id)
        )
        self.store.commit()

    def refresh_progress(self, assignment_id: int) -> Assignment:
        """
        Recount an assignment's completed images.

        An ASSIGNED assignment with annotation work moves to IN_PROGRESS.
        """
        assignment = self.require(assignment_id)
        images = self.images.list_by_ids(assignment.image_ids)
        completed = sum(1 for img in images if img.annotation_status == AnnotationStatus.COMPLETED)
        started = any(img.annotation_status != AnnotationStatus.UNANNOTATED for img in images)

        status = assignment.status
        if status == AssignmentStatus.ASSIGNED and started:
            status = AssignmentStatus.IN_PROGRESS

        self.store.conn.execute(
            """
            UPDATE assignments SET total_images = ?, completed_images = ?, status = ?, last_activity = ?
            WHERE id = ?
            """,
            (len(images), completed, status.value, to_iso(utcnow()), assignment.id)
        )
        self.store.commit()
        return self.require(assignment.id)

    def refresh_for_image(self, project_id: int, user_id: int, image_id: int) -> None:
        """Refresh every assignment of the user that covers the image."""
        for assignment in self.list_user_assignments(project_id, user_id):
            if image_id in assignment.image_ids:
                self.refresh_progress(assignment.id)

    def all_approved(self, assignment: Assignment) -> bool:
        images = self.images.list_by_ids(assignment.image_ids)
        return bool(images) and all(img.review_status == ReviewStatus.APPROVED for img in images)
