"""
Submission & review state machine.

    SUBMITTED -> UNDER_REVIEW -> APPROVED | REJECTED

A submission covers a fixed set of images. A review approves images or
flags a subset of them; flagged images return to the annotator, and once
re-saved they can enter a new submission. Every review write is a
compare-and-swap on the submission's version so two concurrent decisions
cannot both land.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional, Union

from core.assignments import AssignmentLedger
from core.errors import ValidationError, NotFoundError, ConflictError, validate_id
from core.images import ImageStore
from core.models import (
    Submission, SubmissionStatus, AssignmentStatus, ImageStatus, AnnotationStatus,
    ReviewStatus, ProjectStatus, FlaggedImage, ImageFeedback, ReviewHistoryItem,
    LIVE_SUBMISSION_STATUSES, SUBMITTABLE_ASSIGNMENT_STATUSES,
    utcnow, to_iso, from_iso, ids_to_json, ids_from_json,
    flagged_to_json, flagged_from_json, image_feedback_to_json, image_feedback_from_json,
    history_to_json, history_from_json,
)
from core.patches import ImagePatch
from core.stats import StatisticsAggregator
from core.store import ProjectStore

logger = logging.getLogger(__name__)

_LIVE = tuple(s.value for s in LIVE_SUBMISSION_STATUSES)


@dataclass
class ReviewDecision:
    """
    A reviewer's decision on a submission.

    A decision without a status is a partial update: only image_feedback
    is merged and the submission's verdict is left alone.
    """
    status: Optional[SubmissionStatus] = None
    feedback: str = ""
    flagged_images: list[FlaggedImage] = field(default_factory=list)
    image_feedback: list[ImageFeedback] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewDecision":
        try:
            status = data.get("status")
            return cls(
                status=SubmissionStatus(status) if status else None,
                feedback=data.get("feedback") or "",
                flagged_images=[
                    FlaggedImage(image_id=validate_id(item["image_id"], "image id"), reason=item.get("reason") or "")
                    for item in data.get("flagged_images") or []
                ],
                image_feedback=[
                    ImageFeedback(image_id=validate_id(item["image_id"], "image id"), feedback=item.get("feedback") or "")
                    for item in data.get("image_feedback") or []
                ],
            )
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise ValidationError(f"Invalid review decision: {e}")


@dataclass
class SubmissionStats:
    total_submissions: int
    pending_submissions: int
    approved_submissions: int
    rejected_submissions: int


def row_to_submission(row: sqlite3.Row) -> Submission:
    """Convert database row to Submission object."""
    return Submission(
        id=row['id'],
        project_id=row['project_id'],
        user_id=row['user_id'],
        assignment_id=row['assignment_id'],
        image_ids=ids_from_json(row['image_ids_json']),
        status=SubmissionStatus(row['status']),
        submitted_at=from_iso(row['submitted_at']),
        message=row['message'],
        feedback=row['feedback'],
        flagged_images=flagged_from_json(row['flagged_images_json']),
        image_feedback=image_feedback_from_json(row['image_feedback_json']),
        review_history=history_from_json(row['review_history_json']),
        reviewed_at=from_iso(row['reviewed_at']),
        reviewed_by=row['reviewed_by'],
        version=row['version'],
    )


def merge_image_feedback(
    existing: list[ImageFeedback],
    updates: list[ImageFeedback]
) -> list[ImageFeedback]:
    """Merge feedback by image id; later entries replace earlier ones."""
    merged = {item.image_id: item.feedback for item in existing}
    for item in updates:
        merged[item.image_id] = item.feedback
    return [ImageFeedback(image_id=image_id, feedback=text) for image_id, text in merged.items()]


class SubmissionWorkflow:
    """Creates submissions and applies review decisions."""

    def __init__(
        self,
        store: ProjectStore,
        images: ImageStore,
        ledger: AssignmentLedger,
        stats: StatisticsAggregator
    ):
        self.store = store
        self.images = images
        self.ledger = ledger
        self.stats = stats

    # ==================== Submit ====================

    def submit_for_review(
        self,
        project_id: int,
        user_id: int,
        assignment_id: int,
        message: str = ""
    ) -> Submission:
        """
        Turn an assignment's finished work into a submission.

        The submission covers the assignment's images that are not yet
        reviewed, and at least one of them must be annotated. Approved
        images are done; flagged images stay with the submission that
        flagged them until they are corrected.

        Args:
            project_id: ID of the project
            user_id: Submitting annotator, must own the assignment
            assignment_id: Assignment being submitted
            message: Note to the reviewer

        Returns:
            Created Submission in status SUBMITTED
        """
        project = self.store.require_project(project_id)
        if project.status == ProjectStatus.COMPLETED:
            raise ConflictError("Project is marked as complete. No new submissions allowed.")
        user_id = validate_id(user_id, "user id")

        assignment = self.ledger.require(assignment_id)
        if assignment.project_id != project.id:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        if assignment.user_id != user_id:
            raise ValidationError("You do not own this assignment")

        live = self._live_for_assignment(assignment.id)
        if live is not None:
            raise ConflictError(f"Assignment already has submission {live.id} awaiting review")
        if assignment.status not in SUBMITTABLE_ASSIGNMENT_STATUSES:
            raise ValidationError(f"Assignment is {assignment.status.value} and cannot be submitted")

        covered = [
            image for image in self.images.list_by_ids(assignment.image_ids)
            if image.review_status == ReviewStatus.NOT_REVIEWED
            and not self._linked_to_live(image.current_submission_id)
        ]
        if not any(image.annotation_status == AnnotationStatus.COMPLETED for image in covered):
            raise ValidationError("No completed images to submit in this assignment")
        image_ids = [image.id for image in covered]

        cursor = self.store.conn.execute(
            """
            INSERT INTO submissions
            (project_id, user_id, assignment_id, image_ids_json, status, message, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                project.id, user_id, assignment.id, ids_to_json(image_ids),
                SubmissionStatus.SUBMITTED.value, message or "", to_iso(utcnow()),
            )
        )
        self.store.commit()
        submission_id = cursor.lastrowid

        self.ledger.set_status(assignment.id, AssignmentStatus.SUBMITTED)
        for image_id in image_ids:
            self.images.apply_patch(
                image_id,
                ImagePatch(status=ImageStatus.UNDER_REVIEW, current_submission_id=submission_id),
                recompute=False
            )
        self.stats.recompute(project.id)

        logger.info(
            f"User {user_id} submitted {len(image_ids)} images of assignment {assignment.id} "
            f"as submission {submission_id}"
        )
        return self.require(submission_id)

    def _live_for_assignment(self, assignment_id: int) -> Optional[Submission]:
        row = self.store.conn.execute(
            "SELECT * FROM submissions WHERE assignment_id = ? AND status IN (?, ?) LIMIT 1",
            (assignment_id, *_LIVE)
        ).fetchone()
        return row_to_submission(row) if row else None

    def _linked_to_live(self, submission_id: Optional[int]) -> bool:
        if submission_id is None:
            return False
        submission = self.get(submission_id)
        return submission is not None and submission.is_live

    # ==================== Review ====================

    def start_review(self, submission_id: int, reviewer_id: int) -> Submission:
        """Move a SUBMITTED submission to UNDER_REVIEW."""
        submission = self.require(submission_id)
        validate_id(reviewer_id, "user id")
        if submission.status != SubmissionStatus.SUBMITTED:
            raise ConflictError(f"Submission is {submission.status.value}, not SUBMITTED")

        self._compare_and_swap(submission, {"status": SubmissionStatus.UNDER_REVIEW.value})
        self.ledger.set_status(submission.assignment_id, AssignmentStatus.UNDER_REVIEW)
        logger.info(f"Reviewer {reviewer_id} started reviewing submission {submission.id}")
        return self.require(submission.id)

    def review(
        self,
        submission_id: int,
        reviewer_id: int,
        decision: Union[ReviewDecision, dict],
        expected_version: Optional[int] = None
    ) -> Submission:
        """
        Apply a review decision.

        On APPROVED every covered image that was not flagged is approved and
        released from the submission. On REJECTED only the flagged images
        change review state. Flagged images get the reviewer's reason.

        Args:
            submission_id: ID of the submission
            reviewer_id: Reviewer deciding
            decision: Verdict, feedback, flagged images, per-image feedback
            expected_version: Version the reviewer saw; a mismatch raises
                ConflictError

        Returns:
            Updated Submission
        """
        if isinstance(decision, dict):
            decision = ReviewDecision.from_dict(decision)
        reviewer_id = validate_id(reviewer_id, "user id")
        submission = self.require(submission_id)
        if expected_version is not None and expected_version != submission.version:
            raise ConflictError("Submission was changed by another reviewer; reload and try again")

        covered = set(submission.image_ids)
        for item in decision.image_feedback:
            if item.image_id not in covered:
                raise ValidationError(f"Image {item.image_id} is not part of submission {submission.id}")
        image_feedback = merge_image_feedback(submission.image_feedback, decision.image_feedback)

        if decision.status is None:
            self._compare_and_swap(submission, {"image_feedback_json": image_feedback_to_json(image_feedback)})
            return self.require(submission.id)

        try:
            status = SubmissionStatus(decision.status)
        except ValueError:
            raise ValidationError(f"Unknown submission status: {decision.status}")
        if status not in (SubmissionStatus.APPROVED, SubmissionStatus.REJECTED):
            raise ValidationError("A review must approve or reject the submission")
        if not submission.is_live:
            raise ConflictError("Submission is not available for review")

        flagged: dict[int, str] = {}
        for item in decision.flagged_images:
            if item.image_id not in covered:
                raise ValidationError(f"Image {item.image_id} is not part of submission {submission.id}")
            flagged[item.image_id] = item.reason
        flagged_images = [FlaggedImage(image_id=i, reason=r) for i, r in flagged.items()]

        now = utcnow()
        history = submission.review_history + [ReviewHistoryItem(
            reviewed_by=reviewer_id,
            reviewed_at=now,
            status=status,
            feedback=decision.feedback,
            flagged_images=flagged_images,
            image_feedback=decision.image_feedback,
        )]
        self._compare_and_swap(submission, {
            "status": status.value,
            "feedback": decision.feedback,
            "reviewed_by": reviewer_id,
            "reviewed_at": to_iso(now),
            "flagged_images_json": flagged_to_json(flagged_images),
            "image_feedback_json": image_feedback_to_json(image_feedback),
            "review_history_json": history_to_json(history),
        })

        for image in self.images.list_by_ids(submission.image_ids):
            if image.id in flagged:
                patch = ImagePatch(
                    status=ImageStatus.REVIEWED,
                    review_status=ReviewStatus.FLAGGED,
                    review_feedback=flagged[image.id],
                    reviewed_by=reviewer_id,
                    reviewed_at=now,
                    current_submission_id=submission.id,
                )
            elif status == SubmissionStatus.APPROVED:
                patch = ImagePatch(
                    status=ImageStatus.APPROVED,
                    review_status=ReviewStatus.APPROVED,
                    reviewed_by=reviewer_id,
                    reviewed_at=now,
                    current_submission_id=None,
                )
            else:
                # Rejection leaves unflagged images' review state alone
                patch = ImagePatch(
                    status=ImageStatus.ANNOTATED
                    if image.annotation_status == AnnotationStatus.COMPLETED
                    else ImageStatus.ASSIGNED
                )
            self.images.apply_patch(image.id, patch, recompute=False)

        self._update_assignment(submission.assignment_id, status, bool(flagged))
        project_stats = self.stats.recompute(submission.project_id)

        logger.info(
            f"Reviewer {reviewer_id} {status.value.lower()} submission {submission.id} "
            f"({len(flagged)} of {len(covered)} images flagged)"
        )
        if project_stats.total_images > 0 and project_stats.approved_images == project_stats.total_images:
            logger.info(
                f"All images in project {submission.project_id} are approved. "
                f"Consider marking the project as completed."
            )
        return self.require(submission.id)

    def add_image_feedback(
        self,
        submission_id: int,
        reviewer_id: int,
        image_feedback: list[ImageFeedback],
        expected_version: Optional[int] = None
    ) -> Submission:
        """Merge per-image commentary without deciding the submission."""
        return self.review(
            submission_id,
            reviewer_id,
            ReviewDecision(status=None, image_feedback=image_feedback),
            expected_version=expected_version,
        )

    def _compare_and_swap(self, submission: Submission, columns: dict) -> None:
        """Write columns only if nobody changed the submission since it was read."""
        assignments = ", ".join(f"{name} = ?" for name in columns)
        cursor = self.store.conn.execute(
            f"UPDATE submissions SET {assignments}, version = version + 1 WHERE id = ? AND version = ?",
            (*columns.values(), submission.id, submission.version)
        )
        self.store.commit()
        if cursor.rowcount == 0:
            raise ConflictError("Submission was changed by another reviewer; reload and try again")

    def _update_assignment(self, assignment_id: int, status: SubmissionStatus, any_flagged: bool) -> None:
        assignment = self.ledger.get(assignment_id)
        if assignment is None:
            return
        if self.ledger.all_approved(assignment):
            new_status = AssignmentStatus.COMPLETED
        elif any_flagged or status == SubmissionStatus.REJECTED:
            new_status = AssignmentStatus.NEEDS_REVISION
        else:
            new_status = AssignmentStatus.IN_PROGRESS
        self.ledger.set_status(assignment.id, new_status)
        self.ledger.refresh_progress(assignment.id)

    # ==================== Reads ====================

    def get(self, submission_id: int) -> Optional[Submission]:
        cursor = self.store.conn.execute(
            "SELECT * FROM submissions WHERE id = ?",
            (validate_id(submission_id, "submission id"),)
        )
        row = cursor.fetchone()
        return row_to_submission(row) if row else None

    def require(self, submission_id: int) -> Submission:
        submission = self.get(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    def get_image_feedback(self, submission_id: int, image_id: int) -> Optional[str]:
        """Reviewer feedback for one image of a submission, if any."""
        submission = self.get(submission_id)
        if submission is None:
            return None
        image_id = validate_id(image_id, "image id")
        for item in submission.image_feedback:
            if item.image_id == image_id:
                return item.feedback
        return None

    def list_project_submissions(
        self,
        project_id: int,
        page: int = 1,
        limit: int = 20,
        status: Optional[SubmissionStatus] = None,
        user_id: Optional[int] = None
    ) -> tuple[list[Submission], int]:
        """
        Page through a project's submissions, newest first.

        Returns:
            (submissions on the page, total matching)
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        where = ["project_id = ?"]
        values: list = [validate_id(project_id, "project id")]
        if status is not None:
            where.append("status = ?")
            values.append(SubmissionStatus(status).value)
        if user_id is not None:
            where.append("user_id = ?")
            values.append(validate_id(user_id, "user id"))
        clause = " AND ".join(where)

        total = self.store.conn.execute(
            f"SELECT COUNT(*) FROM submissions WHERE {clause}", values
        ).fetchone()[0]
        cursor = self.store.conn.execute(
            f"SELECT * FROM submissions WHERE {clause} ORDER BY submitted_at DESC, id DESC LIMIT ? OFFSET ?",
            (*values, limit, (page - 1) * limit)
        )
        return [row_to_submission(row) for row in cursor.fetchall()], total

    def list_user_submissions(
        self,
        project_id: int,
        user_id: int,
        page: int = 1,
        limit: int = 20
    ) -> tuple[list[Submission], int]:
        return self.list_project_submissions(project_id, page, limit, user_id=user_id)

    def submission_stats(self, project_id: int) -> SubmissionStats:
        project_id = validate_id(project_id, "project id")
        counts = {
            row['status']: row['n']
            for row in self.store.conn.execute(
                "SELECT status, COUNT(*) AS n FROM submissions WHERE project_id = ? GROUP BY status",
                (project_id,)
            ).fetchall()
        }
        return SubmissionStats(
            total_submissions=sum(counts.values()),
            pending_submissions=sum(counts.get(s, 0) for s in _LIVE),
            approved_submissions=counts.get(SubmissionStatus.APPROVED.value, 0),
            rejected_submissions=counts.get(SubmissionStatus.REJECTED.value, 0),
        )

    def can_user_submit(self, project_id: int, user_id: int) -> tuple[bool, Optional[str]]:
        """Whether the user may submit now, with the reason when not."""
        status = self.stats.user_submission_status(project_id, user_id)
        return status.can_submit, status.reason
