"""
Submissions API endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.access import require_member, require_reviewer, require_submission_access
from core.models import (
    Caller, FlaggedImage, ImageFeedback, Submission, SubmissionStatus,
)
from core.services import Services
from core.submissions import ReviewDecision
from backend.api.deps import get_services, get_caller

router = APIRouter()


class FlaggedImageModel(BaseModel):
    image_id: int
    reason: str = ""


class ImageFeedbackModel(BaseModel):
    image_id: int
    feedback: str = ""


class ReviewHistoryModel(BaseModel):
    reviewed_by: int
    reviewed_at: datetime
    status: SubmissionStatus
    feedback: str
    flagged_count: int
    flagged_images: list[FlaggedImageModel]
    image_feedback: list[ImageFeedbackModel]


class SubmissionResponse(BaseModel):
    id: int
    project_id: int
    user_id: int
    assignment_id: int
    image_ids: list[int]
    status: SubmissionStatus
    submitted_at: datetime
    message: str
    feedback: str
    flagged_images: list[FlaggedImageModel]
    image_feedback: list[ImageFeedbackModel]
    review_history: list[ReviewHistoryModel]
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    version: int

    @classmethod
    def from_submission(cls, submission: Submission):
        return cls(
            id=submission.id,
            project_id=submission.project_id,
            user_id=submission.user_id,
            assignment_id=submission.assignment_id,
            image_ids=submission.image_ids,
            status=submission.status,
            submitted_at=submission.submitted_at,
            message=submission.message,
            feedback=submission.feedback,
            flagged_images=[FlaggedImageModel(image_id=f.image_id, reason=f.reason) for f in submission.flagged_images],
            image_feedback=[
                ImageFeedbackModel(image_id=f.image_id, feedback=f.feedback) for f in submission.image_feedback
            ],
            review_history=[
                ReviewHistoryModel(
                    reviewed_by=item.reviewed_by,
                    reviewed_at=item.reviewed_at,
                    status=item.status,
                    feedback=item.feedback,
                    flagged_count=item.flagged_count,
                    flagged_images=[FlaggedImageModel(image_id=f.image_id, reason=f.reason) for f in item.flagged_images],
                    image_feedback=[
                        ImageFeedbackModel(image_id=f.image_id, feedback=f.feedback) for f in item.image_feedback
                    ],
                )
                for item in submission.review_history
            ],
            reviewed_at=submission.reviewed_at,
            reviewed_by=submission.reviewed_by,
            version=submission.version,
        )


class SubmissionPageResponse(BaseModel):
    submissions: list[SubmissionResponse]
    total: int
    page: int
    limit: int


class SubmitRequest(BaseModel):
    project_id: int
    assignment_id: int
    message: str = ""


class ReviewRequest(BaseModel):
    status: SubmissionStatus
    feedback: str = ""
    flagged_images: list[FlaggedImageModel] = Field(default_factory=list)
    image_feedback: list[ImageFeedbackModel] = Field(default_factory=list)
    expected_version: Optional[int] = None


class ImageFeedbackRequest(BaseModel):
    image_feedback: list[ImageFeedbackModel]
    expected_version: Optional[int] = None


class SubmissionStatusResponse(BaseModel):
    can_submit: bool
    reason: Optional[str] = None
    total_assigned: int
    completed: int
    flagged: int
    approved: int
    pending_review: int
    progress: int
    pending_submission_id: Optional[int] = None


@router.post("", response_model=SubmissionResponse)
async def submit_for_review(
    request: SubmitRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Submit an assignment's work for review."""
    require_member(services.store, request.project_id, caller)
    submission = services.submissions.submit_for_review(
        request.project_id, caller.user_id, request.assignment_id, request.message
    )
    return SubmissionResponse.from_submission(submission)


@router.get("", response_model=SubmissionPageResponse)
async def list_submissions(
    project_id: int,
    page: int = 1,
    limit: int = 20,
    status: Optional[SubmissionStatus] = None,
    user_id: Optional[int] = None,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """List a project's submissions (reviewers only)."""
    require_reviewer(services.store, project_id, caller)
    submissions, total = services.submissions.list_project_submissions(
        project_id, page, limit, status=status, user_id=user_id
    )
    return SubmissionPageResponse(
        submissions=[SubmissionResponse.from_submission(s) for s in submissions],
        total=total, page=page, limit=limit,
    )


@router.get("/mine", response_model=SubmissionPageResponse)
async def list_my_submissions(
    project_id: int,
    page: int = 1,
    limit: int = 20,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    require_member(services.store, project_id, caller)
    submissions, total = services.submissions.list_user_submissions(project_id, caller.user_id, page, limit)
    return SubmissionPageResponse(
        submissions=[SubmissionResponse.from_submission(s) for s in submissions],
        total=total, page=page, limit=limit,
    )


@router.get("/status", response_model=SubmissionStatusResponse)
async def get_submission_status(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Whether the caller can submit, with their progress in the project."""
    require_member(services.store, project_id, caller)
    status = services.stats.user_submission_status(project_id, caller.user_id)
    return SubmissionStatusResponse(
        can_submit=status.can_submit,
        reason=status.reason,
        total_assigned=status.total_assigned,
        completed=status.completed,
        flagged=status.flagged,
        approved=status.approved,
        pending_review=status.pending_review,
        progress=status.progress,
        pending_submission_id=status.pending_submission_id,
    )


@router.get("/stats")
async def get_submission_stats(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    require_reviewer(services.store, project_id, caller)
    stats = services.submissions.submission_stats(project_id)
    return {
        "total_submissions": stats.total_submissions,
        "pending_submissions": stats.pending_submissions,
        "approved_submissions": stats.approved_submissions,
        "rejected_submissions": stats.rejected_submissions,
    }


@router.get("/{submission_id}", response_model=SubmissionResponse)
async def get_submission(
    submission_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    submission = services.submissions.require(submission_id)
    require_submission_access(services.store, submission, caller)
    return SubmissionResponse.from_submission(submission)


@router.get("/{submission_id}/images/{image_id}/feedback")
async def get_image_feedback(
    submission_id: int,
    image_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    submission = services.submissions.require(submission_id)
    require_submission_access(services.store, submission, caller)
    return {
        "submission_id": submission.id,
        "image_id": image_id,
        "feedback": services.submissions.get_image_feedback(submission.id, image_id),
    }


@router.post("/{submission_id}/start-review", response_model=SubmissionResponse)
async def start_review(
    submission_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    submission = services.submissions.require(submission_id)
    require_reviewer(services.store, submission.project_id, caller)
    return SubmissionResponse.from_submission(
        services.submissions.start_review(submission.id, caller.user_id)
    )


@router.post("/{submission_id}/review", response_model=SubmissionResponse)
async def review_submission(
    submission_id: int,
    request: ReviewRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Approve or reject a submission, flagging images that need correction."""
    submission = services.submissions.require(submission_id)
    require_reviewer(services.store, submission.project_id, caller)
    decision = ReviewDecision(
        status=request.status,
        feedback=request.feedback,
        flagged_images=[FlaggedImage(image_id=f.image_id, reason=f.reason) for f in request.flagged_images],
        image_feedback=[ImageFeedback(image_id=f.image_id, feedback=f.feedback) for f in request.image_feedback],
    )
    reviewed = services.submissions.review(
        submission.id, caller.user_id, decision, expected_version=request.expected_version
    )
    return SubmissionResponse.from_submission(reviewed)


@router.post("/{submission_id}/image-feedback", response_model=SubmissionResponse)
async def add_image_feedback(
    submission_id: int,
    request: ImageFeedbackRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Add per-image commentary without deciding the submission."""
    submission = services.submissions.require(submission_id)
    require_reviewer(services.store, submission.project_id, caller)
    updated = services.submissions.add_image_feedback(
        submission.id,
        caller.user_id,
        [ImageFeedback(image_id=f.image_id, feedback=f.feedback) for f in request.image_feedback],
        expected_version=request.expected_version,
    )
    return SubmissionResponse.from_submission(updated)
