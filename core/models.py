"""
Core data models for the annotation review pipeline.

Dataclasses representing the main entities, plus the status enums that
drive the workflow.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import json


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class MemberRole(str, Enum):
    ANNOTATOR = "ANNOTATOR"
    REVIEWER = "REVIEWER"


class ProjectStatus(str, Enum):
    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class ImageStatus(str, Enum):
    UPLOADED = "UPLOADED"
    ASSIGNED = "ASSIGNED"
    ANNOTATED = "ANNOTATED"
    UNDER_REVIEW = "UNDER_REVIEW"
    REVIEWED = "REVIEWED"
    APPROVED = "APPROVED"


class AnnotationStatus(str, Enum):
    UNANNOTATED = "UNANNOTATED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ReviewStatus(str, Enum):
    NOT_REVIEWED = "NOT_REVIEWED"
    APPROVED = "APPROVED"
    FLAGGED = "FLAGGED"


class AssignmentStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    NEEDS_REVISION = "NEEDS_REVISION"
    COMPLETED = "COMPLETED"


class SubmissionStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Submissions in these states block new submissions and project completion
LIVE_SUBMISSION_STATUSES = (SubmissionStatus.SUBMITTED, SubmissionStatus.UNDER_REVIEW)

SUBMITTABLE_ASSIGNMENT_STATUSES = (
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.IN_PROGRESS,
    AssignmentStatus.NEEDS_REVISION,
)

SUPPORTED_ANNOTATION_FORMATS = ("YOLO",)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Caller:
    """Identity and role supplied by the authentication collaborator."""
    user_id: int
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)


@dataclass
class ProjectClass:
    """An object class a project annotates."""
    id: str
    name: str
    color: str
    is_custom: bool = False


@dataclass
class Project:
    """Represents an annotation project and its derived counters."""
    id: int
    name: str
    description: str
    annotation_format: str
    classes: list[ProjectClass]
    allow_custom_classes: bool
    status: ProjectStatus
    created_by: int
    created_at: datetime
    updated_at: datetime
    total_images: int = 0
    annotated_images: int = 0
    reviewed_images: int = 0
    approved_images: int = 0
    completion_percentage: int = 0

    def class_index_map(self) -> dict[str, int]:
        """Map class id to its zero-based position in the class list."""
        return {cls.id: idx for idx, cls in enumerate(self.classes)}


@dataclass
class ProjectMember:
    id: int
    project_id: int
    user_id: int
    role: MemberRole
    added_at: datetime
    added_by: int


@dataclass
class ImageRecord:
    """Represents an uploaded image and its workflow state."""
    id: int
    project_id: int
    filename: str
    storage_key: str
    width: int
    height: int
    uploaded_at: datetime
    uploaded_by: int
    status: ImageStatus = ImageStatus.UPLOADED
    annotation_status: AnnotationStatus = AnnotationStatus.UNANNOTATED
    review_status: ReviewStatus = ReviewStatus.NOT_REVIEWED
    assigned_to: Optional[int] = None
    annotated_by: Optional[int] = None
    annotated_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_feedback: Optional[str] = None
    current_submission_id: Optional[int] = None
    auto_annotated: bool = False
    time_spent: float = 0


@dataclass
class YoloObject:
    """A labeled box; x/y are the box centre, all values normalized 0-1."""
    class_id: str
    class_name: str
    x: float
    y: float
    width: float
    height: float


@dataclass
class Annotation:
    """One user's annotation of one image."""
    id: int
    project_id: int
    image_id: int
    user_id: int
    objects: list[YoloObject]
    version: int
    time_spent: float
    auto_annotated: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class Assignment:
    """A set of images in a project bound to one annotator."""
    id: int
    project_id: int
    user_id: int
    image_ids: list[int]
    assigned_at: datetime
    assigned_by: int
    status: AssignmentStatus
    total_images: int
    completed_images: int = 0
    last_activity: Optional[datetime] = None


@dataclass
class FlaggedImage:
    image_id: int
    reason: str


@dataclass
class ImageFeedback:
    image_id: int
    feedback: str


@dataclass
class ReviewHistoryItem:
    """One past review decision on a submission."""
    reviewed_by: int
    reviewed_at: datetime
    status: SubmissionStatus
    feedback: str
    flagged_images: list[FlaggedImage] = field(default_factory=list)
    image_feedback: list[ImageFeedback] = field(default_factory=list)

    @property
    def flagged_count(self) -> int:
        return len(self.flagged_images)


@dataclass
class Submission:
    """An annotator's request to review a fixed set of images."""
    id: int
    project_id: int
    user_id: int
    assignment_id: int
    image_ids: list[int]
    status: SubmissionStatus
    submitted_at: datetime
    message: str = ""
    feedback: str = ""
    flagged_images: list[FlaggedImage] = field(default_factory=list)
    image_feedback: list[ImageFeedback] = field(default_factory=list)
    review_history: list[ReviewHistoryItem] = field(default_factory=list)
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    version: int = 1

    @property
    def flagged_ids(self) -> set[int]:
        return {item.image_id for item in self.flagged_images}

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_SUBMISSION_STATUSES


# ==================== JSON column helpers ====================

def classes_to_json(classes: list[ProjectClass]) -> str:
    return json.dumps([asdict(cls) for cls in classes])


def classes_from_json(raw: Optional[str]) -> list[ProjectClass]:
    return [ProjectClass(**item) for item in json.loads(raw or "[]")]


def objects_to_json(objects: list[YoloObject]) -> str:
    return json.dumps([asdict(obj) for obj in objects])


def objects_from_json(raw: Optional[str]) -> list[YoloObject]:
    return [YoloObject(**item) for item in json.loads(raw or "[]")]


def ids_to_json(ids: list[int]) -> str:
    return json.dumps([int(i) for i in ids])


def ids_from_json(raw: Optional[str]) -> list[int]:
    return [int(i) for i in json.loads(raw or "[]")]


def flagged_to_json(items: list[FlaggedImage]) -> str:
    return json.dumps([asdict(item) for item in items])


def flagged_from_json(raw: Optional[str]) -> list[FlaggedImage]:
    return [FlaggedImage(**item) for item in json.loads(raw or "[]")]


def image_feedback_to_json(items: list[ImageFeedback]) -> str:
    return json.dumps([asdict(item) for item in items])


def image_feedback_from_json(raw: Optional[str]) -> list[ImageFeedback]:
    return [ImageFeedback(**item) for item in json.loads(raw or "[]")]


def history_to_json(items: list[ReviewHistoryItem]) -> str:
    return json.dumps([
        {
            "reviewed_by": item.reviewed_by,
            "reviewed_at": to_iso(item.reviewed_at),
            "status": SubmissionStatus(item.status).value,
            "feedback": item.feedback,
            "flagged_images": [asdict(f) for f in item.flagged_images],
            "image_feedback": [asdict(f) for f in item.image_feedback],
            "flagged_count": item.flagged_count,
        }
        for item in items
    ])


def history_from_json(raw: Optional[str]) -> list[ReviewHistoryItem]:
    return [
        ReviewHistoryItem(
            reviewed_by=item["reviewed_by"],
            reviewed_at=from_iso(item["reviewed_at"]),
            status=SubmissionStatus(item["status"]),
            feedback=item.get("feedback", ""),
            flagged_images=[FlaggedImage(**f) for f in item.get("flagged_images", [])],
            image_feedback=[ImageFeedback(**f) for f in item.get("image_feedback", [])],
        )
        for item in json.loads(raw or "[]")
    ]
