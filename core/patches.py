"""
Sparse partial-update values.

An ImagePatch lists only the image fields a caller may change. Fields left
unset are untouched; an explicit None clears a nullable field. Unknown keys
are rejected.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError
from core.models import ImageStatus, AnnotationStatus, ReviewStatus, to_iso

# Columns that may not be set to NULL
_NON_NULLABLE = {"status", "annotation_status", "review_status", "auto_annotated", "time_spent"}


class ImagePatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[ImageStatus] = None
    annotation_status: Optional[AnnotationStatus] = None
    review_status: Optional[ReviewStatus] = None
    assigned_to: Optional[int] = None
    annotated_by: Optional[int] = None
    annotated_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_feedback: Optional[str] = None
    current_submission_id: Optional[int] = None
    auto_annotated: Optional[bool] = None
    time_spent: Optional[float] = Field(default=None, ge=0)

    @classmethod
    def from_fields(cls, **fields: Any) -> "ImagePatch":
        """
        Build a patch from keyword fields.

        Raises:
            ValidationError: on unknown keys, bad values, or None for a
                non-nullable field
        """
        try:
            patch = cls(**fields)
        except PydanticValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid image update: {errors}")
        patch.check_nullable()
        return patch

    def check_nullable(self) -> None:
        for name in self.model_fields_set & _NON_NULLABLE:
            if getattr(self, name) is None:
                raise ValidationError(f"Invalid image update: {name} cannot be cleared")

    def merge(self, other: "ImagePatch") -> "ImagePatch":
        """Return a patch with other's set fields applied over this one."""
        data = self.model_dump(exclude_unset=True)
        data.update(other.model_dump(exclude_unset=True))
        return ImagePatch(**data)

    def to_columns(self) -> dict[str, Any]:
        """Set fields converted to SQLite column values."""
        columns = {}
        for name, value in self.model_dump(exclude_unset=True).items():
            if isinstance(value, (ImageStatus, AnnotationStatus, ReviewStatus)):
                value = value.value
            elif isinstance(value, datetime):
                value = to_iso(value)
            elif isinstance(value, bool):
                value = int(value)
            columns[name] = value
        return columns
