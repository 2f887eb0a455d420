"""
AnnotationStore - per-user annotation records and their YOLO mirrors.

Saving an annotation completes the image, and un-flags it if a reviewer had
flagged it, so the corrected image can enter a new submission.
"""

import logging
import math
import sqlite3
from typing import Optional, Union

from core.assignments import AssignmentLedger
from core.errors import ValidationError, ConflictError, StorageError, validate_id
from core.images import ImageStore
from core.models import (
    Annotation, YoloObject, Project, ProjectStatus, ImageStatus, AnnotationStatus,
    ReviewStatus, SUPPORTED_ANNOTATION_FORMATS,
    utcnow, to_iso, from_iso, objects_to_json, objects_from_json,
)
from core.patches import ImagePatch
from core.storage import ObjectStorage, annotation_key
from core.store import ProjectStore
from core.yolo import YoloLine, render_yolo, parse_yolo

logger = logging.getLogger(__name__)

_UPSERT_SQL = """
    INSERT INTO annotations
    (project_id, image_id, user_id, objects_json, version, time_spent, auto_annotated,
     created_at, updated_at)
    VALUES (?, ?, ?, ?, 1, ?, ?, ?, ?)
    ON CONFLICT(project_id, image_id, user_id) DO UPDATE SET
        objects_json = excluded.objects_json,
        version = annotations.version + 1,
        time_spent = annotations.time_spent + excluded.time_spent,
        auto_annotated = {auto_annotated},
        updated_at = excluded.updated_at
"""


def row_to_annotation(row: sqlite3.Row) -> Annotation:
    """Convert database row to Annotation object."""
    return Annotation(
        id=row['id'],
        project_id=row['project_id'],
        image_id=row['image_id'],
        user_id=row['user_id'],
        objects=objects_from_json(row['objects_json']),
        version=row['version'],
        time_spent=row['time_spent'],
        auto_annotated=bool(row['auto_annotated']),
        created_at=from_iso(row['created_at']),
        updated_at=from_iso(row['updated_at']),
    )


def coerce_objects(objects: list[Union[YoloObject, dict]]) -> list[YoloObject]:
    """
    Validate annotation objects.

    Raises:
        ValidationError: on a missing class id or a coordinate outside [0, 1]
    """
    result = []
    for idx, obj in enumerate(objects or []):
        if isinstance(obj, dict):
            try:
                obj = YoloObject(
                    class_id=obj["class_id"],
                    class_name=obj.get("class_name", ""),
                    x=obj["x"], y=obj["y"], width=obj["width"], height=obj["height"],
                )
            except KeyError as e:
                raise ValidationError(f"Object {idx} is missing {e.args[0]}")

        if not obj.class_id or not str(obj.class_id).strip():
            raise ValidationError(f"Object {idx} has no class id")
        coords = {}
        for name in ("x", "y", "width", "height"):
            try:
                value = float(getattr(obj, name))
            except (TypeError, ValueError):
                raise ValidationError(f"Object {idx}: {name} is not a number")
            if math.isnan(value) or not 0.0 <= value <= 1.0:
                raise ValidationError(f"Object {idx}: {name} must be between 0 and 1")
            coords[name] = value
        result.append(YoloObject(
            class_id=str(obj.class_id),
            class_name=obj.class_name or "",
            **coords
        ))
    return result


class AnnotationStore:
    """
    Annotation records keyed by (project, image, user).
    """

    def __init__(
        self,
        store: ProjectStore,
        images: ImageStore,
        ledger: AssignmentLedger,
        storage: ObjectStorage,
        bucket: str
    ):
        self.store = store
        self.images = images
        self.ledger = ledger
        self.storage = storage
        self.bucket = bucket

    def _writable_project(self, project_id: int) -> Project:
        project = self.store.require_project(project_id)
        if project.annotation_format not in SUPPORTED_ANNOTATION_FORMATS:
            raise ValidationError(f"Unsupported annotation format: {project.annotation_format}")
        if project.status in (ProjectStatus.COMPLETED, ProjectStatus.ARCHIVED):
            raise ConflictError(f"Project is {project.status.value.lower()}; annotations are read-only")
        return project

    def _upsert(
        self,
        project_id: int,
        image_id: int,
        user_id: int,
        objects: list[YoloObject],
        time_spent: float,
        auto_annotated: Optional[bool]
    ) -> Annotation:
        """Create version 1 or replace the objects and bump the version."""
        now = to_iso(utcnow())
        keep_flag = auto_annotated is None
        sql = _UPSERT_SQL.format(
            auto_annotated="annotations.auto_annotated" if keep_flag else "excluded.auto_annotated"
        )
        self.store.conn.execute(
            sql,
            (
                project_id, image_id, user_id, objects_to_json(objects), time_spent,
                int(bool(auto_annotated)), now, now,
            )
        )
        self.store.commit()
        return self._get_own(project_id, image_id, user_id)

    @staticmethod
    def _check_time(time_spent) -> float:
        try:
            value = float(time_spent or 0)
        except (TypeError, ValueError):
            raise ValidationError("time_spent must be a number")
        if value < 0 or math.isnan(value):
            raise ValidationError("time_spent cannot be negative")
        return value

    # ==================== Save / Autosave ====================

    def save(
        self,
        project_id: int,
        image_id: int,
        user_id: int,
        objects: list[Union[YoloObject, dict]],
        time_spent: float = 0,
        auto_annotated: bool = False
    ) -> Annotation:
        """
        Save a completed annotation.

        Writes the annotation, completes the image (un-flagging it if it was
        flagged), recomputes statistics, then rebuilds the YOLO mirror.

        Args:
            project_id: ID of the project
            image_id: ID of the image
            user_id: Annotating user
            objects: Labeled boxes
            time_spent: Seconds spent in this session, added to the total
            auto_annotated: Whether the boxes came from a model

        Returns:
            The saved Annotation
        """
        project = self._writable_project(project_id)
        image = self.images.require(image_id, project.id)
        user_id = validate_id(user_id, "user id")
        objs = coerce_objects(objects)
        time_spent = self._check_time(time_spent)

        was_flagged = image.review_status == ReviewStatus.FLAGGED
        annotation = self._upsert(project.id, image.id, user_id, objs, time_spent, auto_annotated)

        patch = ImagePatch(
            status=ImageStatus.ANNOTATED,
            annotation_status=AnnotationStatus.COMPLETED,
            annotated_by=user_id,
            annotated_at=annotation.updated_at,
            auto_annotated=auto_annotated,
            time_spent=annotation.time_spent,
        )
        if was_flagged:
            patch = patch.merge(ImagePatch(
                review_status=ReviewStatus.NOT_REVIEWED,
                review_feedback=None,
                current_submission_id=None,
            ))
            logger.info(
                f"Image {image.id} was flagged in submission {image.current_submission_id}; "
                f"reset for resubmission"
            )
        self.images.update_status(image.id, patch)

        self.store.mark_in_progress(project.id)
        self.ledger.refresh_for_image(project.id, user_id, image.id)
        self._write_mirror(project, image.id, objs)

        logger.info(
            f"Saved annotation v{annotation.version} for image {image.id} "
            f"by user {user_id} ({len(objs)} objects)"
        )
        return annotation

    def autosave(
        self,
        project_id: int,
        image_id: int,
        user_id: int,
        objects: list[Union[YoloObject, dict]],
        time_spent: float = 0
    ) -> Annotation:
        """
        Checkpoint work in progress.

        Replaces the objects and bumps the version like save(), but only
        raises an unannotated image to IN_PROGRESS and never touches its
        review state.
        """
        project = self._writable_project(project_id)
        image = self.images.require(image_id, project.id)
        user_id = validate_id(user_id, "user id")
        objs = coerce_objects(objects)
        time_spent = self._check_time(time_spent)

        annotation = self._upsert(project.id, image.id, user_id, objs, time_spent, None)

        patch = ImagePatch(time_spent=annotation.time_spent)
        if image.annotation_status == AnnotationStatus.UNANNOTATED:
            patch = patch.merge(ImagePatch(annotation_status=AnnotationStatus.IN_PROGRESS))
        self.images.update_status(image.id, patch)

        self.store.mark_in_progress(project.id)
        self.ledger.refresh_for_image(project.id, user_id, image.id)
        self._write_mirror(project, image.id, objs)
        return annotation

    def _write_mirror(self, project: Project, image_id: int, objects: list[YoloObject]) -> None:
        key = annotation_key(project.id, image_id)
        content = render_yolo(project, objects)
        try:
            self.storage.put(self.bucket, key, content, "text/plain")
        except StorageError:
            logger.error(f"Annotation for image {image_id} saved but its YOLO mirror was not written")
            raise

    # ==================== Reads ====================

    def _get_own(self, project_id: int, image_id: int, user_id: int) -> Optional[Annotation]:
        cursor = self.store.conn.execute(
            "SELECT * FROM annotations WHERE project_id = ? AND image_id = ? AND user_id = ?",
            (project_id, image_id, user_id)
        )
        row = cursor.fetchone()
        return row_to_annotation(row) if row else None

    def get(
        self,
        project_id: int,
        image_id: int,
        user_id: int,
        is_admin: bool = False
    ) -> Optional[Annotation]:
        """
        Get the annotation of an image.

        Non-admins only see their own annotation. Admins and reviewers get
        the most recently updated annotation regardless of author.
        """
        project_id = validate_id(project_id, "project id")
        image_id = validate_id(image_id, "image id")
        if not is_admin:
            return self._get_own(project_id, image_id, validate_id(user_id, "user id"))

        cursor = self.store.conn.execute(
            """
            SELECT * FROM annotations WHERE project_id = ? AND image_id = ?
            ORDER BY updated_at DESC, id DESC LIMIT 1
            """,
            (project_id, image_id)
        )
        row = cursor.fetchone()
        return row_to_annotation(row) if row else None

    def list_for_image(self, image_id: int) -> list[Annotation]:
        """All authors' annotations of an image."""
        cursor = self.store.conn.execute(
            "SELECT * FROM annotations WHERE image_id = ? ORDER BY updated_at DESC, id DESC",
            (validate_id(image_id, "image id"),)
        )
        return [row_to_annotation(row) for row in cursor.fetchall()]

    def read_mirror(self, project_id: int, image_id: int) -> Optional[list[YoloLine]]:
        """Parse the stored YOLO mirror, or None if none was written."""
        key = annotation_key(validate_id(project_id, "project id"), validate_id(image_id, "image id"))
        if not self.storage.exists(self.bucket, key):
            return None
        return parse_yolo(self.storage.get(self.bucket, key).decode("utf-8"))
