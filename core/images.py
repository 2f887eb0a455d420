"""
ImageStore - upload bookkeeping, deletion and status fields of project images.

Every status-affecting mutation triggers a statistics recomputation.
"""

import io
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from core.errors import ValidationError, NotFoundError, validate_id
from core.models import (
    ImageRecord, ImageStatus, AnnotationStatus, ReviewStatus,
    utcnow, to_iso, from_iso,
)
from core.patches import ImagePatch
from core.stats import StatisticsAggregator
from core.storage import ObjectStorage, image_key, annotation_key, sanitize_filename
from core.store import ProjectStore

logger = logging.getLogger(__name__)

# Filters accepted by list_project_images
_FILTER_COLUMNS = {"status", "annotation_status", "review_status", "assigned_to"}


@dataclass
class UploadedFile:
    """Raw bytes of one file in an upload batch."""
    filename: str
    data: bytes
    content_type: str = "application/octet-stream"
    width: Optional[int] = None
    height: Optional[int] = None


def row_to_image(row: sqlite3.Row) -> ImageRecord:
    """Convert database row to ImageRecord object."""
    return ImageRecord(
        id=row['id'],
        project_id=row['project_id'],
        filename=row['filename'],
        storage_key=row['storage_key'],
        width=row['width'],
        height=row['height'],
        uploaded_at=from_iso(row['uploaded_at']),
        uploaded_by=row['uploaded_by'],
        status=ImageStatus(row['status']),
        annotation_status=AnnotationStatus(row['annotation_status']),
        review_status=ReviewStatus(row['review_status']),
        assigned_to=row['assigned_to'],
        annotated_by=row['annotated_by'],
        annotated_at=from_iso(row['annotated_at']),
        reviewed_by=row['reviewed_by'],
        reviewed_at=from_iso(row['reviewed_at']),
        review_feedback=row['review_feedback'],
        current_submission_id=row['current_submission_id'],
        auto_annotated=bool(row['auto_annotated']),
        time_spent=row['time_spent'],
    )


def read_image_size(data: bytes) -> tuple[int, int]:
    """Width and height of encoded image bytes."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Not a readable image: {e}")


class ImageStore:
    """
    Lifecycle of uploaded images.
    """

    def __init__(
        self,
        store: ProjectStore,
        storage: ObjectStorage,
        stats: StatisticsAggregator,
        bucket: str
    ):
        self.store = store
        self.storage = storage
        self.stats = stats
        self.bucket = bucket

    # ==================== Upload / Delete ====================

    def upload(
        self,
        project_id: int,
        files: list[UploadedFile],
        uploader_id: int
    ) -> list[ImageRecord]:
        """
        Upload a batch of images to a project.

        A file that cannot be read, stored or persisted is logged and
        skipped; the rest of the batch still goes through.

        Args:
            project_id: ID of the project
            files: Files to upload
            uploader_id: User uploading the files

        Returns:
            The images created, in batch order
        """
        project = self.store.require_project(project_id)
        uploader_id = validate_id(uploader_id, "user id")

        uploaded = []
        for file in files:
            try:
                image = self._upload_one(project.id, file, uploader_id)
            except Exception as e:
                logger.error(f"Skipping {file.filename!r} in project {project.id}: {e}")
                continue
            uploaded.append(image)
            self.stats.recompute(project.id)

        logger.info(f"Uploaded {len(uploaded)}/{len(files)} images to project {project.id}")
        return uploaded

    def _upload_one(self, project_id: int, file: UploadedFile, uploader_id: int) -> ImageRecord:
        if not file.data:
            raise ValidationError("File is empty")

        filename = sanitize_filename(file.filename or "image")
        if file.width and file.height:
            width, height = file.width, file.height
        else:
            width, height = read_image_size(file.data)

        key = image_key(project_id, uuid.uuid4().hex, filename)
        self.storage.put(self.bucket, key, file.data, file.content_type)

        try:
            cursor = self.store.conn.execute(
                """
                INSERT INTO images
                (project_id, filename, storage_key, width, height, uploaded_at, uploaded_by,
                 status, annotation_status, review_status, auto_annotated, time_spent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0)
                """,
                (
                    project_id, filename, key, width, height, to_iso(utcnow()), uploader_id,
                    ImageStatus.UPLOADED.value, AnnotationStatus.UNANNOTATED.value,
                    ReviewStatus.NOT_REVIEWED.value,
                )
            )
            self.store.commit()
        except sqlite3.Error:
            self.store.conn.rollback()
            try:
                self.storage.delete(self.bucket, key)
            except Exception as cleanup_error:
                logger.warning(f"Could not remove orphaned object {key}: {cleanup_error}")
            raise

        return self.get(cursor.lastrowid)

    def delete(self, image_id: int) -> bool:
        """
        Delete an image with its stored bytes, mirror and annotations.

        Returns:
            False if the image does not exist
        """
        image = self.get(image_id)
        if image is None:
            return False

        self.storage.delete(self.bucket, image.storage_key)
        mirror_key = annotation_key(image.project_id, image.id)
        if self.storage.exists(self.bucket, mirror_key):
            self.storage.delete(self.bucket, mirror_key)

        self.store.conn.execute("DELETE FROM annotations WHERE image_id = ?", (image.id,))
        self.store.commit()
        self.store.conn.execute("DELETE FROM images WHERE id = ?", (image.id,))
        self.store.commit()

        self.stats.recompute(image.project_id)
        logger.info(f"Deleted image {image.id} from project {image.project_id}")
        return True

    # ==================== Status ====================

    def update_status(
        self,
        image_id: int,
        patch: Union[ImagePatch, dict]
    ) -> Optional[ImageRecord]:
        """
        Apply a sparse update and recompute project statistics.

        Args:
            image_id: ID of the image
            patch: ImagePatch, or a dict of recognized fields

        Returns:
            Updated image, or None if it does not exist
        """
        return self.apply_patch(image_id, patch, recompute=True)

    def apply_patch(
        self,
        image_id: int,
        patch: Union[ImagePatch, dict],
        recompute: bool = True
    ) -> Optional[ImageRecord]:
        """Apply a sparse update; callers batching several updates may defer recomputation."""
        if isinstance(patch, dict):
            patch = ImagePatch.from_fields(**patch)
        else:
            patch.check_nullable()

        image = self.get(image_id)
        if image is None:
            return None

        columns = patch.to_columns()
        if columns:
            assignments = ", ".join(f"{name} = ?" for name in columns)
            self.store.conn.execute(
                f"UPDATE images SET {assignments} WHERE id = ?",
                (*columns.values(), image.id)
            )
            self.store.commit()

        if recompute:
            self.stats.recompute(image.project_id)
        return self.get(image.id)

    # ==================== Reads ====================

    def get(self, image_id: int) -> Optional[ImageRecord]:
        """Get image by its ID."""
        cursor = self.store.conn.execute(
            "SELECT * FROM images WHERE id = ?",
            (validate_id(image_id, "image id"),)
        )
        row = cursor.fetchone()
        return row_to_image(row) if row else None

    def require(self, image_id: int, project_id: Optional[int] = None) -> ImageRecord:
        """Get image by ID, optionally scoped to a project, or raise NotFoundError."""
        image = self.get(image_id)
        if image is None or (project_id is not None and image.project_id != int(project_id)):
            raise NotFoundError(f"Image {image_id} not found")
        return image

    def list_by_ids(self, image_ids: list[int]) -> list[ImageRecord]:
        if not image_ids:
            return []
        placeholders = ", ".join("?" for _ in image_ids)
        cursor = self.store.conn.execute(
            f"SELECT * FROM images WHERE id IN ({placeholders}) ORDER BY id",
            tuple(image_ids)
        )
        return [row_to_image(row) for row in cursor.fetchall()]

    def list_project_images(
        self,
        project_id: int,
        page: int = 1,
        limit: int = 20,
        filters: Optional[dict] = None
    ) -> tuple[list[ImageRecord], int]:
        """
        Page through a project's images, newest first.

        Args:
            project_id: ID of the project
            page: 1-based page number
            limit: Page size
            filters: Equality filters on status, annotation_status,
                review_status or assigned_to

        Returns:
            (images on the page, total matching)
        """
        project_id = validate_id(project_id, "project id")
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        where = ["project_id = ?"]
        values: list = [project_id]
        for name, value in (filters or {}).items():
            if name not in _FILTER_COLUMNS:
                raise ValidationError(f"Unsupported image filter: {name}")
            if value is None:
                where.append(f"{name} IS NULL")
            else:
                where.append(f"{name} = ?")
                values.append(getattr(value, "value", value))
        clause = " AND ".join(where)

        total = self.store.conn.execute(
            f"SELECT COUNT(*) FROM images WHERE {clause}", values
        ).fetchone()[0]
        cursor = self.store.conn.execute(
            f"SELECT * FROM images WHERE {clause} ORDER BY uploaded_at DESC, id DESC LIMIT ? OFFSET ?",
            (*values, limit, (page - 1) * limit)
        )
        return [row_to_image(row) for row in cursor.fetchall()], total

    def list_user_images(
        self,
        project_id: int,
        user_id: int,
        page: int = 1,
        limit: int = 20
    ) -> tuple[list[ImageRecord], int]:
        """Images assigned to a user in a project."""
        return self.list_project_images(
            project_id, page, limit, filters={"assigned_to": validate_id(user_id, "user id")}
        )

    def count_unassigned(self, project_id: int) -> int:
        return self.store.conn.execute(
            "SELECT COUNT(*) FROM images WHERE project_id = ? AND assigned_to IS NULL",
            (validate_id(project_id, "project id"),)
        ).fetchone()[0]

    def signed_image_url(self, image_id: int, ttl_seconds: int = 900) -> tuple[str, datetime]:
        """
        Signed download URL for an image.

        Returns:
            (url, expiry time)
        """
        image = self.require(image_id)
        url = self.storage.signed_url(self.bucket, image.storage_key, ttl_seconds)
        return url, utcnow() + timedelta(seconds=ttl_seconds)
