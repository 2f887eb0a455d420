"""
Images API endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from core.access import require_member, require_reviewer, require_image_access
from core.images import UploadedFile
from core.models import (
    Caller, ImageRecord, ImageStatus, AnnotationStatus, ReviewStatus,
)
from core.services import Services
from backend.api.deps import get_services, get_caller, get_admin
from backend.config import MAX_UPLOAD_FILES, SIGNED_URL_TTL

router = APIRouter()


class ImageResponse(BaseModel):
    id: int
    project_id: int
    filename: str
    width: int
    height: int
    uploaded_at: datetime
    uploaded_by: int
    status: ImageStatus
    annotation_status: AnnotationStatus
    review_status: ReviewStatus
    assigned_to: Optional[int] = None
    annotated_by: Optional[int] = None
    annotated_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_feedback: Optional[str] = None
    current_submission_id: Optional[int] = None
    auto_annotated: bool
    time_spent: float

    @classmethod
    def from_image(cls, image: ImageRecord):
        return cls(
            id=image.id,
            project_id=image.project_id,
            filename=image.filename,
            width=image.width,
            height=image.height,
            uploaded_at=image.uploaded_at,
            uploaded_by=image.uploaded_by,
            status=image.status,
            annotation_status=image.annotation_status,
            review_status=image.review_status,
            assigned_to=image.assigned_to,
            annotated_by=image.annotated_by,
            annotated_at=image.annotated_at,
            reviewed_by=image.reviewed_by,
            reviewed_at=image.reviewed_at,
            review_feedback=image.review_feedback,
            current_submission_id=image.current_submission_id,
            auto_annotated=image.auto_annotated,
            time_spent=image.time_spent,
        )


class ImagePageResponse(BaseModel):
    images: list[ImageResponse]
    total: int
    page: int
    limit: int


class UploadResponse(BaseModel):
    uploaded: list[ImageResponse]
    failed: int


class SignedUrlResponse(BaseModel):
    url: str
    expires_at: datetime


@router.post("/upload", response_model=UploadResponse)
async def upload_images(
    project_id: int = Form(...),
    files: list[UploadFile] = File(...),
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Upload a batch of images; unreadable or unstorable files are skipped."""
    if len(files) > MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_UPLOAD_FILES} files per upload")

    batch = []
    for file in files:
        batch.append(UploadedFile(
            filename=file.filename or "image",
            data=await file.read(),
            content_type=file.content_type or "application/octet-stream",
        ))

    uploaded = services.images.upload(project_id, batch, caller.user_id)
    return UploadResponse(
        uploaded=[ImageResponse.from_image(img) for img in uploaded],
        failed=len(batch) - len(uploaded),
    )


@router.get("", response_model=ImagePageResponse)
async def list_images(
    project_id: int,
    page: int = 1,
    limit: int = 20,
    status: Optional[ImageStatus] = None,
    annotation_status: Optional[AnnotationStatus] = None,
    review_status: Optional[ReviewStatus] = None,
    assigned_to: Optional[int] = None,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """List a project's images, newest first."""
    require_reviewer(services.store, project_id, caller)
    filters = {
        name: value for name, value in (
            ("status", status),
            ("annotation_status", annotation_status),
            ("review_status", review_status),
            ("assigned_to", assigned_to),
        )
        if value is not None
    }
    images, total = services.images.list_project_images(project_id, page, limit, filters)
    return ImagePageResponse(
        images=[ImageResponse.from_image(img) for img in images],
        total=total, page=page, limit=limit,
    )


@router.get("/mine", response_model=ImagePageResponse)
async def list_my_images(
    project_id: int,
    page: int = 1,
    limit: int = 20,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Images assigned to the caller in a project."""
    require_member(services.store, project_id, caller)
    images, total = services.images.list_user_images(project_id, caller.user_id, page, limit)
    return ImagePageResponse(
        images=[ImageResponse.from_image(img) for img in images],
        total=total, page=page, limit=limit,
    )


@router.get("/{image_id}", response_model=ImageResponse)
async def get_image(
    image_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Get image metadata by ID."""
    image = services.images.require(image_id)
    require_image_access(services.store, image, caller)
    return ImageResponse.from_image(image)


@router.delete("/{image_id}")
async def delete_image(
    image_id: int,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Delete an image with its stored file and annotations."""
    if not services.images.delete(image_id):
        raise HTTPException(status_code=404, detail="Image not found")
    return {"status": "deleted", "image_id": image_id}


@router.patch("/{image_id}/status", response_model=ImageResponse)
async def update_image_status(
    image_id: int,
    fields: dict = Body(...),
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Sparse update of an image's workflow fields (reviewers only)."""
    image = services.images.require(image_id)
    require_reviewer(services.store, image.project_id, caller)
    updated = services.images.update_status(image.id, fields)
    if updated is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return ImageResponse.from_image(updated)


@router.get("/{image_id}/url", response_model=SignedUrlResponse)
async def get_image_url(
    image_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Signed, expiring download URL for the image file."""
    image = services.images.require(image_id)
    require_image_access(services.store, image, caller)
    url, expires_at = services.images.signed_image_url(image.id, SIGNED_URL_TTL)
    return SignedUrlResponse(url=url, expires_at=expires_at)
