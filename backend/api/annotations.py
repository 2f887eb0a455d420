"""
Annotations API endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.access import require_image_access, require_reviewer, is_reviewer
from core.models import Annotation, Caller
from core.services import Services
from backend.api.deps import get_services, get_caller

router = APIRouter()


class ObjectModel(BaseModel):
    class_id: str
    class_name: str = ""
    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)
    width: float = Field(ge=0, le=1)
    height: float = Field(ge=0, le=1)


class AnnotationResponse(BaseModel):
    id: int
    project_id: int
    image_id: int
    user_id: int
    objects: list[ObjectModel]
    version: int
    time_spent: float
    auto_annotated: bool
    created_at: datetime
    updated_at: datetime


class SaveAnnotationRequest(BaseModel):
    objects: list[ObjectModel] = Field(default_factory=list)
    time_spent: float = Field(default=0, ge=0)
    auto_annotated: bool = False


class AutosaveRequest(BaseModel):
    objects: list[ObjectModel] = Field(default_factory=list)
    time_spent: float = Field(default=0, ge=0)


class YoloLineResponse(BaseModel):
    class_index: int
    x: float
    y: float
    width: float
    height: float


def annotation_to_response(ann: Annotation) -> AnnotationResponse:
    """Convert Annotation to AnnotationResponse."""
    return AnnotationResponse(
        id=ann.id,
        project_id=ann.project_id,
        image_id=ann.image_id,
        user_id=ann.user_id,
        objects=[
            ObjectModel(
                class_id=obj.class_id, class_name=obj.class_name,
                x=obj.x, y=obj.y, width=obj.width, height=obj.height,
            )
            for obj in ann.objects
        ],
        version=ann.version,
        time_spent=ann.time_spent,
        auto_annotated=ann.auto_annotated,
        created_at=ann.created_at,
        updated_at=ann.updated_at,
    )


def _check_image(services: Services, project_id: int, image_id: int, caller: Caller):
    image = services.images.require(image_id, project_id)
    require_image_access(services.store, image, caller)
    return image


@router.get("/{project_id}/{image_id}", response_model=Optional[AnnotationResponse])
async def get_annotation(
    project_id: int,
    image_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """
    Get the annotation of an image.

    Reviewers get the latest annotation by any author; annotators only
    their own. Returns null when there is none.
    """
    _check_image(services, project_id, image_id, caller)
    ann = services.annotations.get(
        project_id, image_id, caller.user_id,
        is_admin=is_reviewer(services.store, project_id, caller),
    )
    return annotation_to_response(ann) if ann else None


@router.get("/{project_id}/{image_id}/all", response_model=list[AnnotationResponse])
async def list_image_annotations(
    project_id: int,
    image_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Every author's annotation of an image (reviewers only)."""
    require_reviewer(services.store, project_id, caller)
    image = services.images.require(image_id, project_id)
    return [annotation_to_response(a) for a in services.annotations.list_for_image(image.id)]


@router.put("/{project_id}/{image_id}", response_model=AnnotationResponse)
async def save_annotation(
    project_id: int,
    image_id: int,
    request: SaveAnnotationRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Save a completed annotation."""
    _check_image(services, project_id, image_id, caller)
    ann = services.annotations.save(
        project_id, image_id, caller.user_id,
        objects=[obj.model_dump() for obj in request.objects],
        time_spent=request.time_spent,
        auto_annotated=request.auto_annotated,
    )
    return annotation_to_response(ann)


@router.put("/{project_id}/{image_id}/autosave", response_model=AnnotationResponse)
async def autosave_annotation(
    project_id: int,
    image_id: int,
    request: AutosaveRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Checkpoint work in progress without completing the image."""
    _check_image(services, project_id, image_id, caller)
    ann = services.annotations.autosave(
        project_id, image_id, caller.user_id,
        objects=[obj.model_dump() for obj in request.objects],
        time_spent=request.time_spent,
    )
    return annotation_to_response(ann)


@router.get("/{project_id}/{image_id}/yolo", response_model=list[YoloLineResponse])
async def get_yolo_mirror(
    project_id: int,
    image_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Parsed contents of the image's YOLO label file."""
    _check_image(services, project_id, image_id, caller)
    lines = services.annotations.read_mirror(project_id, image_id)
    if lines is None:
        raise HTTPException(status_code=404, detail="No YOLO labels for this image")
    return [
        YoloLineResponse(
            class_index=line.class_index, x=line.x, y=line.y,
            width=line.width, height=line.height,
        )
        for line in lines
    ]
