"""
Projects API endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.access import require_member
from core.models import Caller, MemberRole, Project, ProjectMember, ProjectStatus
from core.services import Services
from backend.api.deps import get_services, get_caller, get_admin

router = APIRouter()


class ClassModel(BaseModel):
    id: Optional[str] = None
    name: str
    color: Optional[str] = None
    is_custom: bool = False


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: str
    annotation_format: str
    classes: list[ClassModel]
    allow_custom_classes: bool
    status: ProjectStatus
    created_by: int
    created_at: datetime
    updated_at: datetime
    total_images: int
    annotated_images: int
    reviewed_images: int
    approved_images: int
    completion_percentage: int

    @classmethod
    def from_project(cls, project: Project):
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            annotation_format=project.annotation_format,
            classes=[
                ClassModel(id=c.id, name=c.name, color=c.color, is_custom=c.is_custom)
                for c in project.classes
            ],
            allow_custom_classes=project.allow_custom_classes,
            status=project.status,
            created_by=project.created_by,
            created_at=project.created_at,
            updated_at=project.updated_at,
            total_images=project.total_images,
            annotated_images=project.annotated_images,
            reviewed_images=project.reviewed_images,
            approved_images=project.approved_images,
            completion_percentage=project.completion_percentage,
        )


class CreateProjectRequest(BaseModel):
    name: str
    description: str = ""
    annotation_format: str = "YOLO"
    classes: list[ClassModel] = Field(default_factory=list)
    allow_custom_classes: bool = False


class UpdateProjectRequest(BaseModel):
    description: Optional[str] = None
    classes: Optional[list[ClassModel]] = None
    allow_custom_classes: Optional[bool] = None
    status: Optional[ProjectStatus] = None


class AddClassRequest(BaseModel):
    name: str
    color: Optional[str] = None


class MemberRequest(BaseModel):
    user_id: int
    role: MemberRole = MemberRole.ANNOTATOR


class MemberResponse(BaseModel):
    user_id: int
    role: MemberRole
    added_at: datetime
    added_by: int

    @classmethod
    def from_member(cls, member: ProjectMember):
        return cls(
            user_id=member.user_id,
            role=member.role,
            added_at=member.added_at,
            added_by=member.added_by,
        )


class StatsResponse(BaseModel):
    total_images: int
    annotated_images: int
    reviewed_images: int
    approved_images: int
    completion_percentage: int
    unassigned_images: int
    pending_submissions: int


@router.post("", response_model=ProjectResponse)
async def create_project(
    request: CreateProjectRequest,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Create a new project; the creator becomes its reviewer."""
    project = services.store.create_project(
        name=request.name,
        created_by=caller.user_id,
        classes=[c.model_dump() for c in request.classes],
        description=request.description,
        allow_custom_classes=request.allow_custom_classes,
        annotation_format=request.annotation_format,
    )
    return ProjectResponse.from_project(project)


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """List projects visible to the caller."""
    user_id = None if caller.is_admin else caller.user_id
    return [ProjectResponse.from_project(p) for p in services.store.list_projects(user_id)]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    project = require_member(services.store, project_id, caller)
    return ProjectResponse.from_project(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: int,
    request: UpdateProjectRequest,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Update project description, classes, or status."""
    project = services.store.update_project(
        project_id,
        description=request.description,
        classes=[c.model_dump() for c in request.classes] if request.classes is not None else None,
        allow_custom_classes=request.allow_custom_classes,
        status=request.status,
    )
    return ProjectResponse.from_project(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: int,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Delete a project with its images, annotations and submissions."""
    if not services.store.delete_project(project_id, services.storage, services.bucket):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"status": "deleted", "project_id": project_id}


@router.post("/{project_id}/classes", response_model=ClassModel)
async def add_class(
    project_id: int,
    request: AddClassRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Add a custom class to a project that allows them."""
    require_member(services.store, project_id, caller)
    cls = services.store.add_custom_class(project_id, request.name, request.color)
    return ClassModel(id=cls.id, name=cls.name, color=cls.color, is_custom=cls.is_custom)


@router.get("/{project_id}/members", response_model=list[MemberResponse])
async def list_members(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    require_member(services.store, project_id, caller)
    return [MemberResponse.from_member(m) for m in services.store.list_members(project_id)]


@router.post("/{project_id}/members", response_model=MemberResponse)
async def add_member(
    project_id: int,
    request: MemberRequest,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    member = services.store.add_member(project_id, request.user_id, request.role, caller.user_id)
    return MemberResponse.from_member(member)


@router.delete("/{project_id}/members/{user_id}")
async def remove_member(
    project_id: int,
    user_id: int,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    if not services.store.remove_member(project_id, user_id):
        raise HTTPException(status_code=404, detail="Member not found")
    return {"status": "removed", "user_id": user_id}


@router.get("/{project_id}/stats", response_model=StatsResponse)
async def get_stats(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Current project counters, recomputed from image rows."""
    project = require_member(services.store, project_id, caller)
    stats = services.stats.recompute(project.id)
    return StatsResponse(
        total_images=stats.total_images,
        annotated_images=stats.annotated_images,
        reviewed_images=stats.reviewed_images,
        approved_images=stats.approved_images,
        completion_percentage=stats.completion_percentage,
        unassigned_images=services.images.count_unassigned(project.id),
        pending_submissions=services.stats.count_live_submissions(project.id),
    )


@router.post("/{project_id}/complete", response_model=ProjectResponse)
async def mark_complete(
    project_id: int,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Mark the project as completed once every image is approved."""
    project = services.completion.mark_complete(project_id, caller.user_id)
    return ProjectResponse.from_project(project)


@router.get("/{project_id}/completion")
async def get_completion_for_user(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Whether the caller's own work in the project is fully approved."""
    require_member(services.store, project_id, caller)
    result = services.stats.project_completion_for_user(project_id, caller.user_id)
    return {
        "is_completed": result.is_completed,
        "has_assigned_images": result.has_assigned_images,
        "message": result.message,
        "pending_images": result.pending_images,
        "total_assigned": result.total_assigned,
        "last_submission_status": result.last_submission_status,
    }
