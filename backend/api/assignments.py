"""
Assignments API endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.access import require_member, require_reviewer, is_reviewer
from core.errors import AuthorizationError
from core.models import Assignment, AssignmentStatus, Caller
from core.services import Services
from backend.api.deps import get_services, get_caller, get_admin

router = APIRouter()


class AssignRequest(BaseModel):
    project_id: int
    user_id: int
    image_ids: list[int]


class AssignmentResponse(BaseModel):
    id: int
    project_id: int
    user_id: int
    image_ids: list[int]
    assigned_at: datetime
    assigned_by: int
    status: AssignmentStatus
    total_images: int
    completed_images: int
    last_activity: Optional[datetime] = None

    @classmethod
    def from_assignment(cls, assignment: Assignment):
        return cls(
            id=assignment.id,
            project_id=assignment.project_id,
            user_id=assignment.user_id,
            image_ids=assignment.image_ids,
            assigned_at=assignment.assigned_at,
            assigned_by=assignment.assigned_by,
            status=assignment.status,
            total_images=assignment.total_images,
            completed_images=assignment.completed_images,
            last_activity=assignment.last_activity,
        )


@router.post("", response_model=AssignmentResponse)
async def assign_images(
    request: AssignRequest,
    caller: Caller = Depends(get_admin),
    services: Services = Depends(get_services),
):
    """Assign a list of images to a project member."""
    assignment = services.assignments.assign_images(
        request.project_id, request.user_id, request.image_ids, caller.user_id
    )
    return AssignmentResponse.from_assignment(assignment)


@router.get("", response_model=list[AssignmentResponse])
async def list_assignments(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    require_reviewer(services.store, project_id, caller)
    return [
        AssignmentResponse.from_assignment(a)
        for a in services.assignments.list_project_assignments(project_id)
    ]


@router.get("/mine", response_model=list[AssignmentResponse])
async def list_my_assignments(
    project_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    require_member(services.store, project_id, caller)
    return [
        AssignmentResponse.from_assignment(a)
        for a in services.assignments.list_user_assignments(project_id, caller.user_id)
    ]


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: int,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    assignment = services.assignments.require(assignment_id)
    require_member(services.store, assignment.project_id, caller)
    if assignment.user_id != caller.user_id and not is_reviewer(services.store, assignment.project_id, caller):
        raise AuthorizationError("Not allowed to view this assignment")
    return AssignmentResponse.from_assignment(assignment)
