"""
Dashboard API endpoints
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.models import Caller
from core.services import Services
from backend.api.deps import get_services, get_caller

router = APIRouter()


class DashboardResponse(BaseModel):
    total_projects: int
    total_assigned_images: int
    completed_images: int
    pending_review_images: int
    rejected_images: int
    approved_images: int
    projects_with_pending_work: int


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    """Work rollup across every project the caller belongs to."""
    stats = services.stats.user_dashboard(caller.user_id)
    return DashboardResponse(
        total_projects=stats.total_projects,
        total_assigned_images=stats.total_assigned_images,
        completed_images=stats.completed_images,
        pending_review_images=stats.pending_review_images,
        rejected_images=stats.rejected_images,
        approved_images=stats.approved_images,
        projects_with_pending_work=stats.projects_with_pending_work,
    )
