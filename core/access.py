"""
Role and membership checks.

Administrators pass every project check. Non-members get NotFoundError so a
project's existence is not leaked; members lacking a role get
AuthorizationError.
"""

from typing import Optional

from core.errors import AuthorizationError, NotFoundError
from core.models import Caller, ImageRecord, MemberRole, Project, ProjectMember, Submission
from core.store import ProjectStore


def require_admin(caller: Caller) -> Caller:
    if not caller.is_admin:
        raise AuthorizationError("Administrator role required")
    return caller


def require_member(store: ProjectStore, project_id: int, caller: Caller) -> Project:
    """Return the project if the caller may see it."""
    project = store.require_project(project_id)
    if caller.is_admin:
        return project
    if store.get_member(project.id, caller.user_id) is None:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def member_role(store: ProjectStore, project_id: int, caller: Caller) -> Optional[MemberRole]:
    member: Optional[ProjectMember] = store.get_member(project_id, caller.user_id)
    return member.role if member else None


def require_reviewer(store: ProjectStore, project_id: int, caller: Caller) -> Project:
    """Administrators and members with the REVIEWER role."""
    project = require_member(store, project_id, caller)
    if caller.is_admin:
        return project
    if member_role(store, project.id, caller) != MemberRole.REVIEWER:
        raise AuthorizationError("Reviewer role required")
    return project


def is_reviewer(store: ProjectStore, project_id: int, caller: Caller) -> bool:
    return caller.is_admin or member_role(store, project_id, caller) == MemberRole.REVIEWER


def require_image_access(store: ProjectStore, image: ImageRecord, caller: Caller) -> None:
    """
    Annotators may only work on images assigned to them; reviewers and
    administrators may work on any image of the project.
    """
    require_member(store, image.project_id, caller)
    if is_reviewer(store, image.project_id, caller):
        return
    if image.assigned_to != caller.user_id:
        raise AuthorizationError("This image is not assigned to you")


def require_submission_access(store: ProjectStore, submission: Submission, caller: Caller) -> None:
    """The submitting annotator, project reviewers and administrators."""
    require_member(store, submission.project_id, caller)
    if submission.user_id == caller.user_id or is_reviewer(store, submission.project_id, caller):
        return
    raise AuthorizationError("Not allowed to view this submission")
