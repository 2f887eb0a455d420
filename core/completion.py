"""
Project completion - the guarded CREATED/IN_PROGRESS -> COMPLETED transition.
"""

import logging

from core.errors import ConflictError, CompletionBlocked, validate_id
from core.models import Project, ProjectStatus
from core.stats import StatisticsAggregator
from core.store import ProjectStore

logger = logging.getLogger(__name__)

_COMPLETABLE = (ProjectStatus.CREATED, ProjectStatus.IN_PROGRESS)


class CompletionEngine:
    """Seals a project once every image is approved and no review is in flight."""

    def __init__(self, store: ProjectStore, stats: StatisticsAggregator):
        self.store = store
        self.stats = stats

    def mark_complete(self, project_id: int, actor_id: int) -> Project:
        """
        Mark a project as completed.

        Preconditions are checked in order and the first unmet one is
        raised as CompletionBlocked: no_images, unapproved_images,
        pending_submissions. Images and submissions are left untouched.

        Args:
            project_id: ID of the project
            actor_id: Administrator completing the project

        Returns:
            The completed Project
        """
        project = self.store.require_project(project_id)
        actor_id = validate_id(actor_id, "user id")
        if project.status not in _COMPLETABLE:
            raise ConflictError(f"Project is {project.status.value} and cannot be marked complete")

        stats = self.stats.recompute(project.id)
        if stats.total_images == 0:
            raise CompletionBlocked(
                "no_images",
                "Cannot mark project as complete. No images have been uploaded."
            )
        if stats.approved_images < stats.total_images:
            raise CompletionBlocked(
                "unapproved_images",
                f"Cannot mark project as complete. Only {stats.approved_images} out of "
                f"{stats.total_images} images are approved."
            )
        pending = self.stats.count_live_submissions(project.id)
        if pending > 0:
            raise CompletionBlocked(
                "pending_submissions",
                f"Cannot mark project as complete. There are {pending} pending submissions "
                f"that need review."
            )

        self.store.set_status(project.id, ProjectStatus.COMPLETED)
        logger.info(f"Project {project.id} marked as completed by user {actor_id}")
        return self.store.require_project(project.id)

    def is_complete(self, project_id: int) -> bool:
        return self.store.require_project(project_id).status == ProjectStatus.COMPLETED
