"""
Core module - Data model, storage, and the annotation review workflow
"""

from core.models import Project, ImageRecord, Annotation, Assignment, Submission
from core.store import ProjectStore
from core.errors import (
    WorkflowError, ValidationError, NotFoundError, AuthorizationError,
    ConflictError, CompletionBlocked, StorageError,
)
from core.services import Services, create_services

__all__ = [
    "Project", "ImageRecord", "Annotation", "Assignment", "Submission",
    "ProjectStore",
    "WorkflowError", "ValidationError", "NotFoundError", "AuthorizationError",
    "ConflictError", "CompletionBlocked", "StorageError",
    "Services", "create_services",
]
