"""
ProjectStore - connection owner plus CRUD for projects, classes and members.
"""

import logging
import sqlite3
import uuid
from typing import Optional

from core.db import get_connection, migrate_db
from core.errors import ValidationError, NotFoundError, ConflictError, validate_id
from core.models import (
    Project, ProjectClass, ProjectMember, ProjectStatus, MemberRole,
    SUPPORTED_ANNOTATION_FORMATS, utcnow, to_iso, from_iso,
    classes_to_json, classes_from_json,
)
from core.storage import ObjectStorage, project_prefix

logger = logging.getLogger(__name__)


# Default class colors (will cycle through these)
DEFAULT_COLORS = [
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7",
    "#DDA0DD", "#98D8C8", "#F7DC6F", "#BB8FCE", "#85C1E9",
    "#F8B500", "#00CED1", "#FF69B4", "#32CD32", "#FFD700",
]

# Collections removed when a project is deleted, children first
_CASCADE_TABLES = ("submissions", "assignments", "annotations", "images", "project_members")


class ProjectStore:
    """
    Handles database access for projects and their membership.

    Image, annotation, assignment and submission services share this
    store's connection.
    """

    def __init__(self, db_path: str):
        """
        Initialize store with database path.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @classmethod
    def open(cls, db_path: str) -> "ProjectStore":
        """Create or migrate the database and return a store on it."""
        migrate_db(db_path)
        return cls(db_path)

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = get_connection(self.db_path)
        return self._conn

    def close(self):
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def commit(self):
        """Commit current transaction."""
        self.conn.commit()

    # ==================== Project Operations ====================

    def create_project(
        self,
        name: str,
        created_by: int,
        classes: list[dict],
        description: str = "",
        allow_custom_classes: bool = False,
        annotation_format: str = "YOLO",
    ) -> Project:
        """
        Create a new project.

        Args:
            name: Name of the project
            created_by: Administrator creating the project
            classes: Class definitions, each with "name" and optional "color"
            description: Free-text description
            allow_custom_classes: Whether annotators may add classes
            annotation_format: Annotation format, only "YOLO" is supported

        Returns:
            Created Project
        """
        created_by = validate_id(created_by, "user id")
        if not name or not name.strip():
            raise ValidationError("Project name is required")
        if annotation_format not in SUPPORTED_ANNOTATION_FORMATS:
            raise ValidationError(f"Unsupported annotation format: {annotation_format}")

        project_classes = self._build_classes(classes, existing=[])
        now = to_iso(utcnow())

        cursor = self.conn.execute(
            """
            INSERT INTO projects
            (name, description, annotation_format, classes_json, allow_custom_classes,
             status, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name.strip(), description or "", annotation_format,
                classes_to_json(project_classes), int(allow_custom_classes),
                ProjectStatus.CREATED.value, created_by, now, now,
            )
        )
        project_id = cursor.lastrowid
        self.commit()

        # Creator reviews the project
        self.add_member(project_id, created_by, MemberRole.REVIEWER, added_by=created_by)
        logger.info(f"Created project {project_id} ({name!r}) with {len(project_classes)} classes")

        return self.get_project(project_id)

    def _build_classes(self, classes: list[dict], existing: list[ProjectClass]) -> list[ProjectClass]:
        """Validate class definitions, keeping ids of classes that already exist."""
        by_id = {cls.id: cls for cls in existing}
        result = []
        seen_names = set()
        for idx, item in enumerate(classes):
            class_name = (item.get("name") or "").strip()
            if not class_name:
                raise ValidationError(f"Class {idx} has no name")
            if class_name.lower() in seen_names:
                raise ValidationError(f"Duplicate class name: {class_name}")
            seen_names.add(class_name.lower())

            class_id = item.get("id")
            previous = by_id.get(class_id) if class_id else None
            result.append(ProjectClass(
                id=previous.id if previous else uuid.uuid4().hex,
                name=class_name,
                color=item.get("color") or DEFAULT_COLORS[idx % len(DEFAULT_COLORS)],
                is_custom=bool(item.get("is_custom", previous.is_custom if previous else False)),
            ))
        return result

    def get_project(self, project_id: int) -> Optional[Project]:
        """Get project by ID."""
        cursor = self.conn.execute(
            "SELECT * FROM projects WHERE id = ?",
            (validate_id(project_id, "project id"),)
        )
        row = cursor.fetchone()
        return self._row_to_project(row) if row else None

    def require_project(self, project_id: int) -> Project:
        """Get project by ID or raise NotFoundError."""
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def list_projects(self, user_id: Optional[int] = None) -> list[Project]:
        """
        List projects, newest first.

        Args:
            user_id: When given, only projects the user is a member of
        """
        if user_id is None:
            cursor = self.conn.execute("SELECT * FROM projects ORDER BY id DESC")
        else:
            cursor = self.conn.execute(
                """
                SELECT p.* FROM projects p
                JOIN project_members m ON m.project_id = p.id
                WHERE m.user_id = ?
                ORDER BY p.id DESC
                """,
                (validate_id(user_id, "user id"),)
            )
        return [self._row_to_project(row) for row in cursor.fetchall()]

    def update_project(
        self,
        project_id: int,
        description: Optional[str] = None,
        classes: Optional[list[dict]] = None,
        allow_custom_classes: Optional[bool] = None,
        status: Optional[ProjectStatus] = None,
    ) -> Project:
        """
        Update editable project fields.

        Completion is not an edit: status COMPLETED is only reachable
        through the completion engine.
        """
        project = self.require_project(project_id)

        updates = []
        values = []
        if description is not None:
            updates.append("description = ?")
            values.append(description)
        if classes is not None:
            updates.append("classes_json = ?")
            values.append(classes_to_json(self._build_classes(classes, existing=project.classes)))
        if allow_custom_classes is not None:
            updates.append("allow_custom_classes = ?")
            values.append(int(allow_custom_classes))
        if status is not None:
            status = ProjectStatus(status)
            if status == ProjectStatus.COMPLETED:
                raise ConflictError("Use the completion endpoint to mark a project complete")
            if project.status == ProjectStatus.COMPLETED:
                raise ConflictError("A completed project cannot change status")
            updates.append("status = ?")
            values.append(status.value)

        if updates:
            updates.append("updated_at = ?")
            values.append(to_iso(utcnow()))
            values.append(project.id)
            self.conn.execute(
                f"UPDATE projects SET {', '.join(updates)} WHERE id = ?",
                values
            )
            self.commit()

        return self.get_project(project.id)

    def add_custom_class(self, project_id: int, name: str, color: Optional[str] = None) -> ProjectClass:
        """Append an annotator-defined class, if the project allows it."""
        project = self.require_project(project_id)
        if not project.allow_custom_classes:
            raise ValidationError("This project does not allow custom classes")

        items = [
            {"id": cls.id, "name": cls.name, "color": cls.color, "is_custom": cls.is_custom}
            for cls in project.classes
        ]
        items.append({"name": name, "color": color, "is_custom": True})
        self.update_project(project.id, classes=items)
        return self.require_project(project.id).classes[-1]

    def set_status(self, project_id: int, status: ProjectStatus) -> None:
        """Set project status unconditionally (completion engine only)."""
        self.conn.execute(
            "UPDATE projects SET status = ?, updated_at = ? WHERE id = ?",
            (ProjectStatus(status).value, to_iso(utcnow()), project_id)
        )
        self.commit()

    def mark_in_progress(self, project_id: int) -> None:
        """Move a CREATED project to IN_PROGRESS; no-op otherwise."""
        cursor = self.conn.execute(
            "UPDATE projects SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (ProjectStatus.IN_PROGRESS.value, to_iso(utcnow()), project_id, ProjectStatus.CREATED.value)
        )
        if cursor.rowcount:
            self.commit()
            logger.info(f"Project {project_id} is now in progress")

    def delete_project(
        self,
        project_id: int,
        storage: Optional[ObjectStorage] = None,
        bucket: Optional[str] = None,
    ) -> bool:
        """
        Delete a project and everything it owns.

        Each collection is removed by a single statement committed on its
        own. Stored objects are removed afterwards, best-effort.

        Returns:
            False if the project does not exist
        """
        project = self.get_project(project_id)
        if project is None:
            return False

        for table in _CASCADE_TABLES:
            self.conn.execute(f"DELETE FROM {table} WHERE project_id = ?", (project.id,))
            self.commit()
        self.conn.execute("DELETE FROM projects WHERE id = ?", (project.id,))
        self.commit()

        if storage is not None and bucket:
            try:
                removed = storage.delete_prefix(bucket, project_prefix(project.id))
                logger.info(f"Removed {removed} stored objects of project {project.id}")
            except Exception as e:
                logger.error(f"Failed to remove stored objects of project {project.id}: {e}")

        logger.info(f"Deleted project {project.id}")
        return True

    def _row_to_project(self, row: sqlite3.Row) -> Project:
        """Convert database row to Project object."""
        return Project(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            annotation_format=row['annotation_format'],
            classes=classes_from_json(row['classes_json']),
            allow_custom_classes=bool(row['allow_custom_classes']),
            status=ProjectStatus(row['status']),
            created_by=row['created_by'],
            created_at=from_iso(row['created_at']),
            updated_at=from_iso(row['updated_at']),
            total_images=row['total_images'],
            annotated_images=row['annotated_images'],
            reviewed_images=row['reviewed_images'],
            approved_images=row['approved_images'],
            completion_percentage=row['completion_percentage'],
        )

    # ==================== Member Operations ====================

    def add_member(
        self,
        project_id: int,
        user_id: int,
        role: MemberRole,
        added_by: int
    ) -> ProjectMember:
        """
        Add a user to a project, or update the role of an existing member.
        """
        project = self.require_project(project_id)
        user_id = validate_id(user_id, "user id")
        role = MemberRole(role)

        self.conn.execute(
            """
            INSERT INTO project_members (project_id, user_id, role, added_at, added_by)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(project_id, user_id) DO UPDATE SET role = excluded.role
            """,
            (project.id, user_id, role.value, to_iso(utcnow()), validate_id(added_by, "user id"))
        )
        self.commit()
        return self.get_member(project.id, user_id)

    def remove_member(self, project_id: int, user_id: int) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM project_members WHERE project_id = ? AND user_id = ?",
            (validate_id(project_id, "project id"), validate_id(user_id, "user id"))
        )
        self.commit()
        return cursor.rowcount > 0

    def get_member(self, project_id: int, user_id: int) -> Optional[ProjectMember]:
        cursor = self.conn.execute(
            "SELECT * FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id)
        )
        row = cursor.fetchone()
        return self._row_to_member(row) if row else None

    def list_members(self, project_id: int) -> list[ProjectMember]:
        cursor = self.conn.execute(
            "SELECT * FROM project_members WHERE project_id = ? ORDER BY id",
            (validate_id(project_id, "project id"),)
        )
        return [self._row_to_member(row) for row in cursor.fetchall()]

    def list_member_project_ids(self, user_id: int) -> list[int]:
        cursor = self.conn.execute(
            "SELECT project_id FROM project_members WHERE user_id = ? ORDER BY project_id",
            (validate_id(user_id, "user id"),)
        )
        return [row[0] for row in cursor.fetchall()]

    def _row_to_member(self, row: sqlite3.Row) -> ProjectMember:
        return ProjectMember(
            id=row['id'],
            project_id=row['project_id'],
            user_id=row['user_id'],
            role=MemberRole(row['role']),
            added_at=from_iso(row['added_at']),
            added_by=row['added_by'],
        )
