"""
Database initialization and migrations for the annotation pipeline.
"""

import sqlite3

# Current schema version
SCHEMA_VERSION = 1


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get a database connection with row factory enabled."""
    # Handlers may run on worker threads; SQLite serializes the writes
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str) -> None:
    """
    Initialize a new database with all required tables.

    Args:
        db_path: Path to the SQLite database file
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        # Version tracking table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Projects, with class list and derived counters
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                annotation_format TEXT NOT NULL DEFAULT 'YOLO',
                classes_json TEXT NOT NULL DEFAULT '[]',
                allow_custom_classes INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'CREATED',
                created_by INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                total_images INTEGER NOT NULL DEFAULT 0,
                annotated_images INTEGER NOT NULL DEFAULT 0,
                reviewed_images INTEGER NOT NULL DEFAULT 0,
                approved_images INTEGER NOT NULL DEFAULT 0,
                completion_percentage INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS project_members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                role TEXT NOT NULL,
                added_at TEXT NOT NULL,
                added_by INTEGER NOT NULL,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                UNIQUE(project_id, user_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS images (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                filename TEXT NOT NULL,
                storage_key TEXT NOT NULL,
                width INTEGER NOT NULL,
                height INTEGER NOT NULL,
                uploaded_at TEXT NOT NULL,
                uploaded_by INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'UPLOADED',
                annotation_status TEXT NOT NULL DEFAULT 'UNANNOTATED',
                review_status TEXT NOT NULL DEFAULT 'NOT_REVIEWED',
                assigned_to INTEGER,
                annotated_by INTEGER,
                annotated_at TEXT,
                reviewed_by INTEGER,
                reviewed_at TEXT,
                review_feedback TEXT,
                current_submission_id INTEGER,
                auto_annotated INTEGER NOT NULL DEFAULT 0,
                time_spent REAL NOT NULL DEFAULT 0,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_images_project
            ON images(project_id, assigned_to)
        """)

        # One annotation per (project, image, user)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS annotations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                image_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                objects_json TEXT NOT NULL DEFAULT '[]',
                version INTEGER NOT NULL DEFAULT 1,
                time_spent REAL NOT NULL DEFAULT 0,
                auto_annotated INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (image_id) REFERENCES images(id) ON DELETE CASCADE,
                UNIQUE(project_id, image_id, user_id)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_annotations_image
            ON annotations(image_id, updated_at)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS assignments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                image_ids_json TEXT NOT NULL DEFAULT '[]',
                assigned_at TEXT NOT NULL,
                assigned_by INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'ASSIGNED',
                total_images INTEGER NOT NULL DEFAULT 0,
                completed_images INTEGER NOT NULL DEFAULT 0,
                last_activity TEXT,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS submissions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                assignment_id INTEGER NOT NULL,
                image_ids_json TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'SUBMITTED',
                message TEXT NOT NULL DEFAULT '',
                feedback TEXT NOT NULL DEFAULT '',
                flagged_images_json TEXT NOT NULL DEFAULT '[]',
                image_feedback_json TEXT NOT NULL DEFAULT '[]',
                review_history_json TEXT NOT NULL DEFAULT '[]',
                submitted_at TEXT NOT NULL,
                reviewed_at TEXT,
                reviewed_by INTEGER,
                version INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_submissions_project
            ON submissions(project_id, status)
        """)

        # Record schema version
        cursor.execute("""
            INSERT OR IGNORE INTO schema_version (version) VALUES (?)
        """, (SCHEMA_VERSION,))

        conn.commit()
    finally:
        conn.close()


def get_schema_version(db_path: str) -> int:
    """Get the current schema version of the database."""
    conn = get_connection(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row and row[0] else 0
    except sqlite3.OperationalError:
        return 0
    finally:
        conn.close()


def migrate_db(db_path: str) -> None:
    """
    Run any pending migrations on the database.

    Args:
        db_path: Path to the SQLite database file
    """
    current_version = get_schema_version(db_path)

    # Migration 0 -> 1: initial schema
    if current_version < 1:
        init_db(db_path)
