"""
Backend configuration
"""

import os
from pathlib import Path

# Base paths
ROOT_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(ROOT_DIR / "data")))
DB_PATH = os.getenv("DB_PATH", str(DATA_DIR / "review.db"))
STORAGE_DIR = os.getenv("STORAGE_DIR", str(DATA_DIR / "storage"))

# API settings
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# CORS origins (frontend URL)
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
).split(",")

# Object storage settings
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "annotations")
SIGNED_URL_SECRET = os.getenv("SIGNED_URL_SECRET", "change-me")
SIGNED_URL_TTL = int(os.getenv("SIGNED_URL_TTL", "900"))

# Upload limits
MAX_UPLOAD_FILES = int(os.getenv("MAX_UPLOAD_FILES", "100"))
