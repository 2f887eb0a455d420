"""
FastAPI application entry point
"""

import sys
import logging
import traceback
from pathlib import Path

# Add parent directory to path so we can import core modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from core.errors import WorkflowError, CompletionBlocked
from core.services import create_services
from core.storage import LocalObjectStorage
from backend.config import (
    CORS_ORIGINS, API_HOST, API_PORT, DATA_DIR, DB_PATH,
    STORAGE_DIR, STORAGE_BUCKET, SIGNED_URL_SECRET,
)
from backend.api import projects, images, annotations, assignments, submissions, dashboard, files

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Annotation review API starting...")
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    storage = LocalObjectStorage(STORAGE_DIR, SIGNED_URL_SECRET)
    app.state.services = create_services(DB_PATH, storage, STORAGE_BUCKET)
    logger.info(f"Database at {DB_PATH}, objects under {STORAGE_DIR}")
    yield
    # Shutdown
    app.state.services.close()
    logger.info("Annotation review API shutting down...")


app = FastAPI(
    title="Annotation Review API",
    description="Image annotation review pipeline with YOLO label export",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError):
    """Map domain errors to their HTTP status codes."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    content = {"detail": exc.message}
    if isinstance(exc, CompletionBlocked):
        content["precondition"] = exc.precondition
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions with full traceback."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}:")
    logger.error(traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(projects.router, prefix="/api/projects", tags=["Projects"])
app.include_router(images.router, prefix="/api/images", tags=["Images"])
app.include_router(annotations.router, prefix="/api/annotations", tags=["Annotations"])
app.include_router(assignments.router, prefix="/api/assignments", tags=["Assignments"])
app.include_router(submissions.router, prefix="/api/submissions", tags=["Submissions"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(files.router, prefix="/api/files", tags=["Files"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "annotation-review-api"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
