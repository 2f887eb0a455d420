"""
Shared fixtures: a fresh database and storage root per test.
"""

import io
import os
import tempfile

import pytest
from PIL import Image

from core.images import UploadedFile
from core.models import MemberRole
from core.services import create_services
from core.storage import LocalObjectStorage

BUCKET = "test-bucket"
ADMIN = 1
ANNOTATOR = 2


@pytest.fixture
def temp_dir():
    """Create a temporary directory for the database and stored objects."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def storage(temp_dir):
    return LocalObjectStorage(os.path.join(temp_dir, "storage"), secret="test-secret")


@pytest.fixture
def services(temp_dir, storage):
    services = create_services(os.path.join(temp_dir, "review.db"), storage, BUCKET)
    yield services
    services.close()


@pytest.fixture
def make_upload():
    """Factory for PNG uploads of a given size."""
    def _make(filename="image.png", width=64, height=48, color="red"):
        buf = io.BytesIO()
        Image.new("RGB", (width, height), color=color).save(buf, format="PNG")
        return UploadedFile(filename=filename, data=buf.getvalue(), content_type="image/png")
    return _make


@pytest.fixture
def project(services):
    """Project with three classes and one annotator member."""
    project = services.store.create_project(
        name="Street scenes",
        created_by=ADMIN,
        classes=[{"name": "car"}, {"name": "person"}, {"name": "bike"}],
    )
    services.store.add_member(project.id, ANNOTATOR, MemberRole.ANNOTATOR, added_by=ADMIN)
    return project


@pytest.fixture
def images(services, project, make_upload):
    """Three uploaded images."""
    files = [make_upload(f"image_{i}.png", width=60 + i, height=40 + i) for i in range(3)]
    return services.images.upload(project.id, files, ADMIN)


@pytest.fixture
def assignment(services, project, images):
    """All three images assigned to the annotator."""
    return services.assignments.assign_images(
        project.id, ANNOTATOR, [img.id for img in images], ADMIN
    )


@pytest.fixture
def box(project):
    """Factory for a valid annotation object of a project class."""
    def _box(class_index=0, x=0.5, y=0.5, width=0.2, height=0.3):
        cls = project.classes[class_index]
        return {"class_id": cls.id, "class_name": cls.name, "x": x, "y": y, "width": width, "height": height}
    return _box
