"""
Object storage for image bytes and YOLO annotation mirrors.

The workflow talks to an ObjectStorage; LocalObjectStorage keeps objects on
the filesystem under a root directory and signs download URLs with HMAC.
"""

import hashlib
import hmac
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote, urlencode

from core.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Replace anything outside [A-Za-z0-9._-] with an underscore."""
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def image_key(project_id: int, token: str, filename: str) -> str:
    """Storage key for an uploaded image."""
    return f"projects/{project_id}/images/{token}_{filename}"


def annotation_key(project_id: int, image_id: int) -> str:
    """Storage key for an image's YOLO annotation mirror."""
    return f"projects/{project_id}/annotations/{image_id}.txt"


def project_prefix(project_id: int) -> str:
    return f"projects/{project_id}/"


class ObjectStorage(ABC):
    """Interface of the object storage collaborator."""

    @abstractmethod
    def put(self, bucket: str, key: str, data: Union[bytes, str], content_type: str) -> None:
        ...

    @abstractmethod
    def get(self, bucket: str, key: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, bucket: str, key: str) -> None:
        ...

    @abstractmethod
    def exists(self, bucket: str, key: str) -> bool:
        ...

    @abstractmethod
    def signed_url(self, bucket: str, key: str, ttl_seconds: int) -> str:
        ...

    def delete_prefix(self, bucket: str, prefix: str) -> int:
        """Delete every object under a prefix. Returns the count removed."""
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """
    Filesystem-backed storage: objects live at <root>/<bucket>/<key>.
    """

    def __init__(self, root_dir: str, secret: str, base_url: str = "/api/files"):
        self.root_dir = Path(root_dir).resolve()
        self.secret = secret.encode("utf-8")
        self.base_url = base_url.rstrip("/")
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        path = (self.root_dir / bucket / key).resolve()
        # Keys must not escape the bucket directory
        if self.root_dir / bucket not in path.parents:
            raise StorageError(f"Invalid storage key: {key}", key=key)
        return path

    def put(self, bucket: str, key: str, data: Union[bytes, str], content_type: str) -> None:
        path = self._path(bucket, key)
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to store {key}: {e}", key=key)
        logger.debug(f"Stored {len(data)} bytes at {bucket}/{key} ({content_type})")

    def get(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise StorageError(f"Object not found: {key}", key=key)
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}", key=key)

    def delete(self, bucket: str, key: str) -> None:
        path = self._path(bucket, key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}", key=key)

    def exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).is_file()

    def delete_prefix(self, bucket: str, prefix: str) -> int:
        base = self._path(bucket, prefix.rstrip("/"))
        if not base.exists():
            return 0
        removed = 0
        try:
            for path in sorted(base.rglob("*"), reverse=True):
                if path.is_file():
                    path.unlink()
                    removed += 1
                else:
                    path.rmdir()
            base.rmdir()
        except OSError as e:
            raise StorageError(f"Failed to delete {prefix}: {e}", key=prefix)
        return removed

    # ==================== Signed URLs ====================

    def _signature(self, bucket: str, key: str, expires: int) -> str:
        message = f"{bucket}/{key}/{expires}".encode("utf-8")
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, bucket: str, key: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "signature": self._signature(bucket, key, expires)})
        return f"{self.base_url}/{quote(bucket)}/{quote(key)}?{query}"

    def verify_signature(
        self,
        bucket: str,
        key: str,
        expires: int,
        signature: str,
        now: Optional[float] = None
    ) -> bool:
        """Check a signed URL's signature and expiry."""
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(bucket, key, expires), signature)
