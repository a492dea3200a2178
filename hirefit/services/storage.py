import logging
import os
import uuid

from hirefit.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def build_storage_path(tenant_id: int, job_id: int, extension: str) -> str:
    """Tenant/job/file scoped blob path, e.g. `7/jobs/12/<uuid>.pdf`."""
    return f"{tenant_id}/jobs/{job_id}/{uuid.uuid4()}.{extension}"


def build_candidate_storage_path(tenant_id: int, candidate_id: int, extension: str) -> str:
    return f"{tenant_id}/candidates/{candidate_id}/{uuid.uuid4()}.{extension}"


class LocalBlobStore:
    """Path-addressed blob store over a local directory."""

    def __init__(self, root_dir: str):
        self.root_dir = os.path.realpath(root_dir)

    def _resolve(self, path: str) -> str:
        full_path = os.path.realpath(os.path.join(self.root_dir, path))
        if os.path.commonpath([full_path, self.root_dir]) != self.root_dir:
            raise ValidationError(f"Invalid storage path: {path}")
        return full_path

    def write(self, path: str, content: bytes) -> None:
        full_path = self._resolve(path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(content)
        logger.debug(f"Stored {len(content)} bytes at {path}")

    def exists(self, path: str) -> bool:
        return os.path.isfile(self._resolve(path))

    def read(self, path: str) -> bytes:
        if not self.exists(path):
            raise NotFoundError(f"File not found in storage: {path}")
        with open(self._resolve(path), "rb") as f:
            return f.read()

    def delete(self, path: str) -> bool:
        """Remove a blob. False when there was nothing to remove."""
        full_path = self._resolve(path)
        if not os.path.isfile(full_path):
            return False
        os.remove(full_path)
        logger.debug(f"Deleted blob at {path}")
        return True
