"""Filesystem blob backend used for development and single-node deployments."""
import logging
import os
import re
import tempfile
from pathlib import Path

from securefms.blob_store import BlobBackend
from securefms.errors import BlobStorageError

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class LocalBlobBackend(BlobBackend):
    def __init__(self, base_path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        if not _NAME_RE.match(name) or name.startswith("."):
            raise BlobStorageError(f"Invalid blob name {name!r}")
        return self.base_path / name

    def put(self, name: str, data: bytes) -> None:
        path = self._path(name)
        # write to a temp file and rename so readers never see a partial blob
        try:
            fd, tmp = tempfile.mkstemp(dir=self.base_path, prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as exc:
            raise BlobStorageError(f"Could not write blob {name}: {exc}") from exc
        logger.info("Wrote blob %s (%d bytes)", name, len(data))

    def get(self, name: str) -> bytes:
        try:
            return self._path(name).read_bytes()
        except OSError as exc:
            raise BlobStorageError(f"Could not read blob {name}: {exc}") from exc

    def delete(self, name: str) -> None:
        try:
            self._path(name).unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStorageError(f"Could not delete blob {name}: {exc}") from exc
        logger.info("Deleted blob %s", name)

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def ping(self) -> None:
        if not self.base_path.is_dir() or not os.access(self.base_path, os.W_OK):
            raise BlobStorageError(f"Blob directory {self.base_path} is not writable")
