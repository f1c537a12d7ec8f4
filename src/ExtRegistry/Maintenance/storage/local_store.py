"""Local filesystem artifact backend.

Objects are plain files below a root directory. Writes use a temporary file in
the destination directory, fsync and ``os.replace`` so a reader never sees a
partially written artifact.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ExtRegistry.Maintenance.config import STORAGE_LOCAL

logger = logging.getLogger(__name__)


class LocalArtifactStore:
    """Filesystem backend for the ``local`` storage type."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def name(self) -> str:
        return STORAGE_LOCAL

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Object key escapes storage root: {key}")
        return path

    def fetch(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def store(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        dest = self._path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(dest.parent), prefix=".part-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, dest)
        except Exception:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise
        logger.debug(f"Stored {len(data)} bytes at {dest}")

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
