"""Artifact store protocol consumed by maintenance handlers."""

from __future__ import annotations

from typing import Optional, Protocol


class ArtifactStore(Protocol):
    """
    Protocol every artifact backend must implement.

    Backends are keyed by the ``storage_type`` tag stored on each file
    resource row. A missing object raises ``FileNotFoundError``; any other
    failure is raised as the backend's native error and classified by the
    retry policy.
    """

    def name(self) -> str:
        """Return the storage type tag served by this backend."""
        ...

    def fetch(self, key: str) -> bytes:
        """Return the bytes stored under ``key``."""
        ...

    def store(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Write ``data`` under ``key``, replacing any previous object."""
        ...

    def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing object is not an error."""
        ...
