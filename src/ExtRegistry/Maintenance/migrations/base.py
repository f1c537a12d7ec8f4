# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.migrations.base",
#   "purpose": "Shared execute contract and artifact replacement helpers for per-entity handlers",
#   "sections": [
#     {"id": "handler", "name": "Handler", "anchor": "class-handler", "kind": "class"},
#     {"id": "artifacthandler", "name": "ArtifactHandler", "anchor": "class-artifacthandler", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Base classes for maintenance job handlers.

Every handler implements ``execute(ctx)`` against exactly one entity and must
tolerate being the Nth execution. Artifact-producing handlers share one
sequence:

1. find the existing rows of the derived type
2. regenerate the bytes from the package
3. upload the new artifacts
4. delete superseded blobs whose storage location differs
5. swap the catalog rows in one transaction

The catalog is written last, so a failure in steps 2-4 leaves no partial
mutation behind and a retry simply starts over.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ExtRegistry.Maintenance.catalog.models import DOWNLOAD, ExtensionVersion, FileResource
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.storage.naming import object_key

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.cache import ViewCache
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
    from ExtRegistry.Maintenance.inspector import PackageInspector
    from ExtRegistry.Maintenance.orchestrator.models import JobContext
    from ExtRegistry.Maintenance.storage.service import StorageService

__all__ = ["Handler", "ArtifactHandler"]

logger = logging.getLogger(__name__)


class Handler(Protocol):
    def execute(self, ctx: "JobContext") -> None:
        ...


class ArtifactHandler(ABC):
    """Handler working on the stored artifacts of one catalog entity.

    Migration payloads carry ``entity_id`` (and ``item_id``, consumed by the
    completion hook). Subclasses implement :meth:`migrate`.
    """

    def __init__(
        self,
        catalog: "SQLiteCatalog",
        storage: "StorageService",
        inspector: Optional["PackageInspector"] = None,
        cache: Optional["ViewCache"] = None,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.inspector = inspector
        self.cache = cache

    def execute(self, ctx: "JobContext") -> None:
        self.migrate(int(ctx.require("entity_id")))

    @abstractmethod
    def migrate(self, entity_id: int) -> None:
        """Bring one entity up to date."""

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _version(self, version_id: int) -> ExtensionVersion:
        version = self.catalog.get_version(version_id)
        if version is None:
            raise DataIntegrityError(f"Extension version {version_id} not found", entity_id=version_id)
        return version

    def _download(self, version: ExtensionVersion) -> FileResource:
        download = self.catalog.find_file(version.id, DOWNLOAD)
        if download is None:
            raise DataIntegrityError(
                f"No download stored for {version.display_name()}", entity_id=version.id
            )
        return download

    def _package(self, version: ExtensionVersion) -> Tuple[FileResource, Optional[bytes]]:
        """Return the download row and its bytes, or ``None`` bytes for an empty package."""
        download = self._download(version)
        data = self.storage.fetch(download)
        if not data:
            logger.info(f"Skipping {version.display_name()}: download is empty")
            return download, None
        return download, data

    # ------------------------------------------------------------------
    # Replacement
    # ------------------------------------------------------------------

    def _replace_artifacts(
        self,
        version: ExtensionVersion,
        type: str,
        artifacts: Sequence[Tuple[FileResource, bytes]],
        *,
        version_updates: Optional[Dict[str, object]] = None,
    ) -> List[FileResource]:
        """Upload ``artifacts`` and make them the only ``type`` rows of ``version``."""
        existing = self.catalog.find_files(version.id, type)
        uploaded = [self.storage.upload(resource, data) for resource, data in artifacts]
        self._remove_superseded(existing, uploaded)
        saved = self.catalog.replace_file_resources(
            version.id, type, uploaded, version_updates=version_updates
        )
        self._evict(version)
        return saved

    def _drop_artifacts(self, version: ExtensionVersion, type: str) -> int:
        """Delete every ``type`` artifact of ``version`` (blobs first, then rows)."""
        existing = self.catalog.find_files(version.id, type)
        if not existing:
            return 0
        self._remove_superseded(existing, ())
        removed = self.catalog.delete_file_resources(version.id, type)
        self._evict(version)
        return removed

    def _remove_superseded(
        self, existing: Iterable[FileResource], keep: Iterable[FileResource]
    ) -> None:
        kept = {_location(resource) for resource in keep}
        for resource in existing:
            if _location(resource) not in kept:
                self.storage.remove(resource)

    def _evict(self, version: ExtensionVersion) -> None:
        if self.cache is not None:
            self.cache.evict_version(version.id)
            self.cache.evict_extension(version.extension_id)


def _location(resource: FileResource) -> Tuple[str, str]:
    return resource.storage_type, object_key(resource)
