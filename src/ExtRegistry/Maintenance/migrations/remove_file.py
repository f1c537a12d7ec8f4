"""Delete one artifact blob from the backend it was stored in."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict

from ExtRegistry.Maintenance.catalog.models import UNIVERSAL_TARGET, FileResource

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.orchestrator.models import JobContext
    from ExtRegistry.Maintenance.storage.service import StorageService

logger = logging.getLogger(__name__)


def remove_file_payload(resource: FileResource) -> Dict[str, Any]:
    """Payload that lets a REMOVE_FILE job locate ``resource`` after its row is gone."""
    return {
        "storage_type": resource.storage_type,
        "type": resource.type,
        "name": resource.name,
        "extension_version_id": resource.extension_version_id,
        "namespace_name": resource.namespace_name,
        "extension_name": resource.extension_name,
        "version": resource.version,
        "target_platform": resource.target_platform,
    }


class RemoveFileHandler:
    def __init__(self, storage: "StorageService") -> None:
        self.storage = storage

    def execute(self, ctx: "JobContext") -> None:
        resource = FileResource(
            id=None,
            extension_version_id=int(ctx.payload.get("extension_version_id") or 0),
            type=str(ctx.payload.get("type", "")),
            name=str(ctx.require("name")),
            storage_type=str(ctx.require("storage_type")),
            namespace_name=str(ctx.require("namespace_name")),
            extension_name=str(ctx.require("extension_name")),
            version=str(ctx.require("version")),
            target_platform=str(ctx.payload.get("target_platform") or UNIVERSAL_TARGET),
        )
        logger.info(f"Removing {resource.storage_type} file {resource.name}")
        self.storage.remove(resource)
