"""Extract ``extension.vsixmanifest`` from a package into its own artifact."""

from __future__ import annotations

import logging

from ExtRegistry.Maintenance.catalog.models import VSIXMANIFEST
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.inspector import VSIX_MANIFEST
from ExtRegistry.Maintenance.migrations.base import ArtifactHandler

logger = logging.getLogger(__name__)


class ExtractVsixManifestHandler(ArtifactHandler):
    """Entity: extension version."""

    def migrate(self, entity_id: int) -> None:
        version = self._version(entity_id)
        logger.info(f"Extracting vsixmanifest for: {version.display_name()}")
        download, data = self._package(version)
        if data is None:
            return

        manifest = self.inspector.inspect(data).vsix_manifest
        if manifest is None:
            raise DataIntegrityError(
                f"{version.display_name()} has no {VSIX_MANIFEST}", entity_id=version.id
            )
        resource = self.storage.new_resource(
            version,
            VSIXMANIFEST,
            VSIX_MANIFEST,
            storage_type=download.storage_type,
            content_type="application/xml",
        )
        self._replace_artifacts(version, VSIXMANIFEST, [(resource, manifest)])
