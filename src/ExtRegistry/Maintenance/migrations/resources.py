"""Extract every package entry into ``resource`` artifacts."""

from __future__ import annotations

import logging
import mimetypes

from ExtRegistry.Maintenance.catalog.models import RESOURCE, WEB_RESOURCE
from ExtRegistry.Maintenance.migrations.base import ArtifactHandler

logger = logging.getLogger(__name__)


class ExtractResourcesHandler(ArtifactHandler):
    """Entity: extension version.

    Legacy ``web-resource`` rows are dropped once the full resource set is in
    place.
    """

    def migrate(self, entity_id: int) -> None:
        version = self._version(entity_id)
        logger.info(f"Extracting resources for: {version.display_name()}")
        download, data = self._package(version)
        if data is None:
            return

        info = self.inspector.inspect(data)
        artifacts = []
        for entry in info.resources:
            resource = self.storage.new_resource(
                version,
                RESOURCE,
                entry.name,
                storage_type=download.storage_type,
                content_type=mimetypes.guess_type(entry.name)[0],
            )
            artifacts.append((resource, entry.data))

        saved = self._replace_artifacts(version, RESOURCE, artifacts)
        dropped = self._drop_artifacts(version, WEB_RESOURCE)
        logger.debug(
            f"{version.display_name()}: {len(saved)} resources stored, "
            f"{dropped} web resources dropped"
        )
