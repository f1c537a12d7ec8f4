"""Generate the ``<file>.sha256`` checksum artifact of a download."""

from __future__ import annotations

import hashlib
import logging

from ExtRegistry.Maintenance.catalog.models import DOWNLOAD, DOWNLOAD_SHA256
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.migrations.base import ArtifactHandler
from ExtRegistry.Maintenance.storage.naming import sha256_name

logger = logging.getLogger(__name__)


class GenerateSha256ChecksumHandler(ArtifactHandler):
    """Entity: the download file resource."""

    def migrate(self, entity_id: int) -> None:
        download = self.catalog.get_file_resource(entity_id)
        if download is None or download.type != DOWNLOAD:
            raise DataIntegrityError(f"Download resource {entity_id} not found", entity_id=entity_id)
        version = self._version(download.extension_version_id)
        logger.info(f"Generating sha256 checksum for: {version.display_name()}")

        data = self.storage.fetch(download)
        if not data:
            logger.info(f"Skipping {version.display_name()}: download is empty")
            return

        checksum = self.storage.new_resource(
            version,
            DOWNLOAD_SHA256,
            sha256_name(download.name),
            storage_type=download.storage_type,
            content_type="text/plain",
        )
        digest = hashlib.sha256(data).hexdigest().encode("ascii")
        self._replace_artifacts(version, DOWNLOAD_SHA256, [(checksum, digest)])
