"""Move downloads stored under legacy names to the canonical file name."""

from __future__ import annotations

import logging

from ExtRegistry.Maintenance.catalog.models import DOWNLOAD
from ExtRegistry.Maintenance.config import STORAGE_DATABASE
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.migrations.base import ArtifactHandler
from ExtRegistry.Maintenance.storage.naming import canonical_download_name

logger = logging.getLogger(__name__)


class RenameDownloadsHandler(ArtifactHandler):
    """Entity: the download file resource.

    The blob is copied under the new key before the old key is deleted, and
    the row is renamed last.
    """

    def migrate(self, entity_id: int) -> None:
        download = self.catalog.get_file_resource(entity_id)
        if download is None or download.type != DOWNLOAD:
            raise DataIntegrityError(f"Download resource {entity_id} not found", entity_id=entity_id)

        name = canonical_download_name(download)
        if download.name == name:
            return

        version = self._version(download.extension_version_id)
        logger.info(f"Renaming download {download.name} -> {name}")
        if download.storage_type != STORAGE_DATABASE:
            renamed = download.with_changes(name=name)
            try:
                data = self.storage.fetch(download)
            except DataIntegrityError:
                # an earlier attempt already moved the blob
                self.storage.fetch(renamed)
            else:
                self.storage.upload(renamed, data)
                self.storage.remove(download)
        self.catalog.rename_file_resource(download.id, name)
        self._evict(version)
