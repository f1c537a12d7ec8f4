"""Derive ``pre_release`` and ``preview`` for every version of an extension."""

from __future__ import annotations

import logging

from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.migrations.base import ArtifactHandler

logger = logging.getLogger(__name__)


class SetPreReleaseHandler(ArtifactHandler):
    """Entity: extension. Versions without a download are left untouched."""

    def migrate(self, entity_id: int) -> None:
        extension = self.catalog.get_extension(entity_id)
        if extension is None:
            raise DataIntegrityError(f"Extension {entity_id} not found", entity_id=entity_id)

        for version in self.catalog.find_versions(extension.id):
            try:
                _, data = self._package(version)
            except DataIntegrityError as exc:
                logger.warning(f"Cannot set pre-release flag: {exc}")
                continue
            if data is None:
                continue

            info = self.inspector.inspect(data)
            logger.info(
                f"Setting pre-release={info.pre_release} preview={info.preview} "
                f"for: {version.display_name()}"
            )
            self.catalog.update_version_flags(
                version.id, pre_release=info.pre_release, preview=info.preview
            )
            self._evict(version)
