"""Flag versions whose archive carries unexpected zip extra-field headers."""

from __future__ import annotations

import logging

from ExtRegistry.Maintenance.migrations.base import ArtifactHandler

logger = logging.getLogger(__name__)


class CheckPotentiallyMaliciousHandler(ArtifactHandler):
    """Entity: extension version."""

    def migrate(self, entity_id: int) -> None:
        version = self._version(entity_id)
        logger.info(f"Checking for potentially malicious content: {version.display_name()}")
        _, data = self._package(version)
        if data is None:
            return

        info = self.inspector.inspect(data)
        if info.potentially_malicious:
            logger.warning(
                f"Extension version {version.display_name()} is potentially malicious: "
                f"unexpected extra fields in {list(info.suspicious_entries)}"
            )
        if info.potentially_malicious != version.potentially_malicious:
            self.catalog.update_version_flags(
                version.id, potentially_malicious=info.potentially_malicious
            )
            self._evict(version)
