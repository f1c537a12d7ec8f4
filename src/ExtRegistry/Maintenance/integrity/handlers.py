"""Job handlers for signature generation and key pair triggers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ExtRegistry.Maintenance.catalog.models import DOWNLOAD_SIG
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.migrations.base import ArtifactHandler
from ExtRegistry.Maintenance.storage.naming import signature_name

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.cache import ViewCache
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
    from ExtRegistry.Maintenance.integrity.lifecycle import KeyLifecycleService
    from ExtRegistry.Maintenance.integrity.service import IntegrityService
    from ExtRegistry.Maintenance.orchestrator.models import JobContext
    from ExtRegistry.Maintenance.storage.service import StorageService

logger = logging.getLogger(__name__)


class GenerateSignatureHandler(ArtifactHandler):
    """Sign one version's download with the key pair named in the payload.

    Any previous signature of the version, under whichever key, is replaced so
    that exactly one signature stays live. Jobs for a key that has since been
    retired do nothing; the rotation scheduled fresh jobs for the new key.
    """

    def __init__(
        self,
        catalog: "SQLiteCatalog",
        storage: "StorageService",
        integrity: "IntegrityService",
        cache: Optional["ViewCache"] = None,
    ) -> None:
        super().__init__(catalog, storage, cache=cache)
        self.integrity = integrity

    def execute(self, ctx: "JobContext") -> None:
        self.sign(int(ctx.require("version_id")), int(ctx.require("key_pair_id")))

    def migrate(self, entity_id: int) -> None:
        active = self.catalog.find_active_key_pair()
        if active is None:
            raise DataIntegrityError("No active signature key pair", entity_id=entity_id)
        self.sign(entity_id, active.id)

    def sign(self, version_id: int, key_pair_id: int) -> None:
        key_pair = self.catalog.get_key_pair(key_pair_id)
        if key_pair is None:
            raise DataIntegrityError(f"Signature key pair {key_pair_id} not found")
        if not key_pair.active:
            logger.info(f"Skipping signature for version {version_id}: key {key_pair.public_id} retired")
            return

        version = self._version(version_id)
        logger.info(f"Generating signature for: {version.display_name()}")
        download, data = self._package(version)
        if data is None:
            return

        sigzip = self.integrity.generate_signature(download.name, data, key_pair)
        resource = self.storage.new_resource(
            version,
            DOWNLOAD_SIG,
            signature_name(download.name),
            storage_type=download.storage_type,
            content_type="application/zip",
        )
        self._replace_artifacts(
            version,
            DOWNLOAD_SIG,
            [(resource, sigzip)],
            version_updates={"signature_key_pair_id": key_pair.id},
        )


class KeyPairHandler:
    """Apply a key pair mode; the payload may override the configured one."""

    def __init__(self, lifecycle: "KeyLifecycleService", default_mode: str = "") -> None:
        self.lifecycle = lifecycle
        self.default_mode = default_mode

    def execute(self, ctx: "JobContext") -> None:
        mode = ctx.payload.get("mode", self.default_mode)
        logger.info(f"Running key pair job (mode={mode or 'none'})")
        self.lifecycle.run(mode)
