# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.handlers",
#   "purpose": "Static job kind to handler table and the registry the workers dispatch through",
#   "sections": [
#     {"id": "maintenanceservices", "name": "MaintenanceServices", "anchor": "class-maintenanceservices", "kind": "class"},
#     {"id": "handlerregistry", "name": "HandlerRegistry", "anchor": "class-handlerregistry", "kind": "class"},
#     {"id": "build-registry", "name": "build_registry", "anchor": "function-build-registry", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Handler registry.

A job row stores a :class:`JobKind` value, never a class reference. The table
below maps every kind to a factory that builds its handler from the shared
service bundle; the registry is built once per process and every handler
implements ``execute(ctx: JobContext) -> None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping

from ExtRegistry.Maintenance.cache import ViewCache
from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
from ExtRegistry.Maintenance.config import MaintenanceConfig
from ExtRegistry.Maintenance.errors import UnknownJobKindError
from ExtRegistry.Maintenance.identity import (
    IdentityReconciler,
    PublicIdDailyUpdateHandler,
    PublicIdUpdateHandler,
)
from ExtRegistry.Maintenance.inspector import PackageInspector
from ExtRegistry.Maintenance.integrity import (
    GenerateSignatureHandler,
    IntegrityService,
    KeyLifecycleService,
    KeyPairHandler,
)
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.migrations.base import Handler
from ExtRegistry.Maintenance.migrations.checksum import GenerateSha256ChecksumHandler
from ExtRegistry.Maintenance.migrations.downloads import RenameDownloadsHandler
from ExtRegistry.Maintenance.migrations.malicious import CheckPotentiallyMaliciousHandler
from ExtRegistry.Maintenance.migrations.prerelease import SetPreReleaseHandler
from ExtRegistry.Maintenance.migrations.remove_file import RemoveFileHandler
from ExtRegistry.Maintenance.migrations.resources import ExtractResourcesHandler
from ExtRegistry.Maintenance.migrations.runner import MigrationRunner, MigrationSweepHandler
from ExtRegistry.Maintenance.migrations.sweeps import MigrationSweeper
from ExtRegistry.Maintenance.migrations.vsix_manifest import ExtractVsixManifestHandler
from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler
from ExtRegistry.Maintenance.orchestrator.models import JobContext
from ExtRegistry.Maintenance.statistics import AdminStatisticsHandler, AdminStatisticsService
from ExtRegistry.Maintenance.storage.service import StorageService

__all__ = ["MaintenanceServices", "HandlerRegistry", "HANDLER_TABLE", "build_registry"]

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceServices:
    """Everything a handler may depend on."""

    config: MaintenanceConfig
    catalog: SQLiteCatalog
    storage: StorageService
    inspector: PackageInspector
    cache: ViewCache
    scheduler: JobScheduler
    sweeper: MigrationSweeper
    integrity: IntegrityService
    keys: KeyLifecycleService
    reconciler: IdentityReconciler
    statistics: AdminStatisticsService


HandlerFactory = Callable[[MaintenanceServices], Handler]


def _artifact(cls) -> HandlerFactory:
    return lambda s: cls(s.catalog, s.storage, s.inspector, s.cache)


HANDLER_TABLE: Dict[JobKind, HandlerFactory] = {
    JobKind.RUN_MIGRATIONS: lambda s: MigrationRunner(
        s.catalog,
        s.scheduler,
        s.sweeper,
        registry_version=s.config.registry_version,
        mirror_enabled=s.config.mirror_enabled,
        sweep_cron=s.config.migrations.sweep_cron,
    ),
    JobKind.MIGRATION_SWEEP: lambda s: MigrationSweepHandler(s.scheduler, s.sweeper),
    JobKind.EXTRACT_RESOURCES: _artifact(ExtractResourcesHandler),
    JobKind.SET_PRE_RELEASE: _artifact(SetPreReleaseHandler),
    JobKind.RENAME_DOWNLOADS: _artifact(RenameDownloadsHandler),
    JobKind.EXTRACT_VSIX_MANIFEST: _artifact(ExtractVsixManifestHandler),
    JobKind.GENERATE_SHA256_CHECKSUM: _artifact(GenerateSha256ChecksumHandler),
    JobKind.CHECK_POTENTIALLY_MALICIOUS: _artifact(CheckPotentiallyMaliciousHandler),
    JobKind.GENERATE_SIGNATURE: lambda s: GenerateSignatureHandler(
        s.catalog, s.storage, s.integrity, s.cache
    ),
    JobKind.REMOVE_FILE: lambda s: RemoveFileHandler(s.storage),
    JobKind.KEY_PAIR: lambda s: KeyPairHandler(s.keys, s.config.integrity.key_pair_mode),
    JobKind.PUBLIC_ID_UPDATE: lambda s: PublicIdUpdateHandler(s.reconciler),
    JobKind.PUBLIC_ID_DAILY_UPDATE: lambda s: PublicIdDailyUpdateHandler(s.reconciler),
    JobKind.ADMIN_STATISTICS: lambda s: AdminStatisticsHandler(s.statistics),
}


class HandlerRegistry:
    """Maps job kinds to handler instances."""

    def __init__(self, handlers: Mapping[JobKind, Handler]) -> None:
        self._handlers: Dict[JobKind, Handler] = dict(handlers)

    def register(self, kind: JobKind, handler: Handler) -> None:
        self._handlers[kind] = handler

    def get(self, kind: JobKind) -> Handler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise UnknownJobKindError(f"No handler registered for {kind.value}") from None

    def kinds(self) -> Iterable[JobKind]:
        return tuple(self._handlers)

    def execute(self, ctx: JobContext) -> None:
        self.get(ctx.kind).execute(ctx)


def build_registry(services: MaintenanceServices) -> HandlerRegistry:
    """Instantiate one handler per job kind from :data:`HANDLER_TABLE`."""
    registry = HandlerRegistry({kind: factory(services) for kind, factory in HANDLER_TABLE.items()})
    logger.debug(f"Handler registry built with {len(HANDLER_TABLE)} kinds")
    return registry
