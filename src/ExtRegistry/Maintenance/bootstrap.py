# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.bootstrap",
#   "purpose": "Wire catalog, queue, stores and services from config and schedule startup triggers",
#   "sections": [
#     {"id": "maintenanceapp", "name": "MaintenanceApp", "anchor": "#class-maintenanceapp", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Bootstrap of the maintenance subsystem.

**Purpose**
-----------
Builds every layer from one :class:`MaintenanceConfig`:

1. Catalog and work queue (SQLite)
2. Artifact backends and the routing storage service
3. Package inspector and view cache
4. Scheduler, sweeper, integrity, identity and statistics services
5. Handler registry and orchestrator

``on_startup`` then feeds the startup triggers into the queue:

- the one-shot migration runner, keyed by registry version
- the daily public-id update and statistics jobs (not on mirrors)
- an immediate public-id update when configured

Every trigger is idempotent, so each member of a fleet may call it on every
start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from ExtRegistry.Maintenance.cache import ViewCache
from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
from ExtRegistry.Maintenance.config import STORAGE_LOCAL, STORAGE_REMOTE, MaintenanceConfig
from ExtRegistry.Maintenance.handlers import HandlerRegistry, MaintenanceServices, build_registry
from ExtRegistry.Maintenance.identity import IdentityReconciler, UpstreamLookup, UpstreamRegistryClient
from ExtRegistry.Maintenance.idempotency import bootstrap_job_key
from ExtRegistry.Maintenance.inspector import ArchiveInspector, PackageInspector
from ExtRegistry.Maintenance.integrity import IntegrityService, KeyLifecycleService
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.migrations.sweeps import MigrationSweeper
from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler
from ExtRegistry.Maintenance.orchestrator.queue import WorkQueue
from ExtRegistry.Maintenance.orchestrator.scheduler import Orchestrator
from ExtRegistry.Maintenance.statistics import AdminStatisticsService
from ExtRegistry.Maintenance.storage import (
    ArtifactStore,
    HttpArtifactStore,
    LocalArtifactStore,
    StorageService,
)

__all__ = ["MaintenanceApp", "IDENTITY_JOB_NAME", "STATISTICS_JOB_NAME", "daily_cron"]

LOGGER = logging.getLogger(__name__)

IDENTITY_JOB_NAME = "VSCodeIdDailyUpdate"
STATISTICS_JOB_NAME = "AdminStatisticsDaily"


def daily_cron(hour_utc: int) -> str:
    return f"0 {hour_utc} * * *"


def _default_backends(config: MaintenanceConfig) -> dict[str, ArtifactStore]:
    backends: dict[str, ArtifactStore] = {
        STORAGE_LOCAL: LocalArtifactStore(config.storage.local_root)
    }
    if config.storage.remote_base_url:
        backends[STORAGE_REMOTE] = HttpArtifactStore(config.storage.remote_base_url)
    return backends


@dataclass
class MaintenanceApp:
    """Fully wired maintenance subsystem."""

    config: MaintenanceConfig
    services: MaintenanceServices
    queue: WorkQueue
    registry: HandlerRegistry
    orchestrator: Orchestrator
    _closeables: List[Any] = field(default_factory=list, repr=False)

    @classmethod
    def from_config(
        cls,
        config: MaintenanceConfig,
        *,
        backends: Optional[Mapping[str, ArtifactStore]] = None,
        inspector: Optional[PackageInspector] = None,
        upstream: Optional[UpstreamLookup] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> "MaintenanceApp":
        """Build the subsystem; collaborators may be injected (tests, embedding apps)."""
        storage_cfg = config.storage
        catalog = SQLiteCatalog(storage_cfg.catalog_path, wal_mode=storage_cfg.wal_mode)
        queue = WorkQueue(storage_cfg.queue_path, wal_mode=storage_cfg.wal_mode)

        closeables: List[Any] = []
        if backends is None:
            backends = _default_backends(config)
            closeables.extend(b for b in backends.values() if hasattr(b, "close"))
        storage = StorageService(
            backends,
            default_storage_type=storage_cfg.default_storage_type,
            io_attempts=config.orchestrator.io_attempts,
        )
        if upstream is None:
            client = UpstreamRegistryClient(
                config.identity.upstream_gallery_url,
                timeout_seconds=config.identity.timeout_seconds,
                io_attempts=config.orchestrator.io_attempts,
            )
            closeables.append(client)
            upstream = client

        cache = ViewCache()
        scheduler = JobScheduler(queue, max_retries=config.orchestrator.max_retries)
        sweeper = MigrationSweeper(
            catalog,
            scheduler,
            page_size=config.migrations.page_size,
            max_rearms=config.migrations.max_rearms,
        )
        reconciler_kwargs: dict[str, Any] = {}
        if id_factory is not None:
            reconciler_kwargs["id_factory"] = id_factory

        services = MaintenanceServices(
            config=config,
            catalog=catalog,
            storage=storage,
            inspector=inspector or ArchiveInspector(storage_cfg.max_entry_bytes),
            cache=cache,
            scheduler=scheduler,
            sweeper=sweeper,
            integrity=IntegrityService(),
            keys=KeyLifecycleService(catalog, scheduler),
            reconciler=IdentityReconciler(
                catalog,
                upstream,
                cache=cache,
                builtin_namespaces=config.identity.builtin_namespaces,
                **reconciler_kwargs,
            ),
            statistics=AdminStatisticsService(catalog),
        )
        registry = build_registry(services)
        orchestrator = Orchestrator(
            config.orchestrator,
            queue,
            registry,
            scheduler,
            on_success=sweeper.mark_completed,
        )
        LOGGER.info(
            f"Maintenance app ready (registry_version={config.registry_version!r}, "
            f"mirror={config.mirror_enabled}, config_hash={config.config_hash()[:12]})"
        )
        return cls(config, services, queue, registry, orchestrator, closeables)

    @property
    def scheduler(self) -> JobScheduler:
        return self.services.scheduler

    @property
    def catalog(self) -> SQLiteCatalog:
        return self.services.catalog

    def on_startup(self) -> list[str]:
        """Schedule the startup triggers; returns the ids of enqueued one-shot jobs."""
        config = self.config
        scheduler = self.scheduler
        job_ids = []

        if config.integrity.enabled:
            self.services.cache.evict_all()

        job_ids.append(
            scheduler.enqueue(
                JobKind.RUN_MIGRATIONS,
                {},
                key=bootstrap_job_key(config.registry_version),
                delay_seconds=config.migrations.delay_seconds,
                max_retries=0,
            )
        )

        if config.mirror_enabled:
            scheduler.delete_recurring(IDENTITY_JOB_NAME)
            scheduler.delete_recurring(STATISTICS_JOB_NAME)
            return job_ids

        scheduler.schedule_recurring(
            IDENTITY_JOB_NAME,
            daily_cron(config.identity.daily_hour_utc),
            JobKind.PUBLIC_ID_DAILY_UPDATE,
        )
        if config.identity.update_on_start:
            job_ids.append(scheduler.enqueue(JobKind.PUBLIC_ID_DAILY_UPDATE, {}))

        if config.statistics.enabled:
            scheduler.schedule_recurring(
                STATISTICS_JOB_NAME,
                daily_cron(config.statistics.daily_hour_utc),
                JobKind.ADMIN_STATISTICS,
            )
        else:
            scheduler.delete_recurring(STATISTICS_JOB_NAME)
        return job_ids

    def close(self) -> None:
        for closeable in self._closeables:
            closeable.close()
        self.queue.close_connection()
        self.catalog.close()
