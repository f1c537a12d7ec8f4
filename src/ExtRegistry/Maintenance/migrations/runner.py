# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.migrations.runner",
#   "purpose": "Startup migration runner and recurring re-sweep handler",
#   "sections": [
#     {"id": "migrationrunner", "name": "MigrationRunner", "anchor": "class-migrationrunner", "kind": "class"},
#     {"id": "migrationsweephandler", "name": "MigrationSweepHandler", "anchor": "class-migrationsweephandler", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Bootstrap migrations.

``MigrationRunner`` is the ``RUN_MIGRATIONS`` handler, enqueued once per
registry version at startup with no retries. It runs the fixed sequence:

1. fix orphan namespaces
2. set-pre-release
3. rename-downloads
4. extract-vsix-manifest
5. generate-sha256-checksum
6. signature key pair job (skipped on mirrors)
7. check-potentially-malicious
8. extract-resources

and then registers the recurring ``MigrationSweep`` job, which keeps
re-scheduling and re-arming until every kind has nothing pending, then deletes
itself.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ExtRegistry.Maintenance.idempotency import key_pair_job_key
from ExtRegistry.Maintenance.kinds import MIGRATION_ORDER, JobKind
from ExtRegistry.Maintenance.migrations.orphans import fix_orphan_namespaces

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
    from ExtRegistry.Maintenance.migrations.sweeps import MigrationSweeper
    from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler
    from ExtRegistry.Maintenance.orchestrator.models import JobContext

__all__ = ["MigrationRunner", "MigrationSweepHandler", "SWEEP_JOB_NAME"]

logger = logging.getLogger(__name__)

SWEEP_JOB_NAME = "MigrationSweep"


class MigrationRunner:
    def __init__(
        self,
        catalog: "SQLiteCatalog",
        scheduler: "JobScheduler",
        sweeper: "MigrationSweeper",
        *,
        registry_version: str,
        mirror_enabled: bool = False,
        sweep_cron: str = "0 4 * * *",
    ) -> None:
        self.catalog = catalog
        self.scheduler = scheduler
        self.sweeper = sweeper
        self.registry_version = registry_version
        self.mirror_enabled = mirror_enabled
        self.sweep_cron = sweep_cron

    def execute(self, ctx: "JobContext") -> None:
        self.run()

    def run(self) -> int:
        """Run every sweep once; returns the number of migration jobs scheduled."""
        logger.info(f"Running migrations for registry version {self.registry_version}")
        fix_orphan_namespaces(self.catalog)

        scheduled = 0
        for kind in MIGRATION_ORDER:
            self.sweeper.introduce(kind)
            scheduled += self.sweeper.schedule(kind)
            if kind == JobKind.GENERATE_SHA256_CHECKSUM and not self.mirror_enabled:
                self.scheduler.enqueue(
                    JobKind.KEY_PAIR, {}, key=key_pair_job_key(self.registry_version)
                )

        self.scheduler.schedule_recurring(SWEEP_JOB_NAME, self.sweep_cron, JobKind.MIGRATION_SWEEP)
        logger.info(f"Migration runner scheduled {scheduled} jobs")
        return scheduled


class MigrationSweepHandler:
    """Periodic re-sweep; cancels its own schedule once nothing is pending."""

    def __init__(self, scheduler: "JobScheduler", sweeper: "MigrationSweeper") -> None:
        self.scheduler = scheduler
        self.sweeper = sweeper

    def execute(self, ctx: "JobContext") -> None:
        pending = 0
        for kind in MIGRATION_ORDER:
            self.sweeper.schedule(kind)
            self.sweeper.rearm_failed(kind)
            pending += self.sweeper.pending(kind)

        if pending:
            logger.info(f"{pending} migration items still pending")
        else:
            self.scheduler.delete_recurring(SWEEP_JOB_NAME)
