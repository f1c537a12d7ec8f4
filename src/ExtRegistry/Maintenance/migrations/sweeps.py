# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.migrations.sweeps",
#   "purpose": "Paged scheduling of migration items and completion tracking",
#   "sections": [
#     {"id": "migrationsweeper", "name": "MigrationSweeper", "anchor": "class-migrationsweeper", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Migration sweeps.

A migration item exists per ``(kind, entity)`` and carries two flags:

``migration_scheduled``
    a job exists for the item (set right after the idempotent enqueue)
``migration_completed``
    the handler reported success (set by the worker's success hook)

``schedule`` pages over unscheduled items in fixed-size batches. Because every
item of a page is marked scheduled before the next page is read, re-querying
the first page is enough to make progress. Jobs are keyed
``"<JobName>::itemId=<id>"``, so two sweeps racing over the same page still
produce one job per item.

``rearm_failed`` looks at scheduled-but-incomplete items and re-arms jobs that
exhausted their retries on transient errors, at most ``max_rearms`` times per
job. Items that failed on a non-retryable error (missing download, oversized
entry) or used up their re-arms stay failed and no longer count as pending.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict

from ExtRegistry.Maintenance.errors import is_terminal_error_message
from ExtRegistry.Maintenance.idempotency import job_id, migration_job_key
from ExtRegistry.Maintenance.kinds import (
    MIGRATION_ENTITY_TYPES,
    MIGRATION_JOB_NAMES,
    JobKind,
    is_migration_kind,
)
from ExtRegistry.Maintenance.orchestrator.models import JobState

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.catalog.models import MigrationItem
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
    from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler
    from ExtRegistry.Maintenance.orchestrator.models import JobContext

__all__ = ["MigrationSweeper", "DEFAULT_PAGE_SIZE"]

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25_000
DEFAULT_MAX_REARMS = 3


class MigrationSweeper:
    """Feeds migration items of one kind into the job scheduler."""

    def __init__(
        self,
        catalog: "SQLiteCatalog",
        scheduler: "JobScheduler",
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_rearms: int = DEFAULT_MAX_REARMS,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if max_rearms < 0:
            raise ValueError("max_rearms must not be negative")
        self.catalog = catalog
        self.scheduler = scheduler
        self.page_size = page_size
        self.max_rearms = max_rearms

    def introduce(self, kind: JobKind) -> int:
        """Create one item per existing entity the first time ``kind`` is seen."""
        created = self.catalog.introduce_migration_kind(kind.value, MIGRATION_ENTITY_TYPES[kind])
        if created:
            logger.info(f"Introduced migration {MIGRATION_JOB_NAMES[kind]}: {created} items")
        return created

    def schedule(self, kind: JobKind) -> int:
        """Enqueue a job for every unscheduled item of ``kind``; returns the count."""
        job_name = MIGRATION_JOB_NAMES[kind]
        total = 0
        while True:
            items = self.catalog.find_not_migrated(kind.value, self.page_size)
            for item in items:
                self._enqueue(kind, item)
                self.catalog.mark_migration_scheduled(item.id)
            total += len(items)
            if len(items) < self.page_size:
                break
        if total:
            logger.info(f"Scheduled {total} {job_name} jobs")
        return total

    def rearm_failed(self, kind: JobKind) -> int:
        """Re-arm jobs of incomplete items that can still succeed; returns the count."""
        job_name = MIGRATION_JOB_NAMES[kind]
        rearmed = 0
        for item in self.catalog.find_incomplete(kind.value):
            key = migration_job_key(job_name, item.id)
            job = self.scheduler.get(key)
            if job is None:
                self._enqueue(kind, item)
                rearmed += 1
            elif job["state"] == JobState.DONE.value:
                self.catalog.mark_migration_completed(item.id)
            elif job["state"] == JobState.ERROR.value and not self.failed_permanently(job):
                if self.scheduler.queue.retry(job_id(key), max_rearms=self.max_rearms):
                    rearmed += 1
                    if job["rearm_count"] + 1 == self.max_rearms:
                        logger.warning(
                            f"{job_name} job for item {item.id} re-armed for the last time: "
                            f"{job['last_error']}"
                        )
        if rearmed:
            logger.info(f"Re-armed {rearmed} {job_name} jobs")
        return rearmed

    def failed_permanently(self, job: Dict[str, Any]) -> bool:
        """An ERROR job that no sweep will re-arm again."""
        return job["state"] == JobState.ERROR.value and (
            is_terminal_error_message(job["last_error"])
            or job["rearm_count"] >= self.max_rearms
        )

    def pending(self, kind: JobKind) -> int:
        """Items of ``kind`` that are unscheduled or may still complete."""
        unfinished = self.catalog.count_pending(kind.value)
        if not unfinished:
            return 0
        failed = 0
        for item in self.catalog.find_incomplete(kind.value):
            job = self.scheduler.get(migration_job_key(MIGRATION_JOB_NAMES[kind], item.id))
            if job is not None and self.failed_permanently(job):
                failed += 1
        return unfinished - failed

    def pending_by_kind(self) -> Dict[str, int]:
        return {kind.value: self.pending(kind) for kind in MIGRATION_JOB_NAMES}

    def mark_completed(self, ctx: "JobContext") -> None:
        """Worker success hook: record completion of the item a migration job served."""
        if not is_migration_kind(ctx.kind):
            return
        item_id = ctx.payload.get("item_id")
        if item_id is not None:
            self.catalog.mark_migration_completed(int(item_id))

    def _enqueue(self, kind: JobKind, item: "MigrationItem") -> str:
        return self.scheduler.enqueue(
            kind,
            {"item_id": item.id, "entity_id": item.entity_id},
            key=migration_job_key(MIGRATION_JOB_NAMES[kind], item.id),
        )
