# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.orchestrator.jobs",
#   "purpose": "Idempotent one-shot and recurring job scheduling on top of the work queue",
#   "sections": [
#     {"id": "jobscheduler", "name": "JobScheduler", "anchor": "#class-jobscheduler", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Idempotent job scheduling.

``JobScheduler`` turns a stable text key into a deterministic job id and hands
it to the :class:`WorkQueue`, which ignores a second insert of the same id.
Calling ``enqueue`` once per process start, once per sweep or once per fleet
member therefore executes the unit of work once.

Recurring jobs live in their own table under a well-known name. Each firing is
enqueued under ``"<name>::run=<occurrence>"``, so several processes firing the
same tick also collapse to one job.

**Usage:**

    scheduler = JobScheduler(queue, max_retries=3)

    scheduler.enqueue(JobKind.RUN_MIGRATIONS, {}, key="MigrationScheduler::1.2.0",
                      delay_seconds=30, max_retries=0)
    scheduler.schedule_recurring("VSCodeIdDailyUpdate", "0 3 * * *",
                                 JobKind.PUBLIC_ID_DAILY_UPDATE)
    scheduler.fire_due_recurring()
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

from croniter import croniter

from ExtRegistry.Maintenance.idempotency import job_id, recurring_job_key, recurring_run_key
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.orchestrator.queue import WorkQueue

__all__ = ["JobScheduler"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobScheduler:
    """Idempotent enqueue of one-shot and recurring jobs.

    Attributes:
        queue: Durable work queue
        max_retries: Retry bound applied when a call does not override it
    """

    def __init__(
        self,
        queue: WorkQueue,
        *,
        max_retries: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.queue = queue
        self.max_retries = max_retries
        self._clock = clock

    def enqueue(
        self,
        kind: JobKind,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        key: Optional[str] = None,
        delay_seconds: float = 0,
        max_retries: Optional[int] = None,
    ) -> str:
        """Enqueue a one-shot job at now + ``delay_seconds``.

        Args:
            kind: Handler kind
            payload: JSON-serializable payload
            key: Stable text key; jobs without a key get a random id
            delay_seconds: Delay before the job becomes leasable
            max_retries: Override of the default retry bound

        Returns:
            The job id (whether newly inserted or already present)
        """
        when = self._clock() + timedelta(seconds=delay_seconds)
        return self._enqueue_at(kind, payload, key, when, max_retries)

    def schedule_at(
        self,
        key: str,
        when: datetime,
        kind: JobKind,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        max_retries: Optional[int] = None,
    ) -> str:
        """Enqueue a one-shot job that becomes leasable at ``when``."""
        return self._enqueue_at(kind, payload, key, when, max_retries)

    def _enqueue_at(
        self,
        kind: JobKind,
        payload: Optional[Mapping[str, Any]],
        key: Optional[str],
        when: datetime,
        max_retries: Optional[int],
    ) -> str:
        jid = job_id(key) if key is not None else str(uuid.uuid4())
        inserted = self.queue.enqueue(
            jid,
            kind.value,
            payload or {},
            not_before=when,
            max_retries=self.max_retries if max_retries is None else max_retries,
        )
        if inserted:
            logger.debug(f"Scheduled {kind.value} job {jid} (key={key!r}) at {when.isoformat()}")
        return jid

    def delete(self, key: str) -> bool:
        """Delete the job derived from ``key``."""
        return self.queue.delete(job_id(key))

    def get(self, key: str) -> Optional[dict[str, Any]]:
        return self.queue.get(job_id(key))

    def schedule_recurring(
        self,
        name: str,
        cron: str,
        kind: JobKind,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Register (or reschedule) a recurring job under ``name``.

        Returns:
            False if the same schedule is already stored, True otherwise
        """
        schedule_key = recurring_job_key(name, cron)
        existing = self.queue.find_recurring(name)
        if existing is not None and existing["schedule_key"] == schedule_key:
            logger.debug(f"Recurring job {name} already scheduled [{cron}]")
            return False

        next_run_at = croniter(cron, self._clock()).get_next(datetime)
        self.queue.upsert_recurring(name, kind.value, payload or {}, cron, schedule_key, next_run_at)
        logger.info(f"++ Scheduled {name} [{cron}] next at {next_run_at.isoformat()}")
        return True

    def delete_recurring(self, name: str) -> bool:
        deleted = self.queue.delete_recurring(name)
        if deleted:
            logger.info(f"-- Deleted {name}")
        return deleted

    def fire_due_recurring(self, now: Optional[datetime] = None) -> list[str]:
        """Enqueue one job per due recurring schedule and advance it.

        Missed occurrences while no process was running collapse into the
        single due firing.

        Returns:
            Job ids of the fired occurrences
        """
        now = now or self._clock()
        fired = []
        for entry in self.queue.due_recurring(now):
            occurrence = datetime.fromisoformat(entry["next_run_at"])
            kind = JobKind.parse(entry["kind"])
            jid = self._enqueue_at(
                kind,
                _decode(entry["payload_json"]),
                recurring_run_key(entry["name"], occurrence),
                now,
                None,
            )
            fired.append(jid)
            next_run_at = croniter(entry["cron"], max(occurrence, now)).get_next(datetime)
            self.queue.advance_recurring(entry["name"], next_run_at)
            logger.debug(f"Fired recurring {entry['name']} ({occurrence.isoformat()}) as {jid}")
        return fired


def _decode(payload_json: str) -> dict[str, Any]:
    return json.loads(payload_json) if payload_json else {}
