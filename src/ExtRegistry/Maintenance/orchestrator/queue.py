# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.orchestrator.queue",
#   "purpose": "SQLite-backed work queue with deterministic job ids, crash-safe leasing, retry bounds and recurring schedules",
#   "sections": [
#     {"id": "workqueue", "name": "WorkQueue", "anchor": "#class-workqueue", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""SQLite-backed work queue for maintenance jobs.

Durable, idempotent job storage using SQLite with WAL mode for concurrent
access. It guarantees:

- **Idempotence**: ``job_id`` is the primary key; a second insert of the same
  deterministic id is ignored, so duplicate enqueues collapse to one job
- **Crash-safety**: Leasing with TTL enables recovery on worker crashes
- **Bounded retries**: ``retry_count > max_retries`` moves a job to ERROR
- **Delayed execution**: jobs become leasable once ``not_before <= now``

**Usage:**

    queue = WorkQueue("state/jobs.sqlite", wal_mode=True)

    queue.enqueue(job_id, "generate_sha256_checksum", {"item_id": 1, "entity_id": 7})
    jobs = queue.lease("worker-1", limit=5, lease_ttl_sec=600)
    queue.ack(job["job_id"], "done")
    queue.fail_and_retry(job["job_id"], backoff_sec=30, last_error=str(e))
    stats = queue.stats()  # {"queued": 10, "in_progress": 2, ...}

**Schema:**

    CREATE TABLE jobs (
      job_id TEXT PRIMARY KEY,
      kind TEXT NOT NULL,
      payload_json TEXT NOT NULL,
      state TEXT NOT NULL DEFAULT 'queued',
      retry_count INTEGER NOT NULL DEFAULT 0,
      max_retries INTEGER NOT NULL DEFAULT 3,
      not_before TEXT NOT NULL,
      last_error TEXT,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      lease_expires_at TEXT,
      worker_id TEXT,
      rearm_count INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE recurring_jobs (
      name TEXT PRIMARY KEY,
      kind TEXT NOT NULL,
      payload_json TEXT NOT NULL,
      cron TEXT NOT NULL,
      schedule_key TEXT NOT NULL,
      next_run_at TEXT NOT NULL
    );

**Thread Safety:**

Each thread gets its own connection. WAL mode allows concurrent readers;
writers serialize via SQLite locking.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from ExtRegistry.Maintenance.errors import ConflictError
from ExtRegistry.Maintenance.orchestrator.models import JobState

__all__ = ["WorkQueue"]

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
  job_id TEXT PRIMARY KEY,
  kind TEXT NOT NULL,
  payload_json TEXT NOT NULL,
  state TEXT NOT NULL DEFAULT 'queued',
  retry_count INTEGER NOT NULL DEFAULT 0,
  max_retries INTEGER NOT NULL DEFAULT 3,
  not_before TEXT NOT NULL,
  last_error TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  lease_expires_at TEXT,
  worker_id TEXT,
  rearm_count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_jobs_ready ON jobs(state, not_before);
CREATE INDEX IF NOT EXISTS idx_jobs_lease ON jobs(lease_expires_at);
CREATE INDEX IF NOT EXISTS idx_jobs_kind ON jobs(kind);

CREATE TABLE IF NOT EXISTS recurring_jobs (
  name TEXT PRIMARY KEY,
  kind TEXT NOT NULL,
  payload_json TEXT NOT NULL,
  cron TEXT NOT NULL,
  schedule_key TEXT NOT NULL,
  next_run_at TEXT NOT NULL
);
"""

_JOB_COLUMNS = (
    "job_id, kind, payload_json, state, retry_count, max_retries, not_before, "
    "last_error, created_at, updated_at, lease_expires_at, worker_id, rearm_count"
)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkQueue:
    """SQLite-backed work queue with idempotent enqueue and crash-safe leasing."""

    def __init__(self, path: str, wal_mode: bool = True) -> None:
        """Initialize work queue.

        Args:
            path: Path to SQLite database file
            wal_mode: Enable WAL mode for concurrent access (default True)
        """
        self.path = path
        self._local = threading.local()

        Path(path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(path, timeout=10.0)
        if wal_mode:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
        conn.close()

        logger.info(f"WorkQueue initialized at {path} (wal_mode={wal_mode})")

    def _get_connection(self) -> sqlite3.Connection:
        """Get (lazily creating) the connection of the current thread."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(self.path, timeout=10.0)
            conn.execute("PRAGMA busy_timeout=5000")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return self._local.conn

    def close_connection(self) -> None:
        """Close the connection of the current thread."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection: {e}")
            finally:
                self._local.conn = None

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _insert(
        self,
        job_id: str,
        kind: str,
        payload: Mapping[str, Any],
        not_before: datetime,
        max_retries: int,
    ) -> None:
        conn = self._get_connection()
        now_iso = _iso(_now())
        try:
            conn.execute(
                f"""
                INSERT INTO jobs ({_JOB_COLUMNS})
                VALUES (?, ?, ?, ?, 0, ?, ?, NULL, ?, ?, NULL, NULL, 0)
                """,
                (
                    job_id,
                    kind,
                    json.dumps(dict(payload), sort_keys=True),
                    JobState.QUEUED.value,
                    max_retries,
                    _iso(not_before),
                    now_iso,
                    now_iso,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise ConflictError(job_id) from exc

    def enqueue(
        self,
        job_id: str,
        kind: str,
        payload: Mapping[str, Any],
        *,
        not_before: Optional[datetime] = None,
        max_retries: int = 3,
    ) -> bool:
        """Idempotently enqueue a job.

        Args:
            job_id: Deterministic id derived from the job's stable key
            kind: Job kind value
            payload: JSON-serializable payload
            not_before: Earliest execution time (default: now)
            max_retries: Retries allowed after the first attempt

        Returns:
            True if inserted, False if a job with this id already exists
        """
        try:
            self._insert(job_id, kind, payload, not_before or _now(), max_retries)
        except ConflictError:
            logger.debug(f"Job {job_id} ({kind}) already enqueued (idempotent)")
            return False
        logger.debug(f"Enqueued job {job_id} ({kind})")
        return True

    def lease(self, worker_id: str, limit: int, lease_ttl_sec: int) -> list[dict[str, Any]]:
        """Atomically lease up to ``limit`` ready jobs for a worker.

        Ready means QUEUED with ``not_before <= now``, or IN_PROGRESS with an
        expired lease (crash recovery).

        Returns:
            List of job dicts, each leased exactly once
        """
        conn = self._get_connection()
        now = _now()
        now_iso = _iso(now)
        lease_expires_iso = _iso(now + timedelta(seconds=lease_ttl_sec))

        conn.execute("BEGIN IMMEDIATE")
        try:
            rows = conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM jobs
                WHERE (state = ? AND not_before <= ?)
                   OR (state = ? AND lease_expires_at < ?)
                ORDER BY not_before ASC, created_at ASC
                LIMIT ?
                """,
                (
                    JobState.QUEUED.value,
                    now_iso,
                    JobState.IN_PROGRESS.value,
                    now_iso,
                    limit,
                ),
            ).fetchall()
            conn.executemany(
                """
                UPDATE jobs
                SET state = ?, worker_id = ?, lease_expires_at = ?, updated_at = ?
                WHERE job_id = ?
                """,
                [
                    (JobState.IN_PROGRESS.value, worker_id, lease_expires_iso, now_iso, row["job_id"])
                    for row in rows
                ],
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

        result = []
        for row in rows:
            job = dict(row)
            job.update(
                state=JobState.IN_PROGRESS.value,
                worker_id=worker_id,
                lease_expires_at=lease_expires_iso,
            )
            result.append(job)

        if result:
            logger.debug(f"Worker {worker_id} leased {len(result)} jobs")
        return result

    def heartbeat(self, worker_id: str, lease_ttl_sec: int = 600) -> int:
        """Extend the leases held by ``worker_id``; returns the number extended."""
        conn = self._get_connection()
        now = _now()
        cursor = conn.execute(
            """
            UPDATE jobs
            SET lease_expires_at = ?, updated_at = ?
            WHERE worker_id = ? AND state = ?
            """,
            (
                _iso(now + timedelta(seconds=lease_ttl_sec)),
                _iso(now),
                worker_id,
                JobState.IN_PROGRESS.value,
            ),
        )
        conn.commit()
        if cursor.rowcount > 0:
            logger.debug(
                f"Heartbeat for worker {worker_id} extended {cursor.rowcount} leases (ttl={lease_ttl_sec}s)"
            )
        return cursor.rowcount

    def ack(self, job_id: str, outcome: str, last_error: Optional[str] = None) -> None:
        """Move a job to a terminal state.

        Args:
            job_id: Job id
            outcome: "done" or "error"
            last_error: Optional error message if outcome is error

        Raises:
            ValueError: If outcome is not a terminal state
        """
        outcome_lower = outcome.lower()
        if outcome_lower == "done":
            state = JobState.DONE
        elif outcome_lower == "error":
            state = JobState.ERROR
        else:
            raise ValueError(f"Invalid outcome: {outcome}")

        conn = self._get_connection()
        cursor = conn.execute(
            """
            UPDATE jobs
            SET state = ?, last_error = ?, worker_id = NULL, lease_expires_at = NULL, updated_at = ?
            WHERE job_id = ?
            """,
            (state.value, last_error, _iso(_now()), job_id),
        )
        conn.commit()

        if cursor.rowcount > 0:
            logger.debug(f"Job {job_id} acked with outcome={outcome}")
        else:
            logger.warning(f"Job {job_id} not found for ack")

    def fail_and_retry(self, job_id: str, backoff_sec: float, last_error: str) -> JobState:
        """Count a failed attempt and requeue the job or mark it ERROR.

        The job is requeued with ``not_before = now + backoff_sec`` while
        ``retry_count <= max_retries`` after the increment.

        Returns:
            The state the job was left in (QUEUED or ERROR)
        """
        conn = self._get_connection()
        now = _now()
        now_iso = _iso(now)

        conn.execute("BEGIN IMMEDIATE")
        try:
            conn.execute(
                """
                UPDATE jobs
                SET retry_count = retry_count + 1, last_error = ?, updated_at = ?
                WHERE job_id = ?
                """,
                (last_error, now_iso, job_id),
            )
            job = conn.execute(
                "SELECT retry_count, max_retries FROM jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
            if job is None:
                conn.rollback()
                logger.warning(f"Job {job_id} not found for fail_and_retry")
                return JobState.ERROR

            retry_count, max_retries = job["retry_count"], job["max_retries"]
            if retry_count <= max_retries:
                conn.execute(
                    """
                    UPDATE jobs
                    SET state = ?, worker_id = NULL, lease_expires_at = NULL, not_before = ?
                    WHERE job_id = ?
                    """,
                    (
                        JobState.QUEUED.value,
                        _iso(now + timedelta(seconds=backoff_sec)),
                        job_id,
                    ),
                )
                state = JobState.QUEUED
                logger.debug(
                    f"Job {job_id} retry scheduled (retry={retry_count}/{max_retries}, "
                    f"backoff={backoff_sec}s)"
                )
            else:
                conn.execute(
                    """
                    UPDATE jobs
                    SET state = ?, worker_id = NULL, lease_expires_at = NULL
                    WHERE job_id = ?
                    """,
                    (JobState.ERROR.value, job_id),
                )
                state = JobState.ERROR
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        return state

    def get(self, job_id: str) -> Optional[dict[str, Any]]:
        row = (
            self._get_connection()
            .execute(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = ?", (job_id,))
            .fetchone()
        )
        return dict(row) if row else None

    def find(
        self, *, state: Optional[str] = None, kind: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """List jobs filtered by state and/or kind, oldest first."""
        clauses, params = [], []
        if state is not None:
            clauses.append("state = ?")
            params.append(state)
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = (
            self._get_connection()
            .execute(f"SELECT {_JOB_COLUMNS} FROM jobs {where} ORDER BY created_at", params)
            .fetchall()
        )
        return [dict(row) for row in rows]

    def delete(self, job_id: str) -> bool:
        conn = self._get_connection()
        cursor = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
        conn.commit()
        return cursor.rowcount > 0

    def retry(self, job_id: str, max_rearms: Optional[int] = None) -> bool:
        """Re-arm one ERROR job with a fresh retry budget.

        Every re-arm bumps ``rearm_count``; with ``max_rearms`` set, a job
        already re-armed that often stays in ERROR and False is returned.
        """
        conn = self._get_connection()
        now_iso = _iso(_now())
        cursor = conn.execute(
            """
            UPDATE jobs
            SET state = ?, retry_count = 0, rearm_count = rearm_count + 1,
                not_before = ?, updated_at = ?
            WHERE job_id = ? AND state = ? AND (? IS NULL OR rearm_count < ?)
            """,
            (
                JobState.QUEUED.value,
                now_iso,
                now_iso,
                job_id,
                JobState.ERROR.value,
                max_rearms,
                max_rearms,
            ),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info(f"Job {job_id} re-armed")
        return cursor.rowcount > 0

    def retry_failed(self) -> int:
        """Re-arm every ERROR job; returns how many were re-armed."""
        conn = self._get_connection()
        now_iso = _iso(_now())
        cursor = conn.execute(
            """
            UPDATE jobs
            SET state = ?, retry_count = 0, not_before = ?, updated_at = ?
            WHERE state = ?
            """,
            (JobState.QUEUED.value, now_iso, now_iso, JobState.ERROR.value),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info(f"Re-armed {cursor.rowcount} failed jobs")
        return cursor.rowcount

    def ready_count(self, now: Optional[datetime] = None) -> int:
        """Jobs that are leasable now or currently leased."""
        now_iso = _iso(now or _now())
        row = (
            self._get_connection()
            .execute(
                """
                SELECT COUNT(*) FROM jobs
                WHERE (state = ? AND not_before <= ?) OR state = ?
                """,
                (JobState.QUEUED.value, now_iso, JobState.IN_PROGRESS.value),
            )
            .fetchone()
        )
        return int(row[0])

    def stats(self) -> dict[str, int]:
        """Counts per state plus total."""
        counts = (
            self._get_connection()
            .execute("SELECT state, COUNT(*) AS count FROM jobs GROUP BY state")
            .fetchall()
        )
        stats_dict: dict[str, int] = {state.value: 0 for state in JobState}
        stats_dict["total"] = 0
        for row in counts:
            stats_dict[row["state"]] = row["count"]
            stats_dict["total"] += row["count"]
        return stats_dict

    # ------------------------------------------------------------------
    # Recurring schedules
    # ------------------------------------------------------------------

    def upsert_recurring(
        self,
        name: str,
        kind: str,
        payload: Mapping[str, Any],
        cron: str,
        schedule_key: str,
        next_run_at: datetime,
    ) -> None:
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO recurring_jobs (name, kind, payload_json, cron, schedule_key, next_run_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
              kind = excluded.kind,
              payload_json = excluded.payload_json,
              cron = excluded.cron,
              schedule_key = excluded.schedule_key,
              next_run_at = excluded.next_run_at
            """,
            (name, kind, json.dumps(dict(payload), sort_keys=True), cron, schedule_key, _iso(next_run_at)),
        )
        conn.commit()

    def find_recurring(self, name: str) -> Optional[dict[str, Any]]:
        row = (
            self._get_connection()
            .execute("SELECT * FROM recurring_jobs WHERE name = ?", (name,))
            .fetchone()
        )
        return dict(row) if row else None

    def list_recurring(self) -> list[dict[str, Any]]:
        rows = self._get_connection().execute("SELECT * FROM recurring_jobs ORDER BY name").fetchall()
        return [dict(row) for row in rows]

    def delete_recurring(self, name: str) -> bool:
        conn = self._get_connection()
        cursor = conn.execute("DELETE FROM recurring_jobs WHERE name = ?", (name,))
        conn.commit()
        return cursor.rowcount > 0

    def due_recurring(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        rows = (
            self._get_connection()
            .execute(
                "SELECT * FROM recurring_jobs WHERE next_run_at <= ? ORDER BY next_run_at",
                (_iso(now or _now()),),
            )
            .fetchall()
        )
        return [dict(row) for row in rows]

    def advance_recurring(self, name: str, next_run_at: datetime) -> None:
        conn = self._get_connection()
        conn.execute(
            "UPDATE recurring_jobs SET next_run_at = ? WHERE name = ?",
            (_iso(next_run_at), name),
        )
        conn.commit()
