# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.orchestrator.workers",
#   "purpose": "Job execution wrapper with per-kind concurrency control and failure classification",
#   "sections": [
#     {"id": "worker", "name": "Worker", "anchor": "#class-worker", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Job execution wrapper for the maintenance worker pool.

The Worker:
- decodes the leased job into a :class:`JobContext` (closed ``JobKind`` only)
- acquires the per-kind concurrency slot
- runs the registered handler
- acks DONE, requeues with backoff, or marks ERROR by error class
- records completion of migration items so re-sweeps skip finished work

**Usage:**

    worker = Worker(
        worker_id="worker-1",
        queue=work_queue,
        registry=handler_registry,
        limiter=KeyedLimiter(default_limit=4),
        retry_backoff=30,
        jitter=10,
        on_success=sweeper.mark_completed,
    )
    result = worker.run_one(job)
"""

from __future__ import annotations

import json
import logging
import random
import threading
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from ExtRegistry.Maintenance.errors import (
    UnknownJobKindError,
    is_retryable,
    log_job_failure,
)
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.orchestrator.models import JobContext, JobResult, JobState

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.handlers import HandlerRegistry
    from ExtRegistry.Maintenance.orchestrator.limits import KeyedLimiter
    from ExtRegistry.Maintenance.orchestrator.queue import WorkQueue

__all__ = ["Worker"]

logger = logging.getLogger(__name__)

_MAX_ERROR_LEN = 500


class Worker:
    """Runs leased jobs through the handler registry.

    Attributes:
        worker_id: Identifier used for logging
        retry_backoff: Base seconds to delay before a retry
        jitter: Random jitter (0 to this value) added to the backoff
    """

    def __init__(
        self,
        worker_id: str,
        queue: "WorkQueue",
        registry: "HandlerRegistry",
        limiter: "KeyedLimiter",
        retry_backoff: int = 30,
        jitter: int = 10,
        on_success: Optional[Callable[[JobContext], None]] = None,
    ) -> None:
        self.worker_id = worker_id
        self.queue = queue
        self.registry = registry
        self.limiter = limiter
        self.retry_backoff = retry_backoff
        self.jitter = jitter
        self.on_success = on_success

        self._stop = threading.Event()
        self._running_jobs: set[str] = set()
        self._lock = threading.Lock()

        logger.debug(f"Worker initialized: {worker_id}")

    def stop(self) -> None:
        """Signal worker to stop processing new jobs."""
        self._stop.set()
        logger.info(f"Worker {self.worker_id} stopping...")

    def run_one(self, job: Mapping[str, Any]) -> Optional[JobResult]:
        """Execute a single leased job.

        Handler errors never escape: every outcome is written back to the
        queue and returned.

        Args:
            job: Leased job dict (``job_id``, ``kind``, ``payload_json``, ...)

        Returns:
            The result, or None if the worker is stopping
        """
        job_id = job["job_id"]
        with self._lock:
            if self._stop.is_set():
                logger.debug(f"Worker {self.worker_id} is stopping, skipping job {job_id}")
                return None
            self._running_jobs.add(job_id)

        try:
            try:
                ctx = self._decode(job)
            except UnknownJobKindError as exc:
                return self._fail_permanently(job, exc)

            self.limiter.acquire(ctx.kind.value)
            try:
                logger.debug(f"Worker {self.worker_id} processing job {job_id} ({ctx.kind.value})")
                self.registry.execute(ctx)
                if self.on_success is not None:
                    self.on_success(ctx)
            except Exception as exc:
                if not is_retryable(exc):
                    return self._fail_permanently(job, exc)
                return self._retry(job, exc)
            finally:
                self.limiter.release(ctx.kind.value)

            self.queue.ack(job_id, "done")
            logger.debug(f"Job {job_id} completed ({ctx.kind.value})")
            return JobResult(
                job_id=job_id,
                kind=ctx.kind.value,
                state=JobState.DONE,
                attempts=ctx.retry_count + 1,
            )
        finally:
            with self._lock:
                self._running_jobs.discard(job_id)

    def _decode(self, job: Mapping[str, Any]) -> JobContext:
        try:
            kind = JobKind.parse(job["kind"])
        except ValueError as exc:
            raise UnknownJobKindError(str(exc)) from exc
        try:
            payload = json.loads(job.get("payload_json") or "{}")
        except json.JSONDecodeError as exc:
            raise UnknownJobKindError(f"Undecodable payload for {kind.value}: {exc}") from exc
        return JobContext(
            job_id=job["job_id"],
            kind=kind,
            payload=payload,
            retry_count=int(job.get("retry_count") or 0),
        )

    def _compute_backoff(self) -> int:
        return self.retry_backoff + random.randint(0, self.jitter)

    def _retry(self, job: Mapping[str, Any], exc: Exception) -> JobResult:
        message = f"{type(exc).__name__}: {exc}"[:_MAX_ERROR_LEN]
        state = self.queue.fail_and_retry(
            job["job_id"], backoff_sec=self._compute_backoff(), last_error=message
        )
        attempts = int(job.get("retry_count") or 0) + 1
        if state == JobState.ERROR:
            log_job_failure(logger, job, exc, attempts=attempts)
        else:
            logger.warning(f"Job {job['job_id']} ({job['kind']}) failed, will retry: {message}")
        return JobResult(
            job_id=job["job_id"],
            kind=job["kind"],
            state=state,
            attempts=attempts,
            last_error=message,
        )

    def _fail_permanently(self, job: Mapping[str, Any], exc: Exception) -> JobResult:
        message = f"{type(exc).__name__}: {exc}"[:_MAX_ERROR_LEN]
        self.queue.ack(job["job_id"], "error", last_error=message)
        attempts = int(job.get("retry_count") or 0) + 1
        log_job_failure(logger, job, exc, attempts=attempts)
        return JobResult(
            job_id=job["job_id"],
            kind=job["kind"],
            state=JobState.ERROR,
            attempts=attempts,
            last_error=message,
        )
