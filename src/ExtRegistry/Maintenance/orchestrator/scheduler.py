# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.orchestrator.scheduler",
#   "purpose": "Orchestrator dispatcher with worker pool, heartbeat, recurring trigger and drain mode",
#   "sections": [
#     {"id": "orchestrator", "name": "Orchestrator", "anchor": "#class-orchestrator", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Orchestrator dispatcher and worker pool management.

This module provides the Orchestrator class that:
- Manages a bounded pool of worker threads
- Leases ready jobs into an in-memory hand-off queue
- Extends leases of running jobs (heartbeat)
- Fires due recurring schedules
- Drains the queue synchronously for one-off runs and tests

**Architecture:**

    Orchestrator (main)
      ├─ Dispatcher Loop: Leases jobs to worker queue
      ├─ Heartbeat Loop: Extends leases for active workers
      ├─ Trigger Loop: Enqueues due recurring jobs
      └─ Worker Threads: Process jobs from queue

**Usage:**

    orch = Orchestrator(config.orchestrator, queue, registry, scheduler)
    orch.start()
    ...
    orch.stop()

    # or, in a one-off process
    orch.run_until_idle(timeout=600)
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from queue import Empty, Full, Queue
from typing import TYPE_CHECKING, Any, Callable, Optional

from ExtRegistry.Maintenance.config import OrchestratorConfig
from ExtRegistry.Maintenance.orchestrator.limits import KeyedLimiter
from ExtRegistry.Maintenance.orchestrator.models import JobContext
from ExtRegistry.Maintenance.orchestrator.workers import Worker

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.handlers import HandlerRegistry
    from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler
    from ExtRegistry.Maintenance.orchestrator.queue import WorkQueue

__all__ = ["Orchestrator"]

logger = logging.getLogger(__name__)


class Orchestrator:
    """Worker pool orchestrator with dispatcher, heartbeat and recurring trigger.

    Attributes:
        config: Orchestrator settings (workers, leases, retry backoff)
        queue: WorkQueue for job management
        registry: Handler registry the workers dispatch to
        scheduler: JobScheduler used to fire recurring schedules
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        queue: "WorkQueue",
        registry: "HandlerRegistry",
        scheduler: "JobScheduler",
        on_success: Optional[Callable[[JobContext], None]] = None,
    ) -> None:
        self.config = config
        self.queue = queue
        self.registry = registry
        self.scheduler = scheduler
        self.on_success = on_success
        self.worker_id = f"orch-{uuid.uuid4()}"

        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._jobs_queue: Queue[dict[str, Any]] = Queue(maxsize=config.max_workers * 2)
        self._limiter = KeyedLimiter(
            default_limit=config.max_workers,
            per_key=config.max_per_kind,
        )

        logger.info(f"Orchestrator initialized: {self.worker_id}")

    def _new_worker(self, suffix: str) -> Worker:
        return Worker(
            worker_id=f"{self.worker_id}-{suffix}",
            queue=self.queue,
            registry=self.registry,
            limiter=self._limiter,
            retry_backoff=self.config.retry_backoff_seconds,
            jitter=self.config.jitter_seconds,
            on_success=self.on_success,
        )

    def start(self) -> None:
        """Start dispatcher, heartbeat, trigger and worker threads."""
        logger.info(f"Starting orchestrator with {self.config.max_workers} workers")
        self._stop.clear()

        for i in range(self.config.max_workers):
            worker = self._new_worker(f"worker-{i}")
            self._spawn(self._worker_loop, f"worker-{i}", worker)

        self._spawn(self._dispatcher_loop, "dispatcher")
        self._spawn(self._heartbeat_loop, "heartbeat")
        self._spawn(self._trigger_loop, "trigger")

        logger.info(f"Orchestrator started: {len(self._threads)} threads")

    def _spawn(self, target: Callable[..., None], name: str, *args: Any) -> None:
        t = threading.Thread(target=target, args=args, daemon=True, name=name)
        t.start()
        self._threads.append(t)

    def stop(self) -> None:
        """Signal stop and wait for threads."""
        logger.info(f"Orchestrator stopping: {self.worker_id}")
        self._stop.set()
        for t in self._threads:
            t.join(timeout=5)
        self._threads.clear()
        logger.info("Orchestrator stopped")

    def run_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Process jobs in the calling thread until nothing is ready.

        Due recurring schedules are fired on every round. Jobs whose
        ``not_before`` lies in the future (delayed starts, retry backoff) do
        not count as ready.

        Args:
            timeout: Give up after this many seconds (None = no limit)

        Returns:
            True if the queue went idle, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        worker = self._new_worker("drain")
        processed = 0
        while deadline is None or time.monotonic() < deadline:
            self.scheduler.fire_due_recurring()
            jobs = self.queue.lease(
                worker.worker_id, limit=1, lease_ttl_sec=self.config.lease_ttl_seconds
            )
            if not jobs:
                if self.queue.ready_count() == 0:
                    logger.info(f"Queue idle after {processed} jobs")
                    return True
                time.sleep(min(self.config.poll_interval_seconds, 0.1))
                continue
            for job in jobs:
                worker.run_one(job)
                processed += 1
        logger.warning(f"run_until_idle timed out after {processed} jobs")
        return False

    def _dispatcher_loop(self) -> None:
        """Lease jobs and feed the worker hand-off queue."""
        logger.debug("Dispatcher loop started")
        while not self._stop.is_set():
            try:
                free_slots = self._jobs_queue.maxsize - self._jobs_queue.qsize()
                jobs = []
                if free_slots > 0:
                    jobs = self.queue.lease(
                        self.worker_id,
                        limit=free_slots,
                        lease_ttl_sec=self.config.lease_ttl_seconds,
                    )
                    for job in jobs:
                        self._jobs_queue.put(job, timeout=self.config.lease_ttl_seconds)
                    if jobs:
                        logger.debug(f"Leased {len(jobs)} jobs")
                if not jobs:
                    self._stop.wait(self.config.poll_interval_seconds)
            except Full:
                logger.warning("Worker hand-off queue stayed full; lease will expire and be retried")
            except Exception as e:
                logger.error(f"Dispatcher error: {e}", exc_info=True)
                self._stop.wait(1.0)
        logger.debug("Dispatcher loop stopped")

    def _heartbeat_loop(self) -> None:
        """Extend leases of jobs held by this orchestrator."""
        logger.debug("Heartbeat loop started")
        while not self._stop.wait(self.config.heartbeat_seconds):
            try:
                self.queue.heartbeat(self.worker_id, self.config.lease_ttl_seconds)
            except Exception as e:
                logger.error(f"Heartbeat error: {e}", exc_info=True)
        logger.debug("Heartbeat loop stopped")

    def _trigger_loop(self) -> None:
        """Fire due recurring schedules."""
        logger.debug("Trigger loop started")
        while not self._stop.is_set():
            try:
                self.scheduler.fire_due_recurring()
            except Exception as e:
                logger.error(f"Recurring trigger error: {e}", exc_info=True)
            self._stop.wait(self.config.poll_interval_seconds)
        logger.debug("Trigger loop stopped")

    def _worker_loop(self, worker: Worker) -> None:
        """Worker thread execution loop."""
        logger.debug(f"Worker loop started: {worker.worker_id}")
        while not self._stop.is_set():
            try:
                job = self._jobs_queue.get(timeout=1.0)
            except Empty:
                continue
            try:
                worker.run_one(job)
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
        self.queue.close_connection()
        logger.debug(f"Worker loop stopped: {worker.worker_id}")
