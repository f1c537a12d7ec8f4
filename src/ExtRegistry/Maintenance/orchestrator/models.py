# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.orchestrator.models",
#   "purpose": "Job state enums, execution context and result types",
#   "sections": [
#     {"id": "jobstate", "name": "JobState", "anchor": "#class-jobstate", "kind": "enum"},
#     {"id": "jobcontext", "name": "JobContext", "anchor": "#class-jobcontext", "kind": "dataclass"},
#     {"id": "jobresult", "name": "JobResult", "anchor": "#class-jobresult", "kind": "dataclass"}
#   ]
# }
# === /NAVMAP ===

"""Job state models and coordination types.

**State Machine (Jobs):**

    QUEUED (not_before <= now)
      ↓ (lease) → set worker_id, lease_expires_at
      ↓
    IN_PROGRESS
      ↓ (ack / fail_and_retry)
      ├→ DONE
      ├→ QUEUED (retry_count + 1, not_before = now + backoff)
      └→ ERROR (terminal error, or retry_count > max_retries)

If lease_expires_at < now while IN_PROGRESS → can re-lease (crash recovery).
An ERROR job can be re-armed to QUEUED by an operator or by the re-sweep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.kinds import JobKind


class JobState(str, Enum):
    """Job lifecycle states.

    - QUEUED: Waiting for its ``not_before`` time, then ready to run
    - IN_PROGRESS: Leased by a worker
    - DONE: Handler succeeded
    - ERROR: Failed permanently
    """

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class JobContext:
    """Everything a handler receives for one execution.

    Attributes:
        job_id: Deterministic (or random) job id
        kind: Job kind the handler was selected by
        payload: Decoded JSON payload
        retry_count: Failed attempts before this one
    """

    job_id: str
    kind: JobKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    retry_count: int = 0

    def require(self, name: str) -> Any:
        """Return a payload field or raise ``DataIntegrityError`` naming the job."""
        try:
            return self.payload[name]
        except KeyError:
            raise DataIntegrityError(
                f"Job {self.job_id} ({self.kind.value}) has no '{name}' field"
            ) from None


@dataclass(frozen=True)
class JobResult:
    """Result of one job execution.

    Attributes:
        job_id: Job id in the jobs table
        kind: Job kind value
        state: State the job was left in
        attempts: Attempts made so far, including this one
        last_error: Last error message (truncated, if any)
    """

    job_id: str
    kind: str
    state: JobState
    attempts: int
    last_error: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.state in (JobState.DONE, JobState.ERROR)

    def is_success(self) -> bool:
        return self.state == JobState.DONE
