# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.errors",
#   "purpose": "Error taxonomy for maintenance jobs and operator-facing failure logging.",
#   "sections": [
#     {"id": "maintenanceerror", "name": "MaintenanceError", "anchor": "class-maintenanceerror", "kind": "class"},
#     {"id": "transientioerror", "name": "TransientIOError", "anchor": "class-transientioerror", "kind": "class"},
#     {"id": "dataintegrityerror", "name": "DataIntegrityError", "anchor": "class-dataintegrityerror", "kind": "class"},
#     {"id": "conflicterror", "name": "ConflictError", "anchor": "class-conflicterror", "kind": "class"},
#     {"id": "sizelimiterror", "name": "SizeLimitError", "anchor": "class-sizelimiterror", "kind": "class"},
#     {"id": "log-job-failure", "name": "log_job_failure", "anchor": "function-log-job-failure", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy for maintenance jobs.

Responsibilities
----------------
- ``TransientIOError``: storage or network hiccup. The worker retries the job
  up to its retry bound, then reports it as permanently failed.
- ``DataIntegrityError``: an expected artifact or row is absent. The item is
  aborted and logged; retrying cannot help.
- ``ConflictError``: duplicate enqueue. Raised only inside the queue layer and
  absorbed there; callers never see it.
- ``SizeLimitError``: an archive entry exceeds the hard extraction cap.
- ``UnknownJobKindError``: a persisted payload names a kind the registry does
  not know.

:func:`is_retryable` is the single place where the worker decides between
``fail_and_retry`` and an immediate terminal error.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ExtRegistry.Maintenance.errors.tenacity_policies import (
    IOOperation,
    create_io_retry_policy,
)

__all__ = [
    "MaintenanceError",
    "TransientIOError",
    "DataIntegrityError",
    "ConflictError",
    "SizeLimitError",
    "UnknownJobKindError",
    "is_retryable",
    "is_terminal_error_message",
    "log_job_failure",
    "IOOperation",
    "create_io_retry_policy",
]

LOGGER = logging.getLogger(__name__)


class MaintenanceError(Exception):
    """Base class for maintenance subsystem errors."""


class TransientIOError(MaintenanceError):
    """Raised when an artifact store or upstream call fails transiently."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


class DataIntegrityError(MaintenanceError):
    """Raised when an entity or artifact a handler depends on is missing."""

    def __init__(self, message: str, *, entity_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class ConflictError(MaintenanceError):
    """Raised when a job id is inserted twice."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


class SizeLimitError(MaintenanceError):
    """Raised when a package entry exceeds the extraction cap."""

    def __init__(self, message: str, *, entry: str, size: int, limit: int) -> None:
        super().__init__(message)
        self.entry = entry
        self.size = size
        self.limit = limit


class UnknownJobKindError(MaintenanceError):
    """Raised when a job payload cannot be mapped to a registered handler."""


_TERMINAL_ERRORS = (DataIntegrityError, SizeLimitError, UnknownJobKindError)


def is_retryable(exc: BaseException) -> bool:
    """Return True when the worker should requeue a job that raised ``exc``."""
    return not isinstance(exc, _TERMINAL_ERRORS)


def is_terminal_error_message(last_error: Optional[str]) -> bool:
    """Return True when a stored ``last_error`` came from a non-retryable error.

    Workers store failures as ``"<ExceptionName>: <message>"``.
    """
    if not last_error:
        return False
    name = last_error.split(":", 1)[0].strip()
    return name in {cls.__name__ for cls in _TERMINAL_ERRORS}


def log_job_failure(
    logger: logging.Logger,
    job: Mapping[str, Any],
    exc: BaseException,
    *,
    attempts: Optional[int] = None,
) -> None:
    """Emit the operator-visible record of a permanently failed job."""
    logger.error(
        "Job %s (%s) failed permanently after %s attempt(s): %s: %s",
        job.get("job_id"),
        job.get("kind"),
        attempts if attempts is not None else job.get("retry_count", 0) + 1,
        type(exc).__name__,
        exc,
        extra={
            "extra_fields": {
                "job_id": job.get("job_id"),
                "kind": job.get("kind"),
                "error_type": type(exc).__name__,
            }
        },
    )
