"""Per-call retry policies for artifact store and upstream I/O using Tenacity.

Job-level retries (requeue with backoff, bounded by ``max_retries``) are the
outer loop. This module is the inner loop: a short, bounded retry around a
single blocking I/O call so that a one-off connection reset does not cost a
whole job attempt.

Operation-aware decisions:

- FETCH / UPLOAD / DELETE (artifact store): retry connection errors, timeouts,
  5xx and 429. A missing blob (404, ``FileNotFoundError``) is never retried.
- UPSTREAM (gallery lookups): same as above; 404 means "not mirrored upstream"
  and is handled by the caller.

Usage:
    from ExtRegistry.Maintenance.errors.tenacity_policies import (
        IOOperation,
        create_io_retry_policy,
    )

    policy = create_io_retry_policy(IOOperation.FETCH, max_attempts=3)
    for attempt in policy:
        with attempt:
            data = backend.fetch(key)
"""

from __future__ import annotations

import logging
from enum import Enum, auto

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class IOOperation(Enum):
    """I/O operation type for contextual retry decisions."""

    FETCH = auto()
    UPLOAD = auto()
    DELETE = auto()
    UPSTREAM = auto()


def is_transient_io_error(exc: BaseException) -> bool:
    """Return True for errors worth retrying within a single call."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, (FileNotFoundError, IsADirectoryError, PermissionError)):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return isinstance(exc, OSError)


def _should_retry(operation: IOOperation):
    def _predicate(exc: BaseException) -> bool:
        retry = is_transient_io_error(exc)
        if retry:
            logger.debug(f"Transient error on {operation.name}: retrying ({type(exc).__name__})")
        return retry

    return _predicate


def create_io_retry_policy(
    operation: IOOperation = IOOperation.FETCH,
    max_attempts: int = 3,
    max_delay_seconds: float = 30.0,
    initial_wait_seconds: float = 0.5,
) -> Retrying:
    """Create a bounded Tenacity policy for one blocking I/O call.

    Args:
        operation: Kind of I/O being retried (used for logging only)
        max_attempts: Maximum attempts for the call
        max_delay_seconds: Deadline across all attempts
        initial_wait_seconds: First backoff step; doubles per attempt with jitter

    Returns:
        Configured ``Retrying`` object that re-raises the last error
    """
    return Retrying(
        stop=stop_after_attempt(max_attempts) | stop_after_delay(max_delay_seconds),
        wait=wait_exponential_jitter(
            multiplier=initial_wait_seconds, max=max_delay_seconds, jitter=initial_wait_seconds
        ),
        retry=retry_if_exception(_should_retry(operation)),
        before_sleep=before_sleep_log(logger, logging.WARNING, exc_info=False),
        reraise=True,
    )


__all__ = [
    "IOOperation",
    "create_io_retry_policy",
    "is_transient_io_error",
]
