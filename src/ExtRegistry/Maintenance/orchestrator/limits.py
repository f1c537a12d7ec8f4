# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.orchestrator.limits",
#   "purpose": "Thread-safe keyed concurrency limiter for per-kind fairness",
#   "sections": [
#     {"id": "keyedlimiter", "name": "KeyedLimiter", "anchor": "class-keyedlimiter", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Keyed concurrency limiter for the maintenance worker pool.

One semaphore per job kind keeps a burst of one kind (for example the
signature jobs enqueued by a key renewal) from occupying every worker:

    limiter = KeyedLimiter(default_limit=4, per_key={"generate_signature": 2})

    limiter.acquire("generate_signature")
    try:
        ...
    finally:
        limiter.release("generate_signature")

The key set is the closed set of job kinds, so entries are never evicted.
"""

from __future__ import annotations

import logging
import threading

__all__ = ["KeyedLimiter"]

logger = logging.getLogger(__name__)


class KeyedLimiter:
    """Thread-safe keyed semaphore.

    Example:
        >>> limiter = KeyedLimiter(default_limit=2, per_key={"key_pair": 1})
        >>> limiter.try_acquire("key_pair")
        True
        >>> limiter.try_acquire("key_pair", timeout=0)
        False
        >>> limiter.release("key_pair")
    """

    def __init__(self, default_limit: int, per_key: dict[str, int] | None = None) -> None:
        """Initialize keyed limiter.

        Args:
            default_limit: Default concurrency limit for keys without an override
            per_key: Optional per-key overrides
        """
        self.default_limit = max(1, default_limit)
        self.per_key = dict(per_key or {})
        self._semaphores: dict[str, threading.Semaphore] = {}
        self._mutex = threading.Lock()

        logger.debug(f"KeyedLimiter initialized: default_limit={default_limit}, per_key={per_key}")

    def _get_semaphore(self, key: str, *, create: bool = True) -> threading.Semaphore | None:
        with self._mutex:
            sem = self._semaphores.get(key)
            if sem is None and create:
                sem = threading.Semaphore(self.get_limit(key))
                self._semaphores[key] = sem
            return sem

    def acquire(self, key: str) -> None:
        """Acquire a slot for key, blocking while the key is at its limit."""
        sem = self._get_semaphore(key)
        sem.acquire()

    def try_acquire(self, key: str, timeout: float | None = None) -> bool:
        """Try to acquire a slot; ``timeout=0`` makes it non-blocking."""
        sem = self._get_semaphore(key)
        if timeout == 0:
            return sem.acquire(blocking=False)
        return sem.acquire(timeout=timeout)

    def release(self, key: str) -> None:
        """Release a slot for key.

        Raises:
            KeyError: If nothing was ever acquired for key
        """
        sem = self._get_semaphore(key, create=False)
        if sem is None:
            logger.error("Attempted to release unknown limiter key '%s'", key)
            raise KeyError(f"No semaphore tracked for key={key!r}")
        sem.release()

    def get_limit(self, key: str) -> int:
        return self.per_key.get(key, self.default_limit)
