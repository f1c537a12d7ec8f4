"""In-process cache of serialized catalog views.

Handlers that change the file set of a version, or the public ids of an
extension, evict the affected entries so that API views listing file URLs or
ids are rebuilt on the next request.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)

VERSION = "version"
EXTENSION = "extension"
NAMESPACE = "namespace"


class ViewCache:
    """Thread-safe map of ``(scope, entity_id) -> serialized view``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, Hashable], Any] = {}

    def get_or_build(self, scope: str, entity_id: Hashable, builder: Callable[[], Any]) -> Any:
        key = (scope, entity_id)
        with self._lock:
            if key in self._entries:
                return self._entries[key]
        value = builder()
        with self._lock:
            self._entries.setdefault(key, value)
            return self._entries[key]

    def put(self, scope: str, entity_id: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[(scope, entity_id)] = value

    def contains(self, scope: str, entity_id: Hashable) -> bool:
        with self._lock:
            return (scope, entity_id) in self._entries

    def _evict(self, scope: str, entity_id: Hashable) -> bool:
        with self._lock:
            removed = self._entries.pop((scope, entity_id), None) is not None
        if removed:
            logger.debug(f"Evicted cached {scope} view {entity_id}")
        return removed

    def evict_version(self, version_id: int) -> bool:
        return self._evict(VERSION, version_id)

    def evict_extension(self, extension_id: int) -> bool:
        return self._evict(EXTENSION, extension_id)

    def evict_namespace(self, namespace_id: int) -> bool:
        return self._evict(NAMESPACE, namespace_id)

    def evict_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
