# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance",
#   "purpose": "Package initialization for ExtRegistry.Maintenance",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Migration and integrity maintenance for the extension registry.

Startup triggers, data migrations, package signing and public-id
reconciliation all run as idempotent jobs on a durable queue shared by every
member of the fleet. :class:`MaintenanceApp` wires the whole subsystem from a
:class:`MaintenanceConfig`.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

_ATTRIBUTE_EXPORTS: dict[str, tuple[str, str]] = {
    "MaintenanceApp": (".bootstrap", "MaintenanceApp"),
    "MaintenanceConfig": (".config", "MaintenanceConfig"),
    "load_config": (".config", "load_config"),
    "JobKind": (".kinds", "JobKind"),
    "HandlerRegistry": (".handlers", "HandlerRegistry"),
    "build_registry": (".handlers", "build_registry"),
    "SQLiteCatalog": (".catalog", "SQLiteCatalog"),
    "WorkQueue": (".orchestrator", "WorkQueue"),
    "Orchestrator": (".orchestrator", "Orchestrator"),
    "setup_logging": (".logging_config", "setup_logging"),
}

__all__ = sorted(_ATTRIBUTE_EXPORTS)

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .bootstrap import MaintenanceApp
    from .catalog import SQLiteCatalog
    from .config import MaintenanceConfig, load_config
    from .handlers import HandlerRegistry, build_registry
    from .kinds import JobKind
    from .logging_config import setup_logging
    from .orchestrator import Orchestrator, WorkQueue


def __getattr__(name: str) -> Any:
    """Lazily import exports so that ``import ExtRegistry.Maintenance`` stays cheap."""

    if name in _ATTRIBUTE_EXPORTS:
        module_path, attr_name = _ATTRIBUTE_EXPORTS[name]
        value = getattr(import_module(module_path, __name__), attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Expose lazily-populated attributes in ``dir()`` results."""

    return sorted(set(globals()) | set(__all__))
