"""
Maintenance Configuration Package

Public API for loading and validating maintenance configuration.

Example:
    from ExtRegistry.Maintenance.config import load_config

    config = load_config(
        path="maintenance.yaml",
        cli_overrides={"orchestrator": {"max_workers": 8}},
    )
"""

from .loader import export_config_schema, load_config
from .models import (
    KEYPAIR_MODE_CREATE,
    KEYPAIR_MODE_DELETE,
    KEYPAIR_MODE_RENEW,
    KEYPAIR_MODES,
    STORAGE_DATABASE,
    STORAGE_LOCAL,
    STORAGE_REMOTE,
    IdentityConfig,
    IntegrityConfig,
    LoggingConfig,
    MaintenanceConfig,
    MigrationsConfig,
    OrchestratorConfig,
    StatisticsConfig,
    StorageConfig,
)

__all__ = [
    "load_config",
    "export_config_schema",
    "MaintenanceConfig",
    "MigrationsConfig",
    "OrchestratorConfig",
    "IntegrityConfig",
    "IdentityConfig",
    "StatisticsConfig",
    "StorageConfig",
    "LoggingConfig",
    "KEYPAIR_MODE_CREATE",
    "KEYPAIR_MODE_RENEW",
    "KEYPAIR_MODE_DELETE",
    "KEYPAIR_MODES",
    "STORAGE_DATABASE",
    "STORAGE_LOCAL",
    "STORAGE_REMOTE",
]
