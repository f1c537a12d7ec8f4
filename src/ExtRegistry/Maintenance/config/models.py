"""
Pydantic v2 Configuration Models for the maintenance subsystem

Provides strict, typed configuration for:
- Bootstrap sweeps (startup delay, page size, re-sweep schedule)
- Orchestrator worker pool and retry bounds
- Signing key-pair lifecycle mode
- Upstream identity reconciliation
- Statistics aggregation
- Catalog, queue and artifact storage locations
- Logging

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

from typing import ClassVar, Dict, List, Literal, Optional

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator

KEYPAIR_MODE_CREATE = "create"
KEYPAIR_MODE_RENEW = "renew"
KEYPAIR_MODE_DELETE = "delete"
KEYPAIR_MODES = (KEYPAIR_MODE_CREATE, KEYPAIR_MODE_RENEW, KEYPAIR_MODE_DELETE)

STORAGE_DATABASE = "database"
STORAGE_LOCAL = "local"
STORAGE_REMOTE = "remote"


def _validate_cron(value: str) -> str:
    if not croniter.is_valid(value):
        raise ValueError(f"Invalid cron expression: {value!r}")
    return value


class MigrationsConfig(BaseModel):
    """Bootstrap sweep configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    delay_seconds: int = Field(default=0, ge=0, description="Delay before the startup sweep job")
    page_size: int = Field(default=25_000, gt=0, description="Migration items per sweep page")
    sweep_cron: str = Field(
        default="0 4 * * *", description="Cron schedule of the recurring re-sweep (UTC)"
    )
    max_rearms: int = Field(
        default=3, ge=0, description="Sweep re-arms of a failed migration job before giving up"
    )

    @field_validator("sweep_cron")
    @classmethod
    def validate_sweep_cron(cls, v: str) -> str:
        return _validate_cron(v)


class OrchestratorConfig(BaseModel):
    """Worker pool, leasing and retry configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_workers: int = Field(default=4, gt=0, description="Worker threads")
    max_per_kind: Dict[str, int] = Field(
        default_factory=dict, description="Per job-kind concurrency overrides"
    )
    lease_ttl_seconds: int = Field(default=600, gt=0, description="Job lease duration")
    heartbeat_seconds: int = Field(default=30, gt=0, description="Lease heartbeat interval")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    retry_backoff_seconds: int = Field(default=30, ge=0, description="Base retry delay")
    jitter_seconds: int = Field(default=10, ge=0, description="Random retry jitter")
    poll_interval_seconds: float = Field(default=1.0, gt=0, description="Dispatcher idle sleep")
    io_attempts: int = Field(default=3, ge=1, description="Attempts per single I/O call")

    @field_validator("max_per_kind")
    @classmethod
    def validate_per_kind(cls, v: Dict[str, int]) -> Dict[str, int]:
        for kind, limit in v.items():
            if limit <= 0:
                raise ValueError(f"max_per_kind[{kind}] must be > 0")
        return v


class IntegrityConfig(BaseModel):
    """Signing key-pair lifecycle configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    key_pair_mode: str = Field(
        default="", description="Key-pair action run at startup: create, renew, delete or empty"
    )

    @field_validator("key_pair_mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v and v not in KEYPAIR_MODES:
            raise ValueError(
                f"Unsupported value '{v}' for 'integrity.key_pair_mode'. "
                f"Supported values are: {','.join(KEYPAIR_MODES)}"
            )
        return v

    @property
    def enabled(self) -> bool:
        return self.key_pair_mode in (KEYPAIR_MODE_CREATE, KEYPAIR_MODE_RENEW)


class IdentityConfig(BaseModel):
    """Upstream public-id reconciliation configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    upstream_gallery_url: Optional[str] = Field(
        default=None, description="Upstream gallery API base URL"
    )
    daily_hour_utc: int = Field(default=3, ge=0, le=23, description="Hour of the daily update")
    update_on_start: bool = Field(default=False, description="Run a full update at startup")
    builtin_namespaces: List[str] = Field(
        default_factory=lambda: ["vscode"], description="Namespaces never reconciled"
    )
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")


class StatisticsConfig(BaseModel):
    """Daily statistics aggregation."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Schedule the daily statistics job")
    daily_hour_utc: int = Field(default=1, ge=0, le=23, description="Hour of the daily run")


class StorageConfig(BaseModel):
    """Catalog, queue and artifact storage locations."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    catalog_path: str = Field(default="state/catalog.sqlite", description="Catalog database")
    queue_path: str = Field(default="state/jobs.sqlite", description="Work queue database")
    wal_mode: bool = Field(default=True, description="Enable WAL mode for SQLite")
    local_root: str = Field(default="state/artifacts", description="Local artifact directory")
    remote_base_url: Optional[str] = Field(
        default=None, description="Base URL of the remote artifact store"
    )
    default_storage_type: Literal["database", "local", "remote"] = Field(
        default=STORAGE_LOCAL, description="Backend for newly created artifacts"
    )
    max_entry_bytes: int = Field(
        default=32 * 1024 * 1024, gt=0, description="Hard cap per extracted archive entry"
    )


class LoggingConfig(BaseModel):
    """Structured logging configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    level: str = Field(default="INFO", description="Root level for maintenance loggers")
    log_dir: Optional[str] = Field(default=None, description="Directory for JSONL log files")
    max_log_size_mb: float = Field(default=10.0, gt=0, description="Rotate after this size")
    retention_days: int = Field(default=14, gt=0, description="Compress/delete after N days")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return upper


class MaintenanceConfig(BaseModel):
    """
    Single source of truth for maintenance configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    registry_version: str = Field(default="", description="Deployed registry version tag")
    mirror_enabled: bool = Field(default=False, description="Deployment mirrors an upstream")
    migrations: MigrationsConfig = Field(default_factory=MigrationsConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    integrity: IntegrityConfig = Field(default_factory=IntegrityConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        import hashlib
        import json

        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
