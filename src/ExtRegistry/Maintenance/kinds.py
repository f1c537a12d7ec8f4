"""Closed set of job kinds understood by the maintenance runner.

Every job persisted in the work queue carries one :class:`JobKind` value in its
``kind`` column. The worker maps that value through the static table in
:mod:`ExtRegistry.Maintenance.handlers` to exactly one handler, so a payload can
never name arbitrary code.

Migration kinds additionally own a stable job name (used to build the
deterministic ``"<JobName>::itemId=<id>"`` key) and the entity type their
migration items point at.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

__all__ = [
    "JobKind",
    "EntityType",
    "MIGRATION_JOB_NAMES",
    "MIGRATION_ENTITY_TYPES",
    "MIGRATION_ORDER",
    "is_migration_kind",
]


class JobKind(str, Enum):
    """Job kinds dispatched by the worker pool."""

    RUN_MIGRATIONS = "run_migrations"
    MIGRATION_SWEEP = "migration_sweep"
    EXTRACT_RESOURCES = "extract_resources"
    SET_PRE_RELEASE = "set_pre_release"
    RENAME_DOWNLOADS = "rename_downloads"
    EXTRACT_VSIX_MANIFEST = "extract_vsix_manifest"
    GENERATE_SHA256_CHECKSUM = "generate_sha256_checksum"
    CHECK_POTENTIALLY_MALICIOUS = "check_potentially_malicious"
    GENERATE_SIGNATURE = "generate_signature"
    REMOVE_FILE = "remove_file"
    KEY_PAIR = "key_pair"
    PUBLIC_ID_UPDATE = "public_id_update"
    PUBLIC_ID_DAILY_UPDATE = "public_id_daily_update"
    ADMIN_STATISTICS = "admin_statistics"

    @classmethod
    def parse(cls, value: str) -> "JobKind":
        """Return the kind for ``value`` or raise ``ValueError``."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown job kind: {value!r}") from None


class EntityType(str, Enum):
    """Catalog entity a migration item refers to."""

    EXTENSION = "extension"
    EXTENSION_VERSION = "extension_version"
    FILE_RESOURCE = "file_resource"


MIGRATION_JOB_NAMES: Dict[JobKind, str] = {
    JobKind.SET_PRE_RELEASE: "SetPreReleaseMigration",
    JobKind.RENAME_DOWNLOADS: "RenameDownloadsMigration",
    JobKind.EXTRACT_VSIX_MANIFEST: "ExtractVsixManifestMigration",
    JobKind.GENERATE_SHA256_CHECKSUM: "GenerateSha256ChecksumMigration",
    JobKind.CHECK_POTENTIALLY_MALICIOUS: "CheckPotentiallyMaliciousExtensionVersions",
    JobKind.EXTRACT_RESOURCES: "ExtractResourcesMigration",
}

MIGRATION_ENTITY_TYPES: Dict[JobKind, EntityType] = {
    JobKind.SET_PRE_RELEASE: EntityType.EXTENSION,
    JobKind.RENAME_DOWNLOADS: EntityType.FILE_RESOURCE,
    JobKind.EXTRACT_VSIX_MANIFEST: EntityType.EXTENSION_VERSION,
    JobKind.GENERATE_SHA256_CHECKSUM: EntityType.FILE_RESOURCE,
    JobKind.CHECK_POTENTIALLY_MALICIOUS: EntityType.EXTENSION_VERSION,
    JobKind.EXTRACT_RESOURCES: EntityType.EXTENSION_VERSION,
}

# Sweep order used by the bootstrap runner. The signature key-pair job is
# inserted by the runner between checksums and the malicious check.
MIGRATION_ORDER: Tuple[JobKind, ...] = (
    JobKind.SET_PRE_RELEASE,
    JobKind.RENAME_DOWNLOADS,
    JobKind.EXTRACT_VSIX_MANIFEST,
    JobKind.GENERATE_SHA256_CHECKSUM,
    JobKind.CHECK_POTENTIALLY_MALICIOUS,
    JobKind.EXTRACT_RESOURCES,
)


def is_migration_kind(kind: JobKind) -> bool:
    """Return True when ``kind`` is driven by migration items."""
    return kind in MIGRATION_JOB_NAMES
