# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.idempotency",
#   "purpose": "Deterministic job identifiers derived from stable text keys.",
#   "sections": [
#     {"id": "name-uuid", "name": "name_uuid", "anchor": "function-name-uuid", "kind": "function"},
#     {"id": "migration-job-key", "name": "migration_job_key", "anchor": "function-migration-job-key", "kind": "function"},
#     {"id": "recurring-job-key", "name": "recurring_job_key", "anchor": "function-recurring-job-key", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Deterministic job identifiers.

Duplicate enqueues collapse because every job id is a name-based hash of a
stable text key. The same key computed by any process, on any restart, yields
the same id, and the queue refuses to insert an id twice.

Key composition:
  - Bootstrap:  ``"MigrationScheduler::<registryVersion>"``
  - Migration:  ``"<JobName>::itemId=<id>"``
  - Recurring:  ``"<name>::schedule=<cron>"`` (registration) and
                ``"<name>::run=<iso occurrence>"`` (each firing)
  - Signature:  ``"GenerateSignature::versionId=<id>::keyPair=<publicId>"``

The text → UUID mapping is an MD5 name-based UUID (version 3, no namespace),
so ids match those produced by ``UUID.nameUUIDFromBytes`` on the JVM side of a
mixed deployment.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime

__all__ = [
    "name_uuid",
    "job_id",
    "migration_job_key",
    "recurring_job_key",
    "recurring_run_key",
    "signature_job_key",
    "bootstrap_job_key",
    "key_pair_job_key",
]


def name_uuid(text: str) -> uuid.UUID:
    """Return the version-3 UUID for the UTF-8 bytes of ``text``."""
    digest = hashlib.md5(text.encode("utf-8")).digest()
    return uuid.UUID(bytes=digest, version=3)


def job_id(key: str) -> str:
    """Return the canonical string job id for a stable text key."""
    return str(name_uuid(key))


def bootstrap_job_key(registry_version: str) -> str:
    return f"MigrationScheduler::{registry_version}"


def migration_job_key(job_name: str, item_id: int) -> str:
    return f"{job_name}::itemId={item_id}"


def recurring_job_key(name: str, schedule: str) -> str:
    return f"{name}::schedule={schedule}"


def recurring_run_key(name: str, occurrence: datetime) -> str:
    return f"{name}::run={occurrence.isoformat()}"


def signature_job_key(version_id: int, key_pair_public_id: str) -> str:
    return f"GenerateSignature::versionId={version_id}::keyPair={key_pair_public_id}"


def key_pair_job_key(registry_version: str) -> str:
    return f"GenerateKeyPair::{registry_version}"
