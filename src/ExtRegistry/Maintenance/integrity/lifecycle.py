# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.integrity.lifecycle",
#   "purpose": "Signing key rotation and cascading re-signature scheduling",
#   "sections": [
#     {"id": "keylifecycleservice", "name": "KeyLifecycleService", "anchor": "class-keylifecycleservice", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Signing key lifecycle.

States::

    NoActiveKey -> ActiveKey(k1) -> ActiveKey(k2, k1 retired) -> ... -> Purged

Rotations are serialized twice: a process lock keeps two admin triggers in the
same process apart, and the deactivate/insert pair runs in one catalog
transaction so the partial unique index on ``active`` never sees two active
keys. Retired keys stay in the catalog so their public keys remain
resolvable for old signatures.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from ExtRegistry.Maintenance.catalog.models import DOWNLOAD_SIG, SignatureKeyPair
from ExtRegistry.Maintenance.config import (
    KEYPAIR_MODE_CREATE,
    KEYPAIR_MODE_DELETE,
    KEYPAIR_MODE_RENEW,
    KEYPAIR_MODES,
)
from ExtRegistry.Maintenance.idempotency import signature_job_key
from ExtRegistry.Maintenance.integrity.keys import generate_key_pair
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.migrations.remove_file import remove_file_payload

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
    from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler

__all__ = ["KeyLifecycleService"]

logger = logging.getLogger(__name__)


class KeyLifecycleService:
    """Creates, renews and purges the signing key and schedules the resulting jobs."""

    def __init__(self, catalog: "SQLiteCatalog", scheduler: "JobScheduler") -> None:
        self.catalog = catalog
        self.scheduler = scheduler
        self._lock = threading.Lock()

    def run(self, mode: str) -> None:
        """Apply the configured key pair mode (empty string does nothing)."""
        if not mode:
            return
        if mode == KEYPAIR_MODE_CREATE:
            self.create()
        elif mode == KEYPAIR_MODE_RENEW:
            self.renew()
        elif mode == KEYPAIR_MODE_DELETE:
            self.purge()
        else:
            raise ValueError(
                f"Unsupported key pair mode {mode!r}. "
                f"Supported values are: {', '.join(KEYPAIR_MODES)}"
            )

    def create(self) -> SignatureKeyPair:
        """Ensure an active key exists and every published version is signed with it."""
        with self._lock:
            active = self.catalog.find_active_key_pair()
            if active is None:
                active = self._rotate()
                version_ids = self.catalog.find_published_version_ids()
            else:
                version_ids = self.catalog.find_version_ids_without_signature(active.id)
            self._enqueue_signatures(active, version_ids)
            return active

    def renew(self) -> SignatureKeyPair:
        """Retire the active key, activate a new one and re-sign every published version."""
        with self._lock:
            key_pair = self._rotate()
            self._enqueue_signatures(key_pair, self.catalog.find_published_version_ids())
            return key_pair

    def purge(self) -> Dict[str, int]:
        """Schedule deletion of every stored signature, then drop signatures and keys."""
        with self._lock:
            removals = 0
            for resource in self.catalog.find_files_by_type(DOWNLOAD_SIG):
                self.scheduler.enqueue(JobKind.REMOVE_FILE, remove_file_payload(resource))
                removals += 1
            counts = self.catalog.purge_signatures()
            logger.info(
                f"Purged {counts['signatures']} signatures and {counts['key_pairs']} key pairs; "
                f"{removals} file removals scheduled"
            )
            return counts

    def active_key_pair(self) -> Optional[SignatureKeyPair]:
        return self.catalog.find_active_key_pair()

    def _rotate(self) -> SignatureKeyPair:
        private_key, public_key_text = generate_key_pair()
        with self.catalog.transaction():
            retired = self.catalog.deactivate_key_pairs()
            key_pair = self.catalog.insert_key_pair(
                str(uuid.uuid4()), private_key, public_key_text, active=True
            )
        logger.info(f"Activated signature key pair {key_pair.public_id} ({retired} retired)")
        return key_pair

    def _enqueue_signatures(self, key_pair: SignatureKeyPair, version_ids: Iterable[int]) -> int:
        count = 0
        for version_id in version_ids:
            self.scheduler.enqueue(
                JobKind.GENERATE_SIGNATURE,
                {"version_id": version_id, "key_pair_id": key_pair.id},
                key=signature_job_key(version_id, key_pair.public_id),
            )
            count += 1
        logger.info(f"Scheduled {count} signature jobs for key pair {key_pair.public_id}")
        return count
