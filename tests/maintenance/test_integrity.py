"""Package signing and the signing key lifecycle."""

from __future__ import annotations

import json

import pytest

from ExtRegistry.Maintenance.catalog.models import DOWNLOAD, DOWNLOAD_SIG
from ExtRegistry.Maintenance.config import (
    KEYPAIR_MODE_CREATE,
    KEYPAIR_MODE_DELETE,
    KEYPAIR_MODE_RENEW,
)
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.integrity import (
    GenerateSignatureHandler,
    IntegrityService,
    KeyLifecycleService,
    KeyPairHandler,
    generate_key_pair,
    signature_manifest,
)
from ExtRegistry.Maintenance.integrity.service import MANIFEST_ENTRY, P7S_ENTRY, SIGNATURE_ENTRY
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.migrations import RemoveFileHandler
from ExtRegistry.Maintenance.orchestrator.models import JobContext


@pytest.fixture
def lifecycle(catalog, scheduler):
    return KeyLifecycleService(catalog, scheduler)


@pytest.fixture
def signer(catalog, storage, cache):
    return GenerateSignatureHandler(catalog, storage, IntegrityService(), cache)


def _signature_jobs(queue):
    return [json.loads(job["payload_json"]) for job in queue.find(kind=JobKind.GENERATE_SIGNATURE.value)]


def _run_signature_jobs(queue, signer):
    for payload in _signature_jobs(queue):
        signer.execute(JobContext("sig", JobKind.GENERATE_SIGNATURE, payload))


class TestIntegrityService:
    def test_sign_and_verify(self, catalog, package_factory):
        private_key, public_pem = generate_key_pair()
        key_pair = catalog.insert_key_pair("kp-1", private_key, public_pem)
        package = package_factory()
        service = IntegrityService()

        sigzip = service.generate_signature("acme.widget-1.0.0.vsix", package, key_pair)

        assert service.verify(package, sigzip, public_pem) is True
        assert service.verify(package + b"tampered", sigzip, public_pem) is False
        assert service.read_entry(sigzip, P7S_ENTRY) == b""
        assert len(service.read_entry(sigzip, SIGNATURE_ENTRY)) == 64

        manifest = json.loads(service.read_entry(sigzip, MANIFEST_ENTRY))
        assert manifest["package"]["size"] == len(package)
        assert len(manifest["entries"]) == 2

    def test_verify_rejects_other_key_and_garbage(self, catalog, package_factory):
        private_key, public_pem = generate_key_pair()
        _, other_pem = generate_key_pair()
        key_pair = catalog.insert_key_pair("kp-1", private_key, public_pem)
        package = package_factory()
        service = IntegrityService()
        sigzip = service.generate_signature("a.vsix", package, key_pair)

        assert service.verify(package, sigzip, other_pem) is False
        assert service.verify(package, b"not a zip", public_pem) is False

    def test_manifest_of_non_zip_is_integrity_error(self):
        with pytest.raises(DataIntegrityError):
            signature_manifest(b"plain bytes")


class TestKeyLifecycle:
    def test_create_is_idempotent(self, lifecycle, catalog, queue, publish):
        publish(version="1.0.0")
        publish(version="1.1.0")

        first = lifecycle.create()
        second = lifecycle.create()

        assert first.id == second.id
        assert len(catalog.list_key_pairs()) == 1
        assert len(_signature_jobs(queue)) == 2

    def test_create_signs_only_unsigned_versions(self, lifecycle, signer, catalog, queue, publish):
        publish(version="1.0.0")
        lifecycle.create()
        _run_signature_jobs(queue, signer)
        late = publish(version="2.0.0")

        lifecycle.create()

        assert [p["version_id"] for p in _signature_jobs(queue)][-1] == late.id
        assert len(_signature_jobs(queue)) == 2

    def test_renew_leaves_one_active_key(self, lifecycle, catalog, queue, publish):
        publish()
        old = lifecycle.create()

        new = lifecycle.renew()
        lifecycle.renew()

        key_pairs = catalog.list_key_pairs()
        assert len(key_pairs) == 3
        assert sum(1 for k in key_pairs if k.active) == 1
        assert catalog.find_active_key_pair().id not in (old.id, new.id)
        # Retired keys stay resolvable for old signatures
        assert catalog.find_key_pair(old.public_id).public_key_text == old.public_key_text
        assert len(_signature_jobs(queue)) == 3

    def test_purge_schedules_blob_removal(
        self, lifecycle, signer, catalog, storage, queue, publish, memory_store
    ):
        version = publish()
        lifecycle.create()
        _run_signature_jobs(queue, signer)
        signature = catalog.find_file(version.id, DOWNLOAD_SIG)
        assert signature is not None

        counts = lifecycle.purge()

        assert counts == {"signatures": 1, "key_pairs": 1}
        assert catalog.list_key_pairs() == []
        assert catalog.get_version(version.id).signature_key_pair_id is None
        removals = queue.find(kind=JobKind.REMOVE_FILE.value)
        assert len(removals) == 1
        RemoveFileHandler(storage).execute(
            JobContext("rm", JobKind.REMOVE_FILE, json.loads(removals[0]["payload_json"]))
        )
        assert list(memory_store.objects) == [
            "acme/widget/1.0.0/acme.widget-1.0.0.vsix"
        ]

    def test_run_dispatches_modes(self, lifecycle, catalog):
        lifecycle.run("")
        assert catalog.list_key_pairs() == []
        lifecycle.run(KEYPAIR_MODE_CREATE)
        lifecycle.run(KEYPAIR_MODE_RENEW)
        assert len(catalog.list_key_pairs()) == 2
        lifecycle.run(KEYPAIR_MODE_DELETE)
        assert catalog.list_key_pairs() == []
        with pytest.raises(ValueError):
            lifecycle.run("rotate")

    def test_key_pair_handler_payload_overrides_mode(self, lifecycle, catalog):
        handler = KeyPairHandler(lifecycle, default_mode=KEYPAIR_MODE_CREATE)
        handler.execute(JobContext("kp", JobKind.KEY_PAIR, {}))
        handler.execute(JobContext("kp", JobKind.KEY_PAIR, {"mode": KEYPAIR_MODE_RENEW}))
        assert len(catalog.list_key_pairs()) == 2


class TestGenerateSignature:
    def test_rerun_keeps_one_signature(self, lifecycle, signer, catalog, publish, stored):
        version = publish()
        key_pair = lifecycle.create()

        signer.sign(version.id, key_pair.id)
        signer.sign(version.id, key_pair.id)

        rows = catalog.find_files(version.id, DOWNLOAD_SIG)
        assert [r.name for r in rows] == ["acme.widget-1.0.0.sigzip"]
        assert catalog.get_version(version.id).signature_key_pair_id == key_pair.id
        download = catalog.find_file(version.id, DOWNLOAD)
        assert IntegrityService().verify(
            stored(download), stored(rows[0]), key_pair.public_key_text
        )

    def test_renewal_replaces_signature(self, lifecycle, signer, catalog, queue, publish):
        version = publish()
        lifecycle.create()
        _run_signature_jobs(queue, signer)
        new_key = lifecycle.renew()

        _run_signature_jobs(queue, signer)

        assert len(catalog.find_files(version.id, DOWNLOAD_SIG)) == 1
        assert catalog.get_version(version.id).signature_key_pair_id == new_key.id

    def test_job_for_retired_key_does_nothing(self, lifecycle, signer, catalog, publish):
        version = publish()
        old = lifecycle.create()
        lifecycle.renew()

        signer.sign(version.id, old.id)
        assert catalog.find_files(version.id, DOWNLOAD_SIG) == []

    def test_unknown_key_pair(self, signer, publish):
        version = publish()
        with pytest.raises(DataIntegrityError):
            signer.sign(version.id, 999)

    def test_migrate_uses_active_key(self, lifecycle, signer, catalog, publish):
        version = publish()
        with pytest.raises(DataIntegrityError):
            signer.migrate(version.id)

        key_pair = lifecycle.create()
        signer.migrate(version.id)
        assert catalog.get_version(version.id).signature_key_pair_id == key_pair.id
