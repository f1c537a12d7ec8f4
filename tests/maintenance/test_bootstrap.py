"""End-to-end wiring: startup triggers and draining the queue."""

from __future__ import annotations

from ExtRegistry.Maintenance.bootstrap import IDENTITY_JOB_NAME, STATISTICS_JOB_NAME
from ExtRegistry.Maintenance.cache import VERSION
from ExtRegistry.Maintenance.catalog.models import (
    DOWNLOAD,
    DOWNLOAD_SHA256,
    DOWNLOAD_SIG,
    RESOURCE,
    ROLE_CONTRIBUTOR,
    VSIXMANIFEST,
)
from ExtRegistry.Maintenance.config import STORAGE_LOCAL
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.migrations.runner import SWEEP_JOB_NAME
from ExtRegistry.Maintenance.orchestrator.models import JobState
from ExtRegistry.Maintenance.storage.naming import binary_name


def _publish(app, package, namespace="acme", extension="widget", version="1.0.0"):
    catalog = app.catalog
    user = catalog.add_user(f"{namespace}-publisher")
    ns = catalog.find_namespace(namespace) or catalog.add_namespace(namespace)
    ext = catalog.find_extension(namespace, extension) or catalog.add_extension(ns.id, extension)
    record = catalog.add_version(ext.id, version, published_by=user)
    storage = app.services.storage
    download = storage.new_resource(
        record,
        DOWNLOAD,
        binary_name(namespace, extension, version, record.target_platform),
        storage_type=STORAGE_LOCAL,
    )
    catalog.insert_file_resource(storage.upload(download, package))
    return record


class TestStartup:
    def test_startup_is_idempotent(self, app_factory, maintenance_config):
        app = app_factory(maintenance_config)

        first = app.on_startup()
        second = app.on_startup()

        assert first == second
        runs = app.queue.find(kind=JobKind.RUN_MIGRATIONS.value)
        assert len(runs) == 1
        assert runs[0]["max_retries"] == 0

    def test_daily_jobs_are_scheduled(self, app_factory, maintenance_config):
        app = app_factory(maintenance_config)

        app.on_startup()

        identity = app.queue.find_recurring(IDENTITY_JOB_NAME)
        statistics = app.queue.find_recurring(STATISTICS_JOB_NAME)
        assert identity["cron"] == "0 3 * * *"
        assert identity["kind"] == JobKind.PUBLIC_ID_DAILY_UPDATE.value
        assert statistics["cron"] == "0 1 * * *"

    def test_mirror_removes_daily_jobs(self, app_factory, maintenance_config):
        app = app_factory(maintenance_config)
        app.on_startup()

        mirror = maintenance_config.model_copy(update={"mirror_enabled": True})
        app.config = mirror
        app.on_startup()

        assert app.queue.find_recurring(IDENTITY_JOB_NAME) is None
        assert app.queue.find_recurring(STATISTICS_JOB_NAME) is None

    def test_new_registry_version_runs_migrations_again(self, app_factory, maintenance_config):
        app = app_factory(maintenance_config)
        app.on_startup()
        app.config = maintenance_config.model_copy(update={"registry_version": "1.3.0"})

        app.on_startup()

        assert len(app.queue.find(kind=JobKind.RUN_MIGRATIONS.value)) == 2

    def test_integrity_startup_evicts_cached_views(self, app_factory, maintenance_config):
        config = maintenance_config.model_copy(deep=True)
        config.integrity.key_pair_mode = "create"
        app = app_factory(config)
        app.services.cache.put(VERSION, 1, {"cached": True})

        app.on_startup()

        assert len(app.services.cache) == 0


class TestDrain:
    def test_migrations_complete_for_published_version(
        self, app_factory, maintenance_config, package_factory
    ):
        app = app_factory(maintenance_config)
        version = _publish(app, package_factory({"extension/README.md": b"# Widget"}))
        app.on_startup()

        assert app.orchestrator.run_until_idle(timeout=30) is True

        catalog = app.catalog
        assert len(catalog.find_files(version.id, DOWNLOAD_SHA256)) == 1
        assert len(catalog.find_files(version.id, VSIXMANIFEST)) == 1
        assert sorted(r.name for r in catalog.find_files(version.id, RESOURCE)) == [
            "extension.vsixmanifest",
            "extension/README.md",
            "extension/package.json",
        ]
        assert catalog.find_files(version.id, DOWNLOAD_SIG) == []
        assert set(app.services.sweeper.pending_by_kind().values()) == {0}
        assert app.queue.stats()[JobState.ERROR.value] == 0
        assert app.queue.find_recurring(SWEEP_JOB_NAME) is not None

    def test_orphan_namespace_gets_contributor(
        self, app_factory, maintenance_config, package_factory
    ):
        app = app_factory(maintenance_config)
        version = _publish(app, package_factory({"extension/README.md": b"# Widget"}))
        app.on_startup()

        app.orchestrator.run_until_idle(timeout=30)

        namespace = app.catalog.find_namespace("acme")
        assert app.catalog.find_memberships(namespace.id) == [
            {"user_id": version.published_by, "role": ROLE_CONTRIBUTOR}
        ]

    def test_key_pair_creation_signs_versions(
        self, app_factory, maintenance_config, package_factory
    ):
        config = maintenance_config.model_copy(deep=True)
        config.integrity.key_pair_mode = "create"
        app = app_factory(config)
        version = _publish(app, package_factory({"extension/README.md": b"# Widget"}))
        app.on_startup()

        assert app.orchestrator.run_until_idle(timeout=30) is True

        key_pair = app.catalog.find_active_key_pair()
        assert key_pair is not None
        assert app.catalog.get_version(version.id).signature_key_pair_id == key_pair.id
        assert len(app.catalog.find_files(version.id, DOWNLOAD_SIG)) == 1
