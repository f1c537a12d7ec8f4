"""Shared fixtures for the maintenance test suite.

Everything runs against real SQLite files in ``tmp_path``; artifact I/O goes to
an in-memory store and upstream lookups to a dict-backed fake.
"""

from __future__ import annotations

import io
import zipfile
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from ExtRegistry.Maintenance.bootstrap import MaintenanceApp
from ExtRegistry.Maintenance.cache import ViewCache
from ExtRegistry.Maintenance.catalog.models import DOWNLOAD, ExtensionVersion, FileResource
from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
from ExtRegistry.Maintenance.config import STORAGE_LOCAL, MaintenanceConfig
from ExtRegistry.Maintenance.identity.upstream import PublicIds
from ExtRegistry.Maintenance.inspector import ArchiveInspector
from ExtRegistry.Maintenance.orchestrator.jobs import JobScheduler
from ExtRegistry.Maintenance.orchestrator.queue import WorkQueue
from ExtRegistry.Maintenance.storage.naming import binary_name, object_key
from ExtRegistry.Maintenance.storage.service import StorageService

MANIFEST_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<PackageManifest Version="2.0.0" xmlns="http://schemas.microsoft.com/developer/vsx-schema/2011">
  <Metadata>
    <Identity Language="en-US" Id="widget" Version="1.0.0" Publisher="acme"{platform}/>
    <Properties>
      <Property Id="Microsoft.VisualStudio.Code.PreRelease" Value="{pre_release}"/>
    </Properties>
    <GalleryFlags>{flags}</GalleryFlags>
  </Metadata>
</PackageManifest>
"""


class MemoryArtifactStore:
    """Dict-backed artifact backend that can inject transient failures."""

    def __init__(self, storage_type: str = STORAGE_LOCAL) -> None:
        self.storage_type = storage_type
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_next_stores = 0

    def name(self) -> str:
        return self.storage_type

    def fetch(self, key: str) -> bytes:
        if key not in self.objects:
            raise FileNotFoundError(key)
        return self.objects[key]

    def store(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        if self.fail_next_stores:
            self.fail_next_stores -= 1
            raise ConnectionResetError(f"connection reset while storing {key}")
        self.objects[key] = bytes(data)

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)


class FakeUpstream:
    """``UpstreamLookup`` answering from a dict keyed by ``(namespace, extension)``."""

    def __init__(self, ids: Optional[Mapping[Tuple[str, str], PublicIds]] = None) -> None:
        self.ids: Dict[Tuple[str, str], PublicIds] = dict(ids or {})
        self.calls: List[Tuple[str, str]] = []

    def set(self, namespace: str, extension: str, *, ns_id=None, ext_id=None) -> None:
        self.ids[(namespace, extension)] = PublicIds(namespace=ns_id, extension=ext_id)

    def lookup(self, namespace: str, extension: str) -> PublicIds:
        self.calls.append((namespace, extension))
        return self.ids.get((namespace, extension), PublicIds())


def build_package(
    entries: Optional[Mapping[str, bytes]] = None,
    *,
    manifest: bool = True,
    target_platform: Optional[str] = None,
    pre_release: bool = False,
    preview: bool = False,
    extra_fields: Optional[Mapping[str, bytes]] = None,
) -> bytes:
    """Build a vsix-like zip archive."""
    files: Dict[str, bytes] = {"extension/package.json": b'{"name": "widget"}'}
    files.update(entries or {})
    if manifest:
        platform = f' TargetPlatform="{target_platform}"' if target_platform else ""
        files["extension.vsixmanifest"] = MANIFEST_TEMPLATE.format(
            platform=platform,
            pre_release="true" if pre_release else "false",
            flags="Public Preview" if preview else "Public",
        ).encode("utf-8")

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in files.items():
            info = zipfile.ZipInfo(name)
            if extra_fields and name in extra_fields:
                info.extra = extra_fields[name]
            archive.writestr(info, data)
    return buffer.getvalue()


@pytest.fixture
def package_factory() -> Callable[..., bytes]:
    return build_package


@pytest.fixture
def memory_store() -> MemoryArtifactStore:
    return MemoryArtifactStore()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def catalog(tmp_path) -> SQLiteCatalog:
    store = SQLiteCatalog(str(tmp_path / "catalog.sqlite"))
    yield store
    store.close()


@pytest.fixture
def queue(tmp_path) -> WorkQueue:
    work_queue = WorkQueue(str(tmp_path / "jobs.sqlite"))
    yield work_queue
    work_queue.close_connection()


@pytest.fixture
def scheduler(queue) -> JobScheduler:
    return JobScheduler(queue, max_retries=3)


@pytest.fixture
def storage(memory_store) -> StorageService:
    return StorageService({STORAGE_LOCAL: memory_store}, io_attempts=2, initial_wait_seconds=0)


@pytest.fixture
def inspector() -> ArchiveInspector:
    return ArchiveInspector(max_entry_bytes=1024 * 1024)


@pytest.fixture
def cache() -> ViewCache:
    return ViewCache()


@pytest.fixture
def publish(catalog, storage) -> Callable[..., ExtensionVersion]:
    """Publish ``namespace.extension@version`` with a stored download.

    Creates the namespace, extension and publisher on first use. Pass
    ``data=None`` for a version without any download row and
    ``download_name`` to store the download under a legacy name.
    """

    users: Dict[str, int] = {}

    def _publish(
        namespace: str = "acme",
        extension: str = "widget",
        version: str = "1.0.0",
        *,
        data: Optional[bytes] = b"",
        publisher: str = "alice",
        target_platform: str = "universal",
        storage_type: str = STORAGE_LOCAL,
        download_name: Optional[str] = None,
        timestamp: Optional[str] = None,
        active: bool = True,
    ) -> ExtensionVersion:
        if data == b"":
            data = build_package()
        if publisher not in users:
            users[publisher] = catalog.add_user(publisher)
        ns = catalog.find_namespace(namespace) or catalog.add_namespace(namespace)
        ext = catalog.find_extension(namespace, extension) or catalog.add_extension(ns.id, extension)
        record = catalog.add_version(
            ext.id,
            version,
            target_platform=target_platform,
            published_by=users[publisher],
            timestamp=timestamp,
            active=active,
        )
        if data is not None:
            download = FileResource(
                id=None,
                extension_version_id=record.id,
                type=DOWNLOAD,
                name=download_name
                or binary_name(namespace, extension, version, target_platform),
                storage_type=storage_type,
                namespace_name=namespace,
                extension_name=extension,
                version=version,
                target_platform=target_platform,
            )
            catalog.insert_file_resource(storage.upload(download, data))
        return record

    return _publish


@pytest.fixture
def stored(memory_store) -> Callable[[FileResource], bytes]:
    """Return the bytes the memory store holds for a resource."""

    def _stored(resource: FileResource) -> bytes:
        return memory_store.objects[object_key(resource)]

    return _stored


@pytest.fixture
def maintenance_config(tmp_path) -> MaintenanceConfig:
    return MaintenanceConfig.model_validate(
        {
            "registry_version": "1.2.0",
            "orchestrator": {
                "max_workers": 2,
                "retry_backoff_seconds": 0,
                "jitter_seconds": 0,
                "poll_interval_seconds": 0.05,
                "io_attempts": 1,
            },
            "storage": {
                "catalog_path": str(tmp_path / "state" / "catalog.sqlite"),
                "queue_path": str(tmp_path / "state" / "jobs.sqlite"),
                "local_root": str(tmp_path / "state" / "artifacts"),
            },
        }
    )


@pytest.fixture
def app_factory(memory_store, upstream):
    """Build a :class:`MaintenanceApp` over the in-memory store and fake upstream."""

    created: List[MaintenanceApp] = []

    def _build(config: MaintenanceConfig) -> MaintenanceApp:
        app = MaintenanceApp.from_config(
            config,
            backends={STORAGE_LOCAL: memory_store},
            upstream=upstream,
        )
        created.append(app)
        return app

    yield _build
    for app in created:
        app.close()
