"""Artifact storage backends and the routing service used by handlers."""

from ExtRegistry.Maintenance.storage.base import ArtifactStore
from ExtRegistry.Maintenance.storage.http_store import HttpArtifactStore
from ExtRegistry.Maintenance.storage.local_store import LocalArtifactStore
from ExtRegistry.Maintenance.storage.service import StorageService

__all__ = ["ArtifactStore", "LocalArtifactStore", "HttpArtifactStore", "StorageService"]
