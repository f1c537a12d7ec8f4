"""Uniform artifact access across inline and external storage.

``StorageService`` hides where an artifact's bytes live. Resources tagged
``database`` keep their bytes in the catalog row; every other tag routes to the
registered :class:`ArtifactStore` of that name. Each external call runs inside a
bounded Tenacity policy and surfaces failures through the maintenance error
taxonomy:

- missing object → :class:`DataIntegrityError` (never retried)
- transient failure after the call-level attempts → :class:`TransientIOError`
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional, TypeVar

from ExtRegistry.Maintenance.catalog.models import ExtensionVersion, FileResource
from ExtRegistry.Maintenance.config import STORAGE_DATABASE, STORAGE_LOCAL
from ExtRegistry.Maintenance.errors import (
    DataIntegrityError,
    IOOperation,
    TransientIOError,
    create_io_retry_policy,
)
from ExtRegistry.Maintenance.errors.tenacity_policies import is_transient_io_error
from ExtRegistry.Maintenance.storage.base import ArtifactStore
from ExtRegistry.Maintenance.storage.naming import object_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageService:
    """Routes artifact I/O by the resource's ``storage_type`` tag."""

    def __init__(
        self,
        backends: Mapping[str, ArtifactStore],
        *,
        default_storage_type: str = STORAGE_LOCAL,
        io_attempts: int = 3,
        initial_wait_seconds: float = 0.5,
    ):
        self._backends = dict(backends)
        self.default_storage_type = default_storage_type
        self.io_attempts = io_attempts
        self.initial_wait_seconds = initial_wait_seconds

    def backend(self, storage_type: str) -> ArtifactStore:
        try:
            return self._backends[storage_type]
        except KeyError:
            raise DataIntegrityError(f"No artifact backend registered for '{storage_type}'") from None

    def new_resource(
        self,
        version: ExtensionVersion,
        type: str,
        name: str,
        *,
        storage_type: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> FileResource:
        """Build an unsaved file resource attached to ``version``."""
        return FileResource(
            id=None,
            extension_version_id=version.id,
            type=type,
            name=name,
            storage_type=storage_type or self.default_storage_type,
            namespace_name=version.namespace_name,
            extension_name=version.extension_name,
            version=version.version,
            target_platform=version.target_platform,
            content_type=content_type,
        )

    def fetch(self, resource: FileResource) -> bytes:
        """Return the bytes of ``resource`` wherever they are stored."""
        if resource.storage_type == STORAGE_DATABASE:
            if resource.content is None:
                raise DataIntegrityError(
                    f"Inline artifact {resource.name} has no content",
                    entity_id=resource.extension_version_id,
                )
            return resource.content
        key = object_key(resource)
        backend = self.backend(resource.storage_type)
        return self._call(IOOperation.FETCH, key, lambda: backend.fetch(key), resource)

    def upload(self, resource: FileResource, data: bytes) -> FileResource:
        """Persist ``data`` for ``resource``; returns the resource ready for the catalog."""
        if resource.storage_type == STORAGE_DATABASE:
            return resource.with_changes(content=data)
        key = object_key(resource)
        backend = self.backend(resource.storage_type)
        self._call(
            IOOperation.UPLOAD,
            key,
            lambda: backend.store(key, data, resource.content_type),
            resource,
        )
        return resource.with_changes(content=None)

    def remove(self, resource: FileResource) -> None:
        """Delete the stored bytes of ``resource`` (no-op for inline content)."""
        if resource.storage_type == STORAGE_DATABASE:
            return
        key = object_key(resource)
        backend = self.backend(resource.storage_type)
        self._call(IOOperation.DELETE, key, lambda: backend.delete(key), resource)
        logger.debug(f"Removed {resource.storage_type} artifact {key}")

    def _call(
        self,
        operation: IOOperation,
        key: str,
        fn: Callable[[], T],
        resource: FileResource,
    ) -> T:
        policy = create_io_retry_policy(
            operation,
            max_attempts=self.io_attempts,
            initial_wait_seconds=self.initial_wait_seconds,
        )
        try:
            for attempt in policy:
                with attempt:
                    return fn()
        except FileNotFoundError as exc:
            raise DataIntegrityError(
                f"Artifact {key} is missing from {resource.storage_type} storage",
                entity_id=resource.extension_version_id,
            ) from exc
        except Exception as exc:
            if is_transient_io_error(exc):
                raise TransientIOError(
                    f"{operation.name} {key} failed: {exc}", operation=operation.name, key=key
                ) from exc
            raise
        raise AssertionError("retry policy exited without a result")
