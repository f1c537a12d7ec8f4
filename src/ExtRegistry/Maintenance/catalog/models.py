"""
Catalog Record Types

Frozen dataclasses returned by the catalog store. File resources carry the
denormalized coordinates of their version (namespace, extension, version,
target platform) so that storage keys and file names can be derived without
another lookup.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

UNIVERSAL_TARGET = "universal"

# File resource types
DOWNLOAD = "download"
DOWNLOAD_SHA256 = "download-sha256"
DOWNLOAD_SIG = "download-sig"
VSIXMANIFEST = "vsixmanifest"
MANIFEST = "manifest"
README = "readme"
CHANGELOG = "changelog"
LICENSE = "license"
ICON = "icon"
RESOURCE = "resource"
WEB_RESOURCE = "web-resource"

ROLE_CONTRIBUTOR = "contributor"
ROLE_OWNER = "owner"


@dataclass(frozen=True)
class Namespace:
    id: int
    name: str
    public_id: Optional[str]


@dataclass(frozen=True)
class Extension:
    id: int
    namespace_id: int
    namespace_name: str
    name: str
    public_id: Optional[str]
    active: bool = True

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace_name}.{self.name}"


@dataclass(frozen=True)
class ExtensionVersion:
    """A published version of an extension (one row per target platform)."""

    id: int
    extension_id: int
    namespace_name: str
    extension_name: str
    version: str
    target_platform: str = UNIVERSAL_TARGET
    active: bool = True
    pre_release: bool = False
    preview: bool = False
    potentially_malicious: bool = False
    published_by: Optional[int] = None
    signature_key_pair_id: Optional[int] = None
    timestamp: str = ""

    @property
    def is_universal(self) -> bool:
        return self.target_platform == UNIVERSAL_TARGET

    def display_name(self) -> str:
        """Human readable ``ns.ext-version[@platform]`` label used in logs."""
        label = f"{self.namespace_name}.{self.extension_name}-{self.version}"
        if not self.is_universal:
            label += f"@{self.target_platform}"
        return label


@dataclass(frozen=True)
class FileResource:
    """A stored artifact belonging to one extension version.

    ``content`` is only populated for the ``database`` storage type, where the
    bytes live inline in the catalog row.
    """

    id: Optional[int]
    extension_version_id: int
    type: str
    name: str
    storage_type: str
    namespace_name: str = ""
    extension_name: str = ""
    version: str = ""
    target_platform: str = UNIVERSAL_TARGET
    content: Optional[bytes] = None
    content_type: Optional[str] = None

    def with_changes(self, **changes) -> "FileResource":
        return replace(self, **changes)


@dataclass(frozen=True)
class SignatureKeyPair:
    id: int
    public_id: str
    private_key: bytes
    public_key_text: str
    created_at: str
    active: bool


@dataclass(frozen=True)
class MigrationItem:
    id: int
    kind: str
    entity_id: int
    migration_scheduled: bool
    migration_completed: bool


@dataclass(frozen=True)
class ExtensionIdentity:
    """Public ids of one extension and its namespace, as used by reconciliation."""

    extension_id: int
    namespace_id: int
    namespace_name: str
    extension_name: str
    extension_public_id: Optional[str]
    namespace_public_id: Optional[str]


@dataclass(frozen=True)
class AdminStatistics:
    year: int
    month: int
    extensions: int
    versions: int
    publishers: int
    namespace_owners: int
    signed_versions: int
    computed_at: str = ""
