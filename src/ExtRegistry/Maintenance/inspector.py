# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.inspector",
#   "purpose": "Derive resources and scalar metadata from extension package bytes.",
#   "sections": [
#     {"id": "packageinfo", "name": "PackageInfo", "anchor": "class-packageinfo", "kind": "class"},
#     {"id": "packageinspector", "name": "PackageInspector", "anchor": "class-packageinspector", "kind": "class"},
#     {"id": "archiveinspector", "name": "ArchiveInspector", "anchor": "class-archiveinspector", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Package inspection.

Handlers never parse packages themselves; they ask a :class:`PackageInspector`
for a :class:`PackageInfo`. :class:`ArchiveInspector` is the zip-based
implementation used in production:

- every non-directory entry becomes a resource, each capped at
  ``max_entry_bytes`` (``SizeLimitError`` otherwise)
- ``extension.vsixmanifest`` supplies target platform, pre-release and preview
- entries whose extra field carries a header id outside the set written
  by common zip tools mark the package as potentially malicious
"""

from __future__ import annotations

import io
import logging
import struct
import zipfile
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple
from xml.etree import ElementTree

from ExtRegistry.Maintenance.catalog.models import UNIVERSAL_TARGET
from ExtRegistry.Maintenance.errors import DataIntegrityError, SizeLimitError

logger = logging.getLogger(__name__)

VSIX_MANIFEST = "extension.vsixmanifest"
PRE_RELEASE_PROPERTY = "Microsoft.VisualStudio.Code.PreRelease"
DEFAULT_MAX_ENTRY_BYTES = 32 * 1024 * 1024

# Zip64, NTFS times, extended timestamp, Info-ZIP Unix (old and new), Unicode
# path/comment, Java JAR marker, Android alignment padding.
KNOWN_EXTRA_FIELD_IDS = frozenset(
    {0x0001, 0x000A, 0x5455, 0x5855, 0x7855, 0x7875, 0x7075, 0x6375, 0xCAFE, 0xD935}
)


@dataclass(frozen=True)
class PackageEntry:
    name: str
    data: bytes


@dataclass(frozen=True)
class PackageInfo:
    """Derived data of one package."""

    resources: List[PackageEntry] = field(default_factory=list)
    target_platform: str = UNIVERSAL_TARGET
    pre_release: bool = False
    preview: bool = False
    potentially_malicious: bool = False
    suspicious_entries: Tuple[str, ...] = ()

    def entry(self, name: str) -> Optional[PackageEntry]:
        lowered = name.lower()
        for resource in self.resources:
            if resource.name.lower() == lowered:
                return resource
        return None

    @property
    def vsix_manifest(self) -> Optional[bytes]:
        found = self.entry(VSIX_MANIFEST)
        return found.data if found else None


class PackageInspector(Protocol):
    def inspect(self, data: bytes) -> PackageInfo:
        """Return the derived data for ``data`` (pure function of the bytes)."""
        ...


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_child(element: Optional[ElementTree.Element], name: str) -> Optional[ElementTree.Element]:
    if element is None:
        return None
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def parse_vsix_manifest(data: bytes) -> Tuple[str, bool, bool]:
    """Return ``(target_platform, pre_release, preview)`` from a vsixmanifest."""
    try:
        root = ElementTree.fromstring(data)
    except ElementTree.ParseError as exc:
        raise DataIntegrityError(f"Invalid {VSIX_MANIFEST}: {exc}") from exc

    metadata = _find_child(root, "Metadata")
    identity = _find_child(metadata, "Identity")
    target_platform = (identity.get("TargetPlatform") if identity is not None else None) or ""

    pre_release = False
    properties = _find_child(metadata, "Properties")
    if properties is not None:
        for prop in properties:
            if _local_name(prop.tag) == "Property" and prop.get("Id") == PRE_RELEASE_PROPERTY:
                pre_release = (prop.get("Value") or "").strip().lower() == "true"

    flags = _find_child(metadata, "GalleryFlags")
    preview = flags is not None and "Preview" in (flags.text or "").split()
    return target_platform or UNIVERSAL_TARGET, pre_release, preview


def extra_field_ids(extra: bytes) -> List[int]:
    """Header ids of a zip extra field; a truncated record yields ``-1``."""
    ids: List[int] = []
    offset = 0
    while offset < len(extra):
        if offset + 4 > len(extra):
            ids.append(-1)
            break
        header_id, size = struct.unpack_from("<HH", extra, offset)
        ids.append(header_id)
        offset += 4 + size
        if offset > len(extra):
            ids.append(-1)
            break
    return ids


class ArchiveInspector:
    """Zip-based :class:`PackageInspector`."""

    def __init__(self, max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES):
        self.max_entry_bytes = max_entry_bytes

    def inspect(self, data: bytes) -> PackageInfo:
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            raise DataIntegrityError(f"Package is not a valid zip archive: {exc}") from exc

        resources: List[PackageEntry] = []
        suspicious: List[str] = []
        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                if info.file_size > self.max_entry_bytes:
                    raise SizeLimitError(
                        f"Entry {info.filename} is {info.file_size} bytes, "
                        f"limit is {self.max_entry_bytes}",
                        entry=info.filename,
                        size=info.file_size,
                        limit=self.max_entry_bytes,
                    )
                if any(i not in KNOWN_EXTRA_FIELD_IDS for i in extra_field_ids(info.extra)):
                    suspicious.append(info.filename)
                resources.append(PackageEntry(info.filename, archive.read(info)))

        manifest = PackageInfo(resources=resources).vsix_manifest
        target_platform, pre_release, preview = (
            parse_vsix_manifest(manifest) if manifest else (UNIVERSAL_TARGET, False, False)
        )
        if suspicious:
            logger.debug(f"Entries with unexpected extra fields: {suspicious}")
        return PackageInfo(
            resources=resources,
            target_platform=target_platform,
            pre_release=pre_release,
            preview=preview,
            potentially_malicious=bool(suspicious),
            suspicious_entries=tuple(suspicious),
        )

