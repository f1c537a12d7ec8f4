"""Migration items, sweeps and the per-entity migration handlers."""

from __future__ import annotations

import importlib
import sys
from typing import Any

_ATTRIBUTE_EXPORTS: dict[str, tuple[str, str]] = {
    "ArtifactHandler": (".base", "ArtifactHandler"),
    "Handler": (".base", "Handler"),
    "GenerateSha256ChecksumHandler": (".checksum", "GenerateSha256ChecksumHandler"),
    "ExtractVsixManifestHandler": (".vsix_manifest", "ExtractVsixManifestHandler"),
    "ExtractResourcesHandler": (".resources", "ExtractResourcesHandler"),
    "SetPreReleaseHandler": (".prerelease", "SetPreReleaseHandler"),
    "RenameDownloadsHandler": (".downloads", "RenameDownloadsHandler"),
    "CheckPotentiallyMaliciousHandler": (".malicious", "CheckPotentiallyMaliciousHandler"),
    "RemoveFileHandler": (".remove_file", "RemoveFileHandler"),
    "remove_file_payload": (".remove_file", "remove_file_payload"),
    "fix_orphan_namespaces": (".orphans", "fix_orphan_namespaces"),
    "MigrationSweeper": (".sweeps", "MigrationSweeper"),
    "MigrationRunner": (".runner", "MigrationRunner"),
    "MigrationSweepHandler": (".runner", "MigrationSweepHandler"),
}

__all__ = sorted(_ATTRIBUTE_EXPORTS)


def __getattr__(name: str) -> Any:
    if name in _ATTRIBUTE_EXPORTS:
        module_path, attr_name = _ATTRIBUTE_EXPORTS[name]
        module = importlib.import_module(f"{__name__}{module_path}")
        value = getattr(module, attr_name)
        setattr(sys.modules[__name__], name, value)
        return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
