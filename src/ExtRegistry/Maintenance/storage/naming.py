"""File names and object keys for stored extension artifacts.

Examples:
    >>> binary_name("acme", "widget", "1.0.0", "universal")
    'acme.widget-1.0.0.vsix'
    >>> binary_name("acme", "widget", "1.0.0", "linux-x64")
    'acme.widget-1.0.0@linux-x64.vsix'
"""

from __future__ import annotations

from ExtRegistry.Maintenance.catalog.models import UNIVERSAL_TARGET, FileResource

VSIX_SUFFIX = ".vsix"
SHA256_SUFFIX = ".sha256"
SIGZIP_SUFFIX = ".sigzip"


def _stem(namespace: str, extension: str, version: str, target_platform: str) -> str:
    stem = f"{namespace}.{extension}-{version}"
    if target_platform and target_platform != UNIVERSAL_TARGET:
        stem += f"@{target_platform}"
    return stem


def binary_name(namespace: str, extension: str, version: str, target_platform: str) -> str:
    """Canonical download name ``<ns>.<ext>-<version>[@<platform>].vsix``."""
    return _stem(namespace, extension, version, target_platform) + VSIX_SUFFIX


def sha256_name(download_name: str) -> str:
    return _strip_vsix(download_name) + SHA256_SUFFIX


def signature_name(download_name: str) -> str:
    return _strip_vsix(download_name) + SIGZIP_SUFFIX


def _strip_vsix(name: str) -> str:
    return name[: -len(VSIX_SUFFIX)] if name.endswith(VSIX_SUFFIX) else name


def canonical_download_name(resource: FileResource) -> str:
    return binary_name(
        resource.namespace_name, resource.extension_name, resource.version, resource.target_platform
    )


def object_key(resource: FileResource) -> str:
    """Storage key ``<ns>/<ext>/[<platform>/]<version>/<name>`` of an artifact."""
    parts = [resource.namespace_name, resource.extension_name]
    if resource.target_platform and resource.target_platform != UNIVERSAL_TARGET:
        parts.append(resource.target_platform)
    parts.extend([resource.version, resource.name])
    return "/".join(parts)
