"""Catalog of namespaces, extensions, versions, artifacts, key pairs and migration items."""

from ExtRegistry.Maintenance.catalog.models import (
    AdminStatistics,
    Extension,
    ExtensionIdentity,
    ExtensionVersion,
    FileResource,
    MigrationItem,
    Namespace,
    SignatureKeyPair,
)
from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog

__all__ = [
    "SQLiteCatalog",
    "Namespace",
    "Extension",
    "ExtensionVersion",
    "ExtensionIdentity",
    "FileResource",
    "SignatureKeyPair",
    "MigrationItem",
    "AdminStatistics",
]
