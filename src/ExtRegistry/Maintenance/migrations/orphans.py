"""Repair namespaces that lost all of their members.

Pure catalog work, run in one transaction:

- orphaned and empty namespaces are deleted
- orphaned namespaces with extensions get a contributor membership for every
  distinct publisher of their still-active versions
- orphaned namespaces whose versions are all inactive are left as they are
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ExtRegistry.Maintenance.catalog.models import ROLE_CONTRIBUTOR

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog

logger = logging.getLogger(__name__)


@dataclass
class OrphanFixResult:
    deleted: int = 0
    assigned: int = 0
    unfixable: int = 0


def fix_orphan_namespaces(catalog: "SQLiteCatalog") -> OrphanFixResult:
    result = OrphanFixResult()
    with catalog.transaction():
        for namespace in catalog.find_orphan_namespaces():
            if catalog.count_extensions(namespace.id) == 0:
                catalog.delete_namespace(namespace.id)
                result.deleted += 1
                continue
            publishers = catalog.find_active_publishers(namespace.id)
            if not publishers:
                result.unfixable += 1
                continue
            for user_id in publishers:
                catalog.add_membership(namespace.id, user_id, ROLE_CONTRIBUTOR)
            result.assigned += 1

    if result.deleted:
        logger.info(f"Deleted {result.deleted} namespaces that were orphaned and empty.")
    if result.assigned:
        logger.info(f"Assigned explicit members to {result.assigned} orphaned namespaces.")
    if result.unfixable:
        logger.info(f"Found {result.unfixable} orphaned namespaces that could not be fixed.")
    return result
