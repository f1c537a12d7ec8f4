# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.identity.reconciler",
#   "purpose": "Public-id assignment against an upstream registry with collision-free id moves",
#   "sections": [
#     {"id": "reconcileresult", "name": "ReconcileResult", "anchor": "class-reconcileresult", "kind": "class"},
#     {"id": "identityreconciler", "name": "IdentityReconciler", "anchor": "class-identityreconciler", "kind": "class"},
#     {"id": "plan-changes", "name": "plan_changes", "anchor": "function-plan-changes", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public-id reconciliation.

Local extensions and namespaces should carry the public id upstream uses for
the same qualified name, or a random id when upstream has none. Both entity
types are reconciled independently with the same rules:

- an entity whose upstream id differs from its own takes the upstream id
- whoever currently holds that id is forced onto a different id: its own
  upstream id if that differs, otherwise a fresh random one
- a random id never collides with an id staged in the same batch nor with
  any persisted id of that entity type
- an entity that would only swap one unclaimed random id for another keeps
  the id it has

The single-extension path walks id holders with an explicit worklist, so the
length of an upstream id-swap chain does not matter, and an upstream id that
is already staged for another entity sends the node down the random branch.
The full pass resolves duplicate upstream ids by catalog order: the first
entity keeps the direct assignment and the rest take the random branch.

Staged changes are committed as one bulk update per entity type; the catalog
applies them in two phases so no two rows share an id at any point.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Callable,
    Deque,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.identity.upstream import PublicIds, UpstreamLookup

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.cache import ViewCache
    from ExtRegistry.Maintenance.catalog.models import Extension
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog

__all__ = ["IdentityReconciler", "ReconcileResult", "plan_changes"]

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    extensions: Dict[int, str]
    namespaces: Dict[int, str]

    @property
    def changed(self) -> int:
        return len(self.extensions) + len(self.namespaces)


@dataclass(frozen=True)
class _Node:
    """An entity taking part in reconciliation.

    ``extension`` names the extension used for the upstream lookup; for a
    namespace it is any extension of that namespace, or None if it has none.
    """

    id: int
    public_id: Optional[str]
    namespace: str
    extension: Optional[str]


@dataclass(frozen=True)
class _Side:
    label: str
    upstream_id: Callable[[_Node], Optional[str]]
    holder: Callable[[str], Optional[_Node]]
    persisted: Set[str]


def _default_id() -> str:
    return str(uuid.uuid4())


class IdentityReconciler:
    """Keeps extension and namespace public ids in line with upstream."""

    def __init__(
        self,
        catalog: "SQLiteCatalog",
        upstream: UpstreamLookup,
        *,
        cache: Optional["ViewCache"] = None,
        builtin_namespaces: Iterable[str] = ("vscode",),
        id_factory: Callable[[], str] = _default_id,
    ) -> None:
        self.catalog = catalog
        self.upstream = upstream
        self.cache = cache
        self.builtin_namespaces = frozenset(builtin_namespaces)
        self.id_factory = id_factory

    def is_builtin(self, namespace: str) -> bool:
        return namespace in self.builtin_namespaces

    # ------------------------------------------------------------------
    # Single extension
    # ------------------------------------------------------------------

    def update(self, namespace: str, extension: str) -> ReconcileResult:
        """Reconcile one extension and its namespace."""
        if self.is_builtin(namespace):
            logger.debug(f"Skipping built-in extension {namespace}.{extension}")
            return ReconcileResult({}, {})

        found = self.catalog.find_extension(namespace, extension)
        if found is None:
            raise DataIntegrityError(f"Extension {namespace}.{extension} not found")
        owner = self.catalog.get_namespace(found.namespace_id)

        lookups: Dict[Tuple[str, str], PublicIds] = {}

        def lookup(node: _Node) -> PublicIds:
            if node.extension is None:
                return PublicIds()
            key = (node.namespace, node.extension)
            if key not in lookups:
                lookups[key] = self.upstream.lookup(*key)
            return lookups[key]

        extension_side = _Side(
            label="extension",
            upstream_id=lambda node: lookup(node).extension,
            holder=self._extension_holder,
            persisted=self.catalog.extension_public_ids(),
        )
        extension_changes = self._resolve(_extension_node(found), extension_side)

        namespace_side = _Side(
            label="namespace",
            upstream_id=lambda node: lookup(node).namespace,
            holder=self._namespace_holder,
            persisted=self.catalog.namespace_public_ids(),
        )
        namespace_node = _Node(owner.id, owner.public_id, owner.name, found.name)
        namespace_changes = self._resolve(namespace_node, namespace_side)

        self.catalog.update_extension_public_ids(extension_changes)
        self.catalog.update_namespace_public_ids(namespace_changes)
        if extension_changes or namespace_changes:
            self._evict(extension_changes, namespace_changes)
            logger.info(
                f"Updated public ids of {found.qualified_name}: "
                f"{len(extension_changes)} extensions, {len(namespace_changes)} namespaces"
            )
        return ReconcileResult(extension_changes, namespace_changes)

    def _resolve(self, start: _Node, side: _Side) -> Dict[int, str]:
        staged: Dict[int, str] = {}
        randomized: Dict[int, _Node] = {}
        seen: Set[int] = set()
        worklist: Deque[Tuple[_Node, bool]] = deque([(start, False)])

        while worklist:
            node, forced = worklist.popleft()
            if node.id in seen:
                continue
            seen.add(node.id)

            upstream = side.upstream_id(node)
            if upstream is not None and upstream in staged.values():
                # upstream reports this id for an entity staged earlier
                logger.debug(f"Upstream id {upstream} already staged; {node.id} gets a random id")
                upstream = None
            if upstream is None or (forced and upstream == node.public_id):
                staged[node.id] = self._random_id(set(staged.values()), side.persisted)
                if not forced:
                    randomized[node.id] = node
                logger.debug(f"Random {side.label} public id for {node.id}: {staged[node.id]}")
            elif upstream != node.public_id:
                staged[node.id] = upstream
                logger.debug(f"Upstream {side.label} public id for {node.id}: {upstream}")
                holder = side.holder(upstream)
                if holder is not None and holder.id != node.id:
                    worklist.append((holder, True))

        # An unforced random id only replaces the current one if someone else
        # takes the current one over.
        for node_id, node in randomized.items():
            others = {value for key, value in staged.items() if key != node_id}
            if node.public_id and node.public_id not in others:
                del staged[node_id]
        return staged

    def _extension_holder(self, public_id: str) -> Optional[_Node]:
        holder = self.catalog.find_extension_by_public_id(public_id)
        return _extension_node(holder) if holder else None

    def _namespace_holder(self, public_id: str) -> Optional[_Node]:
        holder = self.catalog.find_namespace_by_public_id(public_id)
        if holder is None:
            return None
        extensions = self.catalog.find_extensions(holder.id)
        return _Node(holder.id, holder.public_id, holder.name, extensions[0].name if extensions else None)

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    def update_all(self) -> ReconcileResult:
        """Reconcile every extension and namespace against upstream."""
        logger.info("Starting daily public id update")
        extension_current: Dict[int, Optional[str]] = {}
        extension_upstream: Dict[int, Optional[str]] = {}
        namespace_current: Dict[int, Optional[str]] = {}
        namespace_upstream: Dict[int, Optional[str]] = {}
        extensions_by_namespace: Dict[int, list] = {}

        for identity in self.catalog.find_extension_identities():
            if self.is_builtin(identity.namespace_name):
                continue
            ids = self.upstream.lookup(identity.namespace_name, identity.extension_name)
            extension_current[identity.extension_id] = identity.extension_public_id
            extension_upstream[identity.extension_id] = ids.extension
            extensions_by_namespace.setdefault(identity.namespace_id, []).append(
                identity.extension_id
            )
            if identity.namespace_id not in namespace_current:
                namespace_current[identity.namespace_id] = identity.namespace_public_id
                namespace_upstream[identity.namespace_id] = ids.namespace

        extension_persisted = self.catalog.extension_public_ids()
        namespace_persisted = self.catalog.namespace_public_ids()
        extension_changes = plan_changes(
            extension_current,
            extension_upstream,
            reserved=extension_persisted - _values(extension_current),
            persisted=extension_persisted,
            id_factory=self.id_factory,
        )
        namespace_changes = plan_changes(
            namespace_current,
            namespace_upstream,
            reserved=namespace_persisted - _values(namespace_current),
            persisted=namespace_persisted,
            id_factory=self.id_factory,
        )

        logger.debug(
            f"Upstream extensions: {len(extension_upstream)}, changed: {len(extension_changes)}"
        )
        logger.debug(
            f"Upstream namespaces: {len(namespace_upstream)}, changed: {len(namespace_changes)}"
        )
        self.catalog.update_extension_public_ids(extension_changes)
        self.catalog.update_namespace_public_ids(namespace_changes)
        self._evict(extension_changes, namespace_changes, extensions_by_namespace)
        logger.info(
            f"Daily public id update changed {len(extension_changes)} extensions "
            f"and {len(namespace_changes)} namespaces"
        )
        return ReconcileResult(extension_changes, namespace_changes)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _random_id(self, staged: Set[str], persisted: Set[str]) -> str:
        while True:
            candidate = self.id_factory()
            if candidate not in staged and candidate not in persisted:
                return candidate

    def _evict(
        self,
        extension_changes: Mapping[int, str],
        namespace_changes: Mapping[int, str],
        extensions_by_namespace: Optional[Mapping[int, list]] = None,
    ) -> None:
        if self.cache is None:
            return
        for extension_id in extension_changes:
            self.cache.evict_extension(extension_id)
        for namespace_id in namespace_changes:
            self.cache.evict_namespace(namespace_id)
            if extensions_by_namespace is not None:
                for extension_id in extensions_by_namespace.get(namespace_id, ()):
                    self.cache.evict_extension(extension_id)
            else:
                for extension in self.catalog.find_extensions(namespace_id):
                    self.cache.evict_extension(extension.id)


def plan_changes(
    current: Mapping[int, Optional[str]],
    upstream: Mapping[int, Optional[str]],
    *,
    reserved: Set[str],
    persisted: Set[str],
    id_factory: Callable[[], str] = _default_id,
) -> Dict[int, str]:
    """Compute the public-id changes of one entity type.

    Args:
        current: Entity id to current public id, in catalog order
        upstream: Entity id to upstream public id (None if upstream has none)
        reserved: Ids held by entities outside this pass; never handed out
        persisted: Every persisted id of the entity type
        id_factory: Source of random ids

    Returns:
        Entity id to new public id, only for entities that change

    Example:
        >>> ids = iter(["r1"])
        >>> plan_changes({1: "p1", 2: "p2"}, {1: "p2", 2: None},
        ...              reserved=set(), persisted={"p1", "p2"},
        ...              id_factory=lambda: next(ids))
        {1: 'p2', 2: 'r1'}
    """
    claimed: Set[str] = set(reserved)
    target: Dict[int, Optional[str]] = {}
    for entity_id in current:
        upstream_id = upstream.get(entity_id)
        if upstream_id is not None and upstream_id not in claimed:
            target[entity_id] = upstream_id
            claimed.add(upstream_id)
        else:
            if upstream_id is not None:
                logger.debug(f"Upstream id {upstream_id} already claimed; {entity_id} gets a random id")
            target[entity_id] = None

    changes: Dict[int, Optional[str]] = {}
    for entity_id, public_id in current.items():
        wanted = target[entity_id]
        if wanted is None:
            if public_id and public_id not in claimed:
                claimed.add(public_id)
                continue
            changes[entity_id] = None
        elif wanted != public_id:
            changes[entity_id] = wanted

    taken = claimed | persisted
    planned: Dict[int, str] = {}
    for entity_id, wanted in changes.items():
        if wanted is None:
            wanted = id_factory()
            while wanted in taken:
                wanted = id_factory()
            taken.add(wanted)
        planned[entity_id] = wanted
    return planned


def _extension_node(extension: "Extension") -> _Node:
    return _Node(extension.id, extension.public_id, extension.namespace_name, extension.name)


def _values(mapping: Mapping[int, Optional[str]]) -> Set[str]:
    return {value for value in mapping.values() if value}
