"""Public-id reconciliation against upstream."""

from __future__ import annotations

import itertools

import pytest

from ExtRegistry.Maintenance.cache import EXTENSION, NAMESPACE
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.identity import (
    IdentityReconciler,
    PublicIdDailyUpdateHandler,
    PublicIdUpdateHandler,
    plan_changes,
)
from ExtRegistry.Maintenance.kinds import JobKind
from ExtRegistry.Maintenance.orchestrator.models import JobContext


class IdSource:
    def __init__(self, *first):
        self._first = list(first)
        self._count = itertools.count()

    def __call__(self):
        if self._first:
            return self._first.pop(0)
        return f"rand-{next(self._count)}"


@pytest.fixture
def ids():
    return IdSource()


@pytest.fixture
def reconciler(catalog, upstream, cache, ids):
    return IdentityReconciler(
        catalog, upstream, cache=cache, builtin_namespaces=["vscode"], id_factory=ids
    )


@pytest.fixture
def acme(catalog):
    return catalog.add_namespace("acme", public_id="n1")


class TestUpdate:
    def test_upstream_id_taken_from_local_holder(self, reconciler, catalog, upstream, acme):
        widget = catalog.add_extension(acme.id, "widget", public_id="p1")
        other = catalog.add_extension(acme.id, "other", public_id="p2")
        upstream.set("acme", "widget", ns_id="n1", ext_id="p2")
        upstream.set("acme", "other", ns_id="n1", ext_id="p2")

        result = reconciler.update("acme", "widget")

        assert catalog.get_extension(widget.id).public_id == "p2"
        fresh = catalog.get_extension(other.id).public_id
        assert fresh not in {"p1", "p2"}
        assert result.extensions == {widget.id: "p2", other.id: fresh}
        assert result.namespaces == {}

    def test_random_id_skips_persisted_ids(self, catalog, upstream, cache, acme):
        catalog.add_extension(acme.id, "widget", public_id="p1")
        other = catalog.add_extension(acme.id, "other", public_id="p2")
        upstream.set("acme", "widget", ns_id="n1", ext_id="p2")
        reconciler = IdentityReconciler(
            catalog, upstream, cache=cache, id_factory=IdSource("p1", "p2", "fresh")
        )

        reconciler.update("acme", "widget")
        assert catalog.get_extension(other.id).public_id == "fresh"

    def test_swap_chain(self, reconciler, catalog, upstream, acme):
        a = catalog.add_extension(acme.id, "a", public_id="p1")
        b = catalog.add_extension(acme.id, "b", public_id="p2")
        upstream.set("acme", "a", ns_id="n1", ext_id="p2")
        upstream.set("acme", "b", ns_id="n1", ext_id="p1")

        result = reconciler.update("acme", "a")

        assert result.extensions == {a.id: "p2", b.id: "p1"}
        assert catalog.get_extension(a.id).public_id == "p2"
        assert catalog.get_extension(b.id).public_id == "p1"

    def test_chain_with_duplicate_upstream_id(self, reconciler, catalog, upstream, acme):
        a = catalog.add_extension(acme.id, "a", public_id="p1")
        b = catalog.add_extension(acme.id, "b", public_id="p2")
        c = catalog.add_extension(acme.id, "c", public_id="p3")
        upstream.set("acme", "a", ns_id="n1", ext_id="p2")
        upstream.set("acme", "b", ns_id="n1", ext_id="p3")
        upstream.set("acme", "c", ns_id="n1", ext_id="p2")

        result = reconciler.update("acme", "a")

        assert result.extensions == {a.id: "p2", b.id: "p3", c.id: "rand-0"}
        public_ids = [catalog.get_extension(e.id).public_id for e in (a, b, c)]
        assert public_ids == ["p2", "p3", "rand-0"]

    def test_unknown_upstream_keeps_existing_id(self, reconciler, catalog, acme):
        widget = catalog.add_extension(acme.id, "widget", public_id="p1")

        result = reconciler.update("acme", "widget")

        assert result.changed == 0
        assert catalog.get_extension(widget.id).public_id == "p1"

    def test_missing_id_gets_random_one(self, reconciler, catalog):
        namespace = catalog.add_namespace("fresh")
        widget = catalog.add_extension(namespace.id, "widget")

        result = reconciler.update("fresh", "widget")

        assert result.extensions == {widget.id: "rand-0"}
        assert result.namespaces == {namespace.id: "rand-1"}

    def test_namespace_takes_upstream_id(self, reconciler, catalog, upstream, cache, acme):
        widget = catalog.add_extension(acme.id, "widget", public_id="p1")
        upstream.set("acme", "widget", ns_id="n9", ext_id="p1")
        cache.put(NAMESPACE, acme.id, {})
        cache.put(EXTENSION, widget.id, {})

        result = reconciler.update("acme", "widget")

        assert result.namespaces == {acme.id: "n9"}
        assert catalog.get_namespace(acme.id).public_id == "n9"
        assert len(cache) == 0

    def test_builtin_namespace_is_skipped(self, reconciler, catalog, upstream):
        namespace = catalog.add_namespace("vscode", public_id="v1")
        catalog.add_extension(namespace.id, "git", public_id="g1")
        upstream.set("vscode", "git", ns_id="x", ext_id="y")

        assert reconciler.update("vscode", "git").changed == 0
        assert upstream.calls == []

    def test_unknown_extension(self, reconciler):
        with pytest.raises(DataIntegrityError):
            reconciler.update("acme", "missing")

    def test_second_run_changes_nothing(self, reconciler, catalog, upstream, acme):
        catalog.add_extension(acme.id, "widget", public_id="p1")
        catalog.add_extension(acme.id, "other", public_id="p2")
        upstream.set("acme", "widget", ns_id="n1", ext_id="p2")
        upstream.set("acme", "other", ns_id="n1", ext_id="p2")

        reconciler.update("acme", "widget")
        assert reconciler.update("acme", "widget").changed == 0


class TestUpdateAll:
    def test_duplicate_upstream_ids_resolved_by_catalog_order(
        self, reconciler, catalog, upstream, acme
    ):
        first = catalog.add_extension(acme.id, "first", public_id="a")
        second = catalog.add_extension(acme.id, "second", public_id="b")
        upstream.set("acme", "first", ns_id="n1", ext_id="u1")
        upstream.set("acme", "second", ns_id="n1", ext_id="u1")

        result = reconciler.update_all()

        assert result.extensions == {first.id: "u1"}
        assert catalog.get_extension(second.id).public_id == "b"
        assert reconciler.update_all().changed == 0

    def test_ids_held_outside_the_pass_are_reserved(self, reconciler, catalog, upstream, acme):
        builtin = catalog.add_namespace("vscode", public_id="v1")
        catalog.add_extension(builtin.id, "git", public_id="u9")
        widget = catalog.add_extension(acme.id, "widget")
        upstream.set("acme", "widget", ns_id="n1", ext_id="u9")

        result = reconciler.update_all()

        assigned = result.extensions[widget.id]
        assert assigned not in {"u9", "v1"}
        assert ("vscode", "git") not in upstream.calls

    def test_full_pass_swaps_and_fills(self, reconciler, catalog, upstream, acme):
        a = catalog.add_extension(acme.id, "a", public_id="p1")
        b = catalog.add_extension(acme.id, "b", public_id="p2")
        c = catalog.add_extension(acme.id, "c")
        upstream.set("acme", "a", ns_id="n1", ext_id="p2")
        upstream.set("acme", "b", ns_id="n1", ext_id="p1")

        reconciler.update_all()

        public_ids = {e.id: e.public_id for e in catalog.find_extensions(acme.id)}
        assert public_ids[a.id] == "p2"
        assert public_ids[b.id] == "p1"
        assert public_ids[c.id] not in (None, "p1", "p2")


def test_plan_changes_keeps_unclaimed_ids():
    ids = iter(["p1", "r1", "r2"])
    planned = plan_changes(
        {1: "p1", 2: "p2", 3: None, 4: "p4"},
        {1: "p2", 2: None, 3: None, 4: None},
        reserved=set(),
        persisted={"p1", "p2", "p4"},
        id_factory=lambda: next(ids),
    )
    # 2 loses p2 to 1, 3 had nothing, 4 keeps its unclaimed id
    assert planned == {1: "p2", 2: "r1", 3: "r2"}


def test_handlers_dispatch_to_reconciler(reconciler, catalog, upstream, acme):
    widget = catalog.add_extension(acme.id, "widget", public_id="p1")
    upstream.set("acme", "widget", ns_id="n1", ext_id="p7")

    PublicIdUpdateHandler(reconciler).execute(
        JobContext("j", JobKind.PUBLIC_ID_UPDATE, {"namespace": "acme", "extension": "widget"})
    )
    assert catalog.get_extension(widget.id).public_id == "p7"

    upstream.set("acme", "widget", ns_id="n1", ext_id="p8")
    PublicIdDailyUpdateHandler(reconciler).execute(
        JobContext("k", JobKind.PUBLIC_ID_DAILY_UPDATE, {})
    )
    assert catalog.get_extension(widget.id).public_id == "p8"
