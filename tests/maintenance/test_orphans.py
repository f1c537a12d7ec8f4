"""Repair of namespaces without members."""

from __future__ import annotations

from ExtRegistry.Maintenance.catalog.models import ROLE_CONTRIBUTOR, ROLE_OWNER
from ExtRegistry.Maintenance.migrations import fix_orphan_namespaces


def test_empty_orphan_is_deleted(catalog):
    empty = catalog.add_namespace("empty")

    result = fix_orphan_namespaces(catalog)

    assert result.deleted == 1
    assert catalog.get_namespace(empty.id) is None


def test_each_active_publisher_becomes_contributor(catalog, publish):
    a = publish("acme", "widget", "1.0.0", publisher="alice")
    b = publish("acme", "widget", "1.1.0", publisher="bob")
    publish("acme", "gadget", "2.0.0", publisher="alice")
    namespace = catalog.find_namespace("acme")

    result = fix_orphan_namespaces(catalog)
    fix_orphan_namespaces(catalog)

    assert result.assigned == 1
    assert catalog.find_memberships(namespace.id) == [
        {"user_id": a.published_by, "role": ROLE_CONTRIBUTOR},
        {"user_id": b.published_by, "role": ROLE_CONTRIBUTOR},
    ]


def test_only_inactive_versions_is_unfixable(catalog, publish):
    publish("stale", "old", "0.1.0", active=False)
    namespace = catalog.find_namespace("stale")

    result = fix_orphan_namespaces(catalog)

    assert result.unfixable == 1
    assert catalog.get_namespace(namespace.id) is not None
    assert catalog.find_memberships(namespace.id) == []


def test_namespace_with_members_is_untouched(catalog, publish):
    publish("acme", "widget", "1.0.0", publisher="alice")
    namespace = catalog.find_namespace("acme")
    owner = catalog.add_user("owner")
    catalog.add_membership(namespace.id, owner, ROLE_OWNER)

    result = fix_orphan_namespaces(catalog)

    assert (result.deleted, result.assigned, result.unfixable) == (0, 0, 0)
    assert catalog.find_memberships(namespace.id) == [{"user_id": owner, "role": ROLE_OWNER}]
