from __future__ import annotations

import pytest

from rentcore.security.roles import RoleRegistry, effective_role, parse_grant
from rentcore.models import Permission, Role, RolePermission


def test_admin_is_super_and_grants_everything(registry):
    assert registry.is_super("ADMIN")
    assert registry.is_super("admin")
    assert registry.grants("ADMIN", "subscription", "delete")
    assert not registry.is_super("USER")


def test_default_table_matches_role_intent(registry):
    assert registry.grants("USER", "contract", "create")
    assert registry.grants("USER", "user", "list")
    assert not registry.grants("USER", "user", "update")
    assert not registry.grants("USER", "subscription", "read")

    assert registry.grants("PROPERTY_MANAGER", "user", "list")
    assert registry.grants("PROPERTY_MANAGER", "subscription", "read")

    assert registry.grants("RENTER", "payment", "read")
    assert registry.grants("RENTER", "contract", "list")
    assert not registry.grants("RENTER", "payment", "create")
    assert not registry.grants("RENTER", "property", "read")


def test_unknown_or_missing_role_grants_nothing(registry):
    assert not registry.grants("JANITOR", "room", "read")
    assert not registry.grants(None, "room", "read")


def test_resource_wildcard():
    reg = RoleRegistry.from_mapping({"AUDITOR": ["payment:*", "room:read"]})
    assert reg.grants("AUDITOR", "payment", "delete")
    assert reg.grants("AUDITOR", "room", "read")
    assert not reg.grants("AUDITOR", "room", "update")
    assert "payment:list" in reg.permissions_for("AUDITOR")


def test_parse_grant_rejects_garbage():
    assert parse_grant("Room:Read") == ("room", "read")
    assert parse_grant("*") == ("*", "*")
    with pytest.raises(ValueError):
        parse_grant("room")


def test_effective_role_highest_rank_wins():
    assert effective_role(["RENTER", "ADMIN", "USER"]) == "ADMIN"
    assert effective_role(["USER", "PROPERTY_MANAGER"]) == "PROPERTY_MANAGER"
    assert effective_role(["RENTER", "USER"]) == "USER"
    assert effective_role([]) is None


def test_effective_role_is_order_independent():
    # unknown roles share rank 0; the smallest name wins regardless of order
    a = effective_role(["ZED", "ALPHA", "MID"])
    b = effective_role(["MID", "ZED", "ALPHA"])
    assert a == b == "ALPHA"
    assert effective_role(["ALPHA", "RENTER"]) == "RENTER"


def test_registry_from_db(db):
    role = Role(name="USER")
    perm = Permission(name="room:read", resource="room", action="read")
    db.add_all([role, perm])
    db.flush()
    db.add(RolePermission(role_id=role.id, permission_id=perm.id))
    db.commit()

    reg = RoleRegistry.from_db(db)
    assert reg.grants("USER", "room", "read")
    assert not reg.grants("USER", "room", "delete")
    assert reg.grants("ADMIN", "room", "delete")
