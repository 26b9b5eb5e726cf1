from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rentcore.config import default_role_permissions
from rentcore.db import Base
from rentcore.security.roles import RoleRegistry

from factories import mk_property, mk_renter, mk_room, mk_user, principal


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture()
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    s = Session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def registry() -> RoleRegistry:
    return RoleRegistry.from_mapping(default_role_permissions(), super_role="ADMIN")


@pytest.fixture()
def world(db):
    """
    Two owners, one property each, one room each, a renter in each room,
    an admin and a renter-role user linked to the first renter.
    """
    owner = mk_user(db, "owner@rent.local", roles=["USER"])
    other = mk_user(db, "other@rent.local", roles=["USER"])
    admin = mk_user(db, "admin@rent.local", roles=["ADMIN"])
    tenant_user = mk_user(db, "ana@rent.local", roles=["RENTER"])

    prop = mk_property(db, owner, "Elm House")
    other_prop = mk_property(db, other, "Oak House")
    room = mk_room(db, prop, "101")
    other_room = mk_room(db, other_prop, "201")
    renter = mk_renter(db, "Ana", room=room, user=tenant_user)
    other_renter = mk_renter(db, "Bo", room=other_room)

    return {
        "owner": owner,
        "other": other,
        "admin": admin,
        "tenant_user": tenant_user,
        "prop": prop,
        "other_prop": other_prop,
        "room": room,
        "other_room": other_room,
        "renter": renter,
        "other_renter": other_renter,
        "p_owner": principal(owner, "USER"),
        "p_other": principal(other, "USER"),
        "p_admin": principal(admin, "ADMIN"),
        "p_tenant": principal(tenant_user, "RENTER"),
    }
