from __future__ import annotations

from datetime import date

import pytest

from rentcore.errors import AuthorizationDenied, Conflict, ValidationFailed
from rentcore.models import Room
from rentcore.schemas import ContractCreate, MaintenanceEventCreate, RoomCreate, RoomPatch
from rentcore.services import contracts as contracts_svc
from rentcore.services import maintenance as maintenance_svc
from rentcore.services import rooms as svc


def _occupy(db, world, registry):
    return contracts_svc.create_contract(
        db,
        world["p_owner"],
        ContractCreate(
            name="Lease",
            room_id=world["room"].id,
            renter_ids=[world["renter"].id],
            start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
            amount=500,
        ),
        registry=registry,
    )


def test_new_room_starts_available(db, world, registry):
    r = svc.create_room(db, world["p_owner"], RoomCreate(property_id=world["prop"].id, number="102"), registry=registry)
    assert r.status == "AVAILABLE"
    with pytest.raises(Conflict):
        svc.create_room(db, world["p_owner"], RoomCreate(property_id=world["prop"].id, number="102"), registry=registry)
    with pytest.raises(AuthorizationDenied):
        svc.create_room(db, world["p_other"], RoomCreate(property_id=world["prop"].id, number="103"), registry=registry)


def test_cannot_claim_occupied_without_contract(db, world, registry):
    with pytest.raises(Conflict):
        svc.update_room(db, world["p_owner"], world["room"].id, RoomPatch(status="OCCUPIED"), registry=registry)
    with pytest.raises(Conflict):
        svc.update_room(db, world["p_owner"], world["room"].id, RoomPatch(status="MAINTENANCE"), registry=registry)


def test_cannot_free_an_occupied_room_by_hand(db, world, registry):
    _occupy(db, world, registry)
    for target in ("AVAILABLE", "RESERVED"):
        with pytest.raises(Conflict):
            svc.update_room(db, world["p_owner"], world["room"].id, RoomPatch(status=target), registry=registry)
    db.expire_all()
    assert db.get(Room, world["room"].id).status == "OCCUPIED"


def test_reserved_and_plain_edits_allowed(db, world, registry):
    out = svc.update_room(
        db, world["p_owner"], world["room"].id, RoomPatch(status="RESERVED", rent=700.0), registry=registry
    )
    assert (out.status, out.rent) == ("RESERVED", 700.0)
    with pytest.raises(ValidationFailed):
        svc.update_room(db, world["p_owner"], world["room"].id, RoomPatch(number=""), registry=registry)


def test_delete_guarded(db, world, registry):
    c = _occupy(db, world, registry)
    with pytest.raises(Conflict):
        svc.delete_room(db, world["p_owner"], world["room"].id, registry=registry)
    contracts_svc.terminate_contract(db, world["p_owner"], c.id, "done", registry=registry)

    ev = maintenance_svc.create_maintenance_event(
        db,
        world["p_owner"],
        MaintenanceEventCreate(room_id=world["room"].id, title="Paint", description="Walls", status="IN_PROGRESS"),
        registry=registry,
    )
    with pytest.raises(Conflict):
        svc.delete_room(db, world["p_owner"], world["room"].id, registry=registry)
    assert ev.id

    spare = svc.create_room(db, world["p_owner"], RoomCreate(property_id=world["prop"].id, number="199"), registry=registry)
    assert svc.delete_room(db, world["p_owner"], spare.id, registry=registry) is True


def test_list_rooms(db, world, registry):
    svc.create_room(db, world["p_owner"], RoomCreate(property_id=world["prop"].id, number="100"), registry=registry)
    page = svc.list_rooms(db, world["p_owner"], property_id=world["prop"].id, registry=registry)
    assert [r.number for r in page.nodes] == ["100", "101"]
    assert page.page_info["has_previous_page"] is False
    with pytest.raises(AuthorizationDenied):
        svc.list_rooms(db, world["p_owner"], property_id=world["other_prop"].id, registry=registry)
