from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import text

from rentcore.db import run_in_transaction
from rentcore.domain.audit import audit_trail
from rentcore.errors import AuthorizationDenied, Conflict, NotFound, ValidationFailed
from rentcore.models import AuditEvent, Contract, Payment, Room
from rentcore.schemas import ContractCreate, ContractPatch
from rentcore.services import contracts as svc
from rentcore.services.room_status import room_invariant_violations

from factories import mk_renter


def _lease(room_id, renter_ids, **kw) -> ContractCreate:
    data = dict(
        name="Lease 2024",
        room_id=room_id,
        renter_ids=list(renter_ids),
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        amount=500,
    )
    data.update(kw)
    return ContractCreate(**data)


def _status(db, room_id) -> str:
    db.expire_all()
    return db.get(Room, room_id).status


def test_create_contract_occupies_room(db, world, registry):
    room, renter = world["room"], world["renter"]
    c = svc.create_contract(db, world["p_owner"], _lease(room.id, [renter.id]), registry=registry)

    assert c.status == "ACTIVE"
    assert c.renter_ids == [renter.id]
    assert _status(db, room.id) == "OCCUPIED"
    assert room_invariant_violations(db, room.id) == []
    assert db.query(AuditEvent).filter(AuditEvent.action == "contract.create").count() == 1


def test_second_contract_on_occupied_room_conflicts(db, world, registry):
    room, renter = world["room"], world["renter"]
    svc.create_contract(db, world["p_owner"], _lease(room.id, [renter.id]), registry=registry)

    with pytest.raises(Conflict) as exc:
        svc.create_contract(db, world["p_owner"], _lease(room.id, [renter.id]), registry=registry)
    assert "occupied" in exc.value.message
    assert db.query(Contract).count() == 1


def test_terminate_releases_room(db, world, registry):
    room, renter = world["room"], world["renter"]
    c = svc.create_contract(db, world["p_owner"], _lease(room.id, [renter.id]), registry=registry)

    out = svc.terminate_contract(db, world["p_owner"], c.id, "non-payment", registry=registry)
    assert out.status == "TERMINATED"
    assert out.termination_reason == "non-payment"
    assert out.termination_date == date.today()
    assert _status(db, room.id) == "AVAILABLE"
    assert room_invariant_violations(db, room.id) == []


def test_terminate_audits_only_changed_fields(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    svc.terminate_contract(db, world["p_owner"], c.id, "non-payment", date(2024, 5, 31), registry=registry)

    trail = audit_trail(db, "Contract", c.id)
    assert [t["action"] for t in trail] == ["contract.create", "contract.terminate"]
    assert trail[0]["before"] is None
    assert trail[1]["before"] == {"status": "ACTIVE", "termination_date": None, "termination_reason": None}
    assert trail[1]["after"] == {
        "status": "TERMINATED",
        "termination_date": "2024-05-31",
        "termination_reason": "non-payment",
    }
    assert trail[1]["actor_user_id"] == world["owner"].id


def test_terminate_twice_conflicts(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    svc.terminate_contract(db, world["p_owner"], c.id, "moved out", date(2024, 6, 30), registry=registry)
    with pytest.raises(Conflict):
        svc.terminate_contract(db, world["p_owner"], c.id, "again", registry=registry)

    svc.update_contract(db, world["p_owner"], c.id, ContractPatch(notes="closed"), registry=registry)
    with pytest.raises(Conflict):
        svc.update_contract(db, world["p_owner"], c.id, ContractPatch(status="ACTIVE"), registry=registry)


def test_terminate_requires_reason(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    with pytest.raises(ValidationFailed):
        svc.terminate_contract(db, world["p_owner"], c.id, "   ", registry=registry)
    assert _status(db, world["room"].id) == "OCCUPIED"


@pytest.mark.parametrize(
    "override, message",
    [
        ({"name": None}, "Name is required"),
        ({"room_id": None}, "Room is required"),
        ({"renter_ids": []}, "At least one renter is required"),
        ({"end_date": None}, "End date is required"),
        ({"amount": 0}, "Amount must be greater than zero"),
        ({"start_date": date(2025, 1, 1)}, "Start date must be on or before end date"),
    ],
)
def test_create_validation(db, world, registry, override, message):
    payload = dict(room_id=world["room"].id, renter_ids=[world["renter"].id])
    payload.update(override)
    with pytest.raises(ValidationFailed) as exc:
        svc.create_contract(db, world["p_owner"], _lease(**payload), registry=registry)
    assert exc.value.message == message
    assert _status(db, world["room"].id) == "AVAILABLE"


def test_missing_renter_rolls_back_everything(db, world, registry):
    room = world["room"]
    with pytest.raises(NotFound) as exc:
        svc.create_contract(db, world["p_owner"], _lease(room.id, [world["renter"].id, 777]), registry=registry)
    assert exc.value.message == "One or more renters not found"

    assert _status(db, room.id) == "AVAILABLE"
    assert db.query(Contract).count() == 0
    assert db.query(AuditEvent).count() == 0


def test_foreign_owner_cannot_create_on_room(db, world, registry):
    with pytest.raises(AuthorizationDenied):
        svc.create_contract(db, world["p_other"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    assert _status(db, world["room"].id) == "AVAILABLE"
    assert db.query(AuditEvent).count() == 0


def test_shared_renter_scope_keeps_room_while_a_co_renter_is_active(db, world, registry):
    room, ana = world["room"], world["renter"]
    bo = mk_renter(db, "Bo2", room=room)
    first = svc.create_contract(db, world["p_owner"], _lease(room.id, [ana.id, bo.id]), registry=registry)

    # second ACTIVE contract sharing Bo, inserted while the room is already occupied
    second = Contract(
        name="Sublet", room_id=room.id, start_date=date(2024, 3, 1), end_date=date(2024, 9, 1),
        amount=200.0, status="ACTIVE",
    )
    second.renters = [bo]
    db.add(second)
    db.commit()

    svc.terminate_contract(db, world["p_owner"], first.id, "split", registry=registry, release_scope="shared_renter")
    assert _status(db, room.id) == "OCCUPIED"

    svc.terminate_contract(db, world["p_owner"], second.id, "ended", registry=registry, release_scope="shared_renter")
    assert _status(db, room.id) == "AVAILABLE"


def test_release_scopes_differ_for_unrelated_active_contract(db, world, registry):
    room, ana = world["room"], world["renter"]
    cy = mk_renter(db, "Cy", room=room)

    def _setup():
        c = svc.create_contract(db, world["p_owner"], _lease(room.id, [ana.id]), registry=registry)
        other = Contract(
            name="Other", room_id=room.id, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31),
            amount=100.0, status="ACTIVE",
        )
        other.renters = [cy]
        db.add(other)
        db.commit()
        return c, other

    # shared_renter: the unrelated contract does not hold the room
    c, other = _setup()
    svc.terminate_contract(db, world["p_owner"], c.id, "x", registry=registry, release_scope="shared_renter")
    assert _status(db, room.id) == "AVAILABLE"

    # room scope: any remaining ACTIVE contract holds it
    db.get(Room, room.id).status = "OCCUPIED"
    db.commit()
    svc.terminate_contract(db, world["p_owner"], other.id, "x", registry=registry, release_scope="room")
    assert _status(db, room.id) == "AVAILABLE"

    db.get(Room, room.id).status = "AVAILABLE"
    db.commit()
    c2, other2 = _setup()
    svc.terminate_contract(db, world["p_owner"], c2.id, "x", registry=registry, release_scope="room")
    assert _status(db, room.id) == "OCCUPIED"


def test_expire_via_update_releases_room(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    out = svc.update_contract(db, world["p_owner"], c.id, ContractPatch(status="EXPIRED"), registry=registry)
    assert out.status == "EXPIRED"
    assert _status(db, world["room"].id) == "AVAILABLE"


def test_update_revalidates_terms(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    with pytest.raises(ValidationFailed):
        svc.update_contract(db, world["p_owner"], c.id, ContractPatch(end_date=date(2023, 1, 1)), registry=registry)
    with pytest.raises(ValidationFailed):
        svc.update_contract(db, world["p_owner"], c.id, ContractPatch(amount=-5), registry=registry)
    db.expire_all()
    assert db.get(Contract, c.id).end_date == date(2024, 12, 31)


def test_maintenance_room_keeps_status_on_release(db, world, registry):
    room = world["room"]
    c = svc.create_contract(db, world["p_owner"], _lease(room.id, [world["renter"].id]), registry=registry)
    db.get(Room, room.id).status = "MAINTENANCE"
    db.commit()
    svc.terminate_contract(db, world["p_owner"], c.id, "leak", registry=registry)
    assert _status(db, room.id) == "MAINTENANCE"


def test_delete_contract_with_payments_conflicts(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    db.add(Payment(renter_id=world["renter"].id, contract_id=c.id, amount=500.0, due_date=date(2024, 2, 1)))
    db.commit()
    with pytest.raises(Conflict):
        svc.delete_contract(db, world["p_owner"], c.id, registry=registry)
    assert db.get(Contract, c.id) is not None


def test_delete_active_contract_frees_room(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    assert svc.delete_contract(db, world["p_owner"], c.id, registry=registry) is True
    assert db.query(Contract).count() == 0
    assert _status(db, world["room"].id) == "AVAILABLE"


def test_list_contracts_filters_and_pages(db, world, registry):
    svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    svc.create_contract(
        db, world["p_other"], _lease(world["other_room"].id, [world["other_renter"].id], amount=900), registry=registry
    )

    page = svc.list_contracts(db, world["p_admin"], limit=1, sort_by="amount", sort_order="asc", registry=registry)
    assert page.total_count == 2
    assert page.page_info["total_pages"] == 2
    assert page.page_info["has_next_page"] is True
    assert [c.amount for c in page.nodes] == [500.0]

    mine = svc.list_contracts(db, world["p_owner"], room_id=world["room"].id, registry=registry)
    assert [c.room_id for c in mine.nodes] == [world["room"].id]

    by_renter = svc.list_contracts(db, world["p_other"], renter_id=world["other_renter"].id, registry=registry)
    assert by_renter.total_count == 1

    with pytest.raises(AuthorizationDenied):
        svc.list_contracts(db, world["p_other"], room_id=world["room"].id, registry=registry)
    with pytest.raises(ValidationFailed):
        svc.list_contracts(db, world["p_admin"], sort_by="nope", registry=registry)


@pytest.mark.parametrize("status", ["TERMINATED", "EXPIRED"])
def test_create_with_terminal_status_is_rejected(db, world, registry, status):
    room = world["room"]
    with pytest.raises(ValidationFailed):
        svc.create_contract(db, world["p_owner"], _lease(room.id, [world["renter"].id], status=status), registry=registry)
    assert _status(db, room.id) == "AVAILABLE"
    assert db.query(Contract).count() == 0
    assert room_invariant_violations(db, room.id) == []


def test_active_contract_cannot_go_back_to_pending(db, world, registry):
    room = world["room"]
    c = svc.create_contract(db, world["p_owner"], _lease(room.id, [world["renter"].id]), registry=registry)
    with pytest.raises(Conflict):
        svc.update_contract(db, world["p_owner"], c.id, ContractPatch(status="PENDING"), registry=registry)

    db.expire_all()
    assert db.get(Contract, c.id).status == "ACTIVE"
    assert _status(db, room.id) == "OCCUPIED"
    assert room_invariant_violations(db, room.id) == []


def test_terminate_guard_reads_committed_status(db, world, registry):
    c = svc.create_contract(db, world["p_owner"], _lease(world["room"].id, [world["renter"].id]), registry=registry)
    assert c.status == "ACTIVE"

    # another writer terminates it behind the session's back
    db.connection().execute(
        text("UPDATE contracts SET status = 'TERMINATED' WHERE id = :id"), {"id": c.id}
    )
    assert c.status == "ACTIVE"

    with pytest.raises(Conflict):
        svc.terminate_contract(db, world["p_owner"], c.id, "again", registry=registry)
    assert [t["action"] for t in audit_trail(db, "Contract", c.id)] == ["contract.create"]


def test_run_in_transaction_commits_or_rolls_back(db, world):
    room_id = world["room"].id

    def _reserve(s):
        s.get(Room, room_id).status = "RESERVED"
        return "ok"

    assert run_in_transaction(db, _reserve) == "ok"
    assert _status(db, room_id) == "RESERVED"

    def _boom(s):
        s.get(Room, room_id).status = "AVAILABLE"
        s.flush()
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        run_in_transaction(db, _boom)
    assert _status(db, room_id) == "RESERVED"
