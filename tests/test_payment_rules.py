from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import text

from rentcore.errors import AuthorizationDenied, Conflict, NotFound, ValidationFailed
from rentcore.models import Payment
from rentcore.schemas import ContractCreate, PaymentCreate, PaymentPatch
from rentcore.services import contracts as contracts_svc
from rentcore.services import payments as svc

from factories import mk_renter


@pytest.fixture()
def lease(db, world, registry):
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


def _pay(world, lease, **kw) -> PaymentCreate:
    data = dict(renter_id=world["renter"].id, contract_id=lease.id, amount=500, due_date=date(2024, 2, 1))
    data.update(kw)
    return PaymentCreate(**data)


def test_paid_payment_cannot_be_deleted(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    svc.mark_payment_as_paid(db, world["p_owner"], p.id, registry=registry)
    with pytest.raises(Conflict):
        svc.delete_payment(db, world["p_owner"], p.id, registry=registry)
    assert db.get(Payment, p.id) is not None


def test_mark_paid_twice_leaves_record_unchanged(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    first = svc.mark_payment_as_paid(db, world["p_owner"], p.id, date(2024, 2, 3), "TX-1", registry=registry)
    assert first.status == "PAID"
    assert first.paid_date == date(2024, 2, 3)
    assert first.description == "TX-1"

    with pytest.raises(Conflict):
        svc.mark_payment_as_paid(db, world["p_owner"], p.id, date(2024, 3, 1), "TX-2", registry=registry)

    db.expire_all()
    row = db.get(Payment, p.id)
    assert (row.status, row.paid_date, row.description) == ("PAID", date(2024, 2, 3), "TX-1")


def test_mark_paid_defaults_to_today(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease, description="Feb"), registry=registry)
    out = svc.mark_payment_as_paid(db, world["p_owner"], p.id, registry=registry)
    assert out.paid_date == date.today()
    assert out.description == "Feb"


def test_update_cannot_repay(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    svc.update_payment(db, world["p_owner"], p.id, PaymentPatch(status="PAID"), registry=registry)
    with pytest.raises(Conflict):
        svc.update_payment(db, world["p_owner"], p.id, PaymentPatch(status="PAID"), registry=registry)


def test_create_validation(db, world, registry, lease):
    with pytest.raises(ValidationFailed):
        svc.create_payment(db, world["p_owner"], _pay(world, lease, amount=None), registry=registry)
    with pytest.raises(ValidationFailed):
        svc.create_payment(db, world["p_owner"], _pay(world, lease, due_date=None), registry=registry)
    with pytest.raises(ValidationFailed):
        svc.create_payment(db, world["p_owner"], _pay(world, lease, renter_id=None), registry=registry)


def test_renter_must_be_party_to_contract(db, world, registry, lease):
    stranger = mk_renter(db, "Dee", room=world["room"])
    with pytest.raises(ValidationFailed):
        svc.create_payment(db, world["p_owner"], _pay(world, lease, renter_id=stranger.id), registry=registry)

    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    with pytest.raises(ValidationFailed):
        svc.update_payment(db, world["p_owner"], p.id, PaymentPatch(renter_id=stranger.id), registry=registry)
    assert db.query(Payment).count() == 1


def test_payment_without_contract_anchors_on_renter(db, world, registry, lease):
    p = svc.create_payment(
        db, world["p_owner"], _pay(world, lease, contract_id=None, description="deposit"), registry=registry
    )
    assert p.contract_id is None
    with pytest.raises(AuthorizationDenied):
        svc.create_payment(
            db, world["p_owner"], _pay(world, lease, renter_id=world["other_renter"].id, contract_id=None),
            registry=registry,
        )


def test_renter_lists_own_payments_but_cannot_write(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    page = svc.list_payments(db, world["p_tenant"], renter_id=world["renter"].id, registry=registry)
    assert [x.id for x in page.nodes] == [p.id]
    with pytest.raises(AuthorizationDenied):
        svc.list_payments(db, world["p_tenant"], renter_id=world["other_renter"].id, registry=registry)
    with pytest.raises(AuthorizationDenied):
        svc.mark_payment_as_paid(db, world["p_tenant"], p.id, registry=registry)


def test_missing_payment(db, world, registry):
    with pytest.raises(NotFound):
        svc.mark_payment_as_paid(db, world["p_admin"], 12345, registry=registry)


def test_list_payments_by_due_range(db, world, registry, lease):
    for m in (1, 2, 3):
        svc.create_payment(db, world["p_owner"], _pay(world, lease, due_date=date(2024, m, 1)), registry=registry)

    page = svc.list_payments(
        db,
        world["p_owner"],
        contract_id=lease.id,
        due_from=date(2024, 2, 1),
        due_to=date(2024, 3, 31),
        sort_order="asc",
        registry=registry,
    )
    assert [p.due_date.month for p in page.nodes] == [2, 3]
    with pytest.raises(ValidationFailed):
        svc.list_payments(db, world["p_owner"], due_from=date(2024, 5, 1), due_to=date(2024, 1, 1), registry=registry)


def test_payment_cannot_be_moved_into_a_foreign_tenancy(db, world, registry, lease):
    theirs = contracts_svc.create_contract(
        db,
        world["p_other"],
        ContractCreate(
            name="Oak lease",
            room_id=world["other_room"].id,
            renter_ids=[world["other_renter"].id],
            start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
            amount=700,
        ),
        registry=registry,
    )
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)

    with pytest.raises(AuthorizationDenied):
        svc.update_payment(
            db,
            world["p_owner"],
            p.id,
            PaymentPatch(renter_id=world["other_renter"].id, contract_id=theirs.id),
            registry=registry,
        )
    with pytest.raises(AuthorizationDenied):
        svc.update_payment(
            db,
            world["p_owner"],
            p.id,
            PaymentPatch(renter_id=world["other_renter"].id, contract_id=None),
            registry=registry,
        )

    db.expire_all()
    row = db.get(Payment, p.id)
    assert (row.renter_id, row.contract_id) == (world["renter"].id, lease.id)


def test_paid_payment_keeps_status_and_amount(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    svc.mark_payment_as_paid(db, world["p_owner"], p.id, date(2024, 2, 3), registry=registry)

    with pytest.raises(Conflict):
        svc.update_payment(db, world["p_owner"], p.id, PaymentPatch(status="PENDING"), registry=registry)
    with pytest.raises(Conflict):
        svc.update_payment(db, world["p_owner"], p.id, PaymentPatch(amount=1), registry=registry)
    with pytest.raises(Conflict):
        svc.delete_payment(db, world["p_owner"], p.id, registry=registry)

    out = svc.update_payment(db, world["p_owner"], p.id, PaymentPatch(description="receipt #7"), registry=registry)
    assert (out.status, out.amount, out.description) == ("PAID", 500.0, "receipt #7")


def test_mark_paid_guard_reads_committed_status(db, world, registry, lease):
    p = svc.create_payment(db, world["p_owner"], _pay(world, lease), registry=registry)
    assert p.status == "PENDING"

    # paid by another writer after this session loaded the row
    db.connection().execute(text("UPDATE payments SET status = 'PAID' WHERE id = :id"), {"id": p.id})
    assert p.status == "PENDING"

    with pytest.raises(Conflict):
        svc.mark_payment_as_paid(db, world["p_owner"], p.id, registry=registry)
