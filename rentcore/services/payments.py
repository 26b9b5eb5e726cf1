from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import atomic
from ..domain.audit import audit_write
from ..errors import Conflict, ValidationFailed
from ..models import Payment, PaymentStatus
from ..schemas import PaymentCreate, PaymentPatch
from ..security.evaluator import PermissionEvaluator
from ..security.ownership import must_get_contract, must_get_payment, must_get_renter
from ..security.roles import RoleRegistry, default_registry
from .pagination import Page, order_by_field, paginate
from .room_status import lock_row

log = logging.getLogger("rentcore.payments")

_SORTABLE = {
    "created_at": Payment.created_at,
    "due_date": Payment.due_date,
    "paid_date": Payment.paid_date,
    "amount": Payment.amount,
    "id": Payment.id,
}

# fields a PAID payment keeps for good
_PAID_FROZEN = ("status", "amount", "renter_id", "contract_id")


def _authz(db: Session, registry: Optional[RoleRegistry]) -> PermissionEvaluator:
    return PermissionEvaluator(db, registry or default_registry())


def _check_contract_renter(db: Session, contract_id: Optional[int], renter_id: int) -> None:
    """A payment tied to a contract must be owed by one of that contract's renters."""
    if contract_id is None:
        return
    contract = must_get_contract(db, contract_id)
    if int(renter_id) not in contract.renter_ids:
        raise ValidationFailed(
            "Renter is not a party to this contract",
            details={"contract_id": contract.id, "renter_id": int(renter_id)},
        )


def create_payment(
    db: Session,
    subject: Any,
    data: PaymentCreate,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Payment:
    if data.amount is None:
        raise ValidationFailed("Amount is required")
    if float(data.amount) <= 0:
        raise ValidationFailed("Amount must be greater than zero")
    if data.due_date is None:
        raise ValidationFailed("Due date is required")
    if data.renter_id is None:
        raise ValidationFailed("Renter is required")

    authz = _authz(db, registry)
    if data.contract_id is not None:
        authz.require(subject, "payment", "create", via=("contract", int(data.contract_id)))
    else:
        authz.require(subject, "payment", "create", via=("renter", int(data.renter_id)))

    with atomic(db):
        renter = must_get_renter(db, data.renter_id)
        _check_contract_renter(db, data.contract_id, renter.id)

        now = datetime.utcnow()
        payment = Payment(
            renter_id=renter.id,
            contract_id=data.contract_id,
            amount=float(data.amount),
            due_date=data.due_date,
            paid_date=data.paid_date,
            description=data.description,
            status=data.status,
            created_at=now,
            updated_at=now,
        )
        if payment.status == PaymentStatus.PAID.value and payment.paid_date is None:
            payment.paid_date = date.today()
        db.add(payment)
        db.flush()

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="payment.create",
            entity_type="Payment",
            entity_id=payment.id,
            after=payment.model_dump(),
        )

    log.info("payment created", extra={"payment_id": payment.id, "contract_id": payment.contract_id, "user_id": subject.user_id})
    return payment


def update_payment(
    db: Session,
    subject: Any,
    payment_id: int,
    patch: PaymentPatch,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Payment:
    authz = _authz(db, registry)
    authz.require(subject, "payment", "update", payment_id)

    changes = patch.model_dump(exclude_unset=True)
    for k in ("renter_id", "amount", "due_date", "status"):
        if k in changes and changes[k] is None:
            raise ValidationFailed(f"{k} cannot be cleared")
    if "amount" in changes and float(changes["amount"]) <= 0:
        raise ValidationFailed("Amount must be greater than zero")

    with atomic(db):
        payment = lock_row(db, Payment, payment_id, "payment")
        if payment.status == PaymentStatus.PAID.value:
            if changes.get("status") == PaymentStatus.PAID.value:
                raise Conflict("Payment is already paid", details={"payment_id": payment.id})
            frozen = sorted(k for k in _PAID_FROZEN if k in changes and changes[k] != getattr(payment, k))
            if frozen:
                raise Conflict(
                    f"A paid payment cannot change {', '.join(frozen)}",
                    details={"payment_id": payment.id, "fields": frozen},
                )

        if "renter_id" in changes or "contract_id" in changes:
            renter_id = changes.get("renter_id", payment.renter_id)
            contract_id = changes.get("contract_id", payment.contract_id)
            # moving a payment needs write access at the destination too
            if contract_id is not None:
                authz.require(subject, "payment", "update", via=("contract", int(contract_id)))
            else:
                authz.require(subject, "payment", "update", via=("renter", int(renter_id)))
            must_get_renter(db, renter_id)
            _check_contract_renter(db, contract_id, renter_id)

        before = payment.model_dump()
        for k, v in changes.items():
            setattr(payment, k, v)
        if payment.status == PaymentStatus.PAID.value and payment.paid_date is None:
            payment.paid_date = date.today()
        payment.updated_at = datetime.utcnow()
        db.flush()

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="payment.update",
            entity_type="Payment",
            entity_id=payment.id,
            before=before,
            after=payment.model_dump(),
        )

    log.info("payment updated", extra={"payment_id": payment.id, "user_id": subject.user_id})
    return payment


def mark_payment_as_paid(
    db: Session,
    subject: Any,
    payment_id: int,
    paid_date: Optional[date] = None,
    reference: Optional[str] = None,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Payment:
    """
    PENDING/OVERDUE/CANCELLED -> PAID. Paying twice is a Conflict and leaves
    the stored record untouched.
    """
    _authz(db, registry).require(subject, "payment", "update", payment_id)

    with atomic(db):
        payment = lock_row(db, Payment, payment_id, "payment")
        if payment.status == PaymentStatus.PAID.value:
            raise Conflict("Payment is already paid", details={"payment_id": payment.id})

        before = payment.model_dump()
        payment.status = PaymentStatus.PAID.value
        payment.paid_date = paid_date or date.today()
        if reference:
            payment.description = reference
        payment.updated_at = datetime.utcnow()
        db.flush()

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="payment.mark_paid",
            entity_type="Payment",
            entity_id=payment.id,
            before=before,
            after=payment.model_dump(),
        )

    log.info("payment marked paid", extra={"payment_id": payment.id, "user_id": subject.user_id})
    return payment


def delete_payment(
    db: Session,
    subject: Any,
    payment_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> bool:
    _authz(db, registry).require(subject, "payment", "delete", payment_id)

    with atomic(db):
        payment = lock_row(db, Payment, payment_id, "payment")
        if payment.status == PaymentStatus.PAID.value:
            raise Conflict("Cannot delete a paid payment", details={"payment_id": payment.id})
        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="payment.delete",
            entity_type="Payment",
            entity_id=payment.id,
            before=payment.model_dump(),
        )
        db.delete(payment)

    log.info("payment deleted", extra={"payment_id": payment_id, "user_id": subject.user_id})
    return True


def get_payment(
    db: Session,
    subject: Any,
    payment_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Payment:
    _authz(db, registry).require(subject, "payment", "read", payment_id)
    return must_get_payment(db, payment_id)


def list_payments(
    db: Session,
    subject: Any,
    *,
    renter_id: Optional[int] = None,
    contract_id: Optional[int] = None,
    status: Optional[str] = None,
    due_from: Optional[date] = None,
    due_to: Optional[date] = None,
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: str = "due_date",
    sort_order: str = "desc",
    registry: Optional[RoleRegistry] = None,
) -> Page:
    authz = _authz(db, registry)
    if contract_id is not None:
        authz.require(subject, "payment", "list", via=("contract", int(contract_id)))
    elif renter_id is not None:
        authz.require(subject, "payment", "list", via=("renter", int(renter_id)))
    else:
        authz.require(subject, "payment", "list")

    if due_from is not None and due_to is not None and due_from > due_to:
        raise ValidationFailed("due_from must be on or before due_to")

    q = select(Payment)
    if renter_id is not None:
        q = q.where(Payment.renter_id == int(renter_id))
    if contract_id is not None:
        q = q.where(Payment.contract_id == int(contract_id))
    if status:
        if status not in {s.value for s in PaymentStatus}:
            raise ValidationFailed(f"unknown payment status {status!r}")
        q = q.where(Payment.status == status)
    if due_from is not None:
        q = q.where(Payment.due_date >= due_from)
    if due_to is not None:
        q = q.where(Payment.due_date <= due_to)

    q = order_by_field(q, _SORTABLE, sort_by, sort_order)
    return paginate(db, q, page=page, limit=limit)
