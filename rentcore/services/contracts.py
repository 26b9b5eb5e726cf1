from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..db import atomic
from ..domain.audit import audit_write
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import CONTRACT_TERMINAL, Contract, ContractStatus, Renter, RoomStatus, contract_renters
from ..schemas import ContractCreate, ContractPatch
from ..security.evaluator import PermissionEvaluator
from ..security.ownership import must_get_contract
from ..security.roles import RoleRegistry, default_registry
from .pagination import Page, order_by_field, paginate
from .room_status import lock_room, lock_row, release_room_after_contract, set_room_status

log = logging.getLogger("rentcore.contracts")

_REQUIRED = (
    ("name", "Name is required"),
    ("room_id", "Room is required"),
    ("start_date", "Start date is required"),
    ("end_date", "End date is required"),
    ("amount", "Amount is required"),
)

_SORTABLE = {
    "created_at": Contract.created_at,
    "start_date": Contract.start_date,
    "end_date": Contract.end_date,
    "amount": Contract.amount,
    "id": Contract.id,
}


def _authz(db: Session, registry: Optional[RoleRegistry]) -> PermissionEvaluator:
    return PermissionEvaluator(db, registry or default_registry())


def _check_terms(start: Optional[date], end: Optional[date], amount: Optional[float]) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationFailed("Start date must be on or before end date")
    if amount is not None and float(amount) <= 0:
        raise ValidationFailed("Amount must be greater than zero")


def _snapshot(c: Contract) -> dict[str, Any]:
    out = c.model_dump()
    out["renter_ids"] = c.renter_ids
    return out


def create_contract(
    db: Session,
    subject: Any,
    data: ContractCreate,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Contract:
    """
    Create a contract and occupy its room in one transaction.

    Raises:
      ValidationFailed  required field missing, no renters, bad dates/amount
      Conflict          room is not AVAILABLE
      NotFound          room or any renter missing
    """
    for field, message in _REQUIRED:
        if getattr(data, field) in (None, ""):
            raise ValidationFailed(message)
    renter_ids = sorted({int(r) for r in (data.renter_ids or [])})
    if not renter_ids:
        raise ValidationFailed("At least one renter is required")
    _check_terms(data.start_date, data.end_date, data.amount)
    if data.status in CONTRACT_TERMINAL:
        raise ValidationFailed(f"Contract cannot be created as {data.status.lower()}")

    _authz(db, registry).require(subject, "contract", "create", via=("room", int(data.room_id)))

    with atomic(db):
        room = lock_room(db, data.room_id)
        if room.status != RoomStatus.AVAILABLE.value:
            raise Conflict(
                f"Room is currently {room.status.lower()}",
                details={"room_id": room.id, "status": room.status},
            )

        renters = db.scalars(select(Renter).where(Renter.id.in_(renter_ids))).all()
        if len(renters) != len(renter_ids):
            missing = sorted(set(renter_ids) - {int(r.id) for r in renters})
            raise NotFound("renter", missing, message="One or more renters not found")

        set_room_status(room, RoomStatus.OCCUPIED)

        now = datetime.utcnow()
        contract = Contract(
            name=data.name,
            room_id=room.id,
            start_date=data.start_date,
            end_date=data.end_date,
            amount=float(data.amount),
            deposit=data.deposit,
            type=data.type,
            status=data.status,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        contract.renters = list(renters)
        db.add(contract)
        db.flush()

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="contract.create",
            entity_type="Contract",
            entity_id=contract.id,
            after=_snapshot(contract),
        )

    log.info("contract created", extra={"contract_id": contract.id, "room_id": contract.room_id, "user_id": subject.user_id})
    return contract


def update_contract(
    db: Session,
    subject: Any,
    contract_id: int,
    patch: ContractPatch,
    *,
    registry: Optional[RoleRegistry] = None,
    release_scope: Optional[str] = None,
) -> Contract:
    """
    Apply a partial update. A patch that moves the contract into TERMINATED or
    EXPIRED also releases the room (see release_room_after_contract).
    """
    _authz(db, registry).require(subject, "contract", "update", contract_id)

    changes = patch.model_dump(exclude_unset=True)
    for k in ("name", "start_date", "end_date", "amount", "status"):
        if k in changes and changes[k] is None:
            raise ValidationFailed(f"{k} cannot be cleared")

    with atomic(db):
        lock_room(db, must_get_contract(db, contract_id).room_id)
        contract = lock_row(db, Contract, contract_id, "contract")
        if contract.status in CONTRACT_TERMINAL and changes.get("status", contract.status) not in CONTRACT_TERMINAL:
            raise Conflict(
                f"Contract is already {contract.status.lower()}",
                details={"contract_id": contract.id, "status": contract.status},
            )
        if contract.status == ContractStatus.ACTIVE.value and changes.get("status") == ContractStatus.PENDING.value:
            raise Conflict(
                "An active contract cannot go back to pending",
                details={"contract_id": contract.id, "status": contract.status},
            )
        before = _snapshot(contract)

        _check_terms(
            changes.get("start_date", contract.start_date),
            changes.get("end_date", contract.end_date),
            changes.get("amount", contract.amount),
        )

        for k, v in changes.items():
            setattr(contract, k, v)
        contract.updated_at = datetime.utcnow()
        db.flush()

        released = False
        if changes.get("status") in CONTRACT_TERMINAL:
            released = release_room_after_contract(db, contract, scope=release_scope)

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="contract.update",
            entity_type="Contract",
            entity_id=contract.id,
            before=before,
            after=_snapshot(contract),
        )

    log.info(
        "contract updated (room released=%s)",
        released,
        extra={"contract_id": contract.id, "room_id": contract.room_id, "user_id": subject.user_id},
    )
    return contract


def terminate_contract(
    db: Session,
    subject: Any,
    contract_id: int,
    reason: Optional[str],
    termination_date: Optional[date] = None,
    *,
    registry: Optional[RoleRegistry] = None,
    release_scope: Optional[str] = None,
) -> Contract:
    if not (reason or "").strip():
        raise ValidationFailed("Termination reason is required")

    _authz(db, registry).require(subject, "contract", "update", contract_id)

    with atomic(db):
        lock_room(db, must_get_contract(db, contract_id).room_id)
        contract = lock_row(db, Contract, contract_id, "contract")
        if contract.status in CONTRACT_TERMINAL:
            raise Conflict(
                f"Contract is already {contract.status.lower()}",
                details={"contract_id": contract.id, "status": contract.status},
            )
        before = _snapshot(contract)

        contract.status = ContractStatus.TERMINATED.value
        contract.termination_reason = reason.strip()
        contract.termination_date = termination_date or date.today()
        contract.updated_at = datetime.utcnow()
        db.flush()

        released = release_room_after_contract(db, contract, scope=release_scope)

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="contract.terminate",
            entity_type="Contract",
            entity_id=contract.id,
            before=before,
            after=_snapshot(contract),
        )

    log.info(
        "contract terminated (room released=%s)",
        released,
        extra={"contract_id": contract.id, "room_id": contract.room_id, "user_id": subject.user_id},
    )
    return contract


def delete_contract(
    db: Session,
    subject: Any,
    contract_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
    release_scope: Optional[str] = None,
) -> bool:
    _authz(db, registry).require(subject, "contract", "delete", contract_id)

    with atomic(db):
        lock_room(db, must_get_contract(db, contract_id).room_id)
        contract = lock_row(db, Contract, contract_id, "contract")
        if contract.payments:
            raise Conflict(
                "Cannot delete a contract with associated payments. Terminate it instead.",
                details={"contract_id": contract.id, "payments": len(contract.payments)},
            )
        # an ACTIVE contract being deleted still holds the room
        released = False
        if contract.status not in CONTRACT_TERMINAL:
            released = release_room_after_contract(db, contract, scope=release_scope)
        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="contract.delete",
            entity_type="Contract",
            entity_id=contract.id,
            before=_snapshot(contract),
        )
        db.delete(contract)

    log.info("contract deleted (room released=%s)", released, extra={"contract_id": contract_id, "user_id": subject.user_id})
    return True


def get_contract(
    db: Session,
    subject: Any,
    contract_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Contract:
    _authz(db, registry).require(subject, "contract", "read", contract_id)
    return must_get_contract(db, contract_id)


def list_contracts(
    db: Session,
    subject: Any,
    *,
    room_id: Optional[int] = None,
    renter_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    registry: Optional[RoleRegistry] = None,
) -> Page:
    """
    Paginated contract list. Filtering by room or renter requires access to
    that room/renter; otherwise the list role grant is enough.
    """
    authz = _authz(db, registry)
    if room_id is not None:
        authz.require(subject, "contract", "list", via=("room", int(room_id)))
    elif renter_id is not None:
        authz.require(subject, "contract", "list", via=("renter", int(renter_id)))
    else:
        authz.require(subject, "contract", "list")

    q = select(Contract).options(selectinload(Contract.renters))
    if room_id is not None:
        q = q.where(Contract.room_id == int(room_id))
    if renter_id is not None:
        q = q.where(
            Contract.id.in_(
                select(contract_renters.c.contract_id).where(contract_renters.c.renter_id == int(renter_id))
            )
        )
    if status:
        if status not in {s.value for s in ContractStatus}:
            raise ValidationFailed(f"unknown contract status {status!r}")
        q = q.where(Contract.status == status)

    q = order_by_field(q, _SORTABLE, sort_by, sort_order)
    return paginate(db, q, page=page, limit=limit)
