"""
Room status bookkeeping shared by the contract, maintenance and room services.

Two invariants hold at every commit:
  - a room is OCCUPIED iff some contract on it is ACTIVE
  - a room is MAINTENANCE only while some event on it is IN_PROGRESS

MAINTENANCE takes precedence over OCCUPIED while work is in progress; when the
last in-progress event closes the room goes back to OCCUPIED or AVAILABLE
depending on its contracts.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional, Type, TypeVar

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFound
from ..models import (
    Contract,
    ContractStatus,
    MaintenanceEvent,
    MaintenanceStatus,
    Room,
    RoomStatus,
    contract_renters,
)

log = logging.getLogger("rentcore.rooms")

RELEASE_SCOPES = ("shared_renter", "room")

M = TypeVar("M")


def lock_row(db: Session, model: Type[M], row_id: int, entity: str) -> M:
    """
    SELECT ... FOR UPDATE with the identity map refreshed, so guards read the
    committed state rather than whatever this session loaded earlier.
    """
    row = db.scalar(
        select(model)
        .where(model.id == int(row_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if row is None:
        raise NotFound(entity, row_id)
    return row


def lock_room(db: Session, room_id: int) -> Room:
    """
    Row-lock the room for the rest of the transaction.
    Concurrent coordinator calls touching the same room serialize here.
    """
    return lock_row(db, Room, room_id, "room")


def set_room_status(room: Room, status: RoomStatus) -> bool:
    if room.status == status.value:
        return False
    log.info(
        "room status %s -> %s",
        room.status,
        status.value,
        extra={"room_id": room.id},
    )
    room.status = status.value
    room.updated_at = datetime.utcnow()
    return True


def has_active_contract(
    db: Session,
    room_id: int,
    *,
    exclude_contract_id: Optional[int] = None,
    renter_ids: Optional[Iterable[int]] = None,
) -> bool:
    """
    Is any ACTIVE contract on the room left?

    With ``renter_ids`` only contracts sharing at least one of those renters count.
    """
    q = select(Contract.id).where(
        Contract.room_id == int(room_id),
        Contract.status == ContractStatus.ACTIVE.value,
    )
    if exclude_contract_id is not None:
        q = q.where(Contract.id != int(exclude_contract_id))
    if renter_ids is not None:
        ids = [int(r) for r in renter_ids]
        if not ids:
            return False
        q = q.where(
            exists().where(
                contract_renters.c.contract_id == Contract.id,
                contract_renters.c.renter_id.in_(ids),
            )
        )
    return db.scalar(q.limit(1)) is not None


def has_in_progress_event(db: Session, room_id: int, *, exclude_event_id: Optional[int] = None) -> bool:
    q = select(MaintenanceEvent.id).where(
        MaintenanceEvent.room_id == int(room_id),
        MaintenanceEvent.status == MaintenanceStatus.IN_PROGRESS.value,
    )
    if exclude_event_id is not None:
        q = q.where(MaintenanceEvent.id != int(exclude_event_id))
    return db.scalar(q.limit(1)) is not None


def release_room_after_contract(db: Session, contract: Contract, *, scope: Optional[str] = None) -> bool:
    """
    Called after ``contract`` moved to TERMINATED/EXPIRED, inside the same transaction.

    shared_renter: the room is released unless another ACTIVE contract on it
        shares a renter with ``contract``.
    room: the room is released unless any other ACTIVE contract on it exists.

    Only an OCCUPIED room is flipped to AVAILABLE; a room under maintenance
    keeps its status. Returns True when the room status changed.
    """
    scope = (scope or settings.room_release_scope).strip().lower()
    if scope not in RELEASE_SCOPES:
        raise ValueError(f"unknown room release scope {scope!r}")

    room = lock_room(db, contract.room_id)
    renter_ids = contract.renter_ids if scope == "shared_renter" else None
    if has_active_contract(db, room.id, exclude_contract_id=contract.id, renter_ids=renter_ids):
        return False
    if room.status != RoomStatus.OCCUPIED.value:
        return False
    return set_room_status(room, RoomStatus.AVAILABLE)


def restore_room_after_maintenance(db: Session, room: Room, *, closed_event_id: int) -> bool:
    """
    Called when an event leaves IN_PROGRESS. The room leaves MAINTENANCE only
    when no other event on it is still in progress.
    """
    if room.status != RoomStatus.MAINTENANCE.value:
        return False
    if has_in_progress_event(db, room.id, exclude_event_id=closed_event_id):
        return False
    if has_active_contract(db, room.id):
        return set_room_status(room, RoomStatus.OCCUPIED)
    return set_room_status(room, RoomStatus.AVAILABLE)


def room_invariant_violations(db: Session, room_id: int) -> list[str]:
    """Human-readable occupancy/maintenance inconsistencies for one room (empty when consistent)."""
    room = db.get(Room, int(room_id))
    if room is None:
        raise NotFound("room", room_id)

    out: list[str] = []
    active = has_active_contract(db, room.id)
    in_progress = has_in_progress_event(db, room.id)

    if room.status == RoomStatus.OCCUPIED.value and not active:
        out.append("room is OCCUPIED without an ACTIVE contract")
    if active and room.status not in (RoomStatus.OCCUPIED.value, RoomStatus.MAINTENANCE.value):
        out.append(f"room has an ACTIVE contract but status is {room.status}")
    if room.status == RoomStatus.MAINTENANCE.value and not in_progress:
        out.append("room is MAINTENANCE without an IN_PROGRESS event")
    return out
