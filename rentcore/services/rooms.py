from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import atomic
from ..domain.audit import audit_write
from ..errors import Conflict, ValidationFailed
from ..models import Room, RoomStatus
from ..schemas import RoomCreate, RoomPatch
from ..security.evaluator import PermissionEvaluator
from ..security.ownership import must_get_property, must_get_room
from ..security.roles import RoleRegistry, default_registry
from .pagination import Page, order_by_field, paginate
from .room_status import has_active_contract, has_in_progress_event, lock_room, set_room_status

log = logging.getLogger("rentcore.rooms")

_SORTABLE = {
    "created_at": Room.created_at,
    "number": Room.number,
    "rent": Room.rent,
    "status": Room.status,
    "id": Room.id,
}


def _authz(db: Session, registry: Optional[RoleRegistry]) -> PermissionEvaluator:
    return PermissionEvaluator(db, registry or default_registry())


def check_status_change(db: Session, room: Room, target: str) -> None:
    """
    Guard for direct status edits. A room can only claim OCCUPIED or
    MAINTENANCE when a contract or event backs it, and cannot be set
    AVAILABLE/RESERVED while one still does.
    """
    if target == room.status:
        return
    active = has_active_contract(db, room.id)
    in_progress = has_in_progress_event(db, room.id)

    if target == RoomStatus.OCCUPIED.value:
        if not active:
            raise Conflict("Room cannot be OCCUPIED without an active contract", details={"room_id": room.id})
        if in_progress:
            raise Conflict("Room is under maintenance", details={"room_id": room.id})
    elif target == RoomStatus.MAINTENANCE.value:
        if not in_progress:
            raise Conflict(
                "Room cannot be put under MAINTENANCE without an in-progress event",
                details={"room_id": room.id},
            )
    elif target in (RoomStatus.AVAILABLE.value, RoomStatus.RESERVED.value):
        if active or in_progress:
            raise Conflict(
                f"Room cannot be {target} while it has an active contract or in-progress maintenance",
                details={"room_id": room.id, "active_contract": active, "in_progress_event": in_progress},
            )
    else:
        raise ValidationFailed(f"unknown room status {target!r}")


def create_room(
    db: Session,
    subject: Any,
    data: RoomCreate,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Room:
    if data.property_id is None:
        raise ValidationFailed("Property is required")
    if not (data.number or "").strip():
        raise ValidationFailed("Room number is required")

    _authz(db, registry).require(subject, "room", "create", via=("property", int(data.property_id)))

    with atomic(db):
        prop = must_get_property(db, data.property_id)
        number = data.number.strip()
        dup = db.scalar(select(Room.id).where(Room.property_id == prop.id, Room.number == number))
        if dup is not None:
            raise Conflict(f"Room {number} already exists in this property", details={"room_id": dup})

        now = datetime.utcnow()
        room = Room(
            property_id=prop.id,
            number=number,
            floor=data.floor,
            size=data.size,
            rent=data.rent,
            status=RoomStatus.AVAILABLE.value,
            created_at=now,
            updated_at=now,
        )
        db.add(room)
        db.flush()

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="room.create",
            entity_type="Room",
            entity_id=room.id,
            after=room.model_dump(),
        )

    log.info("room created", extra={"room_id": room.id, "user_id": subject.user_id})
    return room


def update_room(
    db: Session,
    subject: Any,
    room_id: int,
    patch: RoomPatch,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Room:
    _authz(db, registry).require(subject, "room", "update", room_id)

    changes = patch.model_dump(exclude_unset=True)
    if "number" in changes and not (changes["number"] or "").strip():
        raise ValidationFailed("Room number cannot be empty")
    if "status" in changes and changes["status"] is None:
        raise ValidationFailed("status cannot be cleared")

    with atomic(db):
        room = lock_room(db, room_id)
        before = room.model_dump()

        target = changes.pop("status", None)
        if target is not None:
            check_status_change(db, room, target)

        for k, v in changes.items():
            setattr(room, k, v)
        if target is not None:
            set_room_status(room, RoomStatus(target))
        room.updated_at = datetime.utcnow()
        db.flush()

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="room.update",
            entity_type="Room",
            entity_id=room.id,
            before=before,
            after=room.model_dump(),
        )

    log.info("room updated", extra={"room_id": room.id, "user_id": subject.user_id})
    return room


def delete_room(
    db: Session,
    subject: Any,
    room_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> bool:
    _authz(db, registry).require(subject, "room", "delete", room_id)

    with atomic(db):
        room = lock_room(db, room_id)
        if has_active_contract(db, room.id):
            raise Conflict("Cannot delete a room with an active contract", details={"room_id": room.id})
        if has_in_progress_event(db, room.id):
            raise Conflict("Cannot delete a room under maintenance", details={"room_id": room.id})
        if room.contracts or room.maintenance_events:
            raise Conflict(
                "Cannot delete a room with contract or maintenance history",
                details={"room_id": room.id},
            )
        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="room.delete",
            entity_type="Room",
            entity_id=room.id,
            before=room.model_dump(),
        )
        db.delete(room)

    log.info("room deleted", extra={"room_id": room_id, "user_id": subject.user_id})
    return True


def get_room(
    db: Session,
    subject: Any,
    room_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> Room:
    _authz(db, registry).require(subject, "room", "read", room_id)
    return must_get_room(db, room_id)


def list_rooms(
    db: Session,
    subject: Any,
    *,
    property_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: str = "number",
    sort_order: str = "asc",
    registry: Optional[RoleRegistry] = None,
) -> Page:
    authz = _authz(db, registry)
    if property_id is not None:
        authz.require(subject, "room", "list", via=("property", int(property_id)))
    else:
        authz.require(subject, "room", "list")

    q = select(Room)
    if property_id is not None:
        q = q.where(Room.property_id == int(property_id))
    if status:
        if status not in {s.value for s in RoomStatus}:
            raise ValidationFailed(f"unknown room status {status!r}")
        q = q.where(Room.status == status)

    q = order_by_field(q, _SORTABLE, sort_by, sort_order)
    return paginate(db, q, page=page, limit=limit)
