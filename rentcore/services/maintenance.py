"""
Maintenance events and the room status they drive.

    PENDING -> IN_PROGRESS -> COMPLETED
         \\         \\-----> CANCELLED
          \\--------------> COMPLETED | CANCELLED

Entering IN_PROGRESS puts the room under MAINTENANCE whatever it was before.
Leaving IN_PROGRESS hands the room back (see restore_room_after_maintenance).
COMPLETED and CANCELLED are final, and nothing moves back to PENDING.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import atomic
from ..domain.audit import audit_write
from ..errors import Conflict, ValidationFailed
from ..models import MAINTENANCE_TERMINAL, MaintenanceEvent, MaintenanceStatus, RoomStatus
from ..schemas import MaintenanceEventCreate, MaintenanceEventPatch
from ..security.evaluator import PermissionEvaluator
from ..security.ownership import must_get_maintenance_event
from ..security.roles import RoleRegistry, default_registry
from .pagination import Page, order_by_field, paginate
from .room_status import lock_room, lock_row, restore_room_after_maintenance, set_room_status

log = logging.getLogger("rentcore.maintenance")

PENDING = MaintenanceStatus.PENDING.value
IN_PROGRESS = MaintenanceStatus.IN_PROGRESS.value
COMPLETED = MaintenanceStatus.COMPLETED.value

# status -> statuses a patch may move it to
TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({IN_PROGRESS}) | MAINTENANCE_TERMINAL,
    IN_PROGRESS: MAINTENANCE_TERMINAL,
}

_SORTABLE = {
    "created_at": MaintenanceEvent.created_at,
    "scheduled_date": MaintenanceEvent.scheduled_date,
    "priority": MaintenanceEvent.priority,
    "status": MaintenanceEvent.status,
    "id": MaintenanceEvent.id,
}


def _authz(db: Session, registry: Optional[RoleRegistry]) -> PermissionEvaluator:
    return PermissionEvaluator(db, registry or default_registry())


def create_maintenance_event(
    db: Session,
    subject: Any,
    data: MaintenanceEventCreate,
    *,
    registry: Optional[RoleRegistry] = None,
) -> MaintenanceEvent:
    if not (data.title or "").strip():
        raise ValidationFailed("Title is required")
    if not (data.description or "").strip():
        raise ValidationFailed("Description is required")
    if data.room_id is None:
        raise ValidationFailed("Room is required")
    if data.completed_date is not None and data.status != COMPLETED:
        raise ValidationFailed("completed_date is only allowed on a COMPLETED event")

    _authz(db, registry).require(subject, "maintenance", "create", via=("room", int(data.room_id)))

    with atomic(db):
        room = lock_room(db, data.room_id)

        now = datetime.utcnow()
        event = MaintenanceEvent(
            room_id=room.id,
            title=data.title.strip(),
            description=data.description.strip(),
            priority=data.priority,
            status=data.status,
            scheduled_date=data.scheduled_date,
            completed_date=data.completed_date,
            cost=data.cost,
            created_at=now,
            updated_at=now,
        )
        if event.status == COMPLETED and event.completed_date is None:
            event.completed_date = now
        db.add(event)
        db.flush()

        if event.status == IN_PROGRESS:
            set_room_status(room, RoomStatus.MAINTENANCE)

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="maintenance.create",
            entity_type="MaintenanceEvent",
            entity_id=event.id,
            after=event.model_dump(),
        )

    log.info(
        "maintenance event created",
        extra={"event_id": event.id, "room_id": event.room_id, "user_id": subject.user_id},
    )
    return event


def update_maintenance_event(
    db: Session,
    subject: Any,
    event_id: int,
    patch: MaintenanceEventPatch,
    *,
    registry: Optional[RoleRegistry] = None,
) -> MaintenanceEvent:
    _authz(db, registry).require(subject, "maintenance", "update", event_id)

    changes = patch.model_dump(exclude_unset=True)
    for k in ("title", "description", "priority", "status"):
        if k in changes and changes[k] is None:
            raise ValidationFailed(f"{k} cannot be cleared")

    with atomic(db):
        room = lock_room(db, must_get_maintenance_event(db, event_id).room_id)
        event = lock_row(db, MaintenanceEvent, event_id, "maintenance event")

        old_status = event.status
        new_status = changes.get("status", old_status)

        if new_status != old_status and new_status not in TRANSITIONS.get(old_status, frozenset()):
            if old_status in MAINTENANCE_TERMINAL:
                message = f"Maintenance event is already {old_status.lower()}"
            else:
                message = f"Maintenance event cannot go from {old_status} to {new_status}"
            raise Conflict(message, details={"event_id": event.id, "status": old_status})
        if changes.get("completed_date") is not None and new_status != COMPLETED:
            raise ValidationFailed("completed_date is only allowed on a COMPLETED event")

        before = event.model_dump()
        for k, v in changes.items():
            setattr(event, k, v)
        if new_status == COMPLETED and event.completed_date is None:
            event.completed_date = datetime.utcnow()
        event.updated_at = datetime.utcnow()
        db.flush()

        if new_status == IN_PROGRESS and old_status != IN_PROGRESS:
            set_room_status(room, RoomStatus.MAINTENANCE)
        elif old_status == IN_PROGRESS and new_status != IN_PROGRESS:
            restore_room_after_maintenance(db, room, closed_event_id=event.id)

        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="maintenance.update",
            entity_type="MaintenanceEvent",
            entity_id=event.id,
            before=before,
            after=event.model_dump(),
        )

    log.info(
        "maintenance event %s -> %s",
        old_status,
        new_status,
        extra={"event_id": event.id, "room_id": event.room_id, "user_id": subject.user_id},
    )
    return event


def delete_maintenance_event(
    db: Session,
    subject: Any,
    event_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> bool:
    _authz(db, registry).require(subject, "maintenance", "delete", event_id)

    with atomic(db):
        lock_room(db, must_get_maintenance_event(db, event_id).room_id)
        event = lock_row(db, MaintenanceEvent, event_id, "maintenance event")
        if event.status == IN_PROGRESS:
            raise Conflict(
                "Cannot delete a maintenance event that is in progress",
                details={"event_id": event.id},
            )
        audit_write(
            db,
            actor_user_id=subject.user_id,
            action="maintenance.delete",
            entity_type="MaintenanceEvent",
            entity_id=event.id,
            before=event.model_dump(),
        )
        db.delete(event)

    log.info("maintenance event deleted", extra={"event_id": event_id, "user_id": subject.user_id})
    return True


def get_maintenance_event(
    db: Session,
    subject: Any,
    event_id: int,
    *,
    registry: Optional[RoleRegistry] = None,
) -> MaintenanceEvent:
    _authz(db, registry).require(subject, "maintenance", "read", event_id)
    return must_get_maintenance_event(db, event_id)


def list_maintenance_events(
    db: Session,
    subject: Any,
    *,
    room_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    registry: Optional[RoleRegistry] = None,
) -> Page:
    authz = _authz(db, registry)
    if room_id is not None:
        authz.require(subject, "maintenance", "list", via=("room", int(room_id)))
    else:
        authz.require(subject, "maintenance", "list")

    q = select(MaintenanceEvent)
    if room_id is not None:
        q = q.where(MaintenanceEvent.room_id == int(room_id))
    if status:
        if status not in {s.value for s in MaintenanceStatus}:
            raise ValidationFailed(f"unknown maintenance status {status!r}")
        q = q.where(MaintenanceEvent.status == status)
    if priority:
        q = q.where(MaintenanceEvent.priority == priority.strip().upper())

    q = order_by_field(q, _SORTABLE, sort_by, sort_order)
    return paginate(db, q, page=page, limit=limit)
