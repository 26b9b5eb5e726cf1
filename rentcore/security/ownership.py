"""
Ownership chains: resource instance -> owning user id.

    property     Property.user_id
    room         Room -> Property
    renter       linked AppUser, else Renter -> Room -> Property
    contract     Contract -> Room -> Property
    document     Document -> Renter chain, else Document -> Room chain
    payment      Payment -> Contract chain, else Payment -> Renter -> Room -> Property
    maintenance  MaintenanceEvent -> Room -> Property
    user         the user itself

Each rule is a small function over a Session so it can be exercised on its own.
Missing rows anywhere on the chain raise NotFound; callers in the permission
layer fold that into a denial.
"""
from __future__ import annotations

from typing import Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFound
from ..models import (
    AppUser,
    Contract,
    Document,
    MaintenanceEvent,
    Payment,
    Property,
    Renter,
    Room,
    contract_renters,
)

M = TypeVar("M")


def _must_get(db: Session, model: type[M], entity: str, entity_id: int) -> M:
    row = db.get(model, int(entity_id))
    if row is None:
        raise NotFound(entity, entity_id)
    return row


def must_get_property(db: Session, property_id: int) -> Property:
    return _must_get(db, Property, "property", property_id)


def must_get_room(db: Session, room_id: int) -> Room:
    return _must_get(db, Room, "room", room_id)


def must_get_renter(db: Session, renter_id: int) -> Renter:
    return _must_get(db, Renter, "renter", renter_id)


def must_get_contract(db: Session, contract_id: int) -> Contract:
    return _must_get(db, Contract, "contract", contract_id)


def must_get_payment(db: Session, payment_id: int) -> Payment:
    return _must_get(db, Payment, "payment", payment_id)


def must_get_maintenance_event(db: Session, event_id: int) -> MaintenanceEvent:
    return _must_get(db, MaintenanceEvent, "maintenance event", event_id)


# -----------------------------
# Per-kind rules
# -----------------------------
def owner_of_property(db: Session, property_id: int) -> int:
    return int(must_get_property(db, property_id).user_id)


def owner_of_room(db: Session, room_id: int) -> int:
    room = must_get_room(db, room_id)
    return owner_of_property(db, room.property_id)


def property_owner_of_renter(db: Session, renter_id: int) -> Optional[int]:
    """Owner of the property holding the renter's current room, if any."""
    renter = must_get_renter(db, renter_id)
    if renter.room_id is None:
        return None
    return owner_of_room(db, renter.room_id)


def owner_of_renter(db: Session, renter_id: int) -> int:
    renter = must_get_renter(db, renter_id)
    if renter.user_id is not None:
        return int(renter.user_id)
    owner = property_owner_of_renter(db, renter_id)
    if owner is None:
        raise NotFound("renter owner", renter_id)
    return owner


def owner_of_contract(db: Session, contract_id: int) -> int:
    contract = must_get_contract(db, contract_id)
    return owner_of_room(db, contract.room_id)


def owner_of_document(db: Session, document_id: int) -> int:
    doc = _must_get(db, Document, "document", document_id)
    if doc.renter_id is not None:
        return owner_of_renter(db, doc.renter_id)
    if doc.room_id is not None:
        return owner_of_room(db, doc.room_id)
    raise NotFound("document owner", document_id)


def owner_of_payment(db: Session, payment_id: int) -> int:
    payment = must_get_payment(db, payment_id)
    if payment.contract_id is not None:
        return owner_of_contract(db, payment.contract_id)
    owner = property_owner_of_renter(db, payment.renter_id)
    if owner is None:
        raise NotFound("payment owner", payment_id)
    return owner


def owner_of_maintenance(db: Session, event_id: int) -> int:
    event = must_get_maintenance_event(db, event_id)
    return owner_of_room(db, event.room_id)


def owner_of_user(db: Session, user_id: int) -> int:
    return int(_must_get(db, AppUser, "user", user_id).id)


OWNER_RULES: dict[str, Callable[[Session, int], int]] = {
    "property": owner_of_property,
    "room": owner_of_room,
    "renter": owner_of_renter,
    "contract": owner_of_contract,
    "document": owner_of_document,
    "payment": owner_of_payment,
    "maintenance": owner_of_maintenance,
    "user": owner_of_user,
}


class OwnershipResolver:
    """Read-only; bound to one request's session, nothing is cached."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def supports(self, kind: str) -> bool:
        return kind in OWNER_RULES

    def owner_of(self, kind: str, resource_id: int) -> int:
        rule = OWNER_RULES.get(kind)
        if rule is None:
            raise NotFound(kind, resource_id, message=f"no ownership rule for {kind}")
        return rule(self.db, int(resource_id))

    def managers_of_renter(self, renter_id: int) -> set[int]:
        """
        Property owners who manage a renter: through the renter's current room
        and through the rooms of every contract the renter is party to.
        """
        out: set[int] = set()
        current = property_owner_of_renter(self.db, renter_id)
        if current is not None:
            out.add(current)

        q = (
            select(Property.user_id)
            .join(Room, Room.property_id == Property.id)
            .join(Contract, Contract.room_id == Room.id)
            .join(contract_renters, contract_renters.c.contract_id == Contract.id)
            .where(contract_renters.c.renter_id == int(renter_id))
        )
        out.update(int(uid) for uid in self.db.scalars(q).all())
        return out

    def linked_user_of_renter(self, renter_id: int) -> Optional[int]:
        renter = must_get_renter(self.db, renter_id)
        return int(renter.user_id) if renter.user_id is not None else None
