from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


# -----------------------------
# Status enums (stored as plain strings)
# -----------------------------
class RoomStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"


class ContractStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


CONTRACT_TERMINAL = frozenset({ContractStatus.EXPIRED.value, ContractStatus.TERMINATED.value})


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class MaintenanceStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


MAINTENANCE_TERMINAL = frozenset({MaintenanceStatus.COMPLETED.value, MaintenanceStatus.CANCELLED.value})


class MaintenancePriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class _RowDump:
    def model_dump(self) -> dict[str, Any]:
        """Column values only; used for audit before/after snapshots."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


# -----------------------------
# Users / RBAC tables
# -----------------------------
class AppUser(_RowDump, Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    user_roles: Mapped[List["UserRole"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    properties: Mapped[List["Property"]] = relationship(back_populates="owner")


class Role(_RowDump, Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False, unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    role_permissions: Mapped[List["RolePermission"]] = relationship(
        back_populates="role", cascade="all, delete-orphan"
    )


class Permission(_RowDump, Base):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)  # resource:action
    resource: Mapped[str] = mapped_column(String(40), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    role: Mapped["Role"] = relationship(back_populates="role_permissions")
    permission: Mapped["Permission"] = relationship()


class UserRole(Base):
    __tablename__ = "user_roles"

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    user: Mapped["AppUser"] = relationship(back_populates="user_roles")
    role: Mapped["Role"] = relationship()


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Core domain: Properties / Rooms / Renters
# -----------------------------
class Property(_RowDump, Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # owner is fixed at creation time
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(160), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    owner: Mapped["AppUser"] = relationship(back_populates="properties")
    rooms: Mapped[List["Room"]] = relationship(back_populates="property", cascade="all, delete-orphan")


class Room(_RowDump, Base):
    __tablename__ = "rooms"
    __table_args__ = (UniqueConstraint("property_id", "number", name="uq_rooms_property_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )

    number: Mapped[str] = mapped_column(String(40), nullable=False)
    floor: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    size: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RoomStatus.AVAILABLE.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="rooms")
    renters: Mapped[List["Renter"]] = relationship(back_populates="room")
    contracts: Mapped[List["Contract"]] = relationship(back_populates="room")
    maintenance_events: Mapped[List["MaintenanceEvent"]] = relationship(back_populates="room")


class Renter(_RowDump, Base):
    __tablename__ = "renters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    room_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True, index=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    room: Mapped[Optional["Room"]] = relationship(back_populates="renters")
    user: Mapped[Optional["AppUser"]] = relationship()
    contracts: Mapped[List["Contract"]] = relationship(secondary="contract_renters", back_populates="renters")
    payments: Mapped[List["Payment"]] = relationship(back_populates="renter")


contract_renters = Table(
    "contract_renters",
    Base.metadata,
    Column("contract_id", Integer, ForeignKey("contracts.id", ondelete="CASCADE"), primary_key=True),
    Column("renter_id", Integer, ForeignKey("renters.id", ondelete="CASCADE"), primary_key=True),
)


class Contract(_RowDump, Base):
    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    room_id: Mapped[int] = mapped_column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    deposit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)  # LONG_TERM|SHORT_TERM|...

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ContractStatus.ACTIVE.value, index=True)
    termination_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    termination_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    room: Mapped["Room"] = relationship(back_populates="contracts")
    renters: Mapped[List["Renter"]] = relationship(secondary="contract_renters", back_populates="contracts")
    payments: Mapped[List["Payment"]] = relationship(back_populates="contract")

    @property
    def renter_ids(self) -> list[int]:
        return sorted(int(r.id) for r in self.renters)


class Payment(_RowDump, Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    renter_id: Mapped[int] = mapped_column(Integer, ForeignKey("renters.id"), nullable=False, index=True)
    contract_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("contracts.id"), nullable=True, index=True)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    renter: Mapped["Renter"] = relationship(back_populates="payments")
    contract: Mapped[Optional["Contract"]] = relationship(back_populates="payments")


class MaintenanceEvent(_RowDump, Base):
    __tablename__ = "maintenance_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    room_id: Mapped[int] = mapped_column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=MaintenancePriority.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MaintenanceStatus.PENDING.value)

    scheduled_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # only set while status == COMPLETED
    completed_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    room: Mapped["Room"] = relationship(back_populates="maintenance_events")


class Document(_RowDump, Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    renter_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("renters.id"), nullable=True, index=True)
    room_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("rooms.id"), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    renter: Mapped[Optional["Renter"]] = relationship()
    room: Mapped[Optional["Room"]] = relationship()
