from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import ContractStatus, MaintenancePriority, MaintenanceStatus, PaymentStatus, RoomStatus


# -------------------- Pagination --------------------

class PageInfo(BaseModel):
    total_count: int
    total_pages: int
    current_page: int
    has_next_page: bool
    has_previous_page: bool


# -------------------- Rooms --------------------

class RoomCreate(BaseModel):
    property_id: Optional[int] = None
    number: Optional[str] = None
    floor: Optional[int] = None
    size: Optional[float] = None
    rent: Optional[float] = None


class RoomPatch(BaseModel):
    """Partial update; only fields the caller sent are applied."""
    number: Optional[str] = None
    floor: Optional[int] = None
    size: Optional[float] = None
    rent: Optional[float] = None
    status: Optional[RoomStatus] = None

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class RoomOut(BaseModel):
    id: int
    property_id: int
    number: str
    floor: Optional[int] = None
    size: Optional[float] = None
    rent: Optional[float] = None
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RoomPage(BaseModel):
    nodes: List[RoomOut] = Field(default_factory=list)
    page_info: PageInfo


# -------------------- Contracts --------------------

class ContractCreate(BaseModel):
    # required-ness is enforced by the coordinator so direct callers get the same errors
    name: Optional[str] = None
    room_id: Optional[int] = None
    renter_ids: List[int] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    amount: Optional[float] = None
    deposit: Optional[float] = None
    type: Optional[str] = None
    status: ContractStatus = ContractStatus.ACTIVE
    notes: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class ContractPatch(BaseModel):
    name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    amount: Optional[float] = None
    deposit: Optional[float] = None
    type: Optional[str] = None
    status: Optional[ContractStatus] = None
    termination_reason: Optional[str] = None
    termination_date: Optional[date] = None
    notes: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class ContractTerminate(BaseModel):
    reason: Optional[str] = None
    termination_date: Optional[date] = None


class ContractOut(BaseModel):
    id: int
    name: str
    room_id: int
    renter_ids: List[int] = Field(default_factory=list)
    start_date: date
    end_date: date
    amount: float
    deposit: Optional[float] = None
    type: Optional[str] = None
    status: str
    termination_reason: Optional[str] = None
    termination_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ContractPage(BaseModel):
    nodes: List[ContractOut] = Field(default_factory=list)
    page_info: PageInfo


# -------------------- Payments --------------------

class PaymentCreate(BaseModel):
    renter_id: Optional[int] = None
    contract_id: Optional[int] = None
    amount: Optional[float] = None
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    description: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class PaymentPatch(BaseModel):
    renter_id: Optional[int] = None
    contract_id: Optional[int] = None
    amount: Optional[float] = None
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    description: Optional[str] = None
    status: Optional[PaymentStatus] = None

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class PaymentMarkPaid(BaseModel):
    paid_date: Optional[date] = None
    reference: Optional[str] = None


class PaymentOut(BaseModel):
    id: int
    renter_id: int
    contract_id: Optional[int] = None
    amount: float
    due_date: date
    paid_date: Optional[date] = None
    description: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentPage(BaseModel):
    nodes: List[PaymentOut] = Field(default_factory=list)
    page_info: PageInfo


# -------------------- Maintenance --------------------

class MaintenanceEventCreate(BaseModel):
    room_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    priority: MaintenancePriority = MaintenancePriority.MEDIUM
    status: MaintenanceStatus = MaintenanceStatus.PENDING
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    cost: Optional[float] = None

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class MaintenanceEventPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[MaintenancePriority] = None
    status: Optional[MaintenanceStatus] = None
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    cost: Optional[float] = None

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class MaintenanceEventOut(BaseModel):
    id: int
    room_id: int
    title: str
    description: str
    priority: str
    status: str
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    cost: Optional[float] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MaintenanceEventPage(BaseModel):
    nodes: List[MaintenanceEventOut] = Field(default_factory=list)
    page_info: PageInfo
