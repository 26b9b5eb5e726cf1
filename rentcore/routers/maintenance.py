from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_optional_principal
from ..db import get_db
from ..deps import get_registry
from ..schemas import MaintenanceEventCreate, MaintenanceEventOut, MaintenanceEventPage, MaintenanceEventPatch
from ..services import maintenance as svc

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("", response_model=MaintenanceEventOut, status_code=201)
def create_maintenance_event(
    payload: MaintenanceEventCreate,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.create_maintenance_event(db, p, payload, registry=registry)


@router.get("", response_model=MaintenanceEventPage)
def list_maintenance_events(
    room_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    priority: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    limit: Optional[int] = Query(default=None),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc"),
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    out = svc.list_maintenance_events(
        db,
        p,
        room_id=room_id,
        status=status,
        priority=priority,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        registry=registry,
    )
    return MaintenanceEventPage(
        nodes=[MaintenanceEventOut.model_validate(e) for e in out.nodes],
        page_info=out.page_info,
    )


@router.get("/{event_id}", response_model=MaintenanceEventOut)
def get_maintenance_event(
    event_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.get_maintenance_event(db, p, event_id, registry=registry)


@router.patch("/{event_id}", response_model=MaintenanceEventOut)
def update_maintenance_event(
    event_id: int,
    payload: MaintenanceEventPatch,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.update_maintenance_event(db, p, event_id, payload, registry=registry)


@router.delete("/{event_id}")
def delete_maintenance_event(
    event_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return {"ok": svc.delete_maintenance_event(db, p, event_id, registry=registry)}
