from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_optional_principal
from ..db import get_db
from ..deps import get_registry
from ..schemas import RoomCreate, RoomOut, RoomPage, RoomPatch
from ..services import rooms as svc

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.post("", response_model=RoomOut, status_code=201)
def create_room(
    payload: RoomCreate,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.create_room(db, p, payload, registry=registry)


@router.get("", response_model=RoomPage)
def list_rooms(
    property_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    limit: Optional[int] = Query(default=None),
    sort_by: str = Query(default="number"),
    sort_order: str = Query(default="asc"),
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    out = svc.list_rooms(
        db,
        p,
        property_id=property_id,
        status=status,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        registry=registry,
    )
    return RoomPage(nodes=[RoomOut.model_validate(r) for r in out.nodes], page_info=out.page_info)


@router.get("/{room_id}", response_model=RoomOut)
def get_room(room_id: int, db: Session = Depends(get_db), p=Depends(get_optional_principal), registry=Depends(get_registry)):
    return svc.get_room(db, p, room_id, registry=registry)


@router.patch("/{room_id}", response_model=RoomOut)
def update_room(
    room_id: int,
    payload: RoomPatch,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.update_room(db, p, room_id, payload, registry=registry)


@router.delete("/{room_id}")
def delete_room(room_id: int, db: Session = Depends(get_db), p=Depends(get_optional_principal), registry=Depends(get_registry)):
    return {"ok": svc.delete_room(db, p, room_id, registry=registry)}
