from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_optional_principal
from ..db import get_db
from ..deps import get_registry
from ..schemas import ContractCreate, ContractOut, ContractPage, ContractPatch, ContractTerminate
from ..services import contracts as svc

router = APIRouter(prefix="/contracts", tags=["contracts"])


@router.post("", response_model=ContractOut, status_code=201)
def create_contract(
    payload: ContractCreate,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.create_contract(db, p, payload, registry=registry)


@router.get("", response_model=ContractPage)
def list_contracts(
    room_id: Optional[int] = Query(default=None),
    renter_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    limit: Optional[int] = Query(default=None),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc"),
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    out = svc.list_contracts(
        db,
        p,
        room_id=room_id,
        renter_id=renter_id,
        status=status,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        registry=registry,
    )
    return ContractPage(nodes=[ContractOut.model_validate(c) for c in out.nodes], page_info=out.page_info)


@router.get("/{contract_id}", response_model=ContractOut)
def get_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.get_contract(db, p, contract_id, registry=registry)


@router.patch("/{contract_id}", response_model=ContractOut)
def update_contract(
    contract_id: int,
    payload: ContractPatch,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.update_contract(db, p, contract_id, payload, registry=registry)


@router.post("/{contract_id}/terminate", response_model=ContractOut)
def terminate_contract(
    contract_id: int,
    payload: ContractTerminate,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.terminate_contract(
        db, p, contract_id, payload.reason, payload.termination_date, registry=registry
    )


@router.delete("/{contract_id}")
def delete_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return {"ok": svc.delete_contract(db, p, contract_id, registry=registry)}
