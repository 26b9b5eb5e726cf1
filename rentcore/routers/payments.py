from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_optional_principal
from ..db import get_db
from ..deps import get_registry
from ..schemas import PaymentCreate, PaymentMarkPaid, PaymentOut, PaymentPage, PaymentPatch
from ..services import payments as svc

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=PaymentOut, status_code=201)
def create_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.create_payment(db, p, payload, registry=registry)


@router.get("", response_model=PaymentPage)
def list_payments(
    renter_id: Optional[int] = Query(default=None),
    contract_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    due_from: Optional[date] = Query(default=None),
    due_to: Optional[date] = Query(default=None),
    page: int = Query(default=1),
    limit: Optional[int] = Query(default=None),
    sort_by: str = Query(default="due_date"),
    sort_order: str = Query(default="desc"),
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    out = svc.list_payments(
        db,
        p,
        renter_id=renter_id,
        contract_id=contract_id,
        status=status,
        due_from=due_from,
        due_to=due_to,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        registry=registry,
    )
    return PaymentPage(nodes=[PaymentOut.model_validate(x) for x in out.nodes], page_info=out.page_info)


@router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.get_payment(db, p, payment_id, registry=registry)


@router.patch("/{payment_id}", response_model=PaymentOut)
def update_payment(
    payment_id: int,
    payload: PaymentPatch,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.update_payment(db, p, payment_id, payload, registry=registry)


@router.post("/{payment_id}/mark-paid", response_model=PaymentOut)
def mark_payment_as_paid(
    payment_id: int,
    payload: PaymentMarkPaid,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return svc.mark_payment_as_paid(db, p, payment_id, payload.paid_date, payload.reference, registry=registry)


@router.delete("/{payment_id}")
def delete_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_optional_principal),
    registry=Depends(get_registry),
):
    return {"ok": svc.delete_payment(db, p, payment_id, registry=registry)}
