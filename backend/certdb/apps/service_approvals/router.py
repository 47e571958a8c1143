from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from certdb.database import get_db, get_read_db
from certdb.errors import LifecycleError, raise_http

from . import models, schemas, services

router = APIRouter(prefix="/service-approvals", tags=["service_approvals"])


@router.get("/", response_model=List[schemas.ServiceApprovalRead])
def list_service_approvals(
    organization_id: Optional[str] = None,
    status: Optional[models.ServiceApprovalStatus] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_service_approvals(db, organization_id=organization_id, status=status)


@router.post("/", response_model=schemas.ServiceApprovalRead, status_code=status.HTTP_201_CREATED)
def create_service_approval(payload: schemas.ServiceApprovalCreate, db: Session = Depends(get_db)):
    try:
        approval = services.create_service_approval(db, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(approval)
    return approval


@router.get("/tracker", response_model=schemas.TrackerStatusRead)
def get_tracker_status(organization_id: str, service_offering_id: str, db: Session = Depends(get_read_db)):
    return services.get_tracker_status(
        db,
        organization_id=organization_id,
        service_offering_id=service_offering_id,
    )


@router.get("/renewals", response_model=List[schemas.RenewalRead])
def list_upcoming_renewals(
    within_days: int = Query(90, ge=1, le=730),
    organization_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_upcoming_renewals(db, within_days=within_days, organization_id=organization_id)


@router.post("/annual-fee", response_model=schemas.ServiceApprovalRead)
def pay_annual_fee(
    organization_id: str,
    service_offering_id: str,
    payload: schemas.AnnualFeePayment,
    db: Session = Depends(get_db),
):
    try:
        approval = services.pay_annual_fee(
            db,
            organization_id=organization_id,
            service_offering_id=service_offering_id,
            payment_reference=payload.payment_reference,
            payment_amount=payload.payment_amount,
            actor_user_id=payload.actor_user_id,
        )
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(approval)
    return approval


@router.get("/{approval_id}", response_model=schemas.ServiceApprovalRead)
def get_service_approval(approval_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_service_approval(db, approval_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.post("/{approval_id}/decision", response_model=schemas.ServiceApprovalRead)
def decide_service_approval(
    approval_id: str,
    payload: schemas.ServiceApprovalDecision,
    db: Session = Depends(get_db),
):
    try:
        approval = services.decide_service_approval(
            db,
            approval_id,
            decision=payload.decision,
            actor_user_id=payload.actor_user_id,
            reason=payload.reason,
            notes=payload.notes,
        )
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(approval)
    return approval
