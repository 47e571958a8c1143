# backend/certdb/apps/qualifications/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from certdb.database import get_db, get_read_db
from certdb.errors import LifecycleError, NotFound, raise_http

from . import schemas, services

router = APIRouter(prefix="/qualifications", tags=["qualifications"])


@router.get("/lookup", response_model=schemas.QualificationRead)
def lookup_qualification(
    user_id: str,
    service_offering_id: str,
    db: Session = Depends(get_read_db),
):
    qualification = services.lookup_qualification(
        db,
        user_id=user_id,
        service_offering_id=service_offering_id,
    )
    if not qualification:
        raise_http(db, NotFound("No qualification for this user and service."))
    return qualification


@router.get("/", response_model=List[schemas.QualificationRead])
def list_user_qualifications(user_id: str, db: Session = Depends(get_read_db)):
    return services.list_for_user(db, user_id)


@router.post("/", response_model=schemas.QualificationRead, status_code=status.HTTP_201_CREATED)
def create_qualification(payload: schemas.QualificationCreate, db: Session = Depends(get_db)):
    try:
        qualification = services.create_qualification(db, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(qualification)
    return qualification


@router.patch("/{qualification_id}", response_model=schemas.QualificationRead)
def update_qualification(
    qualification_id: str,
    payload: schemas.QualificationUpdate,
    actor_user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        qualification = services.update_qualification(
            db,
            qualification_id,
            data=payload,
            actor_user_id=actor_user_id,
        )
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(qualification)
    return qualification


@router.delete("/{qualification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_qualification(
    qualification_id: str,
    actor_user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        services.delete_qualification(db, qualification_id, actor_user_id=actor_user_id)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
