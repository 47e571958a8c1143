# backend/certdb/apps/directory/router.py
"""
Reference data consumed by the lifecycle engine: users, organizations
and the service catalogue.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from certdb.database import get_db, get_read_db
from certdb.errors import LifecycleError, raise_http

from . import models, schemas, services

router = APIRouter(tags=["directory"])


@router.post("/users", response_model=schemas.UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: schemas.UserCreate, db: Session = Depends(get_db)):
    try:
        user = services.create_user(db, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(user)
    return user


@router.get("/users", response_model=List[schemas.UserRead])
def list_users(active_only: bool = False, db: Session = Depends(get_read_db)):
    return services.list_users(db, active_only=active_only)


@router.get("/users/{user_id}", response_model=schemas.UserRead)
def get_user(user_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_user(db, user_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.get("/organizations", response_model=List[schemas.OrganizationRead])
def list_organizations(
    type: Optional[models.OrganizationType] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_organizations(db, type=type)


@router.post("/organizations", response_model=schemas.OrganizationRead, status_code=status.HTTP_201_CREATED)
def create_organization(payload: schemas.OrganizationCreate, db: Session = Depends(get_db)):
    org = services.create_organization(db, data=payload)
    db.commit()
    db.refresh(org)
    return org


@router.get("/organizations/{organization_id}", response_model=schemas.OrganizationRead)
def get_organization(organization_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_organization(db, organization_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.post("/service-parents", response_model=schemas.ServiceParentRead, status_code=status.HTTP_201_CREATED)
def create_service_parent(payload: schemas.ServiceParentCreate, db: Session = Depends(get_db)):
    parent = services.create_service_parent(db, data=payload)
    db.commit()
    db.refresh(parent)
    return parent


@router.get("/service-parents", response_model=List[schemas.ServiceParentRead])
def list_service_parents(db: Session = Depends(get_read_db)):
    return services.list_service_parents(db)


@router.get("/service-parents/{parent_id}", response_model=schemas.ServiceParentRead)
def get_service_parent(parent_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_service_parent(db, parent_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.get("/service-offerings", response_model=List[schemas.ServiceOfferingRead])
def list_service_offerings(
    parent_id: Optional[str] = None,
    active_only: bool = False,
    db: Session = Depends(get_read_db),
):
    return services.list_service_offerings(db, parent_id=parent_id, active_only=active_only)


@router.post("/service-offerings", response_model=schemas.ServiceOfferingRead, status_code=status.HTTP_201_CREATED)
def create_service_offering(payload: schemas.ServiceOfferingCreate, db: Session = Depends(get_db)):
    try:
        offering = services.create_service_offering(db, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(offering)
    return offering


@router.get("/service-offerings/{offering_id}", response_model=schemas.ServiceOfferingRead)
def get_service_offering(offering_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_service_offering(db, offering_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.post("/service-offerings/{offering_id}/deprecate", response_model=schemas.ServiceOfferingRead)
def deprecate_service_offering(offering_id: str, db: Session = Depends(get_db)):
    try:
        offering = services.deprecate_service_offering(db, offering_id)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(offering)
    return offering
