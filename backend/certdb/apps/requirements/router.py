# backend/certdb/apps/requirements/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from certdb.apps.cvs.enums import ExpertRole
from certdb.database import get_db, get_read_db
from certdb.errors import LifecycleError, raise_http

from . import schemas, services

router = APIRouter(prefix="/requirements", tags=["requirements"])


@router.get("/", response_model=List[schemas.RequirementRead])
def list_active_requirements(
    service_offering_id: str,
    role: Optional[ExpertRole] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_active(db, service_offering_id=service_offering_id, role=role)


@router.post("/", response_model=schemas.RequirementRead, status_code=status.HTTP_201_CREATED)
def create_requirement(payload: schemas.RequirementCreate, db: Session = Depends(get_db)):
    """Publish a requirement, optionally replacing (and retiring) an existing one."""
    try:
        requirement = services.create_requirement(db, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(requirement)
    return requirement


@router.get("/for-assignment/{assignment_id}", response_model=List[schemas.AssignmentRequirementRead])
def list_requirements_for_assignment(assignment_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.list_for_assignment(db, assignment_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.get("/{requirement_id}", response_model=schemas.RequirementRead)
def get_requirement(requirement_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_requirement(db, requirement_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.get("/{requirement_id}/history", response_model=schemas.RequirementHistory)
def get_requirement_history(requirement_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_requirement_history(db, requirement_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.post("/{requirement_id}/retire", response_model=schemas.RequirementRead)
def retire_requirement(
    requirement_id: str,
    payload: schemas.RequirementRetire,
    db: Session = Depends(get_db),
):
    try:
        requirement = services.retire_requirement(
            db,
            requirement_id,
            retired_by=payload.retired_by,
            reason=payload.reason,
        )
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(requirement)
    return requirement
