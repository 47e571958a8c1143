from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from certdb.database import get_db, get_read_db

from . import schemas, services


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/", response_model=List[schemas.AuditEventRead])
def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_audit_events(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        organization_id=organization_id,
        start=start,
        end=end,
    )


@router.post("/", response_model=schemas.AuditEventRead, status_code=status.HTTP_201_CREATED)
def create_audit_event(
    payload: schemas.AuditEventCreate,
    organization_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    event = services.create_audit_event(db, organization_id=organization_id, data=payload)
    db.commit()
    db.refresh(event)
    return event
