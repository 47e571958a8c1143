from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from certdb.database import get_db

from . import models, schemas, services


router = APIRouter(
    prefix="/integrations",
    tags=["integrations"],
)


@router.get("/configs", response_model=List[schemas.IntegrationConfigRead])
def list_configs(db: Session = Depends(get_db)):
    return services.list_integration_configs(db)


@router.post(
    "/configs",
    response_model=schemas.IntegrationConfigRead,
    status_code=status.HTTP_201_CREATED,
)
def create_config(
    payload: schemas.IntegrationConfigCreate,
    db: Session = Depends(get_db),
):
    config = services.create_integration_config(db, data=payload)
    db.commit()
    db.refresh(config)
    return config


@router.get("/outbound-events", response_model=List[schemas.IntegrationOutboundEventRead])
def list_outbound_events(
    status: Optional[models.IntegrationOutboundStatus] = None,
    organization_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return services.list_outbound_events(db, status=status, organization_id=organization_id)
