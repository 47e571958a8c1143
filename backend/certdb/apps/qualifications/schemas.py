from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class QualificationCreate(BaseModel):
    user_id: str
    service_offering_id: str
    training_passed_at: datetime
    original_assignment_id: Optional[str] = None
    original_organization_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None


class QualificationUpdate(BaseModel):
    training_passed_at: Optional[datetime] = None
    notes: Optional[str] = None


class QualificationRead(BaseModel):
    id: str
    user_id: str
    service_offering_id: str
    training_passed_at: datetime
    original_assignment_id: Optional[str] = None
    original_organization_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None
    updated_at: datetime

    class Config:
        from_attributes = True
