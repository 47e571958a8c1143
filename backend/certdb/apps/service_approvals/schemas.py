from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .models import RenewalUrgency, ServiceApprovalStatus, TrackerStatus


class ServiceApprovalCreate(BaseModel):
    organization_id: str
    service_offering_id: str
    notes: Optional[str] = None
    created_by: Optional[str] = None


class ServiceApprovalDecision(BaseModel):
    decision: ServiceApprovalStatus
    actor_user_id: str
    reason: Optional[str] = None
    notes: Optional[str] = None


class AnnualFeePayment(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=128)
    payment_amount: Optional[Decimal] = None
    actor_user_id: Optional[str] = None


class ServiceApprovalRead(BaseModel):
    id: str
    organization_id: str
    service_offering_id: str
    status: ServiceApprovalStatus
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TrackerStatusRead(BaseModel):
    status: TrackerStatus
    has_qualified_lead: bool
    is_paid: bool
    is_expired: bool
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None


class RenewalRead(BaseModel):
    approval: ServiceApprovalRead
    days_until_expiry: int
    urgency: RenewalUrgency
