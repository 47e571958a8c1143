from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .models import IntegrationConfigStatus, IntegrationOutboundStatus


class IntegrationConfigBase(BaseModel):
    integration_key: str = Field(..., max_length=64)
    display_name: str = Field(..., max_length=128)
    status: IntegrationConfigStatus = IntegrationConfigStatus.ACTIVE
    enabled: bool = True
    base_url: Optional[str] = None
    signing_secret: Optional[str] = None
    metadata_json: Optional[Dict[str, Any]] = None


class IntegrationConfigCreate(IntegrationConfigBase):
    created_by_user_id: Optional[str] = None


class IntegrationConfigRead(IntegrationConfigBase):
    id: str
    created_at: datetime
    updated_at: datetime
    created_by_user_id: Optional[str] = None

    class Config:
        from_attributes = True


class IntegrationOutboundEventRead(BaseModel):
    id: str
    organization_id: Optional[str] = None
    integration_id: str
    event_type: str
    payload_json: Dict[str, Any]
    status: IntegrationOutboundStatus
    attempt_count: int
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: datetime
    created_by_user_id: Optional[str] = None

    class Config:
        from_attributes = True
