from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .models import RoleApplicability


class RequirementCreate(BaseModel):
    service_offering_id: str
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    display_order: Optional[int] = None
    is_required: bool = True
    role_applicability: RoleApplicability = RoleApplicability.BOTH
    created_by: str
    replaces_requirement_id: Optional[str] = None


class RequirementRetire(BaseModel):
    retired_by: str
    reason: Optional[str] = None


class RequirementRead(BaseModel):
    id: str
    service_offering_id: str
    title: str
    description: Optional[str] = None
    display_order: Optional[int] = None
    is_required: bool
    role_applicability: RoleApplicability
    created_at: datetime
    created_by: Optional[str] = None
    replaces_requirement_id: Optional[str] = None
    replaced_by_requirement_id: Optional[str] = None
    is_retired: bool
    retired_at: Optional[datetime] = None
    retired_by: Optional[str] = None
    retirement_reason: Optional[str] = None

    class Config:
        from_attributes = True


class RequirementHistory(BaseModel):
    current: RequirementRead
    replaced: Optional[RequirementRead] = None
    replaced_by: Optional[RequirementRead] = None


class AssignmentRequirementRead(RequirementRead):
    is_checked: bool = False
    checked_at: Optional[datetime] = None
    checked_by: Optional[str] = None
