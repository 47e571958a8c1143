from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .models import OrganizationStatus, OrganizationType


class UserCreate(BaseModel):
    first_name: str
    last_name: str
    email: str
    country: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = False


class UserRead(UserCreate):
    id: str
    created_at: datetime

    class Config:
        from_attributes = True


class OrganizationCreate(BaseModel):
    name: str
    type: OrganizationType = OrganizationType.SOLUTION_PROVIDER
    contact_email: Optional[str] = None
    status: OrganizationStatus = OrganizationStatus.ACTIVE


class OrganizationRead(OrganizationCreate):
    id: str
    created_at: datetime

    class Config:
        from_attributes = True


class ServiceParentCreate(BaseModel):
    name: str
    description: Optional[str] = None
    is_active: bool = True


class ServiceParentRead(ServiceParentCreate):
    id: str

    class Config:
        from_attributes = True


class ServiceOfferingCreate(BaseModel):
    parent_id: str
    version: str
    name: str
    description: Optional[str] = None


class ServiceOfferingRead(ServiceOfferingCreate):
    id: str
    is_active: bool
    released_at: datetime
    deprecated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
