"""
Directory lookups used by the lifecycle engine.

Users, organizations and service offerings are owned by other systems;
the engine only reads them, so this module is plain data access.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from certdb.errors import Conflict, InvalidTransition, NotFound

from . import models, schemas


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_user(db: Session, *, data: schemas.UserCreate) -> models.User:
    email = data.email.strip().lower()
    existing = db.query(models.User).filter(models.User.email == email).first()
    if existing:
        raise Conflict(f"User with email {email} already exists.")
    user = models.User(**data.model_dump(exclude={"email"}), email=email)
    db.add(user)
    db.flush()
    return user


def get_user(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found.", [{"field": "user_id", "reason": user_id}])
    return user


def list_users(db: Session, *, active_only: bool = False) -> List[models.User]:
    query = db.query(models.User)
    if active_only:
        query = query.filter(models.User.is_active.is_(True))
    return query.order_by(models.User.last_name.asc(), models.User.first_name.asc()).all()


def create_organization(db: Session, *, data: schemas.OrganizationCreate) -> models.Organization:
    org = models.Organization(**data.model_dump())
    db.add(org)
    db.flush()
    return org


def get_organization(db: Session, organization_id: str) -> models.Organization:
    org = db.get(models.Organization, organization_id)
    if not org:
        raise NotFound("Organization not found.", [{"field": "organization_id", "reason": organization_id}])
    return org


def list_organizations(
    db: Session,
    *,
    type: Optional[models.OrganizationType] = None,
) -> List[models.Organization]:
    query = db.query(models.Organization)
    if type:
        query = query.filter(models.Organization.type == type)
    return query.order_by(models.Organization.name.asc()).all()


def create_service_parent(db: Session, *, data: schemas.ServiceParentCreate) -> models.ServiceParent:
    parent = models.ServiceParent(**data.model_dump())
    db.add(parent)
    db.flush()
    return parent


def get_service_parent(db: Session, parent_id: str) -> models.ServiceParent:
    parent = db.get(models.ServiceParent, parent_id)
    if not parent:
        raise NotFound("Service parent not found.", [{"field": "parent_id", "reason": parent_id}])
    return parent


def list_service_parents(db: Session) -> List[models.ServiceParent]:
    return db.query(models.ServiceParent).order_by(models.ServiceParent.name.asc()).all()


def create_service_offering(db: Session, *, data: schemas.ServiceOfferingCreate) -> models.ServiceOffering:
    parent = get_service_parent(db, data.parent_id)
    duplicate = (
        db.query(models.ServiceOffering)
        .filter(
            models.ServiceOffering.parent_id == data.parent_id,
            models.ServiceOffering.version == data.version,
        )
        .first()
    )
    if duplicate:
        raise Conflict(f"Version {data.version} already exists for {parent.name}.")
    offering = models.ServiceOffering(**data.model_dump())
    db.add(offering)
    db.flush()
    return offering


def get_service_offering(db: Session, offering_id: str) -> models.ServiceOffering:
    offering = db.get(models.ServiceOffering, offering_id)
    if not offering:
        raise NotFound("Service offering not found.", [{"field": "service_offering_id", "reason": offering_id}])
    return offering


def list_service_offerings(
    db: Session,
    *,
    parent_id: Optional[str] = None,
    active_only: bool = False,
) -> List[models.ServiceOffering]:
    query = db.query(models.ServiceOffering)
    if parent_id:
        query = query.filter(models.ServiceOffering.parent_id == parent_id)
    if active_only:
        query = query.filter(models.ServiceOffering.is_active.is_(True))
    return query.order_by(models.ServiceOffering.name.asc(), models.ServiceOffering.version.asc()).all()


def deprecate_service_offering(db: Session, offering_id: str) -> models.ServiceOffering:
    offering = get_service_offering(db, offering_id)
    if not offering.is_active:
        raise InvalidTransition("Service offering is already deprecated.")
    offering.is_active = False
    offering.deprecated_at = _utcnow()
    db.add(offering)
    db.flush()
    return offering
