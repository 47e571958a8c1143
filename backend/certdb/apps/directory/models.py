# backend/certdb/apps/directory/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from certdb.database import Base
from certdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class OrganizationType(str, enum.Enum):
    SOLUTION_PROVIDER = "solution_provider"
    STAFF = "staff"


class OrganizationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


# ---------------------------------------------------------------------------
# USERS + ORGANIZATIONS
# ---------------------------------------------------------------------------


class User(Base):
    """
    A natural person who may act as an expert.

    `is_active` separates verified users from draft / invited ones.
    """

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    first_name = Column(String(128), nullable=False)
    last_name = Column(String(128), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    country = Column(String(64), nullable=True)
    phone = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(255), nullable=False)
    type = Column(
        Enum(OrganizationType, name="organization_type_enum", native_enum=False),
        nullable=False,
        default=OrganizationType.SOLUTION_PROVIDER,
    )
    contact_email = Column(String(255), nullable=True)
    status = Column(
        Enum(OrganizationStatus, name="organization_status_enum", native_enum=False),
        nullable=False,
        default=OrganizationStatus.ACTIVE,
        index=True,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name}>"


# ---------------------------------------------------------------------------
# SERVICE CATALOGUE
# ---------------------------------------------------------------------------


class ServiceParent(Base):
    """Grouping of service versions, e.g. 'Assessment Approval'."""

    __tablename__ = "service_parents"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    offerings = relationship("ServiceOffering", back_populates="parent", lazy="selectin")


class ServiceOffering(Base):
    """
    A service version (e.g. 'Supplier to Zero Assessment V2').

    Immutable by convention: a changed service is released as a new
    offering and the old one is deprecated.
    """

    __tablename__ = "service_offerings"
    __table_args__ = (
        UniqueConstraint("parent_id", "version", name="uq_service_offerings_parent_version"),
        Index("ix_service_offerings_parent_active", "parent_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    parent_id = Column(
        String(36),
        ForeignKey("service_parents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    version = Column(String(32), nullable=False, doc="Version label such as 'V1', 'V2'.")
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    released_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    deprecated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    parent = relationship("ServiceParent", back_populates="offerings", lazy="joined")

    def __repr__(self) -> str:
        return f"<ServiceOffering id={self.id} name={self.name}>"
