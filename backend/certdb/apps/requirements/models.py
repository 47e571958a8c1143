# backend/certdb/apps/requirements/models.py

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
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from certdb.database import Base
from certdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoleApplicability(str, enum.Enum):
    REGULAR = "regular"
    LEAD = "lead"
    BOTH = "both"


DEFAULT_RETIREMENT_REASON = "No longer needed"


class ServiceRequirement(Base):
    """
    Checklist item an admin ticks off per assignment during review.

    Immutable once created: a change is a new requirement that `replaces`
    the old one, and the old one is retired with `replaced_by` pointing
    forward.
    """

    __tablename__ = "service_requirements"
    __table_args__ = (
        Index("ix_service_requirements_offering_retired", "service_offering_id", "is_retired"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    service_offering_id = Column(
        String(36),
        ForeignKey("service_offerings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    role_applicability = Column(
        Enum(RoleApplicability, name="requirement_role_applicability_enum", native_enum=False),
        nullable=False,
        default=RoleApplicability.BOTH,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    replaces_requirement_id = Column(
        String(36),
        ForeignKey("service_requirements.id", ondelete="SET NULL"),
        nullable=True,
    )
    replaced_by_requirement_id = Column(
        String(36),
        ForeignKey("service_requirements.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_retired = Column(Boolean, nullable=False, default=False, index=True)
    retired_at = Column(DateTime(timezone=True), nullable=True)
    retired_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    retirement_reason = Column(Text, nullable=True)

    service_offering = relationship("ServiceOffering", lazy="joined")

    @property
    def status(self) -> str:
        return "retired" if self.is_retired else "active"

    def __repr__(self) -> str:
        return f"<ServiceRequirement id={self.id} title={self.title!r} retired={self.is_retired}>"
