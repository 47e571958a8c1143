# backend/certdb/apps/service_approvals/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from certdb.database import Base
from certdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class TrackerStatus(str, enum.Enum):
    NOT_APPROVED = "not_approved"
    ASSIGN_LEAD = "assign_lead"
    PAY_ANNUAL_FEE = "pay_annual_fee"
    ACTIVE = "active"


class RenewalUrgency(str, enum.Enum):
    URGENT = "urgent"
    WARNING = "warning"
    UPCOMING = "upcoming"


class OrganizationServiceApproval(Base):
    """
    An organization's permission to deliver a service offering.

    Becomes active once approved, backed by at least one qualified lead
    expert, and paid for the current annual period.
    """

    __tablename__ = "organization_service_approvals"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "service_offering_id",
            name="uq_org_service_approvals_org_offering",
        ),
        Index("ix_org_service_approvals_status_expires", "status", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_offering_id = Column(
        String(36),
        ForeignKey("service_offerings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = Column(
        Enum(ServiceApprovalStatus, name="service_approval_status_enum", native_enum=False),
        nullable=False,
        default=ServiceApprovalStatus.PENDING,
        index=True,
    )
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decided_by = Column(String(36), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    payment_reference = Column(String(128), nullable=True)
    payment_amount = Column(Numeric(12, 2), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    organization = relationship("Organization", lazy="joined")
    service_offering = relationship("ServiceOffering", lazy="joined")

    def __repr__(self) -> str:
        return f"<OrganizationServiceApproval org={self.organization_id} offering={self.service_offering_id} {self.status}>"
