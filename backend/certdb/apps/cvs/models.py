# backend/certdb/apps/cvs/models.py

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from certdb.database import Base
from certdb.utils.identifiers import generate_uuid7

from .enums import AssignmentStatus, CVStatus, ExpertRole, TrainingStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# CV
# ---------------------------------------------------------------------------


class ExpertCV(Base):
    """
    Versioned snapshot of one user's credentials within one organization.

    `pending_assignment_count` mirrors the number of child assignments in
    pending_review and is maintained in the same transaction as every
    assignment write, so the auto-lock check never scans the children.
    """

    __tablename__ = "expert_cvs"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", "version", name="uq_expert_cvs_user_org_version"),
        Index("ix_expert_cvs_org_status", "organization_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = Column(Integer, nullable=False, default=1)
    status = Column(
        Enum(CVStatus, name="cv_status_enum", native_enum=False),
        nullable=False,
        default=CVStatus.DRAFT,
        index=True,
    )

    # Content sections: lists of entry dicts.
    experience = Column(JSON, nullable=False, default=list)
    education = Column(JSON, nullable=False, default=list)
    training_qualifications = Column(JSON, nullable=False, default=list)
    other_approvals = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    copied_from_cv_id = Column(String(36), nullable=True)

    pending_assignment_count = Column(Integer, nullable=False, default=0)

    completed_at = Column(DateTime(timezone=True), nullable=True)

    payment_initiated_at = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    payment_amount = Column(Numeric(12, 2), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    review_started_at = Column(DateTime(timezone=True), nullable=True)
    review_started_by = Column(String(36), nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    returned_by = Column(String(36), nullable=True)
    return_reason = Column(Text, nullable=True)
    resubmitted_at = Column(DateTime(timezone=True), nullable=True)

    locked_at = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(String(36), nullable=True)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", lazy="joined")
    organization = relationship("Organization", lazy="joined")
    assignments = relationship(
        "ServiceAssignment",
        back_populates="cv",
        order_by="ServiceAssignment.created_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ExpertCV id={self.id} user={self.user_id} org={self.organization_id} v{self.version} {self.status}>"


# ---------------------------------------------------------------------------
# SERVICE ASSIGNMENTS
# ---------------------------------------------------------------------------


class ServiceAssignment(Base):
    """
    One CV's claim to one service offering.

    Carries two independent sub-states: the review decision (`status`) and
    training progress (`training_status`, empty until the CV locks).
    `service_offering_id` is empty only for placeholder assignments whose
    offering has not been selected yet.
    """

    __tablename__ = "service_assignments"
    __table_args__ = (
        UniqueConstraint("cv_id", "service_offering_id", name="uq_service_assignments_cv_offering"),
        Index("ix_service_assignments_org_offering", "organization_id", "service_offering_id"),
        Index("ix_service_assignments_user_offering", "user_id", "service_offering_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    cv_id = Column(
        String(36),
        ForeignKey("expert_cvs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Denormalized from the CV for organization / user queries.
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_offering_id = Column(
        String(36),
        ForeignKey("service_offerings.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    role = Column(
        Enum(ExpertRole, name="expert_role_enum", native_enum=False),
        nullable=False,
        default=ExpertRole.REGULAR,
    )

    status = Column(
        Enum(AssignmentStatus, name="assignment_status_enum", native_enum=False),
        nullable=False,
        default=AssignmentStatus.PENDING_REVIEW,
        index=True,
    )
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(36), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(36), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(36), nullable=True)
    review_notes = Column(Text, nullable=True)

    training_status = Column(
        Enum(TrainingStatus, name="training_status_enum", native_enum=False),
        nullable=True,
        index=True,
    )
    training_invited_at = Column(DateTime(timezone=True), nullable=True)
    training_started_at = Column(DateTime(timezone=True), nullable=True)
    training_completed_at = Column(DateTime(timezone=True), nullable=True)
    training_attempts = Column(Integer, nullable=False, default=0)
    qualification_id = Column(
        String(36),
        ForeignKey("qualifications.id", ondelete="SET NULL"),
        nullable=True,
    )
    qualified_at = Column(DateTime(timezone=True), nullable=True)

    # [{"requirement_id", "checked", "checked_at", "checked_by"}]
    requirement_checkoffs = Column(JSON, nullable=False, default=list)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    cv = relationship("ExpertCV", back_populates="assignments")
    service_offering = relationship("ServiceOffering", lazy="joined")
    qualification = relationship("Qualification", lazy="select")

    def __repr__(self) -> str:
        return f"<ServiceAssignment id={self.id} cv={self.cv_id} offering={self.service_offering_id} {self.status}>"
