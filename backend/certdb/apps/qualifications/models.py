# backend/certdb/apps/qualifications/models.py

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from certdb.database import Base
from certdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Qualification(Base):
    """
    Global record that a user passed training for a service offering.

    Not owned by any organization: it outlives the CV and organization that
    earned it, and any later approval for the same user + offering reuses
    it instead of sending the expert through training again.
    """

    __tablename__ = "qualifications"
    __table_args__ = (
        UniqueConstraint("user_id", "service_offering_id", name="uq_qualifications_user_offering"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_offering_id = Column(
        String(36),
        ForeignKey("service_offerings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    training_passed_at = Column(DateTime(timezone=True), nullable=False)

    # Provenance only; the assignment may be deleted later.
    original_assignment_id = Column(String(36), nullable=True, index=True)
    original_organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = Column(String(36), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    service_offering = relationship("ServiceOffering", lazy="joined")

    def __repr__(self) -> str:
        return f"<Qualification user={self.user_id} offering={self.service_offering_id}>"
