from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from certdb.database import Base
from certdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationConfigStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class IntegrationOutboundStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    DEAD_LETTER = "DEAD_LETTER"


class IntegrationConfig(Base):
    """External system reached by webhook, e.g. the training platform."""

    __tablename__ = "integration_configs"
    __table_args__ = (
        UniqueConstraint("integration_key", name="uq_integration_configs_key"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    integration_key = Column(String(64), nullable=False, index=True)
    display_name = Column(String(128), nullable=False)
    status = Column(
        SAEnum(IntegrationConfigStatus, name="integration_config_status", native_enum=False),
        nullable=False,
        default=IntegrationConfigStatus.ACTIVE,
        index=True,
    )
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    base_url = Column(String(255), nullable=True)
    signing_secret = Column(String(255), nullable=True)
    metadata_json = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    created_by_user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<IntegrationConfig id={self.id} key={self.integration_key}>"


class IntegrationOutboundEvent(Base):
    __tablename__ = "integration_outbound_events"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_integration_outbound_idempotency"),
        Index("ix_integration_outbound_status", "status"),
        Index("ix_integration_outbound_next_attempt_at", "next_attempt_at"),
        Index("ix_integration_outbound_org_integration", "organization_id", "integration_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    integration_id = Column(
        String(36),
        ForeignKey("integration_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type = Column(String(128), nullable=False, index=True)
    payload_json = Column(JSON, nullable=False)
    status = Column(
        SAEnum(IntegrationOutboundStatus, name="integration_outbound_status", native_enum=False),
        nullable=False,
        default=IntegrationOutboundStatus.PENDING,
    )
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    idempotency_key = Column(String(128), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by_user_id = Column(String(36), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<IntegrationOutboundEvent id={self.id} type={self.event_type} status={self.status}>"
