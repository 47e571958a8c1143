from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import models
from .schemas import IntegrationConfigCreate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def get_config_by_key(db: Session, *, integration_key: str) -> Optional[models.IntegrationConfig]:
    return (
        db.query(models.IntegrationConfig)
        .filter(models.IntegrationConfig.integration_key == integration_key)
        .first()
    )


def _get_config_by_id(db: Session, *, integration_id: str) -> Optional[models.IntegrationConfig]:
    return (
        db.query(models.IntegrationConfig)
        .filter(models.IntegrationConfig.id == integration_id)
        .first()
    )


def is_config_active(config: models.IntegrationConfig) -> bool:
    return bool(config.enabled) and config.status == models.IntegrationConfigStatus.ACTIVE


def list_integration_configs(db: Session) -> List[models.IntegrationConfig]:
    return (
        db.query(models.IntegrationConfig)
        .order_by(models.IntegrationConfig.created_at.desc())
        .all()
    )


def create_integration_config(db: Session, *, data: IntegrationConfigCreate) -> models.IntegrationConfig:
    existing = get_config_by_key(db, integration_key=data.integration_key)
    if existing:
        return existing

    config = models.IntegrationConfig(**data.model_dump())
    db.add(config)
    db.flush()
    return config


def enqueue_outbound_event(
    db: Session,
    *,
    integration_id: str,
    event_type: str,
    payload_json: Dict[str, Any],
    organization_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    created_by_user_id: Optional[str] = None,
    next_attempt_at: Optional[datetime] = None,
) -> models.IntegrationOutboundEvent:
    """
    Queue an event for the dispatcher. An existing event with the same
    idempotency key is returned unchanged.
    """
    config = _get_config_by_id(db, integration_id=integration_id)
    if not config:
        raise ValueError("Integration config not found.")
    if not is_config_active(config):
        raise ValueError("Integration config is not active.")

    if idempotency_key:
        existing = (
            db.query(models.IntegrationOutboundEvent)
            .filter(models.IntegrationOutboundEvent.idempotency_key == idempotency_key)
            .first()
        )
        if existing:
            return existing

    event = models.IntegrationOutboundEvent(
        organization_id=organization_id,
        integration_id=integration_id,
        event_type=event_type,
        payload_json=payload_json,
        status=models.IntegrationOutboundStatus.PENDING,
        attempt_count=0,
        next_attempt_at=next_attempt_at or _utcnow(),
        idempotency_key=idempotency_key,
        created_by_user_id=created_by_user_id,
    )
    db.add(event)
    db.flush()
    return event


def list_outbound_events(
    db: Session,
    *,
    status: Optional[models.IntegrationOutboundStatus] = None,
    organization_id: Optional[str] = None,
) -> List[models.IntegrationOutboundEvent]:
    query = db.query(models.IntegrationOutboundEvent)
    if status:
        query = query.filter(models.IntegrationOutboundEvent.status == status)
    if organization_id:
        query = query.filter(models.IntegrationOutboundEvent.organization_id == organization_id)
    return query.order_by(models.IntegrationOutboundEvent.created_at.desc()).all()
