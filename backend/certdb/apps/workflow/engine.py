from __future__ import annotations

from datetime import date, datetime
import enum
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from certdb.apps.audit import services as audit_services
from certdb.errors import InvalidTransition

from .registry import UNSET, WORKFLOWS

logger = logging.getLogger(__name__)


def _state_key(state: Any) -> str:
    if state is None:
        return UNSET
    if isinstance(state, enum.Enum):
        return str(state.value)
    return str(state)


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _extract_organization_id(before_obj: Any, after_obj: Any) -> Optional[str]:
    for obj in (after_obj, before_obj):
        if isinstance(obj, dict) and obj.get("organization_id"):
            return obj.get("organization_id")
        organization_id = getattr(obj, "organization_id", None)
        if organization_id:
            return organization_id
    return None


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: Any,
    to_state: Any,
    before_obj: Any,
    after_obj: Any,
    organization_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    critical: bool = True,
) -> None:
    """
    Validate a status move against the registered workflow, run its guards
    and record it in the audit trail.

    Raises InvalidTransition when the move is not registered or a guard
    reports missing requirements. Nothing is written in that case.
    """
    from_key = _state_key(from_state)
    to_key = _state_key(to_state)

    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise InvalidTransition(
            f"No workflow registered for {entity_type}.",
            [{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    transitions = workflow.get("transitions", {})
    allowed = transitions.get(from_key, {})
    guards = allowed.get(to_key)

    if guards is None:
        raise InvalidTransition(
            f"Cannot transition {entity_type} from {from_key} to {to_key}.",
            [{"field": "status", "reason": f"Cannot transition from {from_key} to {to_key}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_key,
                to_state=to_key,
            )
        )

    if failures:
        raise InvalidTransition(
            f"Cannot transition {entity_type} from {from_key} to {to_key}: requirements not met.",
            failures,
        )

    before_payload: Dict[str, Any] = {"status": from_key}
    after_payload: Dict[str, Any] = {"status": to_key}
    if isinstance(before_obj, dict):
        before_payload.update({k: _jsonable(v) for k, v in before_obj.items() if k != "organization_id"})
    if isinstance(after_obj, dict):
        after_payload.update({k: _jsonable(v) for k, v in after_obj.items() if k != "organization_id"})

    if organization_id is None:
        organization_id = _extract_organization_id(before_obj, after_obj)

    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action="transition",
        before=before_payload,
        after=after_payload,
        correlation_id=correlation_id,
        metadata={"workflow": entity_type},
        critical=critical,
    )
    logger.info(
        "lifecycle transition",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "from_state": from_key,
            "to_state": to_key,
            "actor_user_id": actor_user_id,
            "organization_id": organization_id,
            "correlation_id": correlation_id,
        },
    )
