from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_actor_recorded(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "actor_user_id"):
        return [{"field": "actor_user_id", "reason": "acting user required"}]
    return []


def guard_payment_recorded(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "payment_reference"):
        missing.append({"field": "payment_reference", "reason": "payment reference required"})
    if not _get_value(after_obj, "paid_at"):
        missing.append({"field": "paid_at", "reason": "payment timestamp required"})
    return missing


def guard_no_pending_assignments(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    pending = _get_value(after_obj, "pending_assignment_count")
    if pending is None:
        return [{"field": "pending_assignment_count", "reason": "pending assignment count required"}]
    if pending > 0:
        return [{"field": "assignments", "reason": f"{pending} service assignments are still pending review"}]
    return []


def guard_assignment_offering_selected(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "service_offering_id"):
        return [{"field": "service_offering_id", "reason": "service offering must be selected before a decision"}]
    return []


def guard_rejection_recorded(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "rejected_by"):
        missing.append({"field": "rejected_by", "reason": "reviewer required"})
    if not (_get_value(after_obj, "rejection_reason") or "").strip():
        missing.append({"field": "rejection_reason", "reason": "rejection reason required"})
    return missing


def guard_approval_recorded(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "approved_by"):
        return [{"field": "approved_by", "reason": "reviewer required"}]
    return []


def guard_training_result_recorded(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "training_completed_at"):
        return [{"field": "training_completed_at", "reason": "completion timestamp required"}]
    return []
