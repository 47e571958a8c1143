"""
Lifecycle coordinator.

Runs inside the transaction of the mutation that triggered it:

1. After any assignment decision (and whenever a CV enters review) the
   CV's auto-lock eligibility is re-evaluated from its pending counter.
2. When a CV reaches locked_final, every approved assignment gets its
   training status from the qualification registry, then the expert and
   the training system are notified on a best-effort basis.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import os
from typing import List, Optional

from sqlalchemy.orm import Session

from certdb.apps.cvs import models as cv_models
from certdb.apps.cvs.enums import AssignmentStatus, CVStatus, TrainingStatus
from certdb.apps.directory import models as directory_models
from certdb.apps.integrations import services as integration_services
from certdb.apps.notifications import service as notification_service
from certdb.apps.qualifications import services as qualification_services
from certdb.apps.workflow import apply_transition
from certdb.utils.identifiers import correlation_id as build_correlation_id

logger = logging.getLogger(__name__)

TRAINING_INTEGRATION_KEY = os.getenv("TRAINING_INTEGRATION_KEY", "training_system")
TRAINING_EVENT_TYPE = "training.assignments_required"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def evaluate_auto_lock(
    db: Session,
    cv: cv_models.ExpertCV,
    *,
    actor_user_id: Optional[str] = None,
) -> bool:
    """
    Lock the CV if it is in review and none of its assignments is pending.

    Returns True when this call performed the lock. Calling it again on a
    locked_final CV is a no-op. A CV without assignments is never
    auto-locked; an admin finalizes it explicitly.
    """
    if cv.status != CVStatus.LOCKED_FOR_REVIEW:
        return False
    if cv.pending_assignment_count > 0:
        return False

    db.flush()
    total = (
        db.query(cv_models.ServiceAssignment)
        .filter(cv_models.ServiceAssignment.cv_id == cv.id)
        .count()
    )
    if total == 0:
        return False

    lock_final(db, cv, actor_user_id=actor_user_id)
    return True


def lock_final(
    db: Session,
    cv: cv_models.ExpertCV,
    *,
    actor_user_id: Optional[str] = None,
) -> List[cv_models.ServiceAssignment]:
    if cv.status == CVStatus.LOCKED_FINAL:
        return []

    correlation_id = build_correlation_id("cv", cv.id, CVStatus.LOCKED_FINAL.value)
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="expert_cv",
        entity_id=cv.id,
        from_state=cv.status,
        to_state=CVStatus.LOCKED_FINAL,
        before_obj={"version": cv.version},
        after_obj={
            "version": cv.version,
            "pending_assignment_count": cv.pending_assignment_count,
        },
        organization_id=cv.organization_id,
        correlation_id=correlation_id,
    )
    cv.status = CVStatus.LOCKED_FINAL
    cv.locked_at = _utcnow()
    cv.locked_by = actor_user_id
    db.add(cv)
    db.flush()

    resolved = resolve_training_statuses(
        db,
        cv,
        actor_user_id=actor_user_id,
        correlation_id=correlation_id,
    )
    dispatch_post_lock_side_effects(
        db,
        cv,
        resolved,
        actor_user_id=actor_user_id,
        correlation_id=correlation_id,
    )
    return resolved


def resolve_training_statuses(
    db: Session,
    cv: cv_models.ExpertCV,
    *,
    actor_user_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> List[cv_models.ServiceAssignment]:
    """
    Approved assignments reuse an existing qualification (not_required) or
    are sent to training (required).
    """
    assignments = (
        db.query(cv_models.ServiceAssignment)
        .filter(
            cv_models.ServiceAssignment.cv_id == cv.id,
            cv_models.ServiceAssignment.status == AssignmentStatus.APPROVED,
            cv_models.ServiceAssignment.training_status.is_(None),
        )
        .order_by(cv_models.ServiceAssignment.created_at.asc())
        .with_for_update()
        .all()
    )
    for assignment in assignments:
        qualification = qualification_services.lookup_qualification(
            db,
            user_id=assignment.user_id,
            service_offering_id=assignment.service_offering_id,
        )
        target = TrainingStatus.NOT_REQUIRED if qualification else TrainingStatus.REQUIRED
        apply_transition(
            db,
            actor_user_id=actor_user_id,
            entity_type="assignment_training",
            entity_id=assignment.id,
            from_state=assignment.training_status,
            to_state=target,
            before_obj={"cv_id": cv.id},
            after_obj={
                "cv_id": cv.id,
                "qualification_id": qualification.id if qualification else None,
            },
            organization_id=assignment.organization_id,
            correlation_id=correlation_id,
        )
        assignment.training_status = target
        if qualification:
            assignment.qualification_id = qualification.id
            assignment.qualified_at = qualification.training_passed_at
        db.add(assignment)
    db.flush()
    return assignments


def dispatch_post_lock_side_effects(
    db: Session,
    cv: cv_models.ExpertCV,
    assignments: List[cv_models.ServiceAssignment],
    *,
    actor_user_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """
    Notify the expert and queue the training-system event.

    Each runs in its own savepoint; a failure is logged and rolled back to
    that savepoint without touching the lock itself.
    """
    extra = {"cv_id": cv.id, "organization_id": cv.organization_id, "correlation_id": correlation_id}
    try:
        with db.begin_nested():
            _notify_expert(db, cv, assignments, correlation_id=correlation_id)
    except Exception:
        logger.warning("Failed to notify expert of locked CV", extra=extra, exc_info=True)

    try:
        with db.begin_nested():
            _notify_training_system(
                db,
                cv,
                assignments,
                actor_user_id=actor_user_id,
                correlation_id=correlation_id,
            )
    except Exception:
        logger.warning("Failed to queue training system event", extra=extra, exc_info=True)


def _notify_expert(
    db: Session,
    cv: cv_models.ExpertCV,
    assignments: List[cv_models.ServiceAssignment],
    *,
    correlation_id: Optional[str],
) -> None:
    user = db.get(directory_models.User, cv.user_id)
    if not user or not user.email:
        logger.info("Expert has no e-mail address; notification skipped", extra={"cv_id": cv.id})
        return
    notification_service.notify_cv_locked_final(
        db,
        cv=cv,
        expert=user,
        assignments=assignments,
        correlation_id=correlation_id,
    )


def _notify_training_system(
    db: Session,
    cv: cv_models.ExpertCV,
    assignments: List[cv_models.ServiceAssignment],
    *,
    actor_user_id: Optional[str],
    correlation_id: Optional[str],
) -> None:
    required = [a for a in assignments if a.training_status == TrainingStatus.REQUIRED]
    if not required:
        return
    config = integration_services.get_config_by_key(db, integration_key=TRAINING_INTEGRATION_KEY)
    if not config or not integration_services.is_config_active(config):
        logger.info(
            "Training integration not configured; event skipped",
            extra={"cv_id": cv.id, "integration_key": TRAINING_INTEGRATION_KEY},
        )
        return
    integration_services.enqueue_outbound_event(
        db,
        integration_id=config.id,
        event_type=TRAINING_EVENT_TYPE,
        payload_json={
            "cv_id": cv.id,
            "user_id": cv.user_id,
            "organization_id": cv.organization_id,
            "assignments": [
                {
                    "assignment_id": assignment.id,
                    "service_offering_id": assignment.service_offering_id,
                    "role": assignment.role.value,
                }
                for assignment in required
            ],
        },
        organization_id=cv.organization_id,
        idempotency_key=correlation_id,
        created_by_user_id=actor_user_id,
    )
