"""
CV lifecycle.

draft <-> completed follows content validity. Payment and review move the
CV forward; the only loop is locked_for_review <-> unlocked_for_edits.
locked_final is terminal: further changes need a new version, which
starts from the latest locked content.

Every status change goes through `workflow.apply_transition` before the
row is touched, so a rejected move leaves the CV unchanged.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from decimal import Decimal
import logging
import os
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certdb.apps.audit import services as audit_services
from certdb.apps.directory import services as directory_services
from certdb.apps.lifecycle import coordinator
from certdb.apps.workflow import apply_transition
from certdb.errors import Conflict, InvalidTransition, NotFound, ValidationFailed

from . import models, schemas, validation
from .enums import (
    CONTENT_EDITABLE_STATUSES,
    ENTRY_LOCK_STATUSES,
    AssignmentStatus,
    CVSection,
    CVStatus,
    is_locked_family,
)

logger = logging.getLogger(__name__)

AUTO_REVIEW_ON_PAYMENT = os.getenv("CV_AUTO_REVIEW_ON_PAYMENT", "1").strip().lower() in {"1", "true", "yes", "on"}

CONTENT_SECTIONS = tuple(section.value for section in CVSection)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------------


def get_cv(db: Session, cv_id: str, *, for_update: bool = False) -> models.ExpertCV:
    query = db.query(models.ExpertCV).filter(models.ExpertCV.id == cv_id)
    if for_update:
        query = query.with_for_update()
    cv = query.first()
    if not cv:
        raise NotFound("CV not found.", [{"field": "cv_id", "reason": cv_id}])
    return cv


def get_latest_cv(db: Session, *, user_id: str, organization_id: str) -> Optional[models.ExpertCV]:
    return (
        db.query(models.ExpertCV)
        .filter(
            models.ExpertCV.user_id == user_id,
            models.ExpertCV.organization_id == organization_id,
        )
        .order_by(models.ExpertCV.version.desc())
        .first()
    )


def list_cvs(
    db: Session,
    *,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    status: Optional[CVStatus] = None,
) -> List[models.ExpertCV]:
    query = db.query(models.ExpertCV)
    if user_id:
        query = query.filter(models.ExpertCV.user_id == user_id)
    if organization_id:
        query = query.filter(models.ExpertCV.organization_id == organization_id)
    if status:
        query = query.filter(models.ExpertCV.status == status)
    return query.order_by(models.ExpertCV.created_at.desc()).all()


def list_cv_history(db: Session, *, user_id: str, organization_id: str) -> List[dict]:
    """All versions for a user + organization, newest first, with assignment tallies."""
    cvs = (
        db.query(models.ExpertCV)
        .filter(
            models.ExpertCV.user_id == user_id,
            models.ExpertCV.organization_id == organization_id,
        )
        .order_by(models.ExpertCV.version.desc())
        .all()
    )
    if not cvs:
        return []

    tallies = {}
    rows = (
        db.query(
            models.ServiceAssignment.cv_id,
            models.ServiceAssignment.status,
            func.count(models.ServiceAssignment.id),
        )
        .filter(models.ServiceAssignment.cv_id.in_([cv.id for cv in cvs]))
        .group_by(models.ServiceAssignment.cv_id, models.ServiceAssignment.status)
        .all()
    )
    for cv_id, status, count in rows:
        tallies.setdefault(cv_id, {})[status] = count

    history = []
    for cv in cvs:
        counts = tallies.get(cv.id, {})
        history.append(
            {
                "cv": cv,
                "assignment_count": sum(counts.values()),
                "approved_count": counts.get(AssignmentStatus.APPROVED, 0),
                "pending_count": counts.get(AssignmentStatus.PENDING_REVIEW, 0),
                "rejected_count": counts.get(AssignmentStatus.REJECTED, 0),
            }
        )
    return history


# ---------------------------------------------------------------------------
# INTERNAL HELPERS
# ---------------------------------------------------------------------------


def _transition(
    db: Session,
    cv: models.ExpertCV,
    to_state: CVStatus,
    *,
    actor_user_id: Optional[str],
    after: Optional[dict] = None,
) -> None:
    after_obj = {"version": cv.version, "actor_user_id": actor_user_id}
    after_obj.update(after or {})
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="expert_cv",
        entity_id=cv.id,
        from_state=cv.status,
        to_state=to_state,
        before_obj={"version": cv.version},
        after_obj=after_obj,
        organization_id=cv.organization_id,
    )
    cv.status = to_state


def _sync_completion_status(db: Session, cv: models.ExpertCV, *, actor_user_id: Optional[str]) -> None:
    """draft <-> completed follows content validity."""
    errors = validation.cv_completion_errors(cv)
    if cv.status == CVStatus.DRAFT and not errors:
        _transition(db, cv, CVStatus.COMPLETED, actor_user_id=actor_user_id)
        cv.completed_at = _utcnow()
    elif cv.status == CVStatus.COMPLETED and errors:
        _transition(
            db,
            cv,
            CVStatus.DRAFT,
            actor_user_id=actor_user_id,
            after={"errors": errors},
        )
        cv.completed_at = None


def _copy_section(entries: Optional[list]) -> list:
    copied = copy.deepcopy(list(entries or []))
    for entry in copied:
        if isinstance(entry, dict):
            entry["locked_for_review"] = False
    return copied


def _dump_entries(entries) -> list:
    return [entry.model_dump() if hasattr(entry, "model_dump") else dict(entry) for entry in entries]


def _require_editable(cv: models.ExpertCV) -> None:
    if cv.status not in CONTENT_EDITABLE_STATUSES:
        raise InvalidTransition(
            f"CV content cannot be edited while {cv.status.value}.",
            [{"field": "status", "reason": cv.status.value}],
        )


# ---------------------------------------------------------------------------
# CREATE / EDIT
# ---------------------------------------------------------------------------


def _latest_for_update(db: Session, *, user_id: str, organization_id: str) -> Optional[models.ExpertCV]:
    return (
        db.query(models.ExpertCV)
        .filter(
            models.ExpertCV.user_id == user_id,
            models.ExpertCV.organization_id == organization_id,
        )
        .order_by(models.ExpertCV.version.desc())
        .with_for_update()
        .first()
    )


def create_cv(db: Session, *, data: schemas.CVCreate) -> models.ExpertCV:
    """
    Create the next CV version for a user + organization.

    If the latest version is in the locked family its content is copied
    forward and the supplied content is ignored. A new version cannot be
    started while the latest one is still editable.
    """
    directory_services.get_user(db, data.user_id)
    directory_services.get_organization(db, data.organization_id)

    latest = _latest_for_update(db, user_id=data.user_id, organization_id=data.organization_id)
    if latest is not None and latest.status in CONTENT_EDITABLE_STATUSES:
        raise Conflict(
            f"CV version {latest.version} is still being edited.",
            [{"field": "cv_id", "reason": latest.id}],
        )

    cv = models.ExpertCV(
        user_id=data.user_id,
        organization_id=data.organization_id,
        version=(latest.version + 1) if latest else 1,
        status=CVStatus.DRAFT,
        notes=data.notes,
        created_by=data.created_by,
        pending_assignment_count=0,
    )
    if latest is not None and is_locked_family(latest.status):
        for section in CONTENT_SECTIONS:
            setattr(cv, section, _copy_section(getattr(latest, section)))
        cv.copied_from_cv_id = latest.id
    else:
        cv.experience = _dump_entries(data.experience)
        cv.education = _dump_entries(data.education)
        cv.training_qualifications = _dump_entries(data.training_qualifications)
        cv.other_approvals = _dump_entries(data.other_approvals)

    # A first version has no row to lock; the unique version key settles the race.
    try:
        with db.begin_nested():
            db.add(cv)
            db.flush()
    except IntegrityError:
        raise Conflict(
            f"CV version {cv.version} was created concurrently.",
            [{"field": "version", "reason": str(cv.version)}],
        )
    audit_services.log_event(
        db,
        organization_id=cv.organization_id,
        actor_user_id=data.created_by,
        entity_type="expert_cv",
        entity_id=cv.id,
        action="create",
        after={"version": cv.version, "copied_from_cv_id": cv.copied_from_cv_id},
    )
    _sync_completion_status(db, cv, actor_user_id=data.created_by)
    db.flush()
    logger.info(
        "CV created",
        extra={"cv_id": cv.id, "version": cv.version, "status": cv.status.value},
    )
    return cv


def update_cv_content(db: Session, cv_id: str, *, data: schemas.CVContentUpdate) -> models.ExpertCV:
    cv = get_cv(db, cv_id, for_update=True)
    _require_editable(cv)

    changes = {}
    for section in CONTENT_SECTIONS:
        entries = getattr(data, section)
        if entries is not None:
            changes[section] = _dump_entries(entries)

    if cv.status == CVStatus.UNLOCKED_FOR_EDITS:
        violations = []
        for section, proposed in changes.items():
            violations.extend(validation.locked_entry_violations(section, getattr(cv, section), proposed))
        if violations:
            raise InvalidTransition("Entries locked for review cannot be changed.", violations)

    for section, entries in changes.items():
        setattr(cv, section, entries)
    if "notes" in data.model_fields_set:
        cv.notes = data.notes

    _sync_completion_status(db, cv, actor_user_id=data.actor_user_id)
    db.add(cv)
    db.flush()
    return cv


def submit_cv(db: Session, cv_id: str, *, actor_user_id: Optional[str] = None) -> models.ExpertCV:
    """Explicit draft -> completed. Raises ValidationFailed with every content error."""
    cv = get_cv(db, cv_id, for_update=True)
    if cv.status == CVStatus.COMPLETED:
        return cv
    if cv.status != CVStatus.DRAFT:
        raise InvalidTransition(
            f"Only draft CVs can be submitted; CV is {cv.status.value}.",
            [{"field": "status", "reason": cv.status.value}],
        )
    errors = validation.cv_completion_errors(cv)
    if errors:
        raise ValidationFailed("CV content is incomplete.", errors)
    _sync_completion_status(db, cv, actor_user_id=actor_user_id)
    db.add(cv)
    db.flush()
    return cv


def set_entry_review_lock(
    db: Session,
    cv_id: str,
    *,
    section: CVSection,
    index: int,
    locked: bool,
    actor_user_id: str,
) -> models.ExpertCV:
    """Protect (or release) one content entry while the CV is under review."""
    cv = get_cv(db, cv_id, for_update=True)
    if cv.status not in ENTRY_LOCK_STATUSES:
        raise InvalidTransition(
            f"Entries can only be locked for review while the CV is under review; CV is {cv.status.value}.",
            [{"field": "status", "reason": cv.status.value}],
        )
    section = CVSection(section)
    entries = copy.deepcopy(list(getattr(cv, section.value) or []))
    if index < 0 or index >= len(entries):
        raise ValidationFailed(
            "Entry index out of range.",
            [{"field": f"{section.value}[{index}]", "reason": "not found"}],
        )
    entries[index]["locked_for_review"] = bool(locked)
    setattr(cv, section.value, entries)
    db.add(cv)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=cv.organization_id,
        actor_user_id=actor_user_id,
        entity_type="expert_cv",
        entity_id=cv.id,
        action="entry_lock" if locked else "entry_unlock",
        after={"section": section.value, "index": index},
    )
    return cv


# ---------------------------------------------------------------------------
# PAYMENT
# ---------------------------------------------------------------------------


def initiate_payment(db: Session, cv_id: str, *, actor_user_id: Optional[str] = None) -> models.ExpertCV:
    cv = get_cv(db, cv_id, for_update=True)
    _transition(db, cv, CVStatus.PAYMENT_PENDING, actor_user_id=actor_user_id)
    cv.payment_initiated_at = _utcnow()
    db.add(cv)
    db.flush()
    return cv


def confirm_payment(
    db: Session,
    cv_id: str,
    *,
    payment_reference: str,
    payment_amount: Optional[Decimal] = None,
    actor_user_id: Optional[str] = None,
) -> models.ExpertCV:
    """
    Record an externally settled payment. With CV_AUTO_REVIEW_ON_PAYMENT
    the CV moves straight on to locked_for_review.
    """
    cv = get_cv(db, cv_id, for_update=True)
    paid_at = _utcnow()
    _transition(
        db,
        cv,
        CVStatus.PAID,
        actor_user_id=actor_user_id,
        after={
            "payment_reference": payment_reference,
            "payment_amount": str(payment_amount) if payment_amount is not None else None,
            "paid_at": paid_at,
        },
    )
    cv.payment_reference = payment_reference
    cv.payment_amount = payment_amount
    cv.paid_at = paid_at
    db.add(cv)
    db.flush()

    if AUTO_REVIEW_ON_PAYMENT:
        _enter_review(db, cv, actor_user_id=actor_user_id)
    return cv


# ---------------------------------------------------------------------------
# REVIEW
# ---------------------------------------------------------------------------


def _enter_review(db: Session, cv: models.ExpertCV, *, actor_user_id: Optional[str]) -> None:
    _transition(db, cv, CVStatus.LOCKED_FOR_REVIEW, actor_user_id=actor_user_id)
    cv.review_started_at = _utcnow()
    cv.review_started_by = actor_user_id
    db.add(cv)
    db.flush()
    coordinator.evaluate_auto_lock(db, cv, actor_user_id=actor_user_id)


def start_review(db: Session, cv_id: str, *, actor_user_id: str) -> models.ExpertCV:
    """paid -> locked_for_review, or completed -> locked_for_review for review-before-payment."""
    cv = get_cv(db, cv_id, for_update=True)
    _enter_review(db, cv, actor_user_id=actor_user_id)
    return cv


def return_for_edits(
    db: Session,
    cv_id: str,
    *,
    actor_user_id: str,
    reason: Optional[str] = None,
) -> models.ExpertCV:
    cv = get_cv(db, cv_id, for_update=True)
    _transition(
        db,
        cv,
        CVStatus.UNLOCKED_FOR_EDITS,
        actor_user_id=actor_user_id,
        after={"reason": reason},
    )
    cv.returned_at = _utcnow()
    cv.returned_by = actor_user_id
    cv.return_reason = reason
    db.add(cv)
    db.flush()
    return cv


def resubmit_cv(db: Session, cv_id: str, *, actor_user_id: Optional[str] = None) -> models.ExpertCV:
    cv = get_cv(db, cv_id, for_update=True)
    if cv.status != CVStatus.UNLOCKED_FOR_EDITS:
        raise InvalidTransition(
            f"Only CVs returned for edits can be resubmitted; CV is {cv.status.value}.",
            [{"field": "status", "reason": cv.status.value}],
        )
    errors = validation.cv_completion_errors(cv)
    if errors:
        raise ValidationFailed("CV content is incomplete.", errors)
    _transition(db, cv, CVStatus.LOCKED_FOR_REVIEW, actor_user_id=actor_user_id)
    cv.resubmitted_at = _utcnow()
    db.add(cv)
    db.flush()
    coordinator.evaluate_auto_lock(db, cv, actor_user_id=actor_user_id)
    return cv


def finalize_cv(db: Session, cv_id: str, *, actor_user_id: str) -> models.ExpertCV:
    """
    Admin lock to locked_final. Same guard as the automatic lock, but also
    accepts a CV without assignments. Finalizing a locked_final CV is a
    no-op.
    """
    cv = get_cv(db, cv_id, for_update=True)
    if cv.status == CVStatus.LOCKED_FINAL:
        return cv
    coordinator.lock_final(db, cv, actor_user_id=actor_user_id)
    return cv
