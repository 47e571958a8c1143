"""
Service assignment state machine.

Review decisions are typed commands (`ApproveAssignment`,
`RejectAssignment`, `ResetAssignment`). Each command yields a complete
`ReviewUpdate` covering every decision field, so moving away from a state
always clears the fields that belonged to it.

Every write keeps `ExpertCV.pending_assignment_count` in step with the
number of pending_review children and then lets the coordinator decide
whether the CV locks.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import enum
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certdb.apps.audit import services as audit_services
from certdb.apps.directory import services as directory_services
from certdb.apps.lifecycle import coordinator
from certdb.apps.qualifications import schemas as qualification_schemas
from certdb.apps.qualifications import services as qualification_services
from certdb.apps.requirements import services as requirement_services
from certdb.apps.workflow import apply_transition
from certdb.errors import Conflict, InvalidTransition, NotFound, ValidationFailed

from . import models
from . import services as cv_services
from .enums import (
    SERVICE_EDITABLE_STATUSES,
    AssignmentStatus,
    CVStatus,
    ExpertRole,
    TrainingStatus,
    is_qualified,
)

logger = logging.getLogger(__name__)

__all__ = [
    "UNASSIGNED",
    "ApproveAssignment",
    "RejectAssignment",
    "ResetAssignment",
    "ReviewUpdate",
    "is_qualified",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# OFFERING REFERENCE
# ---------------------------------------------------------------------------


class _Unassigned(enum.Enum):
    UNASSIGNED = "unassigned"

    def __repr__(self) -> str:
        return "UNASSIGNED"


UNASSIGNED = _Unassigned.UNASSIGNED

# A service offering id, or UNASSIGNED for a placeholder assignment.
OfferingRef = Union[str, _Unassigned]


def offering_ref(service_offering_id: Optional[str]) -> OfferingRef:
    return service_offering_id if service_offering_id else UNASSIGNED


# ---------------------------------------------------------------------------
# DECISION COMMANDS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApproveAssignment:
    actor_user_id: str
    review_notes: Optional[str] = None


@dataclass(frozen=True)
class RejectAssignment:
    actor_user_id: str
    reason: str
    review_notes: Optional[str] = None


@dataclass(frozen=True)
class ResetAssignment:
    """Send a decided assignment back to pending_review."""

    actor_user_id: str
    review_notes: Optional[str] = None


DecisionCommand = Union[ApproveAssignment, RejectAssignment, ResetAssignment]


@dataclass(frozen=True)
class ReviewUpdate:
    status: AssignmentStatus
    approved_at: Optional[datetime]
    approved_by: Optional[str]
    rejected_at: Optional[datetime]
    rejected_by: Optional[str]
    rejection_reason: Optional[str]
    reviewed_at: datetime
    reviewed_by: str
    review_notes: Optional[str]


def build_review_update(command: DecisionCommand, *, now: datetime) -> ReviewUpdate:
    if isinstance(command, ApproveAssignment):
        return ReviewUpdate(
            status=AssignmentStatus.APPROVED,
            approved_at=now,
            approved_by=command.actor_user_id,
            rejected_at=None,
            rejected_by=None,
            rejection_reason=None,
            reviewed_at=now,
            reviewed_by=command.actor_user_id,
            review_notes=command.review_notes,
        )
    if isinstance(command, RejectAssignment):
        return ReviewUpdate(
            status=AssignmentStatus.REJECTED,
            approved_at=None,
            approved_by=None,
            rejected_at=now,
            rejected_by=command.actor_user_id,
            rejection_reason=(command.reason or "").strip() or None,
            reviewed_at=now,
            reviewed_by=command.actor_user_id,
            review_notes=command.review_notes,
        )
    if isinstance(command, ResetAssignment):
        return ReviewUpdate(
            status=AssignmentStatus.PENDING_REVIEW,
            approved_at=None,
            approved_by=None,
            rejected_at=None,
            rejected_by=None,
            rejection_reason=None,
            reviewed_at=now,
            reviewed_by=command.actor_user_id,
            review_notes=command.review_notes,
        )
    raise TypeError(f"Unknown decision command: {command!r}")


def command_for_decision(
    decision: AssignmentStatus,
    *,
    actor_user_id: str,
    reason: Optional[str] = None,
    review_notes: Optional[str] = None,
) -> DecisionCommand:
    decision = AssignmentStatus(decision)
    if decision == AssignmentStatus.APPROVED:
        return ApproveAssignment(actor_user_id=actor_user_id, review_notes=review_notes)
    if decision == AssignmentStatus.REJECTED:
        return RejectAssignment(actor_user_id=actor_user_id, reason=reason or "", review_notes=review_notes)
    if decision == AssignmentStatus.PENDING_REVIEW:
        return ResetAssignment(actor_user_id=actor_user_id, review_notes=review_notes)
    raise TypeError(f"Unknown decision: {decision!r}")


def _pending_delta(from_status: AssignmentStatus, to_status: AssignmentStatus) -> int:
    pending = AssignmentStatus.PENDING_REVIEW
    return int(to_status == pending) - int(from_status == pending)


# ---------------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------------


def get_assignment(db: Session, assignment_id: str, *, for_update: bool = False) -> models.ServiceAssignment:
    query = db.query(models.ServiceAssignment).filter(models.ServiceAssignment.id == assignment_id)
    if for_update:
        query = query.with_for_update()
    assignment = query.first()
    if not assignment:
        raise NotFound("Service assignment not found.", [{"field": "assignment_id", "reason": assignment_id}])
    return assignment


def _owning_cv_id(db: Session, assignment_id: str) -> str:
    row = (
        db.query(models.ServiceAssignment.cv_id)
        .filter(models.ServiceAssignment.id == assignment_id)
        .first()
    )
    if not row:
        raise NotFound("Service assignment not found.", [{"field": "assignment_id", "reason": assignment_id}])
    return row[0]


def lock_assignment(db: Session, assignment_id: str) -> Tuple[models.ServiceAssignment, models.ExpertCV]:
    """
    Lock the owning CV, then the assignment.

    Every writer takes the CV row before any of its assignment rows, the
    same order the final lock uses.
    """
    cv = cv_services.get_cv(db, _owning_cv_id(db, assignment_id), for_update=True)
    assignment = get_assignment(db, assignment_id, for_update=True)
    return assignment, cv


def list_assignments(
    db: Session,
    *,
    cv_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    service_offering_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[AssignmentStatus] = None,
    training_status: Optional[TrainingStatus] = None,
    role: Optional[ExpertRole] = None,
) -> List[models.ServiceAssignment]:
    query = db.query(models.ServiceAssignment)
    if cv_id:
        query = query.filter(models.ServiceAssignment.cv_id == cv_id)
    if organization_id:
        query = query.filter(models.ServiceAssignment.organization_id == organization_id)
    if service_offering_id:
        query = query.filter(models.ServiceAssignment.service_offering_id == service_offering_id)
    if user_id:
        query = query.filter(models.ServiceAssignment.user_id == user_id)
    if status:
        query = query.filter(models.ServiceAssignment.status == status)
    if training_status:
        query = query.filter(models.ServiceAssignment.training_status == training_status)
    if role:
        query = query.filter(models.ServiceAssignment.role == role)
    return query.order_by(models.ServiceAssignment.created_at.asc()).all()


def _ensure_not_final(cv: models.ExpertCV) -> None:
    if cv.status == CVStatus.LOCKED_FINAL:
        raise InvalidTransition(
            "CV is locked_final; its assignments can no longer change.",
            [{"field": "cv_id", "reason": cv.id}],
        )


def _validate_offering(db: Session, service_offering_id: str) -> None:
    offering = directory_services.get_service_offering(db, service_offering_id)
    if not offering.is_active:
        raise ValidationFailed(
            "Service offering is deprecated.",
            [{"field": "service_offering_id", "reason": service_offering_id}],
        )


def _existing_offering_ids(db: Session, cv_id: str) -> set:
    rows = (
        db.query(models.ServiceAssignment.service_offering_id)
        .filter(
            models.ServiceAssignment.cv_id == cv_id,
            models.ServiceAssignment.service_offering_id.isnot(None),
        )
        .all()
    )
    return {row[0] for row in rows}


# ---------------------------------------------------------------------------
# CREATE / SELECT / DELETE
# ---------------------------------------------------------------------------


def _insert_assignment(
    db: Session,
    cv: models.ExpertCV,
    *,
    service_offering_id: Optional[str],
    role: ExpertRole,
    created_by: Optional[str],
) -> models.ServiceAssignment:
    assignment = models.ServiceAssignment(
        cv_id=cv.id,
        user_id=cv.user_id,
        organization_id=cv.organization_id,
        service_offering_id=service_offering_id,
        role=ExpertRole(role),
        status=AssignmentStatus.PENDING_REVIEW,
        training_attempts=0,
        requirement_checkoffs=[],
        created_by=created_by,
    )
    try:
        with db.begin_nested():
            db.add(assignment)
            db.flush()
    except IntegrityError:
        raise Conflict(
            "An assignment for this service already exists on the CV.",
            [{"field": "service_offering_id", "reason": service_offering_id or ""}],
        )
    cv.pending_assignment_count += 1
    db.add(cv)
    audit_services.log_event(
        db,
        organization_id=cv.organization_id,
        actor_user_id=created_by,
        entity_type="service_assignment",
        entity_id=assignment.id,
        action="create",
        after={
            "cv_id": cv.id,
            "service_offering_id": service_offering_id,
            "role": assignment.role.value,
        },
    )
    return assignment


def _require_service_editable(cv: models.ExpertCV) -> None:
    if cv.status not in SERVICE_EDITABLE_STATUSES:
        raise InvalidTransition(
            f"Services cannot be selected while the CV is {cv.status.value}.",
            [{"field": "status", "reason": cv.status.value}],
        )


def create_assignment(
    db: Session,
    cv_id: str,
    *,
    service_offering: OfferingRef,
    role: ExpertRole = ExpertRole.REGULAR,
    created_by: Optional[str] = None,
) -> models.ServiceAssignment:
    """Attach a service to a CV. Pass UNASSIGNED for a placeholder."""
    cv = cv_services.get_cv(db, cv_id, for_update=True)
    _require_service_editable(cv)

    service_offering_id = None if service_offering is UNASSIGNED else service_offering
    if service_offering_id is not None:
        _validate_offering(db, service_offering_id)
        if service_offering_id in _existing_offering_ids(db, cv.id):
            raise Conflict(
                "An assignment for this service already exists on the CV.",
                [{"field": "service_offering_id", "reason": service_offering_id}],
            )

    assignment = _insert_assignment(
        db,
        cv,
        service_offering_id=service_offering_id,
        role=role,
        created_by=created_by,
    )
    db.flush()
    return assignment


def create_assignments(
    db: Session,
    cv_id: str,
    *,
    items: Sequence[Tuple[OfferingRef, ExpertRole]],
    created_by: Optional[str] = None,
) -> List[models.ServiceAssignment]:
    """Attach several services at once; offerings already on the CV are skipped."""
    cv = cv_services.get_cv(db, cv_id, for_update=True)
    _require_service_editable(cv)

    seen = _existing_offering_ids(db, cv.id)
    pending: List[Tuple[Optional[str], ExpertRole]] = []
    for service_offering, role in items:
        service_offering_id = None if service_offering is UNASSIGNED else service_offering
        if service_offering_id is not None:
            if service_offering_id in seen:
                continue
            _validate_offering(db, service_offering_id)
            seen.add(service_offering_id)
        pending.append((service_offering_id, role))

    created = [
        _insert_assignment(
            db,
            cv,
            service_offering_id=service_offering_id,
            role=role,
            created_by=created_by,
        )
        for service_offering_id, role in pending
    ]
    db.flush()
    return created


def select_offering(
    db: Session,
    assignment_id: str,
    *,
    service_offering_id: str,
    actor_user_id: Optional[str] = None,
) -> models.ServiceAssignment:
    """Give a placeholder assignment its service offering."""
    assignment, cv = lock_assignment(db, assignment_id)
    _ensure_not_final(cv)
    if assignment.service_offering_id is not None:
        raise InvalidTransition(
            "Assignment already has a service offering.",
            [{"field": "service_offering_id", "reason": assignment.service_offering_id}],
        )
    _validate_offering(db, service_offering_id)
    if service_offering_id in _existing_offering_ids(db, cv.id):
        raise Conflict(
            "An assignment for this service already exists on the CV.",
            [{"field": "service_offering_id", "reason": service_offering_id}],
        )
    assignment.service_offering_id = service_offering_id
    try:
        with db.begin_nested():
            db.add(assignment)
            db.flush()
    except IntegrityError:
        raise Conflict(
            "An assignment for this service already exists on the CV.",
            [{"field": "service_offering_id", "reason": service_offering_id}],
        )
    audit_services.log_event(
        db,
        organization_id=assignment.organization_id,
        actor_user_id=actor_user_id,
        entity_type="service_assignment",
        entity_id=assignment.id,
        action="select_offering",
        after={"service_offering_id": service_offering_id},
    )
    return assignment


def delete_assignment(db: Session, assignment_id: str, *, actor_user_id: Optional[str] = None) -> None:
    assignment, cv = lock_assignment(db, assignment_id)
    if cv.status != CVStatus.DRAFT:
        raise InvalidTransition(
            f"Assignments can only be removed while the CV is draft; CV is {cv.status.value}.",
            [{"field": "status", "reason": cv.status.value}],
        )
    if assignment.status == AssignmentStatus.PENDING_REVIEW:
        cv.pending_assignment_count -= 1
        db.add(cv)
    audit_services.log_event(
        db,
        organization_id=cv.organization_id,
        actor_user_id=actor_user_id,
        entity_type="service_assignment",
        entity_id=assignment.id,
        action="delete",
        before={"cv_id": cv.id, "service_offering_id": assignment.service_offering_id},
    )
    db.delete(assignment)
    db.flush()


# ---------------------------------------------------------------------------
# REVIEW DECISIONS
# ---------------------------------------------------------------------------


def _apply_decision(
    db: Session,
    assignment: models.ServiceAssignment,
    cv: models.ExpertCV,
    command: DecisionCommand,
) -> None:
    _ensure_not_final(cv)
    update = build_review_update(command, now=_utcnow())
    after_obj = asdict(update)
    after_obj.update(
        {
            "cv_id": cv.id,
            "service_offering_id": assignment.service_offering_id,
        }
    )
    apply_transition(
        db,
        actor_user_id=command.actor_user_id,
        entity_type="service_assignment",
        entity_id=assignment.id,
        from_state=assignment.status,
        to_state=update.status,
        before_obj={"cv_id": cv.id},
        after_obj=after_obj,
        organization_id=cv.organization_id,
    )
    delta = _pending_delta(assignment.status, update.status)
    for field, value in asdict(update).items():
        setattr(assignment, field, value)
    cv.pending_assignment_count += delta
    db.add(assignment)
    db.add(cv)


def decide_assignment(db: Session, assignment_id: str, command: DecisionCommand) -> models.ServiceAssignment:
    """
    Approve, reject or reset one assignment, then re-evaluate the CV's
    auto-lock in the same transaction.
    """
    assignment, cv = lock_assignment(db, assignment_id)
    _apply_decision(db, assignment, cv, command)
    db.flush()
    coordinator.evaluate_auto_lock(db, cv, actor_user_id=command.actor_user_id)
    return assignment


def decide_assignments(
    db: Session,
    assignment_ids: Iterable[str],
    command: DecisionCommand,
) -> List[models.ServiceAssignment]:
    """
    Apply one command to many assignments. Auto-lock is evaluated once per
    CV after every decision has been applied. A failure part-way leaves
    earlier decisions flushed; the caller rolls the transaction back.
    """
    unique_ids = list(dict.fromkeys(assignment_ids))
    owners = {assignment_id: _owning_cv_id(db, assignment_id) for assignment_id in unique_ids}
    # CVs in id order, then their assignments.
    cvs: Dict[str, models.ExpertCV] = {
        cv_id: cv_services.get_cv(db, cv_id, for_update=True) for cv_id in sorted(set(owners.values()))
    }
    for cv in cvs.values():
        _ensure_not_final(cv)
    locked = {
        assignment_id: get_assignment(db, assignment_id, for_update=True) for assignment_id in sorted(unique_ids)
    }
    assignments = [locked[assignment_id] for assignment_id in unique_ids]

    for assignment in assignments:
        _apply_decision(db, assignment, cvs[assignment.cv_id], command)
    db.flush()
    for cv in cvs.values():
        coordinator.evaluate_auto_lock(db, cv, actor_user_id=command.actor_user_id)
    return assignments


# ---------------------------------------------------------------------------
# REQUIREMENT CHECK-OFFS
# ---------------------------------------------------------------------------


def _validate_checkoff(assignment: models.ServiceAssignment, requirement) -> None:
    if requirement.is_retired:
        raise InvalidTransition(
            "Retired requirements cannot be checked off.",
            [{"field": "requirement_id", "reason": requirement.id}],
        )
    if requirement.service_offering_id != assignment.service_offering_id:
        raise ValidationFailed(
            "Requirement belongs to a different service offering.",
            [{"field": "requirement_id", "reason": requirement.id}],
        )


def _merge_checkoffs(
    current: Optional[list],
    requirement_ids: Sequence[str],
    *,
    checked: bool,
    actor_user_id: str,
    now: datetime,
) -> list:
    merged = {item["requirement_id"]: dict(item) for item in (current or [])}
    for requirement_id in requirement_ids:
        merged[requirement_id] = {
            "requirement_id": requirement_id,
            "checked": bool(checked),
            "checked_at": now.isoformat(),
            "checked_by": actor_user_id,
        }
    return list(merged.values())


def check_off_requirements(
    db: Session,
    assignment_id: str,
    *,
    requirement_ids: Sequence[str],
    actor_user_id: str,
    checked: bool = True,
) -> models.ServiceAssignment:
    """
    Check (or uncheck) requirements on an assignment. Every requirement is
    validated before anything is written; one retired or foreign
    requirement rejects the whole batch.
    """
    assignment, cv = lock_assignment(db, assignment_id)
    _ensure_not_final(cv)

    unique_ids = list(dict.fromkeys(requirement_ids))
    for requirement_id in unique_ids:
        requirement = requirement_services.get_requirement(db, requirement_id)
        _validate_checkoff(assignment, requirement)

    assignment.requirement_checkoffs = _merge_checkoffs(
        assignment.requirement_checkoffs,
        unique_ids,
        checked=checked,
        actor_user_id=actor_user_id,
        now=_utcnow(),
    )
    db.add(assignment)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=assignment.organization_id,
        actor_user_id=actor_user_id,
        entity_type="service_assignment",
        entity_id=assignment.id,
        action="requirements_checked" if checked else "requirements_unchecked",
        after={"requirement_ids": unique_ids},
    )
    return assignment


def check_off_requirement(
    db: Session,
    assignment_id: str,
    *,
    requirement_id: str,
    actor_user_id: str,
    checked: bool = True,
) -> models.ServiceAssignment:
    return check_off_requirements(
        db,
        assignment_id,
        requirement_ids=[requirement_id],
        actor_user_id=actor_user_id,
        checked=checked,
    )


# ---------------------------------------------------------------------------
# TRAINING
# ---------------------------------------------------------------------------


def _training_transition(
    db: Session,
    assignment: models.ServiceAssignment,
    to_state: TrainingStatus,
    *,
    actor_user_id: Optional[str],
    after: Optional[dict] = None,
) -> None:
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="assignment_training",
        entity_id=assignment.id,
        from_state=assignment.training_status,
        to_state=to_state,
        before_obj={"training_attempts": assignment.training_attempts},
        after_obj=after or {},
        organization_id=assignment.organization_id,
    )
    assignment.training_status = to_state


def invite_to_training(db: Session, assignment_id: str, *, actor_user_id: Optional[str] = None) -> models.ServiceAssignment:
    assignment = get_assignment(db, assignment_id, for_update=True)
    _training_transition(db, assignment, TrainingStatus.INVITED, actor_user_id=actor_user_id)
    assignment.training_invited_at = _utcnow()
    db.add(assignment)
    db.flush()
    return assignment


def start_training(db: Session, assignment_id: str, *, actor_user_id: Optional[str] = None) -> models.ServiceAssignment:
    """invited -> in_progress, or a retry after failed."""
    assignment = get_assignment(db, assignment_id, for_update=True)
    _training_transition(db, assignment, TrainingStatus.IN_PROGRESS, actor_user_id=actor_user_id)
    assignment.training_started_at = _utcnow()
    assignment.training_completed_at = None
    assignment.training_attempts = (assignment.training_attempts or 0) + 1
    db.add(assignment)
    db.flush()
    return assignment


def complete_training(
    db: Session,
    assignment_id: str,
    *,
    passed: bool,
    actor_user_id: Optional[str] = None,
) -> models.ServiceAssignment:
    """
    Record a training result. Passing earns the global qualification for
    (user, offering), or links the one another organization already earned.
    """
    assignment = get_assignment(db, assignment_id, for_update=True)
    completed_at = _utcnow()
    target = TrainingStatus.PASSED if passed else TrainingStatus.FAILED
    _training_transition(
        db,
        assignment,
        target,
        actor_user_id=actor_user_id,
        after={"training_completed_at": completed_at, "training_attempts": assignment.training_attempts},
    )
    assignment.training_completed_at = completed_at

    if passed:
        qualification, created = qualification_services.get_or_create_qualification(
            db,
            data=qualification_schemas.QualificationCreate(
                user_id=assignment.user_id,
                service_offering_id=assignment.service_offering_id,
                training_passed_at=completed_at,
                original_assignment_id=assignment.id,
                original_organization_id=assignment.organization_id,
                created_by=actor_user_id,
            ),
        )
        assignment.qualification_id = qualification.id
        assignment.qualified_at = qualification.training_passed_at
        logger.info(
            "Training passed",
            extra={
                "assignment_id": assignment.id,
                "qualification_id": qualification.id,
                "qualification_created": created,
            },
        )
    db.add(assignment)
    db.flush()
    return assignment
