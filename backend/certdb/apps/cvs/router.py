# backend/certdb/apps/cvs/router.py
"""
CV lifecycle and service assignment API.

- CVs: create version, edit content, submit, payment, review loop, final lock.
- Assignments: attach services, placeholder offering selection, decisions,
  requirement check-offs, training progress.

Acting users are passed in request bodies; authentication is handled in
front of this service.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from certdb.database import get_db, get_read_db
from certdb.errors import LifecycleError, NotFound, raise_http

from . import assignments, schemas, services
from .enums import AssignmentStatus, CVStatus, ExpertRole, TrainingStatus

router = APIRouter(tags=["cvs"])


# ---------------------------------------------------------------------------
# CVs
# ---------------------------------------------------------------------------


@router.get("/cvs", response_model=List[schemas.CVRead])
def list_cvs(
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    status: Optional[CVStatus] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_cvs(db, user_id=user_id, organization_id=organization_id, status=status)


@router.get("/cvs/history", response_model=List[schemas.CVHistoryItem])
def list_cv_history(user_id: str, organization_id: str, db: Session = Depends(get_read_db)):
    return services.list_cv_history(db, user_id=user_id, organization_id=organization_id)


@router.get("/cvs/latest", response_model=schemas.CVDetailRead)
def get_latest_cv(user_id: str, organization_id: str, db: Session = Depends(get_read_db)):
    cv = services.get_latest_cv(db, user_id=user_id, organization_id=organization_id)
    if not cv:
        raise_http(db, NotFound("No CV for this user and organization."))
    return cv


@router.post("/cvs", response_model=schemas.CVDetailRead, status_code=status.HTTP_201_CREATED)
def create_cv(payload: schemas.CVCreate, db: Session = Depends(get_db)):
    try:
        cv = services.create_cv(db, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(cv)
    return cv


@router.get("/cvs/{cv_id}", response_model=schemas.CVDetailRead)
def get_cv(cv_id: str, db: Session = Depends(get_read_db)):
    try:
        return services.get_cv(db, cv_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.patch("/cvs/{cv_id}", response_model=schemas.CVDetailRead)
def update_cv_content(cv_id: str, payload: schemas.CVContentUpdate, db: Session = Depends(get_db)):
    try:
        cv = services.update_cv_content(db, cv_id, data=payload)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(cv)
    return cv


def _run_cv_action(db: Session, action, cv_id: str, **kwargs):
    try:
        cv = action(db, cv_id, **kwargs)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(cv)
    return cv


@router.post("/cvs/{cv_id}/submit", response_model=schemas.CVDetailRead)
def submit_cv(cv_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_cv_action(db, services.submit_cv, cv_id, actor_user_id=payload.actor_user_id)


@router.post("/cvs/{cv_id}/payment/initiate", response_model=schemas.CVDetailRead)
def initiate_payment(cv_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_cv_action(db, services.initiate_payment, cv_id, actor_user_id=payload.actor_user_id)


@router.post("/cvs/{cv_id}/payment/confirm", response_model=schemas.CVDetailRead)
def confirm_payment(cv_id: str, payload: schemas.PaymentConfirm, db: Session = Depends(get_db)):
    return _run_cv_action(
        db,
        services.confirm_payment,
        cv_id,
        payment_reference=payload.payment_reference,
        payment_amount=payload.payment_amount,
        actor_user_id=payload.actor_user_id,
    )


@router.post("/cvs/{cv_id}/review/start", response_model=schemas.CVDetailRead)
def start_review(cv_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_cv_action(db, services.start_review, cv_id, actor_user_id=payload.actor_user_id)


@router.post("/cvs/{cv_id}/review/return", response_model=schemas.CVDetailRead)
def return_for_edits(cv_id: str, payload: schemas.ReturnForEdits, db: Session = Depends(get_db)):
    return _run_cv_action(
        db,
        services.return_for_edits,
        cv_id,
        actor_user_id=payload.actor_user_id,
        reason=payload.reason,
    )


@router.post("/cvs/{cv_id}/review/resubmit", response_model=schemas.CVDetailRead)
def resubmit_cv(cv_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_cv_action(db, services.resubmit_cv, cv_id, actor_user_id=payload.actor_user_id)


@router.post("/cvs/{cv_id}/finalize", response_model=schemas.CVDetailRead)
def finalize_cv(cv_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_cv_action(db, services.finalize_cv, cv_id, actor_user_id=payload.actor_user_id)


@router.post("/cvs/{cv_id}/entry-lock", response_model=schemas.CVDetailRead)
def set_entry_review_lock(cv_id: str, payload: schemas.EntryReviewLock, db: Session = Depends(get_db)):
    return _run_cv_action(
        db,
        services.set_entry_review_lock,
        cv_id,
        section=payload.section,
        index=payload.index,
        locked=payload.locked,
        actor_user_id=payload.actor_user_id,
    )


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.get("/assignments", response_model=List[schemas.AssignmentRead])
def list_assignments(
    cv_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    service_offering_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[AssignmentStatus] = None,
    training_status: Optional[TrainingStatus] = None,
    role: Optional[ExpertRole] = None,
    db: Session = Depends(get_read_db),
):
    return assignments.list_assignments(
        db,
        cv_id=cv_id,
        organization_id=organization_id,
        service_offering_id=service_offering_id,
        user_id=user_id,
        status=status,
        training_status=training_status,
        role=role,
    )


@router.post(
    "/cvs/{cv_id}/assignments",
    response_model=schemas.AssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_assignment(cv_id: str, payload: schemas.AssignmentCreate, db: Session = Depends(get_db)):
    try:
        assignment = assignments.create_assignment(
            db,
            cv_id,
            service_offering=assignments.offering_ref(payload.service_offering_id),
            role=payload.role,
            created_by=payload.created_by,
        )
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(assignment)
    return assignment


@router.post(
    "/cvs/{cv_id}/assignments/bulk",
    response_model=List[schemas.AssignmentRead],
    status_code=status.HTTP_201_CREATED,
)
def create_assignments(cv_id: str, payload: schemas.AssignmentBulkCreate, db: Session = Depends(get_db)):
    try:
        created = assignments.create_assignments(
            db,
            cv_id,
            items=[(assignments.offering_ref(item.service_offering_id), item.role) for item in payload.items],
            created_by=payload.created_by,
        )
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    for assignment in created:
        db.refresh(assignment)
    return created


@router.post("/assignments/decisions", response_model=List[schemas.AssignmentRead])
def decide_assignments(payload: schemas.BulkAssignmentDecision, db: Session = Depends(get_db)):
    try:
        command = assignments.command_for_decision(
            payload.decision,
            actor_user_id=payload.actor_user_id,
            reason=payload.reason,
            review_notes=payload.review_notes,
        )
        decided = assignments.decide_assignments(db, payload.assignment_ids, command)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    for assignment in decided:
        db.refresh(assignment)
    return decided


@router.get("/assignments/{assignment_id}", response_model=schemas.AssignmentRead)
def get_assignment(assignment_id: str, db: Session = Depends(get_read_db)):
    try:
        return assignments.get_assignment(db, assignment_id)
    except LifecycleError as exc:
        raise_http(db, exc)


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assignment(assignment_id: str, actor_user_id: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        assignments.delete_assignment(db, assignment_id, actor_user_id=actor_user_id)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _run_assignment_action(db: Session, action, assignment_id: str, *args, **kwargs):
    try:
        assignment = action(db, assignment_id, *args, **kwargs)
        db.commit()
    except LifecycleError as exc:
        raise_http(db, exc)
    db.refresh(assignment)
    return assignment


@router.post("/assignments/{assignment_id}/offering", response_model=schemas.AssignmentRead)
def select_offering(assignment_id: str, payload: schemas.OfferingSelect, db: Session = Depends(get_db)):
    return _run_assignment_action(
        db,
        assignments.select_offering,
        assignment_id,
        service_offering_id=payload.service_offering_id,
        actor_user_id=payload.actor_user_id,
    )


@router.post("/assignments/{assignment_id}/decision", response_model=schemas.AssignmentRead)
def decide_assignment(assignment_id: str, payload: schemas.AssignmentDecision, db: Session = Depends(get_db)):
    command = assignments.command_for_decision(
        payload.decision,
        actor_user_id=payload.actor_user_id,
        reason=payload.reason,
        review_notes=payload.review_notes,
    )
    return _run_assignment_action(db, assignments.decide_assignment, assignment_id, command)


@router.post("/assignments/{assignment_id}/checkoffs", response_model=schemas.AssignmentRead)
def check_off_requirement(
    assignment_id: str,
    payload: schemas.RequirementCheckoff,
    db: Session = Depends(get_db),
):
    return _run_assignment_action(
        db,
        assignments.check_off_requirement,
        assignment_id,
        requirement_id=payload.requirement_id,
        actor_user_id=payload.actor_user_id,
        checked=payload.checked,
    )


@router.post("/assignments/{assignment_id}/checkoffs/bulk", response_model=schemas.AssignmentRead)
def check_off_requirements(
    assignment_id: str,
    payload: schemas.BulkRequirementCheckoff,
    db: Session = Depends(get_db),
):
    return _run_assignment_action(
        db,
        assignments.check_off_requirements,
        assignment_id,
        requirement_ids=payload.requirement_ids,
        actor_user_id=payload.actor_user_id,
        checked=payload.checked,
    )


@router.post("/assignments/{assignment_id}/training/invite", response_model=schemas.AssignmentRead)
def invite_to_training(assignment_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_assignment_action(
        db,
        assignments.invite_to_training,
        assignment_id,
        actor_user_id=payload.actor_user_id,
    )


@router.post("/assignments/{assignment_id}/training/start", response_model=schemas.AssignmentRead)
def start_training(assignment_id: str, payload: schemas.ActorAction, db: Session = Depends(get_db)):
    return _run_assignment_action(
        db,
        assignments.start_training,
        assignment_id,
        actor_user_id=payload.actor_user_id,
    )


@router.post("/assignments/{assignment_id}/training/complete", response_model=schemas.AssignmentRead)
def complete_training(assignment_id: str, payload: schemas.TrainingResult, db: Session = Depends(get_db)):
    return _run_assignment_action(
        db,
        assignments.complete_training,
        assignment_id,
        passed=payload.passed,
        actor_user_id=payload.actor_user_id,
    )
