"""
Qualification registry.

At most one qualification exists per (user, service offering). The
uniqueness constraint is the lock: a concurrent creator that loses the
insert race reads the winner's row instead.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certdb.apps.audit import services as audit_services
from certdb.apps.directory import services as directory_services
from certdb.errors import Conflict, NotFound, ValidationFailed

from . import models, schemas

logger = logging.getLogger(__name__)


def lookup_qualification(
    db: Session,
    *,
    user_id: str,
    service_offering_id: str,
) -> Optional[models.Qualification]:
    return (
        db.query(models.Qualification)
        .filter(
            models.Qualification.user_id == user_id,
            models.Qualification.service_offering_id == service_offering_id,
        )
        .first()
    )


def get_qualification(db: Session, qualification_id: str) -> models.Qualification:
    qualification = db.get(models.Qualification, qualification_id)
    if not qualification:
        raise NotFound("Qualification not found.", [{"field": "qualification_id", "reason": qualification_id}])
    return qualification


def list_for_user(db: Session, user_id: str) -> List[models.Qualification]:
    return (
        db.query(models.Qualification)
        .filter(models.Qualification.user_id == user_id)
        .order_by(models.Qualification.training_passed_at.asc())
        .all()
    )


def _insert(db: Session, data: schemas.QualificationCreate) -> models.Qualification:
    qualification = models.Qualification(**data.model_dump())
    with db.begin_nested():
        db.add(qualification)
        db.flush()
    return qualification


def _audit_created(db: Session, qualification: models.Qualification) -> None:
    audit_services.log_event(
        db,
        organization_id=qualification.original_organization_id,
        actor_user_id=qualification.created_by,
        entity_type="qualification",
        entity_id=qualification.id,
        action="create",
        after={
            "user_id": qualification.user_id,
            "service_offering_id": qualification.service_offering_id,
            "original_assignment_id": qualification.original_assignment_id,
        },
    )


def create_qualification(db: Session, *, data: schemas.QualificationCreate) -> models.Qualification:
    directory_services.get_user(db, data.user_id)
    directory_services.get_service_offering(db, data.service_offering_id)
    if lookup_qualification(db, user_id=data.user_id, service_offering_id=data.service_offering_id):
        raise Conflict(
            "Qualification already exists for this user and service.",
            [{"field": "service_offering_id", "reason": data.service_offering_id}],
        )
    try:
        qualification = _insert(db, data)
    except IntegrityError:
        raise Conflict(
            "Qualification already exists for this user and service.",
            [{"field": "service_offering_id", "reason": data.service_offering_id}],
        )
    _audit_created(db, qualification)
    return qualification


def get_or_create_qualification(
    db: Session,
    *,
    data: schemas.QualificationCreate,
) -> Tuple[models.Qualification, bool]:
    """
    Return `(qualification, created)`.

    The insert runs inside a savepoint so a unique-constraint violation
    from a concurrent creator only rolls back the savepoint; the winner's
    row is then read and returned with `created=False`.
    """
    existing = lookup_qualification(db, user_id=data.user_id, service_offering_id=data.service_offering_id)
    if existing:
        return existing, False
    try:
        qualification = _insert(db, data)
    except IntegrityError:
        winner = lookup_qualification(db, user_id=data.user_id, service_offering_id=data.service_offering_id)
        if winner is None:
            raise
        logger.info(
            "Qualification insert lost race; using existing record",
            extra={"user_id": data.user_id, "service_offering_id": data.service_offering_id},
        )
        return winner, False
    _audit_created(db, qualification)
    return qualification, True


def update_qualification(
    db: Session,
    qualification_id: str,
    *,
    data: schemas.QualificationUpdate,
    actor_user_id: Optional[str] = None,
) -> models.Qualification:
    qualification = get_qualification(db, qualification_id)
    changes = data.model_dump(exclude_unset=True)
    if "training_passed_at" in changes and changes["training_passed_at"] is None:
        raise ValidationFailed(
            "Training pass date cannot be cleared.",
            [{"field": "training_passed_at", "reason": "required"}],
        )
    before = {key: getattr(qualification, key) for key in changes}
    for key, value in changes.items():
        setattr(qualification, key, value)
    db.add(qualification)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=None,
        actor_user_id=actor_user_id,
        entity_type="qualification",
        entity_id=qualification.id,
        action="update",
        before={k: v.isoformat() if hasattr(v, "isoformat") else v for k, v in before.items()},
        after={k: v.isoformat() if hasattr(v, "isoformat") else v for k, v in changes.items()},
    )
    return qualification


def delete_qualification(
    db: Session,
    qualification_id: str,
    *,
    actor_user_id: Optional[str] = None,
) -> None:
    """
    Remove a qualification. Assignments that referenced it keep their
    training status but lose the link.
    """
    from certdb.apps.cvs import models as cv_models

    qualification = get_qualification(db, qualification_id)
    (
        db.query(cv_models.ServiceAssignment)
        .filter(cv_models.ServiceAssignment.qualification_id == qualification.id)
        .update({cv_models.ServiceAssignment.qualification_id: None}, synchronize_session="fetch")
    )
    audit_services.log_event(
        db,
        organization_id=None,
        actor_user_id=actor_user_id,
        entity_type="qualification",
        entity_id=qualification.id,
        action="delete",
        before={"user_id": qualification.user_id, "service_offering_id": qualification.service_offering_id},
    )
    db.delete(qualification)
    db.flush()
