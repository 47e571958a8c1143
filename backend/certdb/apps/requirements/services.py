"""
Requirement catalog.

Requirements are never edited in place. Assignments record check-offs
against a specific requirement id, so a changed checklist item is
published as a new requirement and the old one is retired with
forward/backward links between them.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from certdb.apps.cvs import models as cv_models
from certdb.apps.cvs.enums import ExpertRole
from certdb.apps.directory import services as directory_services
from certdb.apps.workflow import apply_transition
from certdb.errors import InvalidTransition, NotFound, ValidationFailed

from . import models, schemas

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_requirement(db: Session, requirement_id: str, *, for_update: bool = False) -> models.ServiceRequirement:
    query = db.query(models.ServiceRequirement).filter(models.ServiceRequirement.id == requirement_id)
    if for_update:
        query = query.with_for_update()
    requirement = query.first()
    if not requirement:
        raise NotFound("Requirement not found.", [{"field": "requirement_id", "reason": requirement_id}])
    return requirement


def _retire(
    db: Session,
    requirement: models.ServiceRequirement,
    *,
    retired_by: str,
    reason: str,
    replaced_by_id: Optional[str] = None,
) -> models.ServiceRequirement:
    if requirement.is_retired:
        raise InvalidTransition(
            "Requirement is already retired.",
            [{"field": "requirement_id", "reason": requirement.id}],
        )
    retired_at = _utcnow()
    apply_transition(
        db,
        actor_user_id=retired_by,
        entity_type="service_requirement",
        entity_id=requirement.id,
        from_state="active",
        to_state="retired",
        before_obj={"title": requirement.title},
        after_obj={
            "actor_user_id": retired_by,
            "retirement_reason": reason,
            "replaced_by_requirement_id": replaced_by_id,
        },
    )
    requirement.is_retired = True
    requirement.retired_at = retired_at
    requirement.retired_by = retired_by
    requirement.retirement_reason = reason
    if replaced_by_id:
        requirement.replaced_by_requirement_id = replaced_by_id
    db.add(requirement)
    return requirement


def create_requirement(db: Session, *, data: schemas.RequirementCreate) -> models.ServiceRequirement:
    """
    Publish a requirement for a service offering.

    With `replaces_requirement_id` the old requirement is retired in the
    same transaction and both records are cross-linked.
    """
    directory_services.get_service_offering(db, data.service_offering_id)
    title = data.title.strip()
    if not title:
        raise ValidationFailed("Requirement title is required.", [{"field": "title", "reason": "required"}])

    old: Optional[models.ServiceRequirement] = None
    if data.replaces_requirement_id:
        old = get_requirement(db, data.replaces_requirement_id, for_update=True)
        if old.is_retired:
            raise InvalidTransition(
                "Cannot replace a retired requirement.",
                [{"field": "replaces_requirement_id", "reason": old.id}],
            )
        if old.service_offering_id != data.service_offering_id:
            raise ValidationFailed(
                "Replacement must belong to the same service offering.",
                [{"field": "service_offering_id", "reason": "does not match replaced requirement"}],
            )

    requirement = models.ServiceRequirement(
        **data.model_dump(exclude={"title"}),
        title=title,
    )
    db.add(requirement)
    db.flush()

    if old is not None:
        _retire(
            db,
            old,
            retired_by=data.created_by,
            reason=f"Replaced by requirement: {title}",
            replaced_by_id=requirement.id,
        )
        db.flush()
        logger.info(
            "Requirement replaced",
            extra={"requirement_id": requirement.id, "replaces_requirement_id": old.id},
        )
    return requirement


def retire_requirement(
    db: Session,
    requirement_id: str,
    *,
    retired_by: str,
    reason: Optional[str] = None,
) -> models.ServiceRequirement:
    requirement = get_requirement(db, requirement_id, for_update=True)
    _retire(
        db,
        requirement,
        retired_by=retired_by,
        reason=(reason or "").strip() or models.DEFAULT_RETIREMENT_REASON,
    )
    db.flush()
    return requirement


def list_active(
    db: Session,
    *,
    service_offering_id: str,
    role: Optional[ExpertRole] = None,
) -> List[models.ServiceRequirement]:
    """
    Active requirements visible to `role`, ordered by display order.
    Items without an order come last; ties fall back to creation time.
    """
    query = db.query(models.ServiceRequirement).filter(
        models.ServiceRequirement.service_offering_id == service_offering_id,
        models.ServiceRequirement.is_retired.is_(False),
    )
    if role is not None:
        query = query.filter(
            models.ServiceRequirement.role_applicability.in_(
                [models.RoleApplicability.BOTH, models.RoleApplicability(ExpertRole(role).value)]
            )
        )
    return query.order_by(
        models.ServiceRequirement.display_order.is_(None),
        models.ServiceRequirement.display_order.asc(),
        models.ServiceRequirement.created_at.asc(),
        models.ServiceRequirement.id.asc(),
    ).all()


def get_requirement_history(db: Session, requirement_id: str) -> dict:
    requirement = get_requirement(db, requirement_id)
    replaced = None
    replaced_by = None
    if requirement.replaces_requirement_id:
        replaced = db.get(models.ServiceRequirement, requirement.replaces_requirement_id)
    if requirement.replaced_by_requirement_id:
        replaced_by = db.get(models.ServiceRequirement, requirement.replaced_by_requirement_id)
    return {"current": requirement, "replaced": replaced, "replaced_by": replaced_by}


def list_for_assignment(db: Session, assignment_id: str) -> List[dict]:
    """Active requirements for an assignment's role, merged with its check-off state."""
    assignment = db.get(cv_models.ServiceAssignment, assignment_id)
    if not assignment:
        raise NotFound("Service assignment not found.", [{"field": "assignment_id", "reason": assignment_id}])
    if not assignment.service_offering_id:
        return []

    checkoffs = {item["requirement_id"]: item for item in (assignment.requirement_checkoffs or [])}
    rows = []
    for requirement in list_active(
        db,
        service_offering_id=assignment.service_offering_id,
        role=assignment.role,
    ):
        checkoff = checkoffs.get(requirement.id) or {}
        row = schemas.RequirementRead.model_validate(requirement).model_dump()
        row["is_checked"] = bool(checkoff.get("checked"))
        row["checked_at"] = checkoff.get("checked_at")
        row["checked_by"] = checkoff.get("checked_by")
        rows.append(row)
    return rows
