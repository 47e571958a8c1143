"""
Organization service approvals and the annual fee.

The tracker status is derived, never stored: an approved organization
needs a qualified lead expert, then a paid, unexpired annual fee.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
import math
import os
from typing import List, Optional

from sqlalchemy.orm import Session

from certdb.apps.audit import services as audit_services
from certdb.apps.cvs import models as cv_models
from certdb.apps.cvs.enums import QUALIFIED_TRAINING_STATUSES, ExpertRole
from certdb.apps.directory import services as directory_services
from certdb.apps.workflow import apply_transition
from certdb.errors import Conflict, InvalidTransition, NotFound, ValidationFailed

from . import models, schemas

logger = logging.getLogger(__name__)

ANNUAL_FEE_VALIDITY_DAYS = int(os.getenv("ANNUAL_FEE_VALIDITY_DAYS", "365"))
URGENT_WITHIN_DAYS = 7
WARNING_WITHIN_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _days_until(expires_at: datetime, now: datetime) -> int:
    return math.ceil((expires_at - now).total_seconds() / 86400)


def get_service_approval(db: Session, approval_id: str, *, for_update: bool = False) -> models.OrganizationServiceApproval:
    query = db.query(models.OrganizationServiceApproval).filter(models.OrganizationServiceApproval.id == approval_id)
    if for_update:
        query = query.with_for_update()
    approval = query.first()
    if not approval:
        raise NotFound("Service approval not found.", [{"field": "approval_id", "reason": approval_id}])
    return approval


def find_service_approval(
    db: Session,
    *,
    organization_id: str,
    service_offering_id: str,
    for_update: bool = False,
) -> Optional[models.OrganizationServiceApproval]:
    query = db.query(models.OrganizationServiceApproval).filter(
        models.OrganizationServiceApproval.organization_id == organization_id,
        models.OrganizationServiceApproval.service_offering_id == service_offering_id,
    )
    if for_update:
        query = query.with_for_update()
    return query.first()


def list_service_approvals(
    db: Session,
    *,
    organization_id: Optional[str] = None,
    status: Optional[models.ServiceApprovalStatus] = None,
) -> List[models.OrganizationServiceApproval]:
    query = db.query(models.OrganizationServiceApproval)
    if organization_id:
        query = query.filter(models.OrganizationServiceApproval.organization_id == organization_id)
    if status:
        query = query.filter(models.OrganizationServiceApproval.status == status)
    return query.order_by(models.OrganizationServiceApproval.created_at.asc()).all()


def create_service_approval(db: Session, *, data: schemas.ServiceApprovalCreate) -> models.OrganizationServiceApproval:
    directory_services.get_organization(db, data.organization_id)
    directory_services.get_service_offering(db, data.service_offering_id)
    if find_service_approval(
        db,
        organization_id=data.organization_id,
        service_offering_id=data.service_offering_id,
    ):
        raise Conflict(
            "Organization already has an approval record for this service.",
            [{"field": "service_offering_id", "reason": data.service_offering_id}],
        )
    approval = models.OrganizationServiceApproval(
        **data.model_dump(),
        status=models.ServiceApprovalStatus.PENDING,
    )
    db.add(approval)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=approval.organization_id,
        actor_user_id=data.created_by,
        entity_type="service_approval",
        entity_id=approval.id,
        action="create",
        after={"service_offering_id": approval.service_offering_id},
    )
    return approval


def decide_service_approval(
    db: Session,
    approval_id: str,
    *,
    decision: models.ServiceApprovalStatus,
    actor_user_id: str,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> models.OrganizationServiceApproval:
    approval = get_service_approval(db, approval_id, for_update=True)
    decision = models.ServiceApprovalStatus(decision)
    if decision == models.ServiceApprovalStatus.REJECTED and not (reason or "").strip():
        raise ValidationFailed("A rejection reason is required.", [{"field": "reason", "reason": "required"}])

    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="service_approval",
        entity_id=approval.id,
        from_state=approval.status,
        to_state=decision,
        before_obj={"service_offering_id": approval.service_offering_id},
        after_obj={
            "actor_user_id": actor_user_id,
            "service_offering_id": approval.service_offering_id,
            "reason": reason,
        },
        organization_id=approval.organization_id,
    )
    approval.status = decision
    approval.decided_at = _utcnow()
    approval.decided_by = actor_user_id
    approval.rejection_reason = reason if decision == models.ServiceApprovalStatus.REJECTED else None
    if notes is not None:
        approval.notes = notes
    db.add(approval)
    db.flush()
    return approval


def list_qualified_leads(
    db: Session,
    *,
    organization_id: str,
    service_offering_id: str,
) -> List[cv_models.ServiceAssignment]:
    return (
        db.query(cv_models.ServiceAssignment)
        .filter(
            cv_models.ServiceAssignment.organization_id == organization_id,
            cv_models.ServiceAssignment.service_offering_id == service_offering_id,
            cv_models.ServiceAssignment.role == ExpertRole.LEAD,
            cv_models.ServiceAssignment.training_status.in_(list(QUALIFIED_TRAINING_STATUSES)),
        )
        .order_by(cv_models.ServiceAssignment.created_at.asc())
        .all()
    )


def has_qualified_lead(db: Session, *, organization_id: str, service_offering_id: str) -> bool:
    return bool(
        list_qualified_leads(
            db,
            organization_id=organization_id,
            service_offering_id=service_offering_id,
        )
    )


def pay_annual_fee(
    db: Session,
    *,
    organization_id: str,
    service_offering_id: str,
    payment_reference: str,
    payment_amount: Optional[Decimal] = None,
    actor_user_id: Optional[str] = None,
) -> models.OrganizationServiceApproval:
    """
    Record the annual fee. Requires an approved service and at least one
    qualified lead expert. Validity runs ANNUAL_FEE_VALIDITY_DAYS from now.
    """
    approval = find_service_approval(
        db,
        organization_id=organization_id,
        service_offering_id=service_offering_id,
        for_update=True,
    )
    if not approval or approval.status != models.ServiceApprovalStatus.APPROVED:
        raise InvalidTransition(
            "Service is not approved for this organization.",
            [{"field": "service_offering_id", "reason": service_offering_id}],
        )
    if not has_qualified_lead(db, organization_id=organization_id, service_offering_id=service_offering_id):
        raise InvalidTransition(
            "Cannot pay annual fee: no qualified lead expert assigned.",
            [{"field": "role", "reason": "qualified lead required"}],
        )

    paid_at = _utcnow()
    approval.payment_reference = payment_reference
    approval.payment_amount = payment_amount
    approval.paid_at = paid_at
    approval.expires_at = paid_at + timedelta(days=ANNUAL_FEE_VALIDITY_DAYS)
    db.add(approval)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        entity_type="service_approval",
        entity_id=approval.id,
        action="annual_fee_paid",
        after={
            "payment_reference": payment_reference,
            "payment_amount": str(payment_amount) if payment_amount is not None else None,
            "expires_at": approval.expires_at.isoformat(),
        },
    )
    logger.info(
        "Annual fee recorded",
        extra={"approval_id": approval.id, "organization_id": organization_id, "payment_reference": payment_reference},
    )
    return approval


def get_tracker_status(
    db: Session,
    *,
    organization_id: str,
    service_offering_id: str,
    now: Optional[datetime] = None,
) -> dict:
    now = now or _utcnow()
    approval = find_service_approval(
        db,
        organization_id=organization_id,
        service_offering_id=service_offering_id,
    )
    if not approval or approval.status != models.ServiceApprovalStatus.APPROVED:
        return {
            "status": models.TrackerStatus.NOT_APPROVED,
            "has_qualified_lead": False,
            "is_paid": False,
            "is_expired": False,
            "expires_at": None,
            "days_until_expiry": None,
        }

    qualified = has_qualified_lead(db, organization_id=organization_id, service_offering_id=service_offering_id)
    expires_at = _as_utc(approval.expires_at)
    is_paid = approval.paid_at is not None
    is_expired = expires_at is not None and now > expires_at

    if not qualified:
        status = models.TrackerStatus.ASSIGN_LEAD
    elif not is_paid or is_expired:
        status = models.TrackerStatus.PAY_ANNUAL_FEE
    else:
        status = models.TrackerStatus.ACTIVE

    return {
        "status": status,
        "has_qualified_lead": qualified,
        "is_paid": is_paid,
        "is_expired": is_expired,
        "expires_at": expires_at,
        "days_until_expiry": _days_until(expires_at, now) if expires_at else None,
    }


def renewal_urgency(days_until_expiry: int) -> models.RenewalUrgency:
    if days_until_expiry <= URGENT_WITHIN_DAYS:
        return models.RenewalUrgency.URGENT
    if days_until_expiry <= WARNING_WITHIN_DAYS:
        return models.RenewalUrgency.WARNING
    return models.RenewalUrgency.UPCOMING


def list_upcoming_renewals(
    db: Session,
    *,
    within_days: int = 90,
    organization_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Approved services whose annual fee expires within `within_days`, soonest first."""
    now = now or _utcnow()
    horizon = now + timedelta(days=within_days)
    query = db.query(models.OrganizationServiceApproval).filter(
        models.OrganizationServiceApproval.status == models.ServiceApprovalStatus.APPROVED,
        models.OrganizationServiceApproval.expires_at.isnot(None),
        models.OrganizationServiceApproval.expires_at > now,
        models.OrganizationServiceApproval.expires_at <= horizon,
    )
    if organization_id:
        query = query.filter(models.OrganizationServiceApproval.organization_id == organization_id)

    renewals = []
    for approval in query.order_by(models.OrganizationServiceApproval.expires_at.asc()).all():
        days = _days_until(_as_utc(approval.expires_at), now)
        renewals.append(
            {
                "approval": approval,
                "days_until_expiry": days,
                "urgency": renewal_urgency(days),
            }
        )
    return renewals
