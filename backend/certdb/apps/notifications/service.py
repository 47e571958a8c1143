"""
Expert e-mail notifications.

Every message is written to `email_logs` inside the caller's transaction
and then handed to the configured provider. A message already SENT for
the same (template, correlation id, recipient) is not sent again, so a
re-dispatched lock does not mail the expert twice.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from . import models, providers

logger = logging.getLogger(__name__)

CV_LOCKED_FINAL_TEMPLATE = "cv_locked_final"

TEMPLATE_SUBJECTS = {
    CV_LOCKED_FINAL_TEMPLATE: "Your CV review is complete",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _already_sent(
    db: Session,
    *,
    template_key: str,
    recipient: str,
    correlation_id: Optional[str],
) -> Optional[models.EmailLog]:
    if not correlation_id:
        return None
    return (
        db.query(models.EmailLog)
        .filter(
            models.EmailLog.template_key == template_key,
            models.EmailLog.recipient == recipient,
            models.EmailLog.correlation_id == correlation_id,
            models.EmailLog.status == models.EmailStatus.SENT,
        )
        .first()
    )


def send_email(
    db: Session,
    *,
    template_key: str,
    recipient: str,
    context: dict,
    correlation_id: Optional[str],
    subject: Optional[str] = None,
    organization_id: Optional[str] = None,
    critical: bool = False,
) -> models.EmailLog:
    """
    Log and send one e-mail.

    Provider failures are recorded on the log row; they only propagate when
    `critical` is set.
    """
    recipient = (recipient or "").strip().lower()
    if not recipient:
        raise ValueError("recipient is required to create an email log entry")
    subject = subject or TEMPLATE_SUBJECTS.get(template_key)
    if not subject:
        raise ValueError(f"No subject for email template {template_key}")

    previous = _already_sent(db, template_key=template_key, recipient=recipient, correlation_id=correlation_id)
    if previous is not None:
        logger.info(
            "Email already sent; skipping",
            extra={"template_key": template_key, "correlation_id": correlation_id},
        )
        return previous

    log = models.EmailLog(
        organization_id=organization_id,
        recipient=recipient,
        subject=subject,
        template_key=template_key,
        status=models.EmailStatus.QUEUED,
        context_json=context or {},
        correlation_id=correlation_id,
    )
    db.add(log)
    db.flush()

    provider, configured = providers.get_email_provider()
    if not configured:
        log.status = models.EmailStatus.SKIPPED_NO_PROVIDER
        log.error = "No provider configured"
        db.flush()
        return log

    try:
        provider.send(
            template_key=template_key,
            recipient=recipient,
            subject=subject,
            context=context or {},
            correlation_id=correlation_id,
        )
    except Exception as exc:
        log.status = models.EmailStatus.FAILED
        log.error = str(exc)
        db.flush()
        if critical:
            raise
        return log

    log.status = models.EmailStatus.SENT
    log.sent_at = _utcnow()
    db.flush()
    return log


def notify_cv_locked_final(
    db: Session,
    *,
    cv,
    expert,
    assignments: Iterable,
    correlation_id: Optional[str],
) -> models.EmailLog:
    """Tell the expert which services were approved and what training is due."""
    services = []
    for assignment in assignments:
        offering = assignment.service_offering
        services.append(
            {
                "assignment_id": assignment.id,
                "service_offering_id": assignment.service_offering_id,
                "service_name": offering.name if offering else None,
                "service_version": offering.version if offering else None,
                "training_status": assignment.training_status.value if assignment.training_status else None,
            }
        )
    return send_email(
        db,
        template_key=CV_LOCKED_FINAL_TEMPLATE,
        recipient=expert.email,
        context={
            "cv_id": cv.id,
            "version": cv.version,
            "organization_id": cv.organization_id,
            "expert_name": expert.full_name,
            "services": services,
            "training_required": [s["service_offering_id"] for s in services if s["training_status"] == "required"],
        },
        correlation_id=correlation_id,
        organization_id=cv.organization_id,
    )
