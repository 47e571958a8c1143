from __future__ import annotations

import logging
import os
from typing import Tuple

logger = logging.getLogger(__name__)


class EmailProvider:
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        raise NotImplementedError


class NoopProvider(EmailProvider):
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        return None


class LogProvider(EmailProvider):
    """Writes e-mails to the application log. For local development."""

    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        logger.info(
            "Email dispatched",
            extra={
                "template_key": template_key,
                "recipient": recipient,
                "subject": subject,
                "correlation_id": correlation_id,
            },
        )


def get_email_provider() -> Tuple[EmailProvider, bool]:
    provider_name = (
        os.getenv("NOTIFICATIONS_EMAIL_PROVIDER")
        or os.getenv("EMAIL_PROVIDER")
        or ""
    ).strip().lower()
    if not provider_name or provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False
    if provider_name == "log":
        return LogProvider(), True
    raise ValueError(f"Unsupported email provider: {provider_name}")
