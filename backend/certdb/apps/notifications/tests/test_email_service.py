from __future__ import annotations

import pytest

from certdb.apps.directory import schemas as directory_schemas
from certdb.apps.directory import services as directory_services
from certdb.apps.notifications import models as notification_models
from certdb.apps.notifications import providers as notification_providers
from certdb.apps.notifications import service as notification_service


def _create_org(db_session):
    org = directory_services.create_organization(
        db_session,
        data=directory_schemas.OrganizationCreate(name="Notify Org", contact_email="ops@notify.example.com"),
    )
    db_session.commit()
    return org


def _send(db_session, org, **kwargs):
    return notification_service.send_email(
        db_session,
        template_key=notification_service.CV_LOCKED_FINAL_TEMPLATE,
        recipient="Expert@Example.com",
        context={"cv_id": "cv-1"},
        correlation_id="cv:cv-1:locked_final",
        organization_id=org.id,
        **kwargs,
    )


def test_send_email_no_provider_marks_skipped(db_session, monkeypatch):
    org = _create_org(db_session)
    monkeypatch.setattr(
        notification_providers,
        "get_email_provider",
        lambda: (notification_providers.NoopProvider(), False),
    )

    log = _send(db_session, org)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.SKIPPED_NO_PROVIDER
    assert log.error
    assert log.sent_at is None


def test_send_email_log_provider(db_session, monkeypatch):
    org = _create_org(db_session)
    monkeypatch.setenv("NOTIFICATIONS_EMAIL_PROVIDER", "log")

    log = _send(db_session, org)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.SENT
    assert log.sent_at is not None
    assert log.organization_id == org.id
    assert log.correlation_id == "cv:cv-1:locked_final"


def test_send_email_provider_failure_best_effort(db_session, monkeypatch):
    org = _create_org(db_session)

    class FailingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(
        notification_providers,
        "get_email_provider",
        lambda: (FailingProvider(), True),
    )

    log = _send(db_session, org)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.FAILED
    assert log.error == "boom"


def test_send_email_provider_failure_critical_raises(db_session, monkeypatch):
    org = _create_org(db_session)

    class FailingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(
        notification_providers,
        "get_email_provider",
        lambda: (FailingProvider(), True),
    )

    with pytest.raises(RuntimeError):
        _send(db_session, org, critical=True)


def test_unknown_provider_is_rejected(monkeypatch):
    monkeypatch.setenv("NOTIFICATIONS_EMAIL_PROVIDER", "carrier-pigeon")

    with pytest.raises(ValueError):
        notification_providers.get_email_provider()


def test_sent_email_is_not_repeated_for_the_same_correlation(db_session, monkeypatch):
    org = _create_org(db_session)
    monkeypatch.setenv("NOTIFICATIONS_EMAIL_PROVIDER", "log")

    first = _send(db_session, org)
    second = _send(db_session, org)
    db_session.commit()

    assert first.recipient == "expert@example.com"
    assert first.subject == "Your CV review is complete"
    assert second.id == first.id
    assert db_session.query(notification_models.EmailLog).count() == 1


def test_failed_email_is_retried(db_session, monkeypatch):
    org = _create_org(db_session)

    class FailingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (FailingProvider(), True))
    failed = _send(db_session, org)

    monkeypatch.setenv("NOTIFICATIONS_EMAIL_PROVIDER", "log")
    monkeypatch.setattr(
        notification_providers,
        "get_email_provider",
        lambda: (notification_providers.LogProvider(), True),
    )
    sent = _send(db_session, org)
    db_session.commit()

    assert failed.status == notification_models.EmailStatus.FAILED
    assert sent.id != failed.id
    assert sent.status == notification_models.EmailStatus.SENT


def test_unknown_template_needs_a_subject(db_session):
    with pytest.raises(ValueError):
        notification_service.send_email(
            db_session,
            template_key="unknown",
            recipient="expert@example.com",
            context={},
            correlation_id=None,
        )
