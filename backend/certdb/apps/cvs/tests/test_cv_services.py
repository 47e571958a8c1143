from __future__ import annotations

from decimal import Decimal

import pytest

from certdb.apps.audit import models as audit_models
from certdb.apps.cvs import schemas as cv_schemas
from certdb.apps.cvs import services as cv_services
from certdb.apps.cvs.enums import CVSection, CVStatus
from certdb.apps.directory import schemas as directory_schemas
from certdb.apps.directory import services as directory_services
from certdb.errors import Conflict, InvalidTransition, ValidationFailed

EXPERIENCE = {
    "title": "Food Safety Auditor",
    "company": "Acme Certification",
    "start_date": "2018-01",
    "current": True,
}
EDUCATION = {
    "school": "University of Nairobi",
    "degree": "BSc",
    "field": "Food Science",
    "start_date": "2012-09",
    "end_date": "2016-06",
}


def _create_expert(db_session):
    user = directory_services.create_user(
        db_session,
        data=directory_schemas.UserCreate(first_name="Amina", last_name="Otieno", email="amina@example.com"),
    )
    org = directory_services.create_organization(
        db_session,
        data=directory_schemas.OrganizationCreate(name="Certify Ltd"),
    )
    admin = directory_services.create_user(
        db_session,
        data=directory_schemas.UserCreate(first_name="Ada", last_name="Admin", email="admin@example.com"),
    )
    db_session.commit()
    return user, org, admin


def _create_cv(db_session, user, org, *, complete=True):
    cv = cv_services.create_cv(
        db_session,
        data=cv_schemas.CVCreate(
            user_id=user.id,
            organization_id=org.id,
            experience=[EXPERIENCE] if complete else [],
            education=[EDUCATION] if complete else [],
            created_by=user.id,
        ),
    )
    db_session.commit()
    return cv


def _transition_events(db_session, cv_id):
    return (
        db_session.query(audit_models.AuditEvent)
        .filter(
            audit_models.AuditEvent.entity_id == cv_id,
            audit_models.AuditEvent.action == "transition",
        )
        .order_by(audit_models.AuditEvent.occurred_at.asc(), audit_models.AuditEvent.id.asc())
        .all()
    )


def test_complete_content_auto_completes(db_session):
    user, org, _ = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)

    assert cv.version == 1
    assert cv.status == CVStatus.COMPLETED
    assert cv.completed_at is not None
    assert cv.experience[0]["locked_for_review"] is False
    assert [e.after["status"] for e in _transition_events(db_session, cv.id)] == ["completed"]


def test_completion_follows_content_validity(db_session):
    user, org, _ = _create_expert(db_session)
    cv = _create_cv(db_session, user, org, complete=False)
    assert cv.status == CVStatus.DRAFT

    cv_services.update_cv_content(
        db_session,
        cv.id,
        data=cv_schemas.CVContentUpdate(experience=[EXPERIENCE], education=[EDUCATION]),
    )
    db_session.commit()
    assert cv.status == CVStatus.COMPLETED

    cv_services.update_cv_content(db_session, cv.id, data=cv_schemas.CVContentUpdate(education=[]))
    db_session.commit()
    assert cv.status == CVStatus.DRAFT
    assert cv.completed_at is None


def test_submit_reports_every_content_error(db_session):
    user, org, _ = _create_expert(db_session)
    cv = _create_cv(db_session, user, org, complete=False)
    cv_services.update_cv_content(
        db_session,
        cv.id,
        data=cv_schemas.CVContentUpdate(experience=[{"title": "Auditor"}]),
    )
    db_session.commit()

    with pytest.raises(ValidationFailed) as excinfo:
        cv_services.submit_cv(db_session, cv.id, actor_user_id=user.id)

    fields = {item["field"] for item in excinfo.value.detail}
    assert {"education", "experience[0].company", "experience[0].start_date", "experience[0].end_date"} <= fields
    assert cv.status == CVStatus.DRAFT


def test_payment_moves_cv_into_review(db_session, monkeypatch):
    monkeypatch.setattr(cv_services, "AUTO_REVIEW_ON_PAYMENT", True)
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)

    cv_services.initiate_payment(db_session, cv.id, actor_user_id=user.id)
    db_session.commit()
    assert cv.status == CVStatus.PAYMENT_PENDING

    cv_services.confirm_payment(
        db_session,
        cv.id,
        payment_reference="MPESA-123",
        payment_amount=Decimal("150.00"),
        actor_user_id=admin.id,
    )
    db_session.commit()

    assert cv.status == CVStatus.LOCKED_FOR_REVIEW
    assert cv.paid_at is not None
    assert cv.payment_reference == "MPESA-123"
    statuses = [e.after["status"] for e in _transition_events(db_session, cv.id)]
    assert statuses[-2:] == ["paid", "locked_for_review"]


def test_manual_review_start_after_payment(db_session, monkeypatch):
    monkeypatch.setattr(cv_services, "AUTO_REVIEW_ON_PAYMENT", False)
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)
    cv_services.initiate_payment(db_session, cv.id, actor_user_id=user.id)
    cv_services.confirm_payment(db_session, cv.id, payment_reference="REF-1", actor_user_id=admin.id)
    db_session.commit()
    assert cv.status == CVStatus.PAID

    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()
    assert cv.status == CVStatus.LOCKED_FOR_REVIEW
    assert cv.review_started_by == admin.id


def test_payment_cannot_skip_initiation(db_session):
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)

    with pytest.raises(InvalidTransition):
        cv_services.confirm_payment(db_session, cv.id, payment_reference="REF-1", actor_user_id=admin.id)
    assert cv.status == CVStatus.COMPLETED


def test_content_is_frozen_during_review(db_session):
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    with pytest.raises(InvalidTransition):
        cv_services.update_cv_content(db_session, cv.id, data=cv_schemas.CVContentUpdate(notes="late edit"))


def test_return_for_edits_protects_locked_entries(db_session):
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    cv_services.set_entry_review_lock(
        db_session,
        cv.id,
        section=CVSection.EXPERIENCE,
        index=0,
        locked=True,
        actor_user_id=admin.id,
    )
    cv_services.return_for_edits(db_session, cv.id, actor_user_id=admin.id, reason="Add education detail")
    db_session.commit()
    assert cv.status == CVStatus.UNLOCKED_FOR_EDITS
    assert cv.return_reason == "Add education detail"

    with pytest.raises(InvalidTransition) as excinfo:
        cv_services.update_cv_content(
            db_session,
            cv.id,
            data=cv_schemas.CVContentUpdate(experience=[dict(EXPERIENCE, company="Elsewhere")]),
        )
    assert excinfo.value.detail == [{"field": "experience[0]", "reason": "entry is locked for review"}]
    db_session.rollback()

    cv_services.update_cv_content(
        db_session,
        cv.id,
        data=cv_schemas.CVContentUpdate(education=[dict(EDUCATION, description="Thesis on HACCP")]),
    )
    cv_services.resubmit_cv(db_session, cv.id, actor_user_id=user.id)
    db_session.commit()

    assert cv.status == CVStatus.LOCKED_FOR_REVIEW
    assert cv.resubmitted_at is not None
    assert cv.education[0]["description"] == "Thesis on HACCP"


def test_entry_lock_index_must_exist(db_session):
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    with pytest.raises(ValidationFailed):
        cv_services.set_entry_review_lock(
            db_session,
            cv.id,
            section=CVSection.EDUCATION,
            index=3,
            locked=True,
            actor_user_id=admin.id,
        )


def test_new_version_requires_previous_to_leave_editing(db_session):
    user, org, _ = _create_expert(db_session)
    _create_cv(db_session, user, org)

    with pytest.raises(Conflict):
        _create_cv(db_session, user, org)


def test_new_version_copies_locked_content(db_session):
    user, org, admin = _create_expert(db_session)
    first = _create_cv(db_session, user, org)
    cv_services.start_review(db_session, first.id, actor_user_id=admin.id)
    cv_services.set_entry_review_lock(
        db_session,
        first.id,
        section=CVSection.EXPERIENCE,
        index=0,
        locked=True,
        actor_user_id=admin.id,
    )
    cv_services.finalize_cv(db_session, first.id, actor_user_id=admin.id)
    db_session.commit()
    assert first.status == CVStatus.LOCKED_FINAL

    second = cv_services.create_cv(
        db_session,
        data=cv_schemas.CVCreate(user_id=user.id, organization_id=org.id, created_by=user.id),
    )
    db_session.commit()

    assert second.version == 2
    assert second.copied_from_cv_id == first.id
    assert second.status == CVStatus.COMPLETED
    assert second.experience[0]["title"] == EXPERIENCE["title"]
    assert second.experience[0]["locked_for_review"] is False
    assert first.experience[0]["locked_for_review"] is True

    history = cv_services.list_cv_history(db_session, user_id=user.id, organization_id=org.id)
    assert [item["cv"].version for item in history] == [2, 1]


def test_finalize_is_idempotent(db_session):
    user, org, admin = _create_expert(db_session)
    cv = _create_cv(db_session, user, org)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    cv_services.finalize_cv(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()
    locked_at = cv.locked_at

    cv_services.finalize_cv(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    assert cv.status == CVStatus.LOCKED_FINAL
    assert cv.locked_at == locked_at
    finals = [e for e in _transition_events(db_session, cv.id) if e.after["status"] == "locked_final"]
    assert len(finals) == 1


def test_concurrent_first_version_surfaces_as_conflict(db_session, monkeypatch):
    user, org, _ = _create_expert(db_session)
    winner = _create_cv(db_session, user, org)

    # The losing request read the (user, org) pair before the winner committed.
    monkeypatch.setattr(cv_services, "_latest_for_update", lambda db, **kwargs: None)

    with pytest.raises(Conflict) as excinfo:
        cv_services.create_cv(
            db_session,
            data=cv_schemas.CVCreate(user_id=user.id, organization_id=org.id),
        )
    assert excinfo.value.detail == [{"field": "version", "reason": "1"}]

    db_session.rollback()
    versions = cv_services.list_cvs(db_session, user_id=user.id, organization_id=org.id)
    assert [cv.id for cv in versions] == [winner.id]
