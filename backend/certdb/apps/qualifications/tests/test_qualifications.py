from __future__ import annotations

from datetime import datetime, timezone

import pytest

from certdb.apps.audit import models as audit_models
from certdb.apps.directory import schemas as directory_schemas
from certdb.apps.directory import services as directory_services
from certdb.apps.qualifications import models as qualification_models
from certdb.apps.qualifications import schemas as qualification_schemas
from certdb.apps.qualifications import services as qualification_services
from certdb.errors import Conflict, ValidationFailed

PASSED_AT = datetime(2024, 2, 1, 8, 30, tzinfo=timezone.utc)


def _create_expert_and_offering(db_session):
    user = directory_services.create_user(
        db_session,
        data=directory_schemas.UserCreate(first_name="Joy", last_name="Mwangi", email="joy@example.com"),
    )
    parent = directory_services.create_service_parent(
        db_session,
        data=directory_schemas.ServiceParentCreate(name="BRCGS"),
    )
    offering = directory_services.create_service_offering(
        db_session,
        data=directory_schemas.ServiceOfferingCreate(parent_id=parent.id, version="Issue 9", name="BRCGS Food"),
    )
    db_session.commit()
    return user, offering


def _payload(user, offering, **overrides):
    data = {
        "user_id": user.id,
        "service_offering_id": offering.id,
        "training_passed_at": PASSED_AT,
    }
    data.update(overrides)
    return qualification_schemas.QualificationCreate(**data)


def test_create_and_lookup(db_session):
    user, offering = _create_expert_and_offering(db_session)

    created = qualification_services.create_qualification(db_session, data=_payload(user, offering))
    db_session.commit()

    found = qualification_services.lookup_qualification(
        db_session,
        user_id=user.id,
        service_offering_id=offering.id,
    )
    assert found.id == created.id
    assert qualification_services.lookup_qualification(db_session, user_id=user.id, service_offering_id="x") is None


def test_duplicate_is_conflict(db_session):
    user, offering = _create_expert_and_offering(db_session)
    qualification_services.create_qualification(db_session, data=_payload(user, offering))
    db_session.commit()

    with pytest.raises(Conflict):
        qualification_services.create_qualification(db_session, data=_payload(user, offering))


def test_get_or_create_returns_existing(db_session):
    user, offering = _create_expert_and_offering(db_session)

    first, created = qualification_services.get_or_create_qualification(db_session, data=_payload(user, offering))
    db_session.commit()
    second, created_again = qualification_services.get_or_create_qualification(
        db_session,
        data=_payload(user, offering, notes="second org"),
    )

    assert created is True
    assert created_again is False
    assert second.id == first.id


def test_get_or_create_reads_winner_after_lost_race(db_session, monkeypatch):
    user, offering = _create_expert_and_offering(db_session)
    winner = qualification_models.Qualification(
        user_id=user.id,
        service_offering_id=offering.id,
        training_passed_at=PASSED_AT,
        original_organization_id="org-a",
    )
    db_session.add(winner)
    db_session.commit()

    real_lookup = qualification_services.lookup_qualification
    calls = []

    def stale_first_lookup(db, **kwargs):
        # The first read happens before the competing insert became visible.
        calls.append(kwargs)
        if len(calls) == 1:
            return None
        return real_lookup(db, **kwargs)

    monkeypatch.setattr(qualification_services, "lookup_qualification", stale_first_lookup)

    qualification, created = qualification_services.get_or_create_qualification(
        db_session,
        data=_payload(user, offering, original_organization_id="org-b"),
    )
    db_session.commit()

    assert created is False
    assert qualification.id == winner.id
    assert len(calls) == 2
    assert db_session.query(qualification_models.Qualification).count() == 1


def test_update_cannot_clear_pass_date(db_session):
    user, offering = _create_expert_and_offering(db_session)
    qualification = qualification_services.create_qualification(db_session, data=_payload(user, offering))
    db_session.commit()

    updated = qualification_services.update_qualification(
        db_session,
        qualification.id,
        data=qualification_schemas.QualificationUpdate(notes="Verified certificate"),
    )
    db_session.commit()
    assert updated.notes == "Verified certificate"

    with pytest.raises(ValidationFailed):
        qualification_services.update_qualification(
            db_session,
            qualification.id,
            data=qualification_schemas.QualificationUpdate(training_passed_at=None),
        )


def test_delete_is_audited(db_session):
    user, offering = _create_expert_and_offering(db_session)
    qualification = qualification_services.create_qualification(db_session, data=_payload(user, offering))
    db_session.commit()

    qualification_services.delete_qualification(db_session, qualification.id)
    db_session.commit()

    assert db_session.query(qualification_models.Qualification).count() == 0
    actions = [
        event.action
        for event in db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.entity_id == qualification.id)
        .order_by(audit_models.AuditEvent.occurred_at.asc())
        .all()
    ]
    assert actions == ["create", "delete"]
