from __future__ import annotations

from datetime import datetime, timezone

import pytest

from certdb.apps.cvs import assignments
from certdb.apps.cvs import schemas as cv_schemas
from certdb.apps.cvs import services as cv_services
from certdb.apps.cvs.enums import AssignmentStatus, CVStatus, ExpertRole, TrainingStatus
from certdb.apps.directory import schemas as directory_schemas
from certdb.apps.directory import services as directory_services
from certdb.apps.qualifications import services as qualification_services
from certdb.apps.requirements import schemas as requirement_schemas
from certdb.apps.requirements import services as requirement_services
from certdb.errors import Conflict, InvalidTransition, ValidationFailed

EXPERIENCE = {"title": "Auditor", "company": "Acme", "start_date": "2019-01", "current": True}
EDUCATION = {"school": "JKUAT", "degree": "BSc", "field": "Chemistry", "start_date": "2010-09", "end_date": "2014-07"}


def _setup(db_session, *, complete=True):
    expert = directory_services.create_user(
        db_session,
        data=directory_schemas.UserCreate(first_name="Brian", last_name="Kamau", email="brian@example.com"),
    )
    admin = directory_services.create_user(
        db_session,
        data=directory_schemas.UserCreate(first_name="Ada", last_name="Admin", email="ada@example.com"),
    )
    org = directory_services.create_organization(
        db_session,
        data=directory_schemas.OrganizationCreate(name="Certify Ltd"),
    )
    parent = directory_services.create_service_parent(
        db_session,
        data=directory_schemas.ServiceParentCreate(name="ISO 22000"),
    )
    offerings = [
        directory_services.create_service_offering(
            db_session,
            data=directory_schemas.ServiceOfferingCreate(parent_id=parent.id, version=version, name="ISO 22000"),
        )
        for version in ("V1", "V2")
    ]
    cv = cv_services.create_cv(
        db_session,
        data=cv_schemas.CVCreate(
            user_id=expert.id,
            organization_id=org.id,
            experience=[EXPERIENCE] if complete else [],
            education=[EDUCATION] if complete else [],
        ),
    )
    db_session.commit()
    return cv, admin, offerings


def _assign(db_session, cv, offering, role=ExpertRole.REGULAR):
    assignment = assignments.create_assignment(
        db_session,
        cv.id,
        service_offering=assignments.offering_ref(offering.id if offering else None),
        role=role,
    )
    db_session.commit()
    return assignment


def _approve(admin):
    return assignments.ApproveAssignment(actor_user_id=admin.id)


def test_create_assignment_tracks_pending_count(db_session):
    cv, _, (v1, v2) = _setup(db_session)

    first = _assign(db_session, cv, v1)
    _assign(db_session, cv, v2, role=ExpertRole.LEAD)

    assert first.status == AssignmentStatus.PENDING_REVIEW
    assert first.user_id == cv.user_id
    assert first.organization_id == cv.organization_id
    assert first.training_status is None
    assert cv.pending_assignment_count == 2

    with pytest.raises(Conflict):
        assignments.create_assignment(db_session, cv.id, service_offering=v1.id)
    db_session.rollback()
    assert cv.pending_assignment_count == 2


def test_placeholders_may_repeat(db_session):
    cv, _, _ = _setup(db_session)

    first = _assign(db_session, cv, None)
    second = _assign(db_session, cv, None)

    assert first.service_offering_id is None
    assert second.service_offering_id is None
    assert cv.pending_assignment_count == 2


def test_deprecated_offering_is_rejected(db_session):
    cv, _, (v1, _) = _setup(db_session)
    directory_services.deprecate_service_offering(db_session, v1.id)
    db_session.commit()

    with pytest.raises(ValidationFailed):
        assignments.create_assignment(db_session, cv.id, service_offering=v1.id)


def test_bulk_create_skips_existing_offerings(db_session):
    cv, _, (v1, v2) = _setup(db_session)
    _assign(db_session, cv, v1)

    created = assignments.create_assignments(
        db_session,
        cv.id,
        items=[
            (v1.id, ExpertRole.REGULAR),
            (v2.id, ExpertRole.LEAD),
            (v2.id, ExpertRole.REGULAR),
            (assignments.UNASSIGNED, ExpertRole.REGULAR),
        ],
    )
    db_session.commit()

    assert [(a.service_offering_id, a.role) for a in created] == [
        (v2.id, ExpertRole.LEAD),
        (None, ExpertRole.REGULAR),
    ]
    assert cv.pending_assignment_count == 3


def test_services_are_fixed_once_review_starts(db_session):
    cv, admin, (v1, v2) = _setup(db_session)
    _assign(db_session, cv, v1)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    with pytest.raises(InvalidTransition):
        assignments.create_assignment(db_session, cv.id, service_offering=v2.id)


def test_select_offering_for_placeholder(db_session):
    cv, admin, (v1, v2) = _setup(db_session)
    _assign(db_session, cv, v1)
    placeholder = _assign(db_session, cv, None)

    with pytest.raises(Conflict):
        assignments.select_offering(db_session, placeholder.id, service_offering_id=v1.id)
    db_session.rollback()

    assignments.select_offering(db_session, placeholder.id, service_offering_id=v2.id, actor_user_id=admin.id)
    db_session.commit()
    assert placeholder.service_offering_id == v2.id

    with pytest.raises(InvalidTransition):
        assignments.select_offering(db_session, placeholder.id, service_offering_id=v1.id)


def test_delete_only_while_draft(db_session):
    cv, _, (v1, v2) = _setup(db_session, complete=False)
    first = _assign(db_session, cv, v1)
    _assign(db_session, cv, v2)

    assignments.delete_assignment(db_session, first.id)
    db_session.commit()
    assert cv.pending_assignment_count == 1
    assert [a.service_offering_id for a in assignments.list_assignments(db_session, cv_id=cv.id)] == [v2.id]

    cv_services.update_cv_content(
        db_session,
        cv.id,
        data=cv_schemas.CVContentUpdate(experience=[EXPERIENCE], education=[EDUCATION]),
    )
    db_session.commit()
    remaining = assignments.list_assignments(db_session, cv_id=cv.id)[0]
    with pytest.raises(InvalidTransition):
        assignments.delete_assignment(db_session, remaining.id)


def test_build_review_update_clears_opposite_fields():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    approved = assignments.build_review_update(assignments.ApproveAssignment(actor_user_id="u1"), now=now)
    assert approved.status == AssignmentStatus.APPROVED
    assert (approved.approved_by, approved.rejected_by, approved.rejection_reason) == ("u1", None, None)

    rejected = assignments.build_review_update(
        assignments.RejectAssignment(actor_user_id="u2", reason="  Missing audits  "),
        now=now,
    )
    assert rejected.status == AssignmentStatus.REJECTED
    assert (rejected.approved_at, rejected.approved_by) == (None, None)
    assert rejected.rejection_reason == "Missing audits"

    reset = assignments.build_review_update(assignments.ResetAssignment(actor_user_id="u3"), now=now)
    assert reset.status == AssignmentStatus.PENDING_REVIEW
    assert reset.approved_at is None and reset.rejected_at is None
    assert reset.reviewed_by == "u3"


def test_command_for_decision():
    command = assignments.command_for_decision(AssignmentStatus.REJECTED, actor_user_id="u1", reason="No")
    assert command == assignments.RejectAssignment(actor_user_id="u1", reason="No")
    assert isinstance(
        assignments.command_for_decision("pending_review", actor_user_id="u1"),
        assignments.ResetAssignment,
    )


def test_decision_guards(db_session):
    cv, admin, (v1, _) = _setup(db_session)
    placeholder = _assign(db_session, cv, None)
    assigned = _assign(db_session, cv, v1)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    with pytest.raises(InvalidTransition) as excinfo:
        assignments.decide_assignment(db_session, placeholder.id, _approve(admin))
    assert excinfo.value.detail[0]["field"] == "service_offering_id"
    db_session.rollback()

    with pytest.raises(InvalidTransition):
        assignments.decide_assignment(
            db_session,
            assigned.id,
            assignments.RejectAssignment(actor_user_id=admin.id, reason=""),
        )
    db_session.rollback()
    assert assigned.status == AssignmentStatus.PENDING_REVIEW
    assert cv.pending_assignment_count == 2


def test_decisions_keep_fields_and_counter_consistent(db_session):
    cv, admin, (v1, v2) = _setup(db_session)
    first = _assign(db_session, cv, v1)
    _assign(db_session, cv, v2)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    assignments.decide_assignment(db_session, first.id, _approve(admin))
    db_session.commit()
    assert first.status == AssignmentStatus.APPROVED
    assert first.approved_by == admin.id
    assert cv.pending_assignment_count == 1

    assignments.decide_assignment(
        db_session,
        first.id,
        assignments.RejectAssignment(actor_user_id=admin.id, reason="Insufficient audits"),
    )
    db_session.commit()
    assert first.status == AssignmentStatus.REJECTED
    assert first.approved_at is None and first.approved_by is None
    assert first.rejection_reason == "Insufficient audits"
    assert cv.pending_assignment_count == 1

    assignments.decide_assignment(db_session, first.id, assignments.ResetAssignment(actor_user_id=admin.id))
    db_session.commit()
    assert first.status == AssignmentStatus.PENDING_REVIEW
    assert first.rejected_at is None and first.rejection_reason is None
    assert cv.pending_assignment_count == 2
    assert cv.status == CVStatus.LOCKED_FOR_REVIEW


def test_check_offs_are_validated_as_a_batch(db_session):
    cv, admin, (v1, v2) = _setup(db_session)
    assignment = _assign(db_session, cv, v1)
    own = requirement_services.create_requirement(
        db_session,
        data=requirement_schemas.RequirementCreate(service_offering_id=v1.id, title="Witness audit", created_by=admin.id),
    )
    retired = requirement_services.create_requirement(
        db_session,
        data=requirement_schemas.RequirementCreate(service_offering_id=v1.id, title="Old item", created_by=admin.id),
    )
    foreign = requirement_services.create_requirement(
        db_session,
        data=requirement_schemas.RequirementCreate(service_offering_id=v2.id, title="Other", created_by=admin.id),
    )
    requirement_services.retire_requirement(db_session, retired.id, retired_by=admin.id)
    db_session.commit()

    with pytest.raises(InvalidTransition):
        assignments.check_off_requirements(
            db_session,
            assignment.id,
            requirement_ids=[own.id, retired.id],
            actor_user_id=admin.id,
        )
    db_session.rollback()
    assert assignment.requirement_checkoffs == []

    with pytest.raises(ValidationFailed):
        assignments.check_off_requirement(
            db_session,
            assignment.id,
            requirement_id=foreign.id,
            actor_user_id=admin.id,
        )
    db_session.rollback()

    assignments.check_off_requirement(db_session, assignment.id, requirement_id=own.id, actor_user_id=admin.id)
    db_session.commit()
    assert [(c["requirement_id"], c["checked"]) for c in assignment.requirement_checkoffs] == [(own.id, True)]

    assignments.check_off_requirement(
        db_session,
        assignment.id,
        requirement_id=own.id,
        actor_user_id=admin.id,
        checked=False,
    )
    db_session.commit()
    assert [(c["requirement_id"], c["checked"]) for c in assignment.requirement_checkoffs] == [(own.id, False)]


def test_training_progress_earns_qualification(db_session):
    cv, admin, (v1, _) = _setup(db_session)
    assignment = _assign(db_session, cv, v1)
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    assignments.decide_assignment(db_session, assignment.id, _approve(admin))
    db_session.commit()
    assert cv.status == CVStatus.LOCKED_FINAL
    assert assignment.training_status == TrainingStatus.REQUIRED

    with pytest.raises(InvalidTransition):
        assignments.start_training(db_session, assignment.id, actor_user_id=admin.id)
    db_session.rollback()

    assignments.invite_to_training(db_session, assignment.id, actor_user_id=admin.id)
    assignments.start_training(db_session, assignment.id, actor_user_id=admin.id)
    assignments.complete_training(db_session, assignment.id, passed=False, actor_user_id=admin.id)
    db_session.commit()
    assert assignment.training_status == TrainingStatus.FAILED
    assert assignment.training_attempts == 1
    assert assignment.qualification_id is None

    assignments.start_training(db_session, assignment.id, actor_user_id=admin.id)
    assignments.complete_training(db_session, assignment.id, passed=True, actor_user_id=admin.id)
    db_session.commit()

    assert assignment.training_status == TrainingStatus.PASSED
    assert assignment.training_attempts == 2
    qualification = qualification_services.lookup_qualification(
        db_session,
        user_id=cv.user_id,
        service_offering_id=v1.id,
    )
    assert qualification is not None
    assert assignment.qualification_id == qualification.id
    assert qualification.original_assignment_id == assignment.id
    assert assignments.is_qualified(assignment.training_status)


def test_writers_lock_the_cv_before_its_assignments(db_session, monkeypatch):
    cv, admin, (v1, v2) = _setup(db_session)
    first = _assign(db_session, cv, v1)
    second = _assign(db_session, cv, v2)
    requirement = requirement_services.create_requirement(
        db_session,
        data=requirement_schemas.RequirementCreate(service_offering_id=v1.id, title="Witness audit", created_by=admin.id),
    )
    cv_services.start_review(db_session, cv.id, actor_user_id=admin.id)
    db_session.commit()

    locks = []
    real_get_cv = cv_services.get_cv
    real_get_assignment = assignments.get_assignment

    def _get_cv(db, cv_id, *, for_update=False):
        if for_update:
            locks.append(("cv", cv_id))
        return real_get_cv(db, cv_id, for_update=for_update)

    def _get_assignment(db, assignment_id, *, for_update=False):
        if for_update:
            locks.append(("assignment", assignment_id))
        return real_get_assignment(db, assignment_id, for_update=for_update)

    monkeypatch.setattr(cv_services, "get_cv", _get_cv)
    monkeypatch.setattr(assignments, "get_assignment", _get_assignment)

    assignments.check_off_requirement(db_session, first.id, requirement_id=requirement.id, actor_user_id=admin.id)
    db_session.commit()
    assert locks == [("cv", cv.id), ("assignment", first.id)]

    locks.clear()
    assignments.decide_assignment(db_session, first.id, _approve(admin))
    db_session.commit()
    assert locks == [("cv", cv.id), ("assignment", first.id)]

    locks.clear()
    assignments.decide_assignments(
        db_session,
        [second.id, first.id],
        assignments.RejectAssignment(actor_user_id=admin.id, reason="No witnessed audits"),
    )
    db_session.commit()
    assert locks[0] == ("cv", cv.id)
    assert sorted(locks[1:]) == sorted([("assignment", first.id), ("assignment", second.id)])
    assert cv.status == CVStatus.LOCKED_FINAL
