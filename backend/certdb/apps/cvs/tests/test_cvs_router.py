from __future__ import annotations

import pytest
from fastapi import HTTPException

from certdb.apps.cvs import router as cvs_router
from certdb.apps.cvs import schemas as cv_schemas
from certdb.apps.cvs.enums import AssignmentStatus, CVStatus
from certdb.apps.directory import router as directory_router
from certdb.apps.directory import schemas as directory_schemas


def _create_expert(db_session):
    user = directory_router.create_user(
        directory_schemas.UserCreate(first_name="Njeri", last_name="Kariuki", email="njeri@example.com"),
        db=db_session,
    )
    org = directory_router.create_organization(
        directory_schemas.OrganizationCreate(name="Router Org"),
        db=db_session,
    )
    parent = directory_router.create_service_parent(
        directory_schemas.ServiceParentCreate(name="SQF"),
        db=db_session,
    )
    offering = directory_router.create_service_offering(
        directory_schemas.ServiceOfferingCreate(parent_id=parent.id, version="Ed 9", name="SQF Food Safety"),
        db=db_session,
    )
    return user, org, offering


def test_router_has_expected_routes():
    def _has(method: str, path: str) -> bool:
        return any(route.path == path and method in (route.methods or []) for route in cvs_router.router.routes)

    assert _has("POST", "/cvs")
    assert _has("POST", "/cvs/{cv_id}/finalize")
    assert _has("POST", "/cvs/{cv_id}/assignments")
    assert _has("POST", "/assignments/decisions")
    assert _has("POST", "/assignments/{assignment_id}/checkoffs/bulk")
    assert _has("POST", "/assignments/{assignment_id}/training/complete")


def test_app_includes_every_router():
    from certdb.main import app

    paths = set(app.openapi()["paths"])
    for expected in ("/health", "/cvs", "/requirements/", "/qualifications/", "/service-approvals/", "/audit/"):
        assert expected in paths


def test_errors_map_to_http_status(db_session):
    user, org, _ = _create_expert(db_session)

    with pytest.raises(HTTPException) as excinfo:
        cvs_router.get_cv("missing", db=db_session)
    assert excinfo.value.status_code == 404
    assert excinfo.value.detail["code"] == "not_found"

    cv = cvs_router.create_cv(cv_schemas.CVCreate(user_id=user.id, organization_id=org.id), db=db_session)
    assert cv.status == CVStatus.DRAFT

    with pytest.raises(HTTPException) as excinfo:
        cvs_router.submit_cv(cv.id, cv_schemas.ActorAction(actor_user_id=user.id), db=db_session)
    assert excinfo.value.status_code == 422
    assert {item["field"] for item in excinfo.value.detail["detail"]} >= {"experience", "education"}

    with pytest.raises(HTTPException) as excinfo:
        cvs_router.create_cv(cv_schemas.CVCreate(user_id=user.id, organization_id=org.id), db=db_session)
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "conflict"


def test_bulk_decision_endpoint(db_session):
    user, org, offering = _create_expert(db_session)
    cv = cvs_router.create_cv(
        cv_schemas.CVCreate(
            user_id=user.id,
            organization_id=org.id,
            experience=[{"title": "Auditor", "company": "Acme", "start_date": "2020-01", "current": True}],
            education=[{"school": "KU", "degree": "BSc", "field": "Biology", "start_date": "2012-09", "end_date": "2016-07"}],
        ),
        db=db_session,
    )
    assignment = cvs_router.create_assignment(
        cv.id,
        cv_schemas.AssignmentCreate(service_offering_id=offering.id),
        db=db_session,
    )
    cvs_router.start_review(cv.id, cv_schemas.ActorAction(actor_user_id=user.id), db=db_session)

    with pytest.raises(HTTPException) as excinfo:
        cvs_router.decide_assignments(
            cv_schemas.BulkAssignmentDecision(
                assignment_ids=[assignment.id],
                decision=AssignmentStatus.REJECTED,
                actor_user_id=user.id,
            ),
            db=db_session,
        )
    assert excinfo.value.status_code == 409

    decided = cvs_router.decide_assignments(
        cv_schemas.BulkAssignmentDecision(
            assignment_ids=[assignment.id],
            decision=AssignmentStatus.APPROVED,
            actor_user_id=user.id,
        ),
        db=db_session,
    )
    assert decided[0].status == AssignmentStatus.APPROVED
    assert cvs_router.get_cv(cv.id, db=db_session).status == CVStatus.LOCKED_FINAL
