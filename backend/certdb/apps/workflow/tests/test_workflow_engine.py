from __future__ import annotations

from datetime import datetime, timezone

import pytest

from certdb.apps.audit import models as audit_models
from certdb.apps.cvs.enums import AssignmentStatus, CVStatus, TrainingStatus
from certdb.apps.workflow import UNSET, WORKFLOWS, apply_transition
from certdb.errors import InvalidTransition


def _transition(db_session, entity_type, from_state, to_state, after_obj=None, **kwargs):
    return apply_transition(
        db_session,
        actor_user_id="actor-1",
        entity_type=entity_type,
        entity_id="entity-1",
        from_state=from_state,
        to_state=to_state,
        before_obj={},
        after_obj=after_obj or {},
        **kwargs,
    )


def _events(db_session):
    db_session.flush()
    return db_session.query(audit_models.AuditEvent).order_by(audit_models.AuditEvent.id.asc()).all()


def test_registered_transition_writes_audit_event(db_session):
    _transition(
        db_session,
        "expert_cv",
        CVStatus.DRAFT,
        CVStatus.COMPLETED,
        after_obj={"version": 1},
        organization_id="org-1",
        correlation_id="cv:entity-1:completed",
    )

    events = _events(db_session)
    assert len(events) == 1
    event = events[0]
    assert event.action == "transition"
    assert event.before["status"] == "draft"
    assert event.after == {"status": "completed", "version": 1}
    assert event.organization_id == "org-1"
    assert event.correlation_id == "cv:entity-1:completed"
    assert event.metadata_json == {"workflow": "expert_cv"}


def test_unregistered_transition_is_rejected_without_audit(db_session):
    with pytest.raises(InvalidTransition) as excinfo:
        _transition(db_session, "expert_cv", CVStatus.LOCKED_FINAL, CVStatus.DRAFT)

    assert excinfo.value.code == "invalid_transition"
    assert excinfo.value.detail[0]["field"] == "status"
    assert _events(db_session) == []


def test_unknown_entity_type_is_rejected(db_session):
    with pytest.raises(InvalidTransition):
        _transition(db_session, "aircraft", "a", "b")


def test_guard_failures_are_reported(db_session):
    with pytest.raises(InvalidTransition) as excinfo:
        _transition(
            db_session,
            "service_assignment",
            AssignmentStatus.PENDING_REVIEW,
            AssignmentStatus.REJECTED,
            after_obj={"rejected_by": "actor-1", "rejection_reason": "   "},
        )

    fields = [item["field"] for item in excinfo.value.detail]
    assert fields == ["rejection_reason"]


def test_locked_final_guard_reads_pending_counter(db_session):
    with pytest.raises(InvalidTransition) as excinfo:
        _transition(
            db_session,
            "expert_cv",
            CVStatus.LOCKED_FOR_REVIEW,
            CVStatus.LOCKED_FINAL,
            after_obj={"pending_assignment_count": 2},
        )
    assert "2 service assignments" in excinfo.value.detail[0]["reason"]

    _transition(
        db_session,
        "expert_cv",
        CVStatus.LOCKED_FOR_REVIEW,
        CVStatus.LOCKED_FINAL,
        after_obj={"pending_assignment_count": 0},
    )
    assert len(_events(db_session)) == 1


def test_none_state_maps_to_unset(db_session):
    _transition(db_session, "assignment_training", None, TrainingStatus.REQUIRED)

    event = _events(db_session)[0]
    assert event.before["status"] == UNSET


def test_payload_values_are_json_safe(db_session):
    completed_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    _transition(
        db_session,
        "assignment_training",
        TrainingStatus.IN_PROGRESS,
        TrainingStatus.PASSED,
        after_obj={"training_completed_at": completed_at, "status_hint": TrainingStatus.PASSED},
    )

    event = _events(db_session)[0]
    assert event.after["training_completed_at"] == completed_at.isoformat()
    assert event.after["status_hint"] == "passed"


def test_terminal_states_have_no_exits():
    assert WORKFLOWS["expert_cv"]["transitions"][CVStatus.LOCKED_FINAL.value] == {}
    assert WORKFLOWS["assignment_training"]["transitions"][TrainingStatus.PASSED.value] == {}
    assert WORKFLOWS["assignment_training"]["transitions"][TrainingStatus.NOT_REQUIRED.value] == {}
