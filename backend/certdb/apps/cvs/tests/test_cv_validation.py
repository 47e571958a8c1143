from __future__ import annotations

from datetime import date

from certdb.apps.cvs import validation


def _experience(**overrides):
    entry = {
        "title": "Lead Auditor",
        "company": "Acme Certification",
        "start_date": "2019-03",
        "end_date": "2023-01-31",
        "current": False,
    }
    entry.update(overrides)
    return entry


def _education(**overrides):
    entry = {
        "school": "Nairobi Polytechnic",
        "degree": "BSc",
        "field": "Food Science",
        "start_date": "2012-09-01",
        "end_date": "2016-06-30",
    }
    entry.update(overrides)
    return entry


def _fields(errors):
    return {item["field"] for item in errors}


def test_parse_date_accepts_supported_formats():
    assert validation.parse_date("2020-02-15") == date(2020, 2, 15)
    assert validation.parse_date("2020-02") == date(2020, 2, 1)
    assert validation.parse_date("2020-02-15T10:30:00Z") == date(2020, 2, 15)
    assert validation.parse_date("Feb 2020") is None
    assert validation.parse_date("2010") is None
    assert validation.parse_date("") is None


def test_complete_content_has_no_errors():
    assert validation.completion_errors([_experience()], [_education()]) == []


def test_empty_sections_are_reported():
    errors = validation.completion_errors([], [])
    assert _fields(errors) == {"experience", "education"}


def test_current_role_needs_no_end_date():
    assert validation.validate_experience_entry(_experience(current=True, end_date=None), 0) == []

    errors = validation.validate_experience_entry(_experience(end_date=""), 0)
    assert _fields(errors) == {"experience[0].end_date"}


def test_missing_and_invalid_fields_carry_their_path():
    errors = validation.completion_errors(
        [_experience(), _experience(company=" ", start_date="someday")],
        [_education(degree=None)],
    )
    assert _fields(errors) == {
        "experience[1].company",
        "experience[1].start_date",
        "education[0].degree",
    }


def test_field_experience_counts():
    counts = {
        "assessment": {"total": 12, "last12m": 4},
        "sampling": {"total": 2, "last12m": 3},
        "training": {"total": -1, "last12m": 0},
    }
    errors = validation.validate_field_experience_counts(counts, "counts")
    assert errors == [
        {"field": "counts.sampling.last12m", "reason": "cannot exceed total"},
        {"field": "counts.training.total", "reason": "must be a non-negative integer"},
    ]


def test_locked_entries_must_stay_in_place_unchanged():
    locked = _experience(locked_for_review=True)
    free = _experience(title="Auditor", locked_for_review=False)
    current = [locked, free]

    assert validation.locked_entry_violations("experience", current, [dict(locked), _experience(title="Changed")]) == []

    edited = dict(locked, company="Other Co")
    assert _fields(validation.locked_entry_violations("experience", current, [edited, free])) == {"experience[0]"}

    reordered = [free, locked]
    assert _fields(validation.locked_entry_violations("experience", current, reordered)) == {"experience[0]"}

    assert _fields(validation.locked_entry_violations("experience", current, [])) == {"experience[0]"}
