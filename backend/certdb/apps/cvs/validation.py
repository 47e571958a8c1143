"""
Structural validation of CV content.

Every check returns a list of `{"field": ..., "reason": ...}` items; an
empty list means the content is well formed. Callers decide whether a
failure blocks the operation (submission, resubmission) or only keeps
the CV in draft (content updates).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

Errors = List[Dict[str, str]]

FIELD_EXPERIENCE_TYPES = ("assessment", "sampling", "training")


def parse_date(value: Any) -> Optional[date]:
    """Parse `YYYY-MM-DD`, `YYYY-MM` or a full ISO datetime. None if invalid."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%Y-%m").date()
    except ValueError:
        return None


def _blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _required(entry: Dict[str, Any], prefix: str, fields: Iterable[str]) -> Errors:
    return [
        {"field": f"{prefix}.{name}", "reason": "required"}
        for name in fields
        if _blank(entry.get(name))
    ]


def _dates(entry: Dict[str, Any], prefix: str) -> Errors:
    errors: Errors = []
    for name in ("start_date", "end_date"):
        value = entry.get(name)
        if not _blank(value) and parse_date(value) is None:
            errors.append({"field": f"{prefix}.{name}", "reason": "invalid date"})
    return errors


def validate_field_experience_counts(counts: Optional[Dict[str, Any]], prefix: str) -> Errors:
    errors: Errors = []
    if not counts:
        return errors
    for kind in FIELD_EXPERIENCE_TYPES:
        item = counts.get(kind)
        if not item:
            continue
        total = item.get("total")
        last12m = item.get("last12m")
        valid_total = isinstance(total, int) and not isinstance(total, bool) and total >= 0
        valid_recent = isinstance(last12m, int) and not isinstance(last12m, bool) and last12m >= 0
        if not valid_total:
            errors.append({"field": f"{prefix}.{kind}.total", "reason": "must be a non-negative integer"})
        if not valid_recent:
            errors.append({"field": f"{prefix}.{kind}.last12m", "reason": "must be a non-negative integer"})
        if valid_total and valid_recent and last12m > total:
            errors.append({"field": f"{prefix}.{kind}.last12m", "reason": "cannot exceed total"})
    return errors


def validate_experience_entry(entry: Dict[str, Any], index: int) -> Errors:
    prefix = f"experience[{index}]"
    errors = _required(entry, prefix, ("title", "company", "start_date"))
    if not entry.get("current") and _blank(entry.get("end_date")):
        errors.append({"field": f"{prefix}.end_date", "reason": "required unless current"})
    errors.extend(_dates(entry, prefix))
    errors.extend(
        validate_field_experience_counts(entry.get("field_experience_counts"), f"{prefix}.field_experience_counts")
    )
    return errors


def validate_education_entry(entry: Dict[str, Any], index: int) -> Errors:
    prefix = f"education[{index}]"
    errors = _required(entry, prefix, ("school", "degree", "field", "start_date", "end_date"))
    errors.extend(_dates(entry, prefix))
    return errors


def completion_errors(experience: List[dict], education: List[dict]) -> Errors:
    errors: Errors = []
    if not experience:
        errors.append({"field": "experience", "reason": "at least one experience entry required"})
    if not education:
        errors.append({"field": "education", "reason": "at least one education entry required"})
    for index, entry in enumerate(experience or []):
        errors.extend(validate_experience_entry(entry, index))
    for index, entry in enumerate(education or []):
        errors.extend(validate_education_entry(entry, index))
    return errors


def cv_completion_errors(cv) -> Errors:
    return completion_errors(list(cv.experience or []), list(cv.education or []))


def locked_entry_violations(section: str, current: List[dict], proposed: List[dict]) -> Errors:
    """
    Entries flagged `locked_for_review` must survive an edit unchanged and
    at the same position.
    """
    errors: Errors = []
    for index, entry in enumerate(current or []):
        if not entry.get("locked_for_review"):
            continue
        if index >= len(proposed or []) or proposed[index] != entry:
            errors.append({"field": f"{section}[{index}]", "reason": "entry is locked for review"})
    return errors
