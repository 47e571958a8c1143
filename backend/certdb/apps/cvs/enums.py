# backend/certdb/apps/cvs/enums.py
from __future__ import annotations

import enum


class CVStatus(str, enum.Enum):
    """
    draft -> completed -> payment_pending -> paid -> locked_for_review
    -> (unlocked_for_edits <-> locked_for_review)* -> locked_final
    """

    DRAFT = "draft"
    COMPLETED = "completed"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    LOCKED_FOR_REVIEW = "locked_for_review"
    UNLOCKED_FOR_EDITS = "unlocked_for_edits"
    LOCKED_FINAL = "locked_final"


class AssignmentStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class TrainingStatus(str, enum.Enum):
    NOT_REQUIRED = "not_required"
    REQUIRED = "required"
    INVITED = "invited"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"


class ExpertRole(str, enum.Enum):
    LEAD = "lead"
    REGULAR = "regular"


class CVSection(str, enum.Enum):
    EXPERIENCE = "experience"
    EDUCATION = "education"
    TRAINING_QUALIFICATIONS = "training_qualifications"
    OTHER_APPROVALS = "other_approvals"


CONTENT_EDITABLE_STATUSES = frozenset(
    {CVStatus.DRAFT, CVStatus.COMPLETED, CVStatus.UNLOCKED_FOR_EDITS}
)
SERVICE_EDITABLE_STATUSES = frozenset({CVStatus.DRAFT, CVStatus.COMPLETED})
ENTRY_LOCK_STATUSES = frozenset({CVStatus.LOCKED_FOR_REVIEW, CVStatus.UNLOCKED_FOR_EDITS})
DECIDED_STATUSES = frozenset({AssignmentStatus.APPROVED, AssignmentStatus.REJECTED})
QUALIFIED_TRAINING_STATUSES = frozenset({TrainingStatus.NOT_REQUIRED, TrainingStatus.PASSED})


def is_locked_family(status: CVStatus) -> bool:
    """True for every status whose content is a certified baseline."""
    return status.value.startswith("locked")


def is_qualified(training_status: TrainingStatus | None) -> bool:
    return training_status in QUALIFIED_TRAINING_STATUSES
