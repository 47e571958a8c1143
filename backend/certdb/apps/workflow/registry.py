from __future__ import annotations

from certdb.apps.cvs.enums import AssignmentStatus, CVStatus, TrainingStatus

from .guards import (
    guard_actor_recorded,
    guard_approval_recorded,
    guard_assignment_offering_selected,
    guard_no_pending_assignments,
    guard_payment_recorded,
    guard_rejection_recorded,
    guard_training_result_recorded,
)

# Training status is empty until the owning CV locks.
UNSET = "unset"

_CV = CVStatus
_A = AssignmentStatus
_T = TrainingStatus

WORKFLOWS = {
    "expert_cv": {
        "transitions": {
            _CV.DRAFT.value: {
                _CV.COMPLETED.value: [],
            },
            _CV.COMPLETED.value: {
                _CV.DRAFT.value: [],
                _CV.PAYMENT_PENDING.value: [],
                # review-before-payment flow
                _CV.LOCKED_FOR_REVIEW.value: [guard_actor_recorded],
            },
            _CV.PAYMENT_PENDING.value: {
                _CV.PAID.value: [guard_payment_recorded],
            },
            _CV.PAID.value: {
                _CV.LOCKED_FOR_REVIEW.value: [],
            },
            _CV.LOCKED_FOR_REVIEW.value: {
                _CV.UNLOCKED_FOR_EDITS.value: [guard_actor_recorded],
                _CV.LOCKED_FINAL.value: [guard_no_pending_assignments],
            },
            _CV.UNLOCKED_FOR_EDITS.value: {
                _CV.LOCKED_FOR_REVIEW.value: [],
            },
            _CV.LOCKED_FINAL.value: {},
        }
    },
    "service_assignment": {
        "transitions": {
            _A.PENDING_REVIEW.value: {
                _A.APPROVED.value: [guard_assignment_offering_selected, guard_approval_recorded],
                _A.REJECTED.value: [guard_rejection_recorded],
            },
            _A.APPROVED.value: {
                _A.REJECTED.value: [guard_rejection_recorded],
                _A.PENDING_REVIEW.value: [],
            },
            _A.REJECTED.value: {
                _A.APPROVED.value: [guard_assignment_offering_selected, guard_approval_recorded],
                _A.PENDING_REVIEW.value: [],
            },
        }
    },
    "assignment_training": {
        "transitions": {
            UNSET: {
                _T.REQUIRED.value: [],
                _T.NOT_REQUIRED.value: [],
            },
            _T.REQUIRED.value: {
                _T.INVITED.value: [],
            },
            _T.INVITED.value: {
                _T.IN_PROGRESS.value: [],
            },
            _T.IN_PROGRESS.value: {
                _T.PASSED.value: [guard_training_result_recorded],
                _T.FAILED.value: [guard_training_result_recorded],
            },
            _T.FAILED.value: {
                _T.IN_PROGRESS.value: [],
            },
            _T.PASSED.value: {},
            _T.NOT_REQUIRED.value: {},
        }
    },
    "service_requirement": {
        "transitions": {
            "active": {"retired": [guard_actor_recorded]},
            "retired": {},
        }
    },
    "service_approval": {
        "transitions": {
            "pending": {"approved": [guard_actor_recorded], "rejected": [guard_actor_recorded]},
            "approved": {"suspended": [guard_actor_recorded]},
            "suspended": {"approved": [guard_actor_recorded]},
            "rejected": {},
        }
    },
}
