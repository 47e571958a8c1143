from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import AssignmentStatus, CVSection, CVStatus, ExpertRole, TrainingStatus


# ---------------------------------------------------------------------------
# CONTENT ENTRIES
# ---------------------------------------------------------------------------


class FieldExperienceCount(BaseModel):
    total: int = 0
    last12m: int = 0


class FieldExperienceCounts(BaseModel):
    assessment: Optional[FieldExperienceCount] = None
    sampling: Optional[FieldExperienceCount] = None
    training: Optional[FieldExperienceCount] = None


class ExperienceEntry(BaseModel):
    # Drafts may be incomplete; completeness is checked by cvs.validation.
    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    current: bool = False
    description: Optional[str] = None
    field_experience_counts: Optional[FieldExperienceCounts] = None
    locked_for_review: bool = False


class EducationEntry(BaseModel):
    school: Optional[str] = None
    degree: Optional[str] = None
    field: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None
    locked_for_review: bool = False


class CVContent(BaseModel):
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    training_qualifications: List[Dict[str, Any]] = Field(default_factory=list)
    other_approvals: List[Dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# CV COMMANDS
# ---------------------------------------------------------------------------


class CVCreate(CVContent):
    user_id: str
    organization_id: str
    created_by: Optional[str] = None


class CVContentUpdate(BaseModel):
    experience: Optional[List[ExperienceEntry]] = None
    education: Optional[List[EducationEntry]] = None
    training_qualifications: Optional[List[Dict[str, Any]]] = None
    other_approvals: Optional[List[Dict[str, Any]]] = None
    notes: Optional[str] = None
    actor_user_id: Optional[str] = None


class ActorAction(BaseModel):
    actor_user_id: str


class PaymentConfirm(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=128)
    payment_amount: Optional[Decimal] = None
    actor_user_id: Optional[str] = None


class ReturnForEdits(ActorAction):
    reason: Optional[str] = None


class EntryReviewLock(ActorAction):
    section: CVSection
    index: int = Field(..., ge=0)
    locked: bool = True


# ---------------------------------------------------------------------------
# ASSIGNMENT COMMANDS
# ---------------------------------------------------------------------------


class AssignmentCreate(BaseModel):
    # Empty for a placeholder assignment; the offering is chosen later.
    service_offering_id: Optional[str] = None
    role: ExpertRole = ExpertRole.REGULAR
    created_by: Optional[str] = None


class AssignmentBulkCreate(BaseModel):
    items: List[AssignmentCreate]
    created_by: Optional[str] = None


class OfferingSelect(ActorAction):
    service_offering_id: str


class AssignmentDecision(BaseModel):
    decision: AssignmentStatus
    actor_user_id: str
    reason: Optional[str] = None
    review_notes: Optional[str] = None


class BulkAssignmentDecision(AssignmentDecision):
    assignment_ids: List[str]


class RequirementCheckoff(ActorAction):
    requirement_id: str
    checked: bool = True


class BulkRequirementCheckoff(ActorAction):
    requirement_ids: List[str]
    checked: bool = True


class TrainingResult(ActorAction):
    passed: bool


# ---------------------------------------------------------------------------
# READ MODELS
# ---------------------------------------------------------------------------


class CheckoffRead(BaseModel):
    requirement_id: str
    checked: bool
    checked_at: Optional[datetime] = None
    checked_by: Optional[str] = None


class ServiceOfferingSummary(BaseModel):
    id: str
    name: str
    version: str

    class Config:
        from_attributes = True


class AssignmentRead(BaseModel):
    id: str
    cv_id: str
    user_id: str
    organization_id: str
    service_offering_id: Optional[str] = None
    service_offering: Optional[ServiceOfferingSummary] = None
    role: ExpertRole
    status: AssignmentStatus
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    training_status: Optional[TrainingStatus] = None
    training_invited_at: Optional[datetime] = None
    training_started_at: Optional[datetime] = None
    training_completed_at: Optional[datetime] = None
    training_attempts: int = 0
    qualification_id: Optional[str] = None
    qualified_at: Optional[datetime] = None
    requirement_checkoffs: List[CheckoffRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CVRead(BaseModel):
    id: str
    user_id: str
    organization_id: str
    version: int
    status: CVStatus
    experience: List[Dict[str, Any]] = Field(default_factory=list)
    education: List[Dict[str, Any]] = Field(default_factory=list)
    training_qualifications: List[Dict[str, Any]] = Field(default_factory=list)
    other_approvals: List[Dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None
    copied_from_cv_id: Optional[str] = None
    pending_assignment_count: int = 0
    completed_at: Optional[datetime] = None
    payment_initiated_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    review_started_at: Optional[datetime] = None
    review_started_by: Optional[str] = None
    returned_at: Optional[datetime] = None
    returned_by: Optional[str] = None
    return_reason: Optional[str] = None
    resubmitted_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CVDetailRead(CVRead):
    assignments: List[AssignmentRead] = Field(default_factory=list)


class CVHistoryItem(BaseModel):
    cv: CVRead
    assignment_count: int
    approved_count: int
    pending_count: int
    rejected_count: int
