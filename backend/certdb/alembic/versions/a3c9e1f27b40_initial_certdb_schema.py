"""initial certification schema

Revision ID: a3c9e1f27b40
Revises:
Create Date: 2026-01-12 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a3c9e1f27b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _create_indexes(table: str, columns: Sequence[str]) -> None:
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column])


def upgrade() -> None:
    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        _id_column(),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("country", sa.String(length=64), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    _create_indexes("users", ["email"])

    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=17), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=9), nullable=False),
        *_timestamps(),
    )
    _create_indexes("organizations", ["status"])

    op.create_table(
        "service_parents",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "service_offerings",
        _id_column(),
        sa.Column(
            "parent_id",
            sa.String(length=36),
            sa.ForeignKey("service_parents.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("version", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deprecated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("parent_id", "version", name="uq_service_offerings_parent_version"),
    )
    _create_indexes("service_offerings", ["parent_id"])
    op.create_index("ix_service_offerings_parent_active", "service_offerings", ["parent_id", "is_active"])

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------
    op.create_table(
        "audit_events",
        _id_column(),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("actor_user_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    _create_indexes(
        "audit_events",
        ["id", "organization_id", "entity_type", "entity_id", "action", "actor_user_id", "occurred_at", "correlation_id"],
    )
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("ix_audit_events_org_action", "audit_events", ["organization_id", "action"])
    op.create_index(
        "ix_audit_events_org_time_desc",
        "audit_events",
        ["organization_id", sa.text("occurred_at DESC")],
    )

    # ------------------------------------------------------------------
    # Requirements + qualifications
    # ------------------------------------------------------------------
    op.create_table(
        "service_requirements",
        _id_column(),
        sa.Column(
            "service_offering_id",
            sa.String(length=36),
            sa.ForeignKey("service_offerings.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role_applicability", sa.String(length=7), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "replaces_requirement_id",
            sa.String(length=36),
            sa.ForeignKey("service_requirements.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "replaced_by_requirement_id",
            sa.String(length=36),
            sa.ForeignKey("service_requirements.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_retired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("retired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retired_by", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("retirement_reason", sa.Text(), nullable=True),
    )
    _create_indexes("service_requirements", ["service_offering_id", "is_retired"])
    op.create_index(
        "ix_service_requirements_offering_retired",
        "service_requirements",
        ["service_offering_id", "is_retired"],
    )

    op.create_table(
        "qualifications",
        _id_column(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "service_offering_id",
            sa.String(length=36),
            sa.ForeignKey("service_offerings.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("training_passed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_assignment_id", sa.String(length=36), nullable=True),
        sa.Column(
            "original_organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "service_offering_id", name="uq_qualifications_user_offering"),
    )
    _create_indexes("qualifications", ["user_id", "service_offering_id", "original_assignment_id"])

    # ------------------------------------------------------------------
    # CVs + service assignments
    # ------------------------------------------------------------------
    op.create_table(
        "expert_cvs",
        _id_column(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(length=18), nullable=False),
        sa.Column("experience", sa.JSON(), nullable=False),
        sa.Column("education", sa.JSON(), nullable=False),
        sa.Column("training_qualifications", sa.JSON(), nullable=False),
        sa.Column("other_approvals", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("copied_from_cv_id", sa.String(length=36), nullable=True),
        sa.Column("pending_assignment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("payment_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_started_by", sa.String(length=36), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_by", sa.String(length=36), nullable=True),
        sa.Column("return_reason", sa.Text(), nullable=True),
        sa.Column("resubmitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(length=36), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "organization_id", "version", name="uq_expert_cvs_user_org_version"),
    )
    _create_indexes("expert_cvs", ["user_id", "organization_id", "status"])
    op.create_index("ix_expert_cvs_org_status", "expert_cvs", ["organization_id", "status"])

    op.create_table(
        "service_assignments",
        _id_column(),
        sa.Column("cv_id", sa.String(length=36), sa.ForeignKey("expert_cvs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_offering_id",
            sa.String(length=36),
            sa.ForeignKey("service_offerings.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("role", sa.String(length=7), nullable=False),
        sa.Column("status", sa.String(length=14), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(length=36), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=36), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=36), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("training_status", sa.String(length=12), nullable=True),
        sa.Column("training_invited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "qualification_id",
            sa.String(length=36),
            sa.ForeignKey("qualifications.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("qualified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requirement_checkoffs", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("cv_id", "service_offering_id", name="uq_service_assignments_cv_offering"),
    )
    _create_indexes(
        "service_assignments",
        ["cv_id", "user_id", "organization_id", "service_offering_id", "status", "training_status"],
    )
    op.create_index(
        "ix_service_assignments_org_offering",
        "service_assignments",
        ["organization_id", "service_offering_id"],
    )
    op.create_index(
        "ix_service_assignments_user_offering",
        "service_assignments",
        ["user_id", "service_offering_id"],
    )

    # ------------------------------------------------------------------
    # Notifications + integrations
    # ------------------------------------------------------------------
    op.create_table(
        "email_logs",
        _id_column(),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("template_key", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=19), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
    )
    _create_indexes(
        "email_logs",
        ["id", "organization_id", "created_at", "template_key", "status", "correlation_id"],
    )
    op.create_index("ix_email_logs_org_created", "email_logs", ["organization_id", "created_at"])
    op.create_index("ix_email_logs_org_status", "email_logs", ["organization_id", "status"])
    op.create_index("ix_email_logs_recipient", "email_logs", ["recipient"])

    op.create_table(
        "integration_configs",
        _id_column(),
        sa.Column("integration_key", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=8), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("base_url", sa.String(length=255), nullable=True),
        sa.Column("signing_secret", sa.String(length=255), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column(
            "created_by_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.UniqueConstraint("integration_key", name="uq_integration_configs_key"),
    )
    _create_indexes("integration_configs", ["integration_key", "status", "enabled", "created_by_user_id"])

    op.create_table(
        "integration_outbound_events",
        _id_column(),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "integration_id",
            sa.String(length=36),
            sa.ForeignKey("integration_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=11), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_integration_outbound_idempotency"),
    )
    _create_indexes(
        "integration_outbound_events",
        ["organization_id", "integration_id", "event_type", "idempotency_key", "created_by_user_id"],
    )
    op.create_index("ix_integration_outbound_status", "integration_outbound_events", ["status"])
    op.create_index("ix_integration_outbound_next_attempt_at", "integration_outbound_events", ["next_attempt_at"])
    op.create_index(
        "ix_integration_outbound_org_integration",
        "integration_outbound_events",
        ["organization_id", "integration_id"],
    )

    # ------------------------------------------------------------------
    # Organization service approvals
    # ------------------------------------------------------------------
    op.create_table(
        "organization_service_approvals",
        _id_column(),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_offering_id",
            sa.String(length=36),
            sa.ForeignKey("service_offerings.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=9), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=36), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("payment_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id",
            "service_offering_id",
            name="uq_org_service_approvals_org_offering",
        ),
    )
    _create_indexes("organization_service_approvals", ["organization_id", "service_offering_id", "status"])
    op.create_index(
        "ix_org_service_approvals_status_expires",
        "organization_service_approvals",
        ["status", "expires_at"],
    )


def downgrade() -> None:
    for table in (
        "organization_service_approvals",
        "integration_outbound_events",
        "integration_configs",
        "email_logs",
        "service_assignments",
        "expert_cvs",
        "qualifications",
        "service_requirements",
        "audit_events",
        "service_offerings",
        "service_parents",
        "organizations",
        "users",
    ):
        op.drop_table(table)
