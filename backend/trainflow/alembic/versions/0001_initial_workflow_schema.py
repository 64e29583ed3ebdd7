"""initial training workflow schema

Revision ID: 0001_initial_workflow_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_workflow_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ROLE_NAMES = ("EMPLOYEE", "MANAGER", "HRBP", "L_AND_D", "CHRO", "ADMIN")


def _role_enum(name: str) -> sa.Enum:
    return sa.Enum(*ROLE_NAMES, name=name, native_enum=False)


def upgrade() -> None:
    op.create_table(
        "entities",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("entity_id", sa.String(length=36), sa.ForeignKey("entities.id", ondelete="SET NULL"), nullable=True),
        sa.Column("manager_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", _role_enum("account_role_enum"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_entity_id", "users", ["entity_id"])
    op.create_index("ix_users_manager_id", "users", ["manager_id"])
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_is_active", "users", ["is_active"])
    op.create_index("idx_users_role_active", "users", ["role", "is_active"])
    op.create_index("idx_users_entity_role", "users", ["entity_id", "role"])

    op.create_table(
        "courses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "training_location",
            sa.Enum("LOCAL", "ABROAD", name="training_location_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "cost_level",
            sa.Enum("LOW", "MEDIUM", "HIGH", name="cost_level_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("duration_hours", sa.Float(), nullable=True),
        sa.Column("min_attendance_percent", sa.Integer(), nullable=True),
        sa.Column("pass_score", sa.Float(), nullable=True),
        sa.Column("has_assessment", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("require_both_attendance_and_assessment", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requires_chro_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_courses_location_cost", "courses", ["training_location", "cost_level"])

    op.create_table(
        "training_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("course_id", sa.String(length=36), sa.ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("session_code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("enrolled_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("waitlist_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(
                "SCHEDULED",
                "OPEN",
                "CONFIRMED",
                "IN_PROGRESS",
                "COMPLETED",
                "CANCELLED",
                name="training_session_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("cancelled_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("capacity >= 1", name="ck_training_sessions_capacity_positive"),
        sa.CheckConstraint("enrolled_count <= capacity", name="ck_training_sessions_within_capacity"),
        sa.CheckConstraint(
            "enrolled_count >= 0 AND waitlist_count >= 0",
            name="ck_training_sessions_counts_non_negative",
        ),
    )
    op.create_index("ix_training_sessions_course_id", "training_sessions", ["course_id"])
    op.create_index("ix_training_sessions_status", "training_sessions", ["status"])
    op.create_index("idx_training_sessions_course_start", "training_sessions", ["course_id", "starts_at"])

    op.create_table(
        "training_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("request_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("requester_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("nominated_by_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("course_id", sa.String(length=36), sa.ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("training_sessions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("justification", sa.Text(), nullable=False),
        sa.Column(
            "priority",
            sa.Enum("LOW", "NORMAL", "HIGH", name="request_priority_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("estimated_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "DRAFT",
                "PENDING",
                "APPROVED",
                "REJECTED",
                "CANCELLED",
                "COMPLETED",
                name="request_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "workflow_tier",
            sa.Enum("STANDARD", "EXTENDED", "EXTENDED_CHRO", name="workflow_tier_enum", native_enum=False),
            nullable=True,
        ),
        sa.Column("current_approval_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "current_approver_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("current_approval_level >= 1", name="ck_training_requests_level_positive"),
    )
    op.create_index("ix_training_requests_status", "training_requests", ["status"])
    op.create_index("idx_training_requests_requester_status", "training_requests", ["requester_id", "status"])
    op.create_index("idx_training_requests_approver_status", "training_requests", ["current_approver_id", "status"])
    op.create_index("idx_training_requests_course_status", "training_requests", ["course_id", "status"])

    op.create_table(
        "approvals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "request_id",
            sa.String(length=36),
            sa.ForeignKey("training_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("approver_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("approval_level", sa.Integer(), nullable=False),
        sa.Column("approver_role", _role_enum("approver_role_enum"), nullable=False),
        sa.Column("step_role", _role_enum("approval_step_role_enum"), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "APPROVED",
                "REJECTED",
                "DELEGATED",
                "CANCELLED",
                name="approval_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("decision_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column(
            "delegated_from_id",
            sa.String(length=36),
            sa.ForeignKey("approvals.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("approval_level >= 1", name="ck_approvals_level_positive"),
    )
    op.create_index("ix_approvals_request_id", "approvals", ["request_id"])
    op.create_index("ix_approvals_status", "approvals", ["status"])
    op.create_index("idx_approvals_approver_status", "approvals", ["approver_id", "status"])
    op.create_index("idx_approvals_request_level", "approvals", ["request_id", "approval_level"])
    op.create_index(
        "uq_approvals_one_pending_per_level",
        "approvals",
        ["request_id", "approval_level"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "session_enrollments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("training_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participant_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "request_id",
            sa.String(length=36),
            sa.ForeignKey("training_requests.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "CONFIRMED",
                "WAITLISTED",
                "CANCELLED",
                "COMPLETED",
                "ABSENT",
                "PARTIAL",
                name="enrollment_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("attendance_minutes", sa.Integer(), nullable=True),
        sa.Column("is_attendance_final", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("attendance_finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "attendance_finalized_by_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assessment_score", sa.Float(), nullable=True),
        sa.Column(
            "completion_status",
            sa.Enum(
                "PENDING",
                "IN_PROGRESS",
                "COMPLETED",
                "NOT_COMPLETED",
                "FAILED",
                name="completion_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "completion_source",
            sa.Enum("RULES", "OVERRIDE", name="completion_source_enum", native_enum=False),
            nullable=True,
        ),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_completion_final", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completion_finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completion_finalized_by_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "waitlist_position IS NULL OR waitlist_position >= 1",
            name="ck_session_enrollments_position",
        ),
    )
    op.create_index("ix_session_enrollments_request_id", "session_enrollments", ["request_id"])
    op.create_index("idx_session_enrollments_session_status", "session_enrollments", ["session_id", "status"])
    op.create_index("idx_session_enrollments_participant", "session_enrollments", ["participant_id", "status"])
    op.create_index(
        "uq_session_enrollments_active_participant",
        "session_enrollments",
        ["session_id", "participant_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'CANCELLED'"),
        sqlite_where=sa.text("status <> 'CANCELLED'"),
    )

    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("field", sa.String(length=64), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("actor_user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_log_entries_id", "audit_log_entries", ["id"])
    op.create_index("ix_audit_log_entries_entity_type", "audit_log_entries", ["entity_type"])
    op.create_index("ix_audit_log_entries_entity_id", "audit_log_entries", ["entity_id"])
    op.create_index("ix_audit_log_entries_actor_user_id", "audit_log_entries", ["actor_user_id"])
    op.create_index("ix_audit_log_entries_occurred_at", "audit_log_entries", ["occurred_at"])
    op.create_index("ix_audit_log_entity", "audit_log_entries", ["entity_type", "entity_id"])
    op.create_index("ix_audit_log_entity_field", "audit_log_entries", ["entity_id", "field"])
    op.create_index("ix_audit_log_time_desc", "audit_log_entries", [sa.text("occurred_at DESC")])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "APPROVAL_REQUIRED",
                "REQUEST_APPROVED",
                "REQUEST_REJECTED",
                "ENROLLMENT_CONFIRMED",
                "SESSION_CANCELLED",
                "SESSION_SCHEDULED",
                "TRAINING_COMPLETED",
                name="notification_type_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("reference_type", sa.String(length=64), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column(
            "delivery_status",
            sa.Enum(
                "QUEUED",
                "SENT",
                "FAILED",
                "SKIPPED_NO_PROVIDER",
                name="notification_delivery_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])
    op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read"])
    op.create_index("ix_notifications_reference", "notifications", ["reference_type", "reference_id"])

    op.create_table(
        "certificate_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "enrollment_id",
            sa.String(length=36),
            sa.ForeignKey("session_enrollments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participant_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("training_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("course_id", sa.String(length=36), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("QUEUED", "ISSUED", "FAILED", name="certificate_request_status_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "requested_by_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("enrollment_id", name="uq_certificate_requests_enrollment"),
    )
    op.create_index("ix_certificate_requests_id", "certificate_requests", ["id"])
    op.create_index("ix_certificate_requests_participant_id", "certificate_requests", ["participant_id"])
    op.create_index("ix_certificate_requests_session_id", "certificate_requests", ["session_id"])
    op.create_index("ix_certificate_requests_course_id", "certificate_requests", ["course_id"])
    op.create_index("ix_certificate_requests_status", "certificate_requests", ["status"])


def downgrade() -> None:
    op.drop_table("certificate_requests")
    op.drop_table("notifications")
    op.drop_table("audit_log_entries")
    op.drop_index("uq_session_enrollments_active_participant", table_name="session_enrollments")
    op.drop_table("session_enrollments")
    op.drop_index("uq_approvals_one_pending_per_level", table_name="approvals")
    op.drop_table("approvals")
    op.drop_table("training_requests")
    op.drop_table("training_sessions")
    op.drop_table("courses")
    op.drop_table("users")
    op.drop_table("entities")
