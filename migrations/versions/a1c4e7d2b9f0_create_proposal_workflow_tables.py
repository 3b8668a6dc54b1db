"""create_proposal_workflow_tables

Create organizations, users, proposals, proposal status history, reviewer
assignments, workflow settings, deadline rules, notifications and
scheduled jobs.

Revision ID: a1c4e7d2b9f0
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c4e7d2b9f0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="writer"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
        )
        op.create_index("ix_users_organization_id", "users", ["organization_id"])

    if "proposals" not in existing_tables:
        op.create_table(
            "proposals",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("owner_id", sa.String(length=36), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "status IN ('draft', 'review', 'submitted', 'archived')",
                name="ck_proposals_status",
            ),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_proposals_organization_id", "proposals", ["organization_id"])
        op.create_index("ix_proposals_status", "proposals", ["status"])
        op.create_index("ix_proposals_owner_id", "proposals", ["owner_id"])

    if "proposal_status_history" not in existing_tables:
        op.create_table(
            "proposal_status_history",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("proposal_id", sa.String(length=36), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=True),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            sa.Column("changed_by", sa.String(length=36), nullable=True),
            sa.Column("automatic", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("transition_reason", sa.String(length=100), nullable=True),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_proposal_status_history_proposal_id",
                        "proposal_status_history", ["proposal_id"])
        op.create_index("ix_proposal_status_history_changed_at",
                        "proposal_status_history", ["changed_at"])

    if "proposal_reviewer_assignments" not in existing_tables:
        op.create_table(
            "proposal_reviewer_assignments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("proposal_id", sa.String(length=36), nullable=False),
            sa.Column("reviewer_id", sa.String(length=36), nullable=False),
            sa.Column("assigned_by", sa.String(length=36), nullable=True),
            sa.Column("review_round", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("decision", sa.String(length=20), nullable=True),
            sa.Column("review_comments", sa.Text(), nullable=True),
            sa.CheckConstraint(
                "decision IS NULL OR decision IN ('approved', 'rejected')",
                name="ck_reviewer_assignment_decision",
            ),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_proposal_reviewer_assignments_proposal_id",
                        "proposal_reviewer_assignments", ["proposal_id"])
        op.create_index("ix_proposal_reviewer_assignments_reviewer_id",
                        "proposal_reviewer_assignments", ["reviewer_id"])

    if "proposal_workflow_settings" not in existing_tables:
        op.create_table(
            "proposal_workflow_settings",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("require_comments_on_rejection", sa.Boolean(), nullable=False,
                      server_default=sa.true()),
            sa.Column("require_comments_on_approval", sa.Boolean(), nullable=False,
                      server_default=sa.false()),
            sa.Column("allow_self_approval", sa.Boolean(), nullable=False,
                      server_default=sa.false()),
            sa.Column("updated_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id"),
        )

    if "deadline_rules" not in existing_tables:
        op.create_table(
            "deadline_rules",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("rule_key", sa.String(length=100), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=False),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            sa.Column("deadline_hours", sa.Integer(), nullable=False),
            sa.Column("notification_hours", sa.JSON(), nullable=True),
            sa.Column("auto_transition", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "rule_key", name="uq_deadline_rule_org_key"),
        )
        op.create_index("ix_deadline_rules_organization_id", "deadline_rules", ["organization_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=True),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("content", sa.JSON(), nullable=True),
            sa.Column("related_entity_type", sa.String(length=30), nullable=True),
            sa.Column("related_entity_id", sa.String(length=36), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_notifications_priority"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_organization_id", "notifications", ["organization_id"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("cron_expression", sa.String(length=100), nullable=False,
                      server_default="0 0 * * *"),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "notifications",
        "deadline_rules",
        "proposal_workflow_settings",
        "proposal_reviewer_assignments",
        "proposal_status_history",
        "proposals",
        "users",
        "organizations",
    ):
        op.drop_table(table)
