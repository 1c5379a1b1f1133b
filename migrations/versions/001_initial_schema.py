"""
001 — Initial schema: members, playbooks, enrollments, step executions, outreach log

Revision ID: 001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "communities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("plan_tier", sa.String(20), nullable=False, server_default="free"),
        sa.Column("discord_bot_installed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("telegram_bot_installed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("whop_chat_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("settings", JSON, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("community_id", sa.String(36), sa.ForeignKey("communities.id"), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("discord_user_id", sa.String(40), nullable=True),
        sa.Column("telegram_user_id", sa.String(40), nullable=True),

        sa.Column("subscription_status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("tenure_days", sa.Integer, nullable=True),
        sa.Column("previous_cancellations", sa.Integer, nullable=False, server_default="0"),
        sa.Column("recent_payment_failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Float, nullable=True),
        sa.Column("has_engagement_data", sa.Boolean, nullable=False, server_default=sa.false()),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_members_community_id", "members", ["community_id"])
    op.create_index("ix_members_subscription_status", "members", ["subscription_status"])

    op.create_table(
        "playbooks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("community_id", sa.String(36), sa.ForeignKey("communities.id"), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("emoji", sa.String(16), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("playbook_type", sa.String(10), nullable=False, server_default="custom"),
        sa.Column("min_tier", sa.String(20), nullable=False, server_default="starter"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("trigger_conditions", JSON, nullable=False, server_default="[]"),
        sa.Column("steps", JSON, nullable=False, server_default="[]"),
        sa.Column("total_enrollments", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_completions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_playbooks_community_id", "playbooks", ["community_id"])

    op.create_table(
        "risk_scores",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("member_id", sa.String(36), sa.ForeignKey("members.id"), nullable=False, unique=True),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("risk_level", sa.String(10), nullable=False),
        sa.Column("risk_factors", JSON, nullable=False),
        sa.Column("data_confidence", sa.String(10), nullable=False),
        sa.Column("model_version", sa.String(10), nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_risk_scores_risk_level", "risk_scores", ["risk_level"])

    op.create_table(
        "playbook_enrollments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("playbook_id", sa.String(36), sa.ForeignKey("playbooks.id"), nullable=False),
        sa.Column("member_id", sa.String(36), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("current_step", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(10), nullable=False, server_default="active"),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome", sa.String(100), nullable=True),
    )
    op.create_index("ix_playbook_enrollments_playbook_id", "playbook_enrollments", ["playbook_id"])
    op.create_index("ix_playbook_enrollments_member_id", "playbook_enrollments", ["member_id"])
    op.create_index(
        "uq_enrollment_active",
        "playbook_enrollments",
        ["playbook_id", "member_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "playbook_step_executions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "enrollment_id", sa.String(36),
            sa.ForeignKey("playbook_enrollments.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("step_number", sa.Integer, nullable=False),
        sa.Column("step_type", sa.String(20), nullable=False),
        sa.Column("channel", sa.String(20), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subject", sa.String(300), nullable=True),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("outcome", JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("enrollment_id", "step_number", name="uq_step_execution"),
    )
    op.create_index("ix_playbook_step_executions_enrollment_id", "playbook_step_executions", ["enrollment_id"])
    op.create_index("ix_step_execution_due", "playbook_step_executions", ["executed_at", "scheduled_for"])

    op.create_table(
        "outreach_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("member_id", sa.String(36), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("community_id", sa.String(36), sa.ForeignKey("communities.id"), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("template_id", sa.String(100), nullable=True),
        sa.Column("playbook_enrollment_id", sa.String(36), nullable=True),
        sa.Column("subject", sa.String(300), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bounced", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_outreach_log_member_id", "outreach_log", ["member_id"])
    op.create_index("ix_outreach_log_community_id", "outreach_log", ["community_id"])


def downgrade() -> None:
    op.drop_table("outreach_log")
    op.drop_table("playbook_step_executions")
    op.drop_index("uq_enrollment_active", table_name="playbook_enrollments")
    op.drop_table("playbook_enrollments")
    op.drop_table("risk_scores")
    op.drop_table("playbooks")
    op.drop_table("members")
    op.drop_table("communities")
