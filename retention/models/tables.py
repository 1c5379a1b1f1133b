"""
Relational schema for the retention engine.

members / communities are written by the membership sync and only read
here; the remaining tables are owned by the engine.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, text,
)
from sqlalchemy.orm import DeclarativeBase


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CommunityRow(Base):
    __tablename__ = "communities"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=True)
    plan_tier = Column(String(20), nullable=False, default="free")
    discord_bot_installed = Column(Boolean, nullable=False, default=False)
    telegram_bot_installed = Column(Boolean, nullable=False, default=False)
    whop_chat_enabled = Column(Boolean, nullable=False, default=False)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class MemberRow(Base):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=False, index=True)
    email = Column(String(320), nullable=True)
    username = Column(String(100), nullable=True)
    first_name = Column(String(100), nullable=True)
    discord_user_id = Column(String(40), nullable=True)
    telegram_user_id = Column(String(40), nullable=True)

    # ── Synced facts ──
    subscription_status = Column(String(20), nullable=False, default="active", index=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    tenure_days = Column(Integer, nullable=True)
    previous_cancellations = Column(Integer, nullable=False, default=0)
    recent_payment_failures = Column(Integer, nullable=False, default=0)
    engagement_score = Column(Float, nullable=True)
    has_engagement_data = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class PlaybookRow(Base):
    __tablename__ = "playbooks"

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    emoji = Column(String(16), nullable=True)
    description = Column(Text, nullable=True)
    playbook_type = Column(String(10), nullable=False, default="custom")
    min_tier = Column(String(20), nullable=False, default="starter")
    active = Column(Boolean, nullable=False, default=True)

    # ── Definition (JSON for flexibility) ──
    trigger_conditions = Column(JSON, nullable=False, default=list)
    steps = Column(JSON, nullable=False, default=list)

    total_enrollments = Column(Integer, nullable=False, default=0)
    total_completions = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class RiskScoreRow(Base):
    __tablename__ = "risk_scores"

    id = Column(String(36), primary_key=True, default=_uuid)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, unique=True)
    score = Column(Integer, nullable=False)
    risk_level = Column(String(10), nullable=False, index=True)
    risk_factors = Column(JSON, nullable=False)
    data_confidence = Column(String(10), nullable=False)
    model_version = Column(String(10), nullable=False)
    calculated_at = Column(DateTime(timezone=True), nullable=False)


class EnrollmentRow(Base):
    __tablename__ = "playbook_enrollments"
    __table_args__ = (
        # At most one active enrollment per (playbook, member)
        Index(
            "uq_enrollment_active",
            "playbook_id", "member_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    playbook_id = Column(String(36), ForeignKey("playbooks.id"), nullable=False, index=True)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    current_step = Column(Integer, nullable=False, default=0)
    status = Column(String(10), nullable=False, default="active")
    enrolled_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    outcome = Column(String(100), nullable=True)


class StepExecutionRow(Base):
    __tablename__ = "playbook_step_executions"
    __table_args__ = (
        UniqueConstraint("enrollment_id", "step_number", name="uq_step_execution"),
        Index("ix_step_execution_due", "executed_at", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    enrollment_id = Column(
        String(36), ForeignKey("playbook_enrollments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_number = Column(Integer, nullable=False)
    step_type = Column(String(20), nullable=False)
    channel = Column(String(20), nullable=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)

    # ── Content snapshot taken at enrollment ──
    subject = Column(String(300), nullable=True)
    content = Column(Text, nullable=True)

    outcome = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class OutreachLogRow(Base):
    __tablename__ = "outreach_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=False, index=True)
    channel = Column(String(20), nullable=False)
    template_id = Column(String(100), nullable=True)
    playbook_enrollment_id = Column(String(36), nullable=True)
    subject = Column(String(300), nullable=True)
    content = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=True)
    bounced = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<OutreachLog {self.id} member={self.member_id} channel={self.channel}>"
