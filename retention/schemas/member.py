"""
Member and community records as the core sees them.

Both are owned by the membership-sync process; the engine only reads them.
MemberFacts is the immutable snapshot the scorer and the trigger evaluator
consume.
"""
from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


# Members in these states are scored and may be enrolled
SCORABLE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
)


class MemberFacts(BaseModel):
    """Scoring / matching snapshot of one member."""
    model_config = ConfigDict(frozen=True)

    member_id: Optional[str] = None
    tenure_days: int = Field(0, ge=0)
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    cancel_at_period_end: bool = False
    recent_payment_failures: int = Field(0, ge=0)
    previous_cancellations: int = Field(0, ge=0)
    days_until_renewal: Optional[int] = None
    engagement_score: Optional[float] = None
    has_engagement_data: bool = False


def days_until_renewal(period_end: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days (rounded up) until the current billing period ends."""
    if period_end is None:
        return None
    return math.ceil((period_end - now).total_seconds() / 86_400)


class Member(BaseModel):
    id: str
    community_id: str
    email: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    discord_user_id: Optional[str] = None
    telegram_user_id: Optional[str] = None

    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    tenure_days: Optional[int] = None
    previous_cancellations: int = 0
    recent_payment_failures: int = 0
    engagement_score: Optional[float] = None
    has_engagement_data: bool = False

    def to_facts(self, now: datetime) -> MemberFacts:
        return MemberFacts(
            member_id=self.id,
            tenure_days=self.tenure_days or 0,
            subscription_status=self.subscription_status,
            cancel_at_period_end=self.cancel_at_period_end,
            recent_payment_failures=self.recent_payment_failures,
            previous_cancellations=self.previous_cancellations,
            days_until_renewal=days_until_renewal(self.current_period_end, now),
            engagement_score=self.engagement_score,
            has_engagement_data=self.has_engagement_data,
        )


class CommunitySettings(BaseModel):
    outreach_channel_priority: Optional[list[str]] = None
    auto_enroll_playbooks: bool = False


class Community(BaseModel):
    id: str
    name: Optional[str] = None
    plan_tier: str = "free"
    discord_bot_installed: bool = False
    telegram_bot_installed: bool = False
    whop_chat_enabled: bool = False
    settings: CommunitySettings = Field(default_factory=CommunitySettings)
