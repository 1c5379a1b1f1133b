"""
Plan tiers and the features each one unlocks.

Used by the API layer to gate playbook enrollment and automated outreach.
"""
from __future__ import annotations

import math
from enum import Enum


class PlanTier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"
    PRO = "pro"
    ENTERPRISE = "enterprise"


PLAN_LIMITS: dict[PlanTier, dict] = {
    PlanTier.FREE: {
        "max_members": 50,
        "playbooks": 0,
        "manual_emails": 0,
        "automated_outreach": False,
        "discord_integration": False,
        "telegram_integration": False,
    },
    PlanTier.STARTER: {
        "max_members": 500,
        "playbooks": 1,
        "manual_emails": math.inf,
        "automated_outreach": False,
        "discord_integration": True,
        "telegram_integration": False,
    },
    PlanTier.GROWTH: {
        "max_members": 2000,
        "playbooks": 3,
        "manual_emails": math.inf,
        "automated_outreach": True,
        "discord_integration": True,
        "telegram_integration": True,
    },
    PlanTier.PRO: {
        "max_members": math.inf,
        "playbooks": math.inf,
        "manual_emails": math.inf,
        "automated_outreach": True,
        "discord_integration": True,
        "telegram_integration": True,
    },
    PlanTier.ENTERPRISE: {
        "max_members": math.inf,
        "playbooks": math.inf,
        "manual_emails": math.inf,
        "automated_outreach": True,
        "discord_integration": True,
        "telegram_integration": True,
    },
}


def can_access(tier: str, feature: str) -> bool:
    """Unknown tiers fall back to FREE; unknown features are denied."""
    try:
        plan = PLAN_LIMITS[PlanTier(tier)]
    except ValueError:
        plan = PLAN_LIMITS[PlanTier.FREE]
    return bool(plan.get(feature, False))
