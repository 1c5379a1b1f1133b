"""
Churn Risk Factors — additive point model

Each factor:
  1. Reads the fields it needs from MemberFacts
  2. Decides whether it applies
  3. Returns a FactorResult (or None when it does not apply)

Factors are independent of each other; the engine sums their points
and caps the total at 100.

Convention: HIGHER score = HIGHER churn risk.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from retention.schemas.member import MemberFacts
from retention.schemas.risk import Severity


@dataclass(frozen=True)
class FactorResult:
    name: str
    severity: Severity
    points: int
    description: str


# ═══════════════════════════════════════════════════════════════
# 1. RENEWAL IMMINENT  (+15)
#    Renewal falls within the next 7 days
# ═══════════════════════════════════════════════════════════════
def renewal_imminent(facts: MemberFacts) -> Optional[FactorResult]:
    days = facts.days_until_renewal
    if days is None or not 0 < days <= 7:
        return None
    return FactorResult("renewal_imminent", Severity.HIGH, 15, f"Renewal in {days} days")


# ═══════════════════════════════════════════════════════════════
# 2. CANCELLATION SCHEDULED  (+10)
# ═══════════════════════════════════════════════════════════════
def cancellation_scheduled(facts: MemberFacts) -> Optional[FactorResult]:
    if not facts.cancel_at_period_end:
        return None
    return FactorResult(
        "cancellation_scheduled", Severity.CRITICAL, 10, "Cancellation scheduled at period end",
    )


# ═══════════════════════════════════════════════════════════════
# 3. PAYMENT FAILURE  (+20, or +25 for 2+ failures)
# ═══════════════════════════════════════════════════════════════
def payment_failure(facts: MemberFacts) -> Optional[FactorResult]:
    failures = facts.recent_payment_failures
    if failures <= 0:
        return None
    points = 25 if failures >= 2 else 20
    return FactorResult(
        "payment_failure", Severity.CRITICAL, points,
        f"{failures} failed payment(s) in last 30 days",
    )


# ═══════════════════════════════════════════════════════════════
# 4. EARLY LIFECYCLE  (+10, +10 more without engagement data)
#    First two weeks are the onboarding window
# ═══════════════════════════════════════════════════════════════
def new_member(facts: MemberFacts) -> list[FactorResult]:
    if facts.tenure_days >= 14:
        return []

    results = [FactorResult(
        "new_member", Severity.MEDIUM, 10,
        f"Joined {facts.tenure_days} days ago — critical onboarding window",
    )]
    if not facts.has_engagement_data:
        results.append(FactorResult(
            "no_engagement_visibility", Severity.MEDIUM, 10,
            "No engagement tracking — consider connecting Discord",
        ))
    return results


# ═══════════════════════════════════════════════════════════════
# 5. FIRST RENEWAL  (+15)
#    Independent of the new-member bucket: tenure < 35d and renewal ≤ 10d
# ═══════════════════════════════════════════════════════════════
def first_renewal(facts: MemberFacts) -> Optional[FactorResult]:
    days = facts.days_until_renewal
    if facts.tenure_days >= 35 or days is None or days > 10:
        return None
    return FactorResult(
        "first_renewal", Severity.HIGH, 15,
        "First renewal approaching — highest churn risk period",
    )


# ═══════════════════════════════════════════════════════════════
# 6. PREVIOUS CANCELLATION  (+10 flat, count does not scale)
# ═══════════════════════════════════════════════════════════════
def previous_cancellation(facts: MemberFacts) -> Optional[FactorResult]:
    count = facts.previous_cancellations
    if count <= 0:
        return None
    return FactorResult(
        "previous_cancellation", Severity.MEDIUM, 10, f"Previously cancelled {count} time(s)",
    )


# ═══════════════════════════════════════════════════════════════
# 7. ENGAGEMENT  (+20 below 15, +10 below 30)
#    Only when engagement tracking is connected
# ═══════════════════════════════════════════════════════════════
def engagement(facts: MemberFacts) -> Optional[FactorResult]:
    if not facts.has_engagement_data or facts.engagement_score is None:
        return None

    if facts.engagement_score < 15:
        return FactorResult(
            "very_low_engagement", Severity.HIGH, 20,
            "Engagement significantly below community average",
        )
    elif facts.engagement_score < 30:
        return FactorResult(
            "declining_engagement", Severity.MEDIUM, 10,
            "Engagement declining over recent weeks",
        )
    return None
