"""
Churn Risk Scoring Engine

Orchestrates:
  1. All factor checks (fixed order, so the factor list is stable)
  2. Additive score, capped at 100
  3. Level assignment from score thresholds
  4. Confidence tier from available data

Pure and total: never touches the store and never raises for valid facts.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog

from retention.schemas.member import MemberFacts
from retention.schemas.risk import Confidence, RiskFactor, RiskLevel, RiskScore
from retention.scoring import factors

logger = structlog.get_logger()

MODEL_VERSION = "1.0"
MAX_SCORE = 100


# ═══════════════════════════════════════════════════════════════
# Level thresholds
#   score >= 70  → CRITICAL
#   score >= 40  → HIGH
#   score >= 20  → MEDIUM
#   score <  20  → LOW
# ═══════════════════════════════════════════════════════════════
LEVEL_THRESHOLDS = [
    (70, RiskLevel.CRITICAL),
    (40, RiskLevel.HIGH),
    (20, RiskLevel.MEDIUM),
]


def level_for(score: int) -> RiskLevel:
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return RiskLevel.LOW


def confidence_for(facts: MemberFacts) -> Confidence:
    if facts.has_engagement_data:
        return Confidence.HIGH
    if facts.tenure_days > 30:
        return Confidence.MEDIUM
    return Confidence.LOW


def score_member(facts: MemberFacts, now: Optional[datetime] = None) -> RiskScore:
    """
    Main scoring entry point.
    """
    results: list[factors.FactorResult] = []
    for check in (
        factors.renewal_imminent,
        factors.cancellation_scheduled,
        factors.payment_failure,
    ):
        hit = check(facts)
        if hit:
            results.append(hit)

    results.extend(factors.new_member(facts))

    for check in (
        factors.first_renewal,
        factors.previous_cancellation,
        factors.engagement,
    ):
        hit = check(facts)
        if hit:
            results.append(hit)

    score = min(sum(r.points for r in results), MAX_SCORE)
    level = level_for(score)
    confidence = confidence_for(facts)

    logger.debug(
        "risk_score_calculated",
        member_id=facts.member_id,
        score=score,
        level=level.value,
        factors_count=len(results),
        confidence=confidence.value,
    )

    return RiskScore(
        member_id=facts.member_id,
        score=score,
        level=level,
        factors=[
            RiskFactor(name=r.name, severity=r.severity, points=r.points, description=r.description)
            for r in results
        ],
        confidence=confidence,
        calculated_at=now or datetime.now(timezone.utc),
        model_version=MODEL_VERSION,
    )
