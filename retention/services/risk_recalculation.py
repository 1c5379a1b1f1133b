"""
risk_recalculation.py
─────────────────────
Batch job that rescores every scorable member (active / trialing / past_due)
and upserts one risk_scores row per member.

Schedule: every 6 hours (cron)

Usage:
  python -m retention.services.risk_recalculation
  OR via the API: POST /v1/risk/recalculate

A member that fails to score or persist is reported in ``errors`` and the
run continues with the next one.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from retention.schemas.risk import RiskLevel
from retention.scoring.engine import score_member
from retention.store.ports import RetentionStore

logger = structlog.get_logger(__name__)


def run_recalculation(
    store: RetentionStore,
    community_id: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> dict:
    """
    Full recalculation cycle:
      1. Load scorable members (optionally one community)
      2. Score each one from its current facts
      3. Upsert the score keyed by member id
      4. Return summary
    """
    now = (clock or (lambda: datetime.now(timezone.utc)))()
    started_at = datetime.now(timezone.utc)
    logger.info("risk_recalculation_started", community_id=community_id)

    members = store.list_scorable_members(community_id)

    summary = {level.value: 0 for level in (RiskLevel.CRITICAL, RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW)}
    errors: list[str] = []
    processed = 0

    for member in members:
        try:
            score = score_member(member.to_facts(now), now=now)
            store.upsert_risk_score(score)
        except Exception as e:
            logger.warning("risk_recalculation_member_failed", member_id=member.id, error=str(e))
            errors.append(f"member {member.id}: {e}")
            continue
        summary[score.level.value] += 1
        processed += 1

    elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
    result = {
        "processed": processed,
        "summary": summary,
        "errors": errors,
        "elapsed_seconds": round(elapsed, 2),
        "status": "success" if not errors else "partial",
    }
    logger.info("risk_recalculation_complete", processed=processed, errors=len(errors), **summary)
    return result


if __name__ == "__main__":
    import sys

    from retention.core.logging import configure_logging
    from retention.models.database import get_store

    configure_logging()
    try:
        result = run_recalculation(get_store())
        print(f"✓ Risk scores recalculated: {result['processed']} members "
              f"({result['summary']['critical']} critical, {len(result['errors'])} errors)")
    except Exception as e:
        print(f"✗ Recalculation failed: {e}", file=sys.stderr)
        sys.exit(1)
