"""
auto_enroll.py
──────────────
Trigger sweep: enrolls members into every active playbook whose trigger
conditions they match, for communities that turned on auto-enrollment.

Run after the risk recalculation so risk_level triggers see fresh scores.
A member is auto-enrolled into a given playbook at most once.

Usage:
  python -m retention.services.auto_enroll
  OR via the API: POST /v1/admin/auto-enroll
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from retention.core.plan_limits import can_access
from retention.playbooks.enrollment import EnrollmentManager
from retention.playbooks.triggers import matches, trigger_facts
from retention.schemas.enrollment import EnrollmentError, EnrollmentErrorCode
from retention.store.ports import RetentionStore

logger = structlog.get_logger(__name__)


def run_auto_enroll(
    store: RetentionStore,
    clock: Optional[Callable[[], datetime]] = None,
) -> dict:
    clock = clock or (lambda: datetime.now(timezone.utc))
    manager = EnrollmentManager(store, clock=clock)

    enrolled = 0
    skipped = 0
    errors: list[str] = []
    communities = [
        c for c in store.list_communities()
        if c.settings.auto_enroll_playbooks and can_access(c.plan_tier, "automated_outreach")
    ]
    logger.info("auto_enroll_started", communities=len(communities))

    for community in communities:
        playbooks = store.list_playbooks(community.id, active_only=True)
        if not playbooks:
            continue

        now = clock()
        for member in store.list_scorable_members(community.id):
            facts = trigger_facts(member.to_facts(now), store.get_risk_score(member.id))
            for playbook in playbooks:
                if not matches(facts, playbook.trigger_conditions):
                    continue
                # Re-enrollment is a manual decision; the sweep only enrolls once
                if store.find_enrollment(playbook.id, member.id) is not None:
                    skipped += 1
                    continue
                result = manager.enroll(playbook.id, member.id)
                if not isinstance(result, EnrollmentError):
                    enrolled += 1
                elif result.code == EnrollmentErrorCode.ALREADY_ENROLLED:
                    skipped += 1
                else:
                    errors.append(f"member {member.id} / playbook {playbook.id}: {result.message}")

    result = {
        "communities": len(communities),
        "enrolled": enrolled,
        "skipped": skipped,
        "errors": errors,
    }
    logger.info("auto_enroll_complete", enrolled=enrolled, skipped=skipped, errors=len(errors))
    return result


if __name__ == "__main__":
    import sys

    from retention.core.logging import configure_logging
    from retention.models.database import get_store

    configure_logging()
    try:
        result = run_auto_enroll(get_store())
        print(f"✓ Auto-enroll finished: {result['enrolled']} enrolled, {result['skipped']} already active")
    except Exception as e:
        print(f"✗ Auto-enroll failed: {e}", file=sys.stderr)
        sys.exit(1)
