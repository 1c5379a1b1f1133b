"""
Playbook eligibility — AND over a list of trigger conditions.

A missing (or null) field fails its condition; nothing here raises.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from retention.schemas.member import MemberFacts
from retention.schemas.playbook import TriggerCondition
from retention.schemas.risk import RiskScore


def matches(facts: Mapping[str, Any], conditions: Sequence[TriggerCondition]) -> bool:
    for condition in conditions:
        candidate = facts.get(condition.field)
        if candidate is None or not condition.test(candidate):
            return False
    return True


def trigger_facts(facts: MemberFacts, risk: Optional[RiskScore] = None) -> dict[str, Any]:
    """Flatten member facts (+ latest risk score) into the record matched against triggers."""
    record = facts.model_dump(mode="json", exclude={"member_id"})
    if risk is not None:
        record["risk_score"] = risk.score
        record["risk_level"] = risk.level.value
        record["data_confidence"] = risk.confidence.value
    return record
