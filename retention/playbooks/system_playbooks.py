"""
Built-in playbooks seeded into every community on request.
"""
from __future__ import annotations

import structlog

from retention.schemas.playbook import Playbook
from retention.store.ports import RetentionStore

logger = structlog.get_logger()


SYSTEM_PLAYBOOKS: list[Playbook] = [
    Playbook(
        name="New Member Fast Start",
        emoji="🚀",
        description="Welcome sequence for new members in their first 7 days",
        playbook_type="system",
        min_tier="starter",
        trigger_conditions=[
            {"field": "tenure_days", "operator": "lt", "value": 7},
            {"field": "subscription_status", "operator": "eq", "value": "active"},
        ],
        steps=[
            {"step_number": 1, "type": "email", "delay_hours": 0, "template_id": "welcome_fast_start",
             "subject": "Welcome!", "content": "Welcome to the community!"},
            {"step_number": 2, "type": "wait", "delay_hours": 48},
            {"step_number": 3, "type": "email", "delay_hours": 0,
             "subject": "How's it going?", "content": "Checking in on your first week"},
        ],
    ),
    Playbook(
        name="Silent Revival",
        emoji="👻",
        description="Re-engage members who have gone quiet",
        playbook_type="system",
        min_tier="growth",
        trigger_conditions=[
            {"field": "risk_level", "operator": "in", "value": ["high", "critical"]},
        ],
        steps=[
            {"step_number": 1, "type": "email", "delay_hours": 0, "template_id": "check_in",
             "subject": "We miss you!", "content": "We noticed you've been quiet"},
            {"step_number": 2, "type": "wait", "delay_hours": 72},
            {"step_number": 3, "type": "check_status", "delay_hours": 0},
            {"step_number": 4, "type": "email", "delay_hours": 24,
             "subject": "Still there?", "content": "Just checking in one more time"},
        ],
    ),
    Playbook(
        name="Renewal Risk",
        emoji="⏰",
        description="Proactive outreach before renewal for at-risk members",
        playbook_type="system",
        min_tier="growth",
        trigger_conditions=[
            {"field": "days_until_renewal", "operator": "lte", "value": 7},
            {"field": "risk_level", "operator": "in", "value": ["medium", "high", "critical"]},
        ],
        steps=[
            {"step_number": 1, "type": "email", "delay_hours": 0, "template_id": "renewal_reminder",
             "subject": "Your renewal is coming up", "content": "Renewal reminder"},
            {"step_number": 2, "type": "wait", "delay_hours": 48},
            {"step_number": 3, "type": "check_status", "delay_hours": 0},
        ],
    ),
    Playbook(
        name="Payment Recovery",
        emoji="💳",
        description="Recover failed payments before involuntary churn",
        playbook_type="system",
        min_tier="growth",
        trigger_conditions=[
            {"field": "recent_payment_failures", "operator": "gt", "value": 0},
        ],
        steps=[
            {"step_number": 1, "type": "email", "delay_hours": 0, "template_id": "payment_recovery",
             "subject": "Payment issue", "content": "Please update your payment"},
            {"step_number": 2, "type": "wait", "delay_hours": 48},
            {"step_number": 3, "type": "email", "delay_hours": 0,
             "subject": "Urgent: payment needed", "content": "Your access may be interrupted"},
        ],
    ),
]


def seed_system_playbooks(store: RetentionStore, community_id: str) -> list[str]:
    """Insert the system playbooks the community does not have yet (matched by name)."""
    existing = {p.name for p in store.list_playbooks(community_id) if p.playbook_type == "system"}
    created: list[str] = []
    with store.transaction():
        for template in SYSTEM_PLAYBOOKS:
            if template.name in existing:
                continue
            playbook = template.model_copy(update={"community_id": community_id})
            created.append(store.add_playbook(playbook))

    logger.info("system_playbooks_seeded", community_id=community_id, created=len(created))
    return created
