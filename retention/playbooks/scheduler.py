"""
Step schedule generation.

    scheduled_for[i] = start + Σ delay_hours[1..i]

Delays accrue cumulatively from the enrollment instant. Wait and
check_status steps take a slot exactly like email steps.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from retention.schemas.playbook import PlaybookStep, StepType


@dataclass(frozen=True)
class ScheduledStep:
    step_number: int
    step_type: StepType
    scheduled_for: datetime
    channel: Optional[str]
    subject: Optional[str]
    content: Optional[str]


def build_schedule(steps: Sequence[PlaybookStep], start: datetime) -> list[ScheduledStep]:
    schedule: list[ScheduledStep] = []
    cumulative_hours = 0.0
    for step in steps:
        cumulative_hours += step.delay_hours
        schedule.append(ScheduledStep(
            step_number=step.step_number,
            step_type=step.type,
            scheduled_for=start + timedelta(hours=cumulative_hours),
            channel="email" if step.type == StepType.EMAIL else None,
            subject=step.subject,
            content=step.content,
        ))
    return schedule
