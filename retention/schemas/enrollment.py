"""
Enrollment state, step executions and the result values the playbook
engine hands back to its callers.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from retention.schemas.playbook import StepType


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class Enrollment(BaseModel):
    id: str
    playbook_id: str
    member_id: str
    current_step: int = 0
    status: EnrollmentStatus
    enrolled_at: datetime
    completed_at: Optional[datetime] = None
    outcome: Optional[str] = None


class StepExecution(BaseModel):
    id: str
    enrollment_id: str
    step_number: int
    step_type: StepType
    channel: Optional[str] = None
    scheduled_for: datetime
    executed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    outcome: Optional[dict[str, Any]] = None
    error: Optional[str] = None


# ── Result values ──

class EnrollmentErrorCode(str, Enum):
    ALREADY_ENROLLED = "already_enrolled"
    PLAYBOOK_NOT_FOUND = "playbook_not_found"
    PLAYBOOK_INACTIVE = "playbook_inactive"
    PLAYBOOK_EMPTY = "playbook_empty"
    MEMBER_NOT_FOUND = "member_not_found"
    ENROLLMENT_NOT_FOUND = "enrollment_not_found"
    NOT_ACTIVE = "not_active"


class EnrollmentError(BaseModel):
    code: EnrollmentErrorCode
    message: str


class EnrollmentSuccess(BaseModel):
    enrollment_id: str
    reenrolled: bool = False
    steps_scheduled: int = 0


class SweepResult(BaseModel):
    """Aggregate returned by one step-execution sweep."""
    claimed: int = 0
    executed: int = 0
    skipped: int = 0
    errors: list[str] = []
