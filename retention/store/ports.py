"""
Persistence port consumed by the playbook engine and the batch jobs.

SqlStore is the production implementation; anything honouring this
protocol (e.g. an in-memory fake) can be injected instead.
"""
from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from retention.playbooks.scheduler import ScheduledStep
from retention.schemas.enrollment import Enrollment, EnrollmentStatus, StepExecution
from retention.schemas.member import Community, Member
from retention.schemas.outreach import OutreachLogEntry
from retention.schemas.playbook import Playbook
from retention.schemas.risk import RiskScore


class DuplicateActiveEnrollment(Exception):
    """Another active enrollment exists for the same (playbook, member) pair."""


class RetentionStore(Protocol):

    def transaction(self) -> AbstractContextManager[None]: ...

    # ── Members / communities (read-only) ──
    def get_member(self, member_id: str) -> Optional[Member]: ...
    def list_scorable_members(self, community_id: Optional[str] = None) -> list[Member]: ...
    def get_community(self, community_id: str) -> Optional[Community]: ...
    def list_communities(self) -> list[Community]: ...

    # ── Playbooks ──
    def get_playbook(self, playbook_id: str) -> Optional[Playbook]: ...
    def list_playbooks(self, community_id: str, active_only: bool = False) -> list[Playbook]: ...
    def add_playbook(self, playbook: Playbook) -> str: ...
    def increment_playbook_counter(self, playbook_id: str, counter: str) -> None: ...

    # ── Risk scores ──
    def upsert_risk_score(self, score: RiskScore) -> None: ...
    def get_risk_score(self, member_id: str) -> Optional[RiskScore]: ...

    # ── Enrollments ──
    def find_enrollment(self, playbook_id: str, member_id: str) -> Optional[Enrollment]: ...
    def get_enrollment(self, enrollment_id: str) -> Optional[Enrollment]: ...
    def create_enrollment(self, playbook_id: str, member_id: str, enrolled_at: datetime) -> Enrollment: ...
    def reactivate_enrollment(self, enrollment_id: str, enrolled_at: datetime) -> Enrollment: ...
    def set_enrollment_progress(self, enrollment_id: str, step_number: int) -> None: ...
    def finish_enrollment(
        self,
        enrollment_id: str,
        status: EnrollmentStatus,
        finished_at: Optional[datetime],
        outcome: Optional[str],
    ) -> bool: ...

    # ── Step executions ──
    def replace_step_schedule(self, enrollment_id: str, schedule: Sequence[ScheduledStep]) -> None: ...
    def list_step_executions(self, enrollment_id: str) -> list[StepExecution]: ...
    def count_pending_steps(self, enrollment_id: str) -> int: ...
    def claim_due_steps(self, now: datetime, limit: int) -> list[StepExecution]: ...
    def record_step_result(
        self,
        step_id: str,
        executed_at: datetime,
        outcome: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None: ...

    # ── Outreach log ──
    def append_outreach_log(self, entry: OutreachLogEntry) -> None: ...
    def list_outreach_log(self, member_id: str) -> list[OutreachLogEntry]: ...
