"""
SqlStore — SQLAlchemy implementation of the RetentionStore port.

One instance serves one unit of work at a time (a sweep, a request). Calls
made inside ``transaction()`` share a session and commit together; calls made
outside it run in their own short transaction.

Concurrency guarantees come from the schema, not from Python locks:
  - risk_scores.member_id is unique and written with INSERT … ON CONFLICT
  - uq_enrollment_active is a partial unique index over active enrollments
  - step claims are conditional UPDATEs on claimed_at
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional, Sequence

import structlog
from sqlalchemy import and_, case, exists, func, or_, select, update, delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, sessionmaker

from retention.models.tables import (
    CommunityRow, EnrollmentRow, MemberRow, OutreachLogRow, PlaybookRow, RiskScoreRow,
    StepExecutionRow,
)
from retention.playbooks.scheduler import ScheduledStep
from retention.schemas.enrollment import Enrollment, EnrollmentStatus, StepExecution
from retention.schemas.member import SCORABLE_STATUSES, Community, Member
from retention.schemas.outreach import OutreachLogEntry
from retention.schemas.playbook import Playbook
from retention.schemas.risk import RiskScore
from retention.store.ports import DuplicateActiveEnrollment

logger = structlog.get_logger()

PLAYBOOK_COUNTERS = ("total_enrollments", "total_completions")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlStore:

    def __init__(self, session_factory: sessionmaker, claim_timeout: timedelta = timedelta(minutes=30)):
        self._factory = session_factory
        self._claim_timeout = claim_timeout
        self._session: Optional[Session] = None

    # ── Session handling ──

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._session is not None:
            # Nested call joins the outer transaction
            yield
            return

        session = self._factory()
        self._session = session
        try:
            yield
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            self._session = None

    @contextmanager
    def _use(self) -> Iterator[Session]:
        if self._session is not None:
            yield self._session
            return
        with self.transaction():
            yield self._session

    # ── Members / communities ──

    def get_member(self, member_id: str) -> Optional[Member]:
        with self._use() as s:
            row = s.get(MemberRow, member_id)
            return _to_member(row) if row else None

    def list_scorable_members(self, community_id: Optional[str] = None) -> list[Member]:
        statuses = [status.value for status in SCORABLE_STATUSES]
        stmt = select(MemberRow).where(MemberRow.subscription_status.in_(statuses))
        if community_id:
            stmt = stmt.where(MemberRow.community_id == community_id)
        with self._use() as s:
            return [_to_member(r) for r in s.scalars(stmt.order_by(MemberRow.id))]

    def get_community(self, community_id: str) -> Optional[Community]:
        with self._use() as s:
            row = s.get(CommunityRow, community_id)
            return _to_community(row) if row else None

    def list_communities(self) -> list[Community]:
        with self._use() as s:
            return [_to_community(r) for r in s.scalars(select(CommunityRow).order_by(CommunityRow.id))]

    # ── Playbooks ──

    def get_playbook(self, playbook_id: str) -> Optional[Playbook]:
        with self._use() as s:
            row = s.get(PlaybookRow, playbook_id)
            return _to_playbook(row) if row else None

    def list_playbooks(self, community_id: str, active_only: bool = False) -> list[Playbook]:
        stmt = select(PlaybookRow).where(PlaybookRow.community_id == community_id)
        if active_only:
            stmt = stmt.where(PlaybookRow.active.is_(True))
        with self._use() as s:
            return [_to_playbook(r) for r in s.scalars(stmt.order_by(PlaybookRow.created_at))]

    def add_playbook(self, playbook: Playbook) -> str:
        data = playbook.model_dump(mode="json", exclude={"id"})
        with self._use() as s:
            row = PlaybookRow(**data)
            if playbook.id:
                row.id = playbook.id
            s.add(row)
            s.flush()
            return row.id

    def increment_playbook_counter(self, playbook_id: str, counter: str) -> None:
        if counter not in PLAYBOOK_COUNTERS:
            raise ValueError(f"Unknown playbook counter: {counter}")
        column = getattr(PlaybookRow, counter)
        with self._use() as s:
            s.execute(
                update(PlaybookRow)
                .where(PlaybookRow.id == playbook_id)
                .values({counter: column + 1})
                .execution_options(synchronize_session=False)
            )

    # ── Risk scores ──

    def upsert_risk_score(self, score: RiskScore) -> None:
        values = {
            "member_id": score.member_id,
            "score": score.score,
            "risk_level": score.level.value,
            "risk_factors": [f.model_dump(mode="json") for f in score.factors],
            "data_confidence": score.confidence.value,
            "model_version": score.model_version,
            "calculated_at": score.calculated_at,
        }
        with self._use() as s:
            dialect = s.get_bind().dialect.name
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(RiskScoreRow.__table__).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["member_id"],
                set_={k: stmt.excluded[k] for k in values if k != "member_id"},
            )
            s.execute(stmt)

    def get_risk_score(self, member_id: str) -> Optional[RiskScore]:
        with self._use() as s:
            row = s.scalars(select(RiskScoreRow).where(RiskScoreRow.member_id == member_id)).first()
            if row is None:
                return None
            return RiskScore(
                member_id=row.member_id,
                score=row.score,
                level=row.risk_level,
                factors=row.risk_factors,
                confidence=row.data_confidence,
                calculated_at=_aware(row.calculated_at),
                model_version=row.model_version,
            )

    # ── Enrollments ──

    def find_enrollment(self, playbook_id: str, member_id: str) -> Optional[Enrollment]:
        """The active enrollment for the pair if any, else the most recent one."""
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.playbook_id == playbook_id, EnrollmentRow.member_id == member_id)
            .order_by(
                case((EnrollmentRow.status == EnrollmentStatus.ACTIVE.value, 0), else_=1),
                EnrollmentRow.enrolled_at.desc(),
            )
        )
        with self._use() as s:
            row = s.scalars(stmt).first()
            return _to_enrollment(row) if row else None

    def get_enrollment(self, enrollment_id: str) -> Optional[Enrollment]:
        with self._use() as s:
            row = s.get(EnrollmentRow, enrollment_id)
            return _to_enrollment(row) if row else None

    def create_enrollment(self, playbook_id: str, member_id: str, enrolled_at: datetime) -> Enrollment:
        with self._use() as s:
            row = EnrollmentRow(
                playbook_id=playbook_id,
                member_id=member_id,
                current_step=0,
                status=EnrollmentStatus.ACTIVE.value,
                enrolled_at=enrolled_at,
            )
            s.add(row)
            try:
                s.flush()
            except IntegrityError as e:
                raise DuplicateActiveEnrollment(f"{playbook_id}/{member_id}") from e
            return _to_enrollment(row)

    def reactivate_enrollment(self, enrollment_id: str, enrolled_at: datetime) -> Enrollment:
        with self._use() as s:
            try:
                result = s.execute(
                    update(EnrollmentRow)
                    .where(
                        EnrollmentRow.id == enrollment_id,
                        EnrollmentRow.status != EnrollmentStatus.ACTIVE.value,
                    )
                    .values(
                        status=EnrollmentStatus.ACTIVE.value,
                        current_step=0,
                        enrolled_at=enrolled_at,
                        completed_at=None,
                        outcome=None,
                    )
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError as e:
                raise DuplicateActiveEnrollment(enrollment_id) from e
            if result.rowcount != 1:
                raise DuplicateActiveEnrollment(enrollment_id)
            s.expire_all()
            return _to_enrollment(s.get(EnrollmentRow, enrollment_id))

    def set_enrollment_progress(self, enrollment_id: str, step_number: int) -> None:
        with self._use() as s:
            s.execute(
                update(EnrollmentRow)
                .where(EnrollmentRow.id == enrollment_id, EnrollmentRow.current_step < step_number)
                .values(current_step=step_number)
                .execution_options(synchronize_session=False)
            )

    def finish_enrollment(
        self,
        enrollment_id: str,
        status: EnrollmentStatus,
        finished_at: Optional[datetime],
        outcome: Optional[str],
    ) -> bool:
        """Move an active enrollment to a terminal status. False if it was not active."""
        with self._use() as s:
            result = s.execute(
                update(EnrollmentRow)
                .where(
                    EnrollmentRow.id == enrollment_id,
                    EnrollmentRow.status == EnrollmentStatus.ACTIVE.value,
                )
                .values(status=status.value, completed_at=finished_at, outcome=outcome)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ── Step executions ──

    def replace_step_schedule(self, enrollment_id: str, schedule: Sequence[ScheduledStep]) -> None:
        with self._use() as s:
            s.execute(
                delete(StepExecutionRow)
                .where(StepExecutionRow.enrollment_id == enrollment_id)
                .execution_options(synchronize_session=False)
            )
            s.add_all([
                StepExecutionRow(
                    enrollment_id=enrollment_id,
                    step_number=step.step_number,
                    step_type=step.step_type.value,
                    channel=step.channel,
                    scheduled_for=step.scheduled_for,
                    subject=step.subject,
                    content=step.content,
                )
                for step in schedule
            ])
            s.flush()

    def list_step_executions(self, enrollment_id: str) -> list[StepExecution]:
        stmt = (
            select(StepExecutionRow)
            .where(StepExecutionRow.enrollment_id == enrollment_id)
            .order_by(StepExecutionRow.step_number)
        )
        with self._use() as s:
            return [_to_step(r) for r in s.scalars(stmt)]

    def count_pending_steps(self, enrollment_id: str) -> int:
        stmt = select(func.count()).select_from(StepExecutionRow).where(
            StepExecutionRow.enrollment_id == enrollment_id,
            StepExecutionRow.executed_at.is_(None),
        )
        with self._use() as s:
            return s.scalar(stmt) or 0

    def claim_due_steps(self, now: datetime, limit: int) -> list[StepExecution]:
        """
        Claim up to ``limit`` due steps, oldest first.

        A step is skipped while an earlier step of the same enrollment is
        held by another live claim, so a later step never overtakes an
        earlier one. Claims older than the claim timeout are reclaimable.
        """
        stale_before = now - self._claim_timeout
        step = StepExecutionRow
        earlier = aliased(StepExecutionRow)
        claimable = or_(step.claimed_at.is_(None), step.claimed_at < stale_before)

        earlier_in_flight = exists().where(
            earlier.enrollment_id == step.enrollment_id,
            earlier.step_number < step.step_number,
            earlier.executed_at.is_(None),
            earlier.claimed_at.is_not(None),
            earlier.claimed_at >= stale_before,
        )
        stmt = (
            select(step)
            .where(step.executed_at.is_(None), step.scheduled_for <= now, claimable, ~earlier_in_flight)
            .order_by(step.scheduled_for, step.step_number)
            .limit(limit)
        )

        claimed: list[StepExecution] = []
        blocked: set[str] = set()
        with self._use() as s:
            for row in s.scalars(stmt).all():
                if row.enrollment_id in blocked:
                    continue
                result = s.execute(
                    update(step)
                    .where(and_(step.id == row.id, step.executed_at.is_(None), claimable))
                    .values(claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    # Lost the race; hold back the rest of this enrollment
                    blocked.add(row.enrollment_id)
                    continue
                claimed.append(_to_step(row).model_copy(update={"claimed_at": now}))

        if blocked:
            logger.info("step_claims_contended", enrollments=len(blocked))
        return claimed

    def record_step_result(
        self,
        step_id: str,
        executed_at: datetime,
        outcome: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._use() as s:
            s.execute(
                update(StepExecutionRow)
                .where(StepExecutionRow.id == step_id)
                .values(executed_at=executed_at, outcome=outcome, error=error)
                .execution_options(synchronize_session=False)
            )

    # ── Outreach log ──

    def append_outreach_log(self, entry: OutreachLogEntry) -> None:
        with self._use() as s:
            row = OutreachLogRow(**entry.model_dump(exclude={"channel"}))
            row.channel = entry.channel.value
            s.add(row)
            s.flush()

    def list_outreach_log(self, member_id: str) -> list[OutreachLogEntry]:
        stmt = (
            select(OutreachLogRow)
            .where(OutreachLogRow.member_id == member_id)
            .order_by(OutreachLogRow.sent_at)
        )
        with self._use() as s:
            return [
                OutreachLogEntry(
                    member_id=r.member_id,
                    community_id=r.community_id,
                    channel=r.channel,
                    subject=r.subject,
                    content=r.content,
                    playbook_enrollment_id=r.playbook_enrollment_id,
                    template_id=r.template_id,
                    sent_at=_aware(r.sent_at),
                    delivered_at=_aware(r.delivered_at),
                    opened_at=_aware(r.opened_at),
                    clicked_at=_aware(r.clicked_at),
                    bounced=r.bounced,
                )
                for r in s.scalars(stmt)
            ]


# ═══════════════════════════════════════════════════════════════
# Row → domain model
# ═══════════════════════════════════════════════════════════════

def _to_member(row: MemberRow) -> Member:
    return Member(
        id=row.id,
        community_id=row.community_id,
        email=row.email,
        username=row.username,
        first_name=row.first_name,
        discord_user_id=row.discord_user_id,
        telegram_user_id=row.telegram_user_id,
        subscription_status=row.subscription_status,
        current_period_end=_aware(row.current_period_end),
        cancel_at_period_end=row.cancel_at_period_end,
        tenure_days=row.tenure_days,
        previous_cancellations=row.previous_cancellations,
        recent_payment_failures=row.recent_payment_failures,
        engagement_score=row.engagement_score,
        has_engagement_data=row.has_engagement_data,
    )


def _to_community(row: CommunityRow) -> Community:
    return Community(
        id=row.id,
        name=row.name,
        plan_tier=row.plan_tier,
        discord_bot_installed=row.discord_bot_installed,
        telegram_bot_installed=row.telegram_bot_installed,
        whop_chat_enabled=row.whop_chat_enabled,
        settings=row.settings or {},
    )


def _to_playbook(row: PlaybookRow) -> Playbook:
    return Playbook(
        id=row.id,
        community_id=row.community_id,
        name=row.name,
        emoji=row.emoji,
        description=row.description,
        playbook_type=row.playbook_type,
        min_tier=row.min_tier,
        active=row.active,
        trigger_conditions=row.trigger_conditions or [],
        steps=row.steps or [],
        total_enrollments=row.total_enrollments,
        total_completions=row.total_completions,
    )


def _to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        playbook_id=row.playbook_id,
        member_id=row.member_id,
        current_step=row.current_step,
        status=row.status,
        enrolled_at=_aware(row.enrolled_at),
        completed_at=_aware(row.completed_at),
        outcome=row.outcome,
    )


def _to_step(row: StepExecutionRow) -> StepExecution:
    return StepExecution(
        id=row.id,
        enrollment_id=row.enrollment_id,
        step_number=row.step_number,
        step_type=row.step_type,
        channel=row.channel,
        scheduled_for=_aware(row.scheduled_for),
        executed_at=_aware(row.executed_at),
        claimed_at=_aware(row.claimed_at),
        subject=row.subject,
        content=row.content,
        outcome=row.outcome,
        error=row.error,
    )
