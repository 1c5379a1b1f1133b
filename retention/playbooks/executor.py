"""
Step execution sweep.

One call to run_due_steps():
  1. Claims up to batch_size due steps (executed_at IS NULL, scheduled_for ≤ now),
     oldest first
  2. Runs each one independently, in claim order:
       wait / check_status → recorded as completed
       email               → member + community resolved, dispatched via OutreachDispatcher
  3. Advances the enrollment's current_step; the last step completes the enrollment
  4. Aggregates per-step outcomes into a SweepResult

A failing step is recorded on its own row (error, executed_at) and never
stops the rest of the batch. It still counts towards the enrollment's
progress, so a failure on the last step completes the sequence. Steps are
not retried automatically.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from prometheus_client import Counter

from retention.outreach.dispatcher import OutreachDispatcher
from retention.schemas.enrollment import Enrollment, EnrollmentStatus, StepExecution, SweepResult
from retention.schemas.outreach import OutreachContent
from retention.schemas.playbook import StepType
from retention.store.ports import RetentionStore

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 50
DEFAULT_STEP_SUBJECT = "Retention check-in"
DEFAULT_STEP_BODY = "We wanted to check in with you."

STEP_EXECUTIONS = Counter(
    "retention_step_executions_total",
    "Playbook step executions by type and status",
    ["step_type", "status"],
)


@dataclass(frozen=True)
class StepOutcome:
    status: str  # executed | skipped | failed
    error: Optional[str] = None


EXECUTED = StepOutcome("executed")
SKIPPED = StepOutcome("skipped")


class StepExecutor:

    def __init__(
        self,
        store: RetentionStore,
        dispatcher: OutreachDispatcher,
        clock: Optional[Callable[[], datetime]] = None,
        skip_inactive_enrollments: bool = True,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.skip_inactive_enrollments = skip_inactive_enrollments

    def run_due_steps(self, batch_size: int = DEFAULT_BATCH_SIZE) -> SweepResult:
        now = self.clock()
        try:
            steps = self.store.claim_due_steps(now, batch_size)
        except Exception as e:
            logger.error("step_claim_failed", error=str(e))
            return SweepResult(errors=[f"Claim failed: {e}"])

        result = SweepResult(claimed=len(steps))
        for step in steps:
            outcome = self._run_step(step, now)
            if outcome.status == "executed":
                result.executed += 1
            elif outcome.status == "skipped":
                result.skipped += 1
            if outcome.error:
                result.errors.append(outcome.error)

        logger.info(
            "sweep_complete",
            claimed=result.claimed,
            executed=result.executed,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    def _run_step(self, step: StepExecution, now: datetime) -> StepOutcome:
        try:
            outcome = self._execute(step, now)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error("step_failed", step_id=step.id, enrollment_id=step.enrollment_id, error=message)
            try:
                with self.store.transaction():
                    self.store.record_step_result(step.id, now, error=message)
                    enrollment = self.store.get_enrollment(step.enrollment_id)
                    if enrollment is not None:
                        self._advance(enrollment, step, now)
            except Exception as record_error:
                logger.error("step_error_not_recorded", step_id=step.id, error=str(record_error))
                message = f"{message} (not recorded: {record_error})"
            outcome = StepOutcome("failed", f"Step {step.id}: {message}")

        STEP_EXECUTIONS.labels(step_type=step.step_type.value, status=outcome.status).inc()
        return outcome

    def _execute(self, step: StepExecution, now: datetime) -> StepOutcome:
        enrollment = self.store.get_enrollment(step.enrollment_id)
        if enrollment is None:
            self.store.record_step_result(step.id, now, error="enrollment not found")
            return StepOutcome("failed", f"Step {step.id}: enrollment not found")

        if self.skip_inactive_enrollments and enrollment.status != EnrollmentStatus.ACTIVE:
            self.store.record_step_result(
                step.id, now,
                outcome={"status": "skipped", "reason": f"enrollment_{enrollment.status.value}"},
            )
            logger.info("step_skipped", step_id=step.id, enrollment_status=enrollment.status.value)
            return SKIPPED

        if step.step_type in (StepType.WAIT, StepType.CHECK_STATUS):
            with self.store.transaction():
                self.store.record_step_result(step.id, now, outcome={"status": "completed"})
                self._advance(enrollment, step, now)
            logger.info("step_executed", step_id=step.id, step_type=step.step_type.value)
            return EXECUTED

        return self._execute_email(step, enrollment, now)

    def _execute_email(self, step: StepExecution, enrollment: Enrollment, now: datetime) -> StepOutcome:
        member = self.store.get_member(enrollment.member_id)
        if member is None:
            return self._abandon(step, enrollment, now, "member not found")

        community = self.store.get_community(member.community_id)
        if community is None:
            return self._abandon(step, enrollment, now, "community not found")

        sent = self.dispatcher.dispatch(
            member,
            community,
            OutreachContent(
                subject=step.subject or DEFAULT_STEP_SUBJECT,
                body=step.content or DEFAULT_STEP_BODY,
            ),
            enrollment_id=enrollment.id,
        )

        outcome = {"channel": sent.channel, "success": sent.success}
        if sent.error:
            outcome["error"] = sent.error
        with self.store.transaction():
            self.store.record_step_result(step.id, now, outcome=outcome)
            self._advance(enrollment, step, now)

        if not sent.success:
            logger.warning("step_send_failed", step_id=step.id, channel=sent.channel, error=sent.error)
            return StepOutcome("failed", f"Step {step.id}: send failed ({sent.error})")

        logger.info("step_executed", step_id=step.id, step_type=step.step_type.value, channel=sent.channel)
        return EXECUTED

    def _advance(self, enrollment: Enrollment, step: StepExecution, now: datetime) -> None:
        self.store.set_enrollment_progress(enrollment.id, step.step_number)
        if self.store.count_pending_steps(enrollment.id) > 0:
            return
        if self.store.finish_enrollment(enrollment.id, EnrollmentStatus.COMPLETED, now, "sequence_finished"):
            self.store.increment_playbook_counter(enrollment.playbook_id, "total_completions")
            logger.info("enrollment_completed", enrollment_id=enrollment.id, playbook_id=enrollment.playbook_id)

    def _abandon(self, step: StepExecution, enrollment: Enrollment, now: datetime, reason: str) -> StepOutcome:
        with self.store.transaction():
            self.store.record_step_result(step.id, now, error=reason)
            self.store.finish_enrollment(enrollment.id, EnrollmentStatus.FAILED, now, reason)
        logger.warning("step_abandoned", step_id=step.id, enrollment_id=enrollment.id, reason=reason)
        return StepOutcome("failed", f"Step {step.id}: {reason}")
