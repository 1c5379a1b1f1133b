"""
Enrollment lifecycle.

enroll():
  1. Reject if the pair already has an active enrollment
  2. Load the playbook (must exist and be active)
  3. Create a fresh enrollment, or reset an inactive one
  4. Generate and persist the full step schedule
  5. Bump the playbook's enrollment counter

Steps 3-5 run in one store transaction. The partial unique index on active
enrollments makes the check-then-act atomic: a concurrent enroll that slips
past step 1 fails at step 3 and is reported as already_enrolled.

Callers get EnrollmentSuccess | EnrollmentError back, never an exception
for the definitional failures.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Union

import structlog
from prometheus_client import Counter

from retention.playbooks.scheduler import build_schedule
from retention.schemas.enrollment import (
    EnrollmentError, EnrollmentErrorCode, EnrollmentStatus, EnrollmentSuccess,
)
from retention.store.ports import DuplicateActiveEnrollment, RetentionStore

logger = structlog.get_logger()

ENROLLMENTS = Counter(
    "retention_enrollments_total",
    "Enrollment attempts by result",
    ["result"],
)

EnrollResult = Union[EnrollmentSuccess, EnrollmentError]


def _error(code: EnrollmentErrorCode, message: str) -> EnrollmentError:
    ENROLLMENTS.labels(result=code.value).inc()
    return EnrollmentError(code=code, message=message)


class EnrollmentManager:

    def __init__(self, store: RetentionStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def enroll(self, playbook_id: str, member_id: str) -> EnrollResult:
        existing = self.store.find_enrollment(playbook_id, member_id)
        if existing and existing.status == EnrollmentStatus.ACTIVE:
            logger.info("enrollment_rejected", playbook_id=playbook_id, member_id=member_id, reason="already_enrolled")
            return _error(EnrollmentErrorCode.ALREADY_ENROLLED, "Member already enrolled in this playbook")

        playbook = self.store.get_playbook(playbook_id)
        if playbook is None:
            return _error(EnrollmentErrorCode.PLAYBOOK_NOT_FOUND, "Playbook not found")
        if not playbook.active:
            return _error(EnrollmentErrorCode.PLAYBOOK_INACTIVE, "Playbook is not active")
        if not playbook.steps:
            return _error(EnrollmentErrorCode.PLAYBOOK_EMPTY, "Playbook has no steps")

        if self.store.get_member(member_id) is None:
            return _error(EnrollmentErrorCode.MEMBER_NOT_FOUND, "Member not found")

        now = self.clock()
        schedule = build_schedule(playbook.steps, now)

        try:
            with self.store.transaction():
                if existing is not None:
                    enrollment = self.store.reactivate_enrollment(existing.id, now)
                else:
                    enrollment = self.store.create_enrollment(playbook_id, member_id, now)
                self.store.replace_step_schedule(enrollment.id, schedule)
                self.store.increment_playbook_counter(playbook_id, "total_enrollments")
        except DuplicateActiveEnrollment:
            logger.info("enrollment_rejected", playbook_id=playbook_id, member_id=member_id, reason="concurrent_enroll")
            return _error(EnrollmentErrorCode.ALREADY_ENROLLED, "Member already enrolled in this playbook")

        ENROLLMENTS.labels(result="enrolled").inc()
        logger.info(
            "member_enrolled",
            enrollment_id=enrollment.id,
            playbook_id=playbook_id,
            member_id=member_id,
            reenrolled=existing is not None,
            steps_scheduled=len(schedule),
        )
        return EnrollmentSuccess(
            enrollment_id=enrollment.id,
            reenrolled=existing is not None,
            steps_scheduled=len(schedule),
        )

    def stop(self, enrollment_id: str, outcome: str = "stopped_manually") -> EnrollResult:
        enrollment = self.store.get_enrollment(enrollment_id)
        if enrollment is None:
            return EnrollmentError(code=EnrollmentErrorCode.ENROLLMENT_NOT_FOUND, message="Enrollment not found")

        stopped = self.store.finish_enrollment(enrollment_id, EnrollmentStatus.STOPPED, self.clock(), outcome)
        if not stopped:
            return EnrollmentError(
                code=EnrollmentErrorCode.NOT_ACTIVE,
                message=f"Enrollment is {enrollment.status.value}, not active",
            )

        logger.info("enrollment_stopped", enrollment_id=enrollment_id, outcome=outcome)
        return EnrollmentSuccess(enrollment_id=enrollment_id)
