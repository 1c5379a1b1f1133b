"""
SqlStore against SQLite: idempotent upserts, the active-enrollment guard
and step claiming.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from retention.models.tables import EnrollmentRow, RiskScoreRow, StepExecutionRow
from retention.playbooks.scheduler import build_schedule
from retention.schemas.enrollment import EnrollmentStatus
from retention.schemas.member import MemberFacts
from retention.schemas.outreach import Channel, OutreachLogEntry
from retention.scoring.engine import score_member
from retention.store.ports import DuplicateActiveEnrollment
from retention.store.sql import SqlStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _count(session_factory, model) -> int:
    with session_factory() as s:
        return s.scalar(select(func.count()).select_from(model))


def _enroll(store, seed, member_id="m1", delays=(0, 48, 0)) -> str:
    playbook_id = seed.playbook(steps=[
        {"step_number": i + 1, "type": "email", "delay_hours": d, "subject": f"S{i + 1}", "content": "Hi"}
        for i, d in enumerate(delays)
    ])
    with store.transaction():
        enrollment = store.create_enrollment(playbook_id, member_id, NOW)
        store.replace_step_schedule(enrollment.id, build_schedule(store.get_playbook(playbook_id).steps, NOW))
    return enrollment.id


class TestMembers:
    def test_only_scorable_members_listed(self, store, seed):
        seed.community()
        seed.member("m1")
        seed.member("m2", subscription_status="trialing")
        seed.member("m3", subscription_status="past_due")
        seed.member("m4", subscription_status="cancelled")

        assert [m.id for m in store.list_scorable_members()] == ["m1", "m2", "m3"]

    def test_period_end_comes_back_timezone_aware(self, store, seed):
        seed.community()
        seed.member(current_period_end=datetime(2026, 1, 5, tzinfo=timezone.utc))

        member = store.get_member("m1")
        assert member.current_period_end == datetime(2026, 1, 5, tzinfo=timezone.utc)
        assert member.to_facts(NOW).days_until_renewal == 4


class TestRiskScores:
    def test_upsert_keeps_one_row_per_member(self, store, seed, session_factory):
        seed.community()
        seed.member()

        store.upsert_risk_score(score_member(MemberFacts(member_id="m1", tenure_days=200), now=NOW))
        store.upsert_risk_score(score_member(
            MemberFacts(member_id="m1", tenure_days=200, recent_payment_failures=2), now=NOW,
        ))

        assert _count(session_factory, RiskScoreRow) == 1
        stored = store.get_risk_score("m1")
        assert stored.score == 25
        assert stored.factors[0].name == "payment_failure"
        assert stored.calculated_at == NOW

    def test_missing_score(self, store):
        assert store.get_risk_score("nobody") is None


class TestEnrollments:
    def test_second_active_enrollment_rejected(self, store, seed, session_factory):
        seed.community()
        seed.member()
        playbook_id = seed.playbook()
        store.create_enrollment(playbook_id, "m1", NOW)

        with pytest.raises(DuplicateActiveEnrollment):
            store.create_enrollment(playbook_id, "m1", NOW)

        assert _count(session_factory, EnrollmentRow) == 1

    def test_inactive_rows_do_not_block(self, store, seed):
        seed.community()
        seed.member()
        playbook_id = seed.playbook()
        first = store.create_enrollment(playbook_id, "m1", NOW)
        assert store.finish_enrollment(first.id, EnrollmentStatus.STOPPED, NOW, "stopped_manually")

        second = store.create_enrollment(playbook_id, "m1", NOW + timedelta(hours=1))

        assert second.id != first.id
        assert store.find_enrollment(playbook_id, "m1").id == second.id

    def test_finish_only_applies_to_active(self, store, seed):
        seed.community()
        seed.member()
        enrollment = store.create_enrollment(seed.playbook(), "m1", NOW)

        assert store.finish_enrollment(enrollment.id, EnrollmentStatus.COMPLETED, NOW, "sequence_finished")
        assert not store.finish_enrollment(enrollment.id, EnrollmentStatus.STOPPED, NOW, "late_stop")
        assert store.get_enrollment(enrollment.id).outcome == "sequence_finished"

    def test_reactivate_resets_progress(self, store, seed):
        seed.community()
        seed.member()
        enrollment = store.create_enrollment(seed.playbook(), "m1", NOW)
        store.set_enrollment_progress(enrollment.id, 3)
        store.finish_enrollment(enrollment.id, EnrollmentStatus.COMPLETED, NOW, "sequence_finished")

        later = NOW + timedelta(days=10)
        again = store.reactivate_enrollment(enrollment.id, later)

        assert again.status == EnrollmentStatus.ACTIVE
        assert again.current_step == 0
        assert again.enrolled_at == later
        assert again.completed_at is None
        assert again.outcome is None

    def test_reactivate_active_row_rejected(self, store, seed):
        seed.community()
        seed.member()
        enrollment = store.create_enrollment(seed.playbook(), "m1", NOW)

        with pytest.raises(DuplicateActiveEnrollment):
            store.reactivate_enrollment(enrollment.id, NOW)

    def test_progress_never_moves_backwards(self, store, seed):
        seed.community()
        seed.member()
        enrollment = store.create_enrollment(seed.playbook(), "m1", NOW)
        store.set_enrollment_progress(enrollment.id, 2)
        store.set_enrollment_progress(enrollment.id, 1)

        assert store.get_enrollment(enrollment.id).current_step == 2

    def test_playbook_counters(self, store, seed):
        seed.community()
        playbook_id = seed.playbook()
        store.increment_playbook_counter(playbook_id, "total_enrollments")
        store.increment_playbook_counter(playbook_id, "total_enrollments")

        assert store.get_playbook(playbook_id).total_enrollments == 2
        with pytest.raises(ValueError):
            store.increment_playbook_counter(playbook_id, "score")


class TestStepClaims:
    def test_claims_only_due_steps(self, store, seed):
        seed.community()
        seed.member()
        enrollment_id = _enroll(store, seed)

        claimed = store.claim_due_steps(NOW, 50)

        assert [s.step_number for s in claimed] == [1]
        assert claimed[0].claimed_at == NOW
        assert store.count_pending_steps(enrollment_id) == 3

    def test_claimed_step_not_claimed_again(self, session_factory, seed, store):
        seed.community()
        seed.member()
        _enroll(store, seed)

        first_sweep = SqlStore(session_factory).claim_due_steps(NOW, 50)
        second_sweep = SqlStore(session_factory).claim_due_steps(NOW + timedelta(minutes=1), 50)

        assert len(first_sweep) == 1
        assert second_sweep == []

    def test_stale_claim_is_reclaimable(self, session_factory, seed, store):
        seed.community()
        seed.member()
        _enroll(store, seed)

        store.claim_due_steps(NOW, 50)
        reclaimed = SqlStore(session_factory, claim_timeout=timedelta(minutes=30)).claim_due_steps(
            NOW + timedelta(minutes=31), 50,
        )

        assert [s.step_number for s in reclaimed] == [1]

    def test_later_step_waits_for_earlier_claim(self, store, seed):
        seed.community()
        seed.member()
        enrollment_id = _enroll(store, seed, delays=(0, 0))
        step_one = store.list_step_executions(enrollment_id)[0]

        # Another sweep holds step 1
        claimed = store.claim_due_steps(NOW, 1)
        assert [s.id for s in claimed] == [step_one.id]

        assert store.claim_due_steps(NOW + timedelta(minutes=1), 50) == []

        store.record_step_result(step_one.id, NOW, outcome={"status": "completed"})
        assert [s.step_number for s in store.claim_due_steps(NOW + timedelta(minutes=2), 50)] == [2]

    def test_batch_limit_and_order(self, store, seed):
        seed.community()
        for i in range(3):
            seed.member(f"m{i}")
        playbook_id = seed.playbook(steps=[{"step_number": 1, "type": "wait", "delay_hours": 0}])
        for i, offset in enumerate((5, 1, 3)):
            start = NOW - timedelta(hours=offset)
            enrollment = store.create_enrollment(playbook_id, f"m{i}", start)
            store.replace_step_schedule(enrollment.id, build_schedule(store.get_playbook(playbook_id).steps, start))

        claimed = store.claim_due_steps(NOW, 2)

        assert [s.scheduled_for for s in claimed] == [NOW - timedelta(hours=5), NOW - timedelta(hours=3)]

    def test_executed_steps_are_not_claimed(self, store, seed):
        seed.community()
        seed.member()
        enrollment_id = _enroll(store, seed, delays=(0,))
        step = store.list_step_executions(enrollment_id)[0]
        store.record_step_result(step.id, NOW, outcome={"status": "completed"})

        assert store.claim_due_steps(NOW, 50) == []
        assert store.count_pending_steps(enrollment_id) == 0

    def test_schedule_replacement(self, store, seed, session_factory):
        seed.community()
        seed.member()
        enrollment_id = _enroll(store, seed)
        store.replace_step_schedule(enrollment_id, build_schedule(store.get_playbook(
            store.list_playbooks("c1")[0].id).steps[:1], NOW))

        assert _count(session_factory, StepExecutionRow) == 1


class TestOutreachLog:
    def test_append_and_list(self, store, seed):
        seed.community()
        seed.member()
        store.append_outreach_log(OutreachLogEntry(
            member_id="m1", community_id="c1", channel=Channel.TELEGRAM,
            subject="Hi", content="Hello", playbook_enrollment_id="e1", sent_at=NOW,
        ))

        [entry] = store.list_outreach_log("m1")
        assert entry.channel == Channel.TELEGRAM
        assert entry.playbook_enrollment_id == "e1"
        assert entry.sent_at == NOW
        assert entry.bounced is False
