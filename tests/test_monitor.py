"""
Tests for the SLA monitor sweep: escalations, breaches, business hours.
"""

import pytest

from slaflow.config import TimerStatus, TimerType, NotificationType, EscalationType
from slaflow.main import build_in_memory_engine
from slaflow.sla.infrastructure import InMemoryNotificationSink

from conftest import make_policy

WEEKDAYS_9_TO_6 = {
    day: {"start": "09:00", "end": "18:00"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
}


async def _response_timer(engine):
    timers = await engine.timer_service.get_timers("T1")
    return next(t for t in timers if t.timer_type == TimerType.RESPONSE)


class TestEscalationToBreach:
    """Medium ticket: warning at 200 minutes, breach at 245 minutes."""

    @pytest.mark.asyncio
    async def test_end_to_end_scenario(self, engine, sink, clock):
        await engine.timer_service.start_timers("T1", "medium")

        clock.advance(minutes=200)
        summary = await engine.monitor_service.sweep()

        assert summary.timers_checked == 2
        assert summary.level1_notifications == 1
        assert summary.breaches == 0
        assert len(sink.sent) == 1
        warning = sink.sent[0]
        assert warning.recipient == "agent-1"
        assert warning.type == NotificationType.SLA_RISK
        assert "83%" in warning.subject
        response = await _response_timer(engine)
        assert response.elapsed_time == 200
        assert response.remaining_time == 40
        assert response.level1_notified_at == clock.now

        clock.advance(minutes=45)
        summary = await engine.monitor_service.sweep()

        assert summary.breaches == 1
        breaches = await engine.breach_repository.list()
        assert len(breaches) == 1
        assert breaches[0].breach_type == "response_breach"
        assert breaches[0].actual_time == 245
        assert breaches[0].breach_time == 5
        assert breaches[0].assigned_to == "agent-1"

        response = await _response_timer(engine)
        assert response.status == TimerStatus.BREACHED
        assert response.breached_at == clock.now
        assert response.remaining_time == -5

        breach_notices = [n for n in sink.sent if n.type == NotificationType.SLA_BREACH]
        assert sorted(n.recipient for n in breach_notices) == ["agent-1", "supervisor-1"]

        levels = sorted(e.escalation_level for e in await engine.escalation_repository.list())
        assert levels == [1, 3]

    @pytest.mark.asyncio
    async def test_repeated_sweeps_are_idempotent(self, engine, sink, clock):
        """The same instant swept twice produces no new notifications or rows."""
        await engine.timer_service.start_timers("T1", "medium")
        clock.advance(minutes=200)

        await engine.monitor_service.sweep()
        second = await engine.monitor_service.sweep()

        assert second.level1_notifications == 0
        assert len(sink.sent) == 1
        assert len(await engine.escalation_repository.list()) == 1

        clock.advance(minutes=60)
        await engine.monitor_service.sweep()
        await engine.monitor_service.sweep()

        assert len(await engine.breach_repository.list()) == 1

    @pytest.mark.asyncio
    async def test_level2_escalation(self, engine, sink, clock):
        await engine.timer_service.start_timers("T1", "medium")
        clock.advance(minutes=230)

        summary = await engine.monitor_service.sweep()

        assert summary.level2_notifications == 1
        assert summary.level1_notifications == 0
        assert sink.sent[0].priority == "high"
        escalation = (await engine.escalation_repository.list())[0]
        assert escalation.escalation_type == EscalationType.CRITICAL
        assert (await _response_timer(engine)).level2_notified_at is not None

    @pytest.mark.asyncio
    async def test_policy_thresholds_apply(self, engine, sink, clock):
        await engine.policy_repository.save(make_policy(escalation_level1=50, escalation_level2=90))
        await engine.timer_service.start_timers("T1", "medium")
        clock.advance(minutes=130)

        summary = await engine.monitor_service.sweep()

        assert summary.level1_notifications == 1

    @pytest.mark.asyncio
    async def test_unassigned_ticket_notifies_supervisors(self, engine, sink, clock, ticket_store):
        await ticket_store.update_fields("T1", {"assignee_id": None})
        await engine.timer_service.start_timers("T1", "medium")
        clock.advance(minutes=200)

        await engine.monitor_service.sweep()

        assert [n.recipient for n in sink.sent] == ["supervisor-1"]
        assert sink.sent[0].subject.startswith("Unassigned Ticket - ")
        assert "(UNASSIGNED)" in sink.sent[0].body

    @pytest.mark.asyncio
    async def test_paused_timers_are_not_checked(self, engine, sink, clock):
        await engine.timer_service.start_timers("T1", "medium")
        await engine.timer_service.pause_timers("T1")
        clock.advance(minutes=500)

        summary = await engine.monitor_service.sweep()

        assert summary.timers_checked == 0
        assert sink.sent == []


class TestNotificationFailures:
    """A failed escalation send is retried; a failed breach send is not fatal."""

    @pytest.mark.asyncio
    async def test_failed_escalation_is_retried_next_sweep(self, policy, ticket_store, clock):
        sink = InMemoryNotificationSink(fail=True)
        engine = build_in_memory_engine([policy], ticket_store, sink, clock=clock)
        await engine.timer_service.start_timers("T1", "medium")
        clock.advance(minutes=200)

        failed = await engine.monitor_service.sweep()

        assert failed.errors == 1
        assert failed.level1_notifications == 0
        response = await _response_timer(engine)
        assert response.level1_notified_at is None
        assert response.elapsed_time == 200

        sink.fail = False
        retried = await engine.monitor_service.sweep()

        assert retried.level1_notifications == 1
        assert len(sink.sent) == 1

    @pytest.mark.asyncio
    async def test_breach_recorded_when_notification_fails(self, policy, ticket_store, clock):
        sink = InMemoryNotificationSink(fail=True)
        engine = build_in_memory_engine([policy], ticket_store, sink, clock=clock)
        await engine.timer_service.start_timers("T1", "urgent")
        clock.advance(minutes=20)

        summary = await engine.monitor_service.sweep()

        assert summary.breaches == 1
        assert summary.errors == 0
        assert (await _response_timer(engine)).status == TimerStatus.BREACHED


class TestBreachRetry:
    """A sweep that failed half-way through a breach is completed by the next one."""

    @pytest.mark.asyncio
    async def test_missing_breach_escalation_written_on_retry(self, engine, clock, monkeypatch):
        repo = engine.escalation_repository
        create = repo.create
        failures = []

        async def create_failing_once(escalation):
            if escalation.escalation_level == 3 and not failures:
                failures.append(escalation)
                raise ConnectionError("escalation store down")
            return await create(escalation)

        monkeypatch.setattr(repo, "create", create_failing_once)
        await engine.timer_service.start_timers("T1", "medium")
        clock.advance(minutes=245)

        first = await engine.monitor_service.sweep()

        assert first.errors == 1
        assert len(await engine.breach_repository.list()) == 1
        assert (await _response_timer(engine)).status == TimerStatus.RUNNING

        second = await engine.monitor_service.sweep()

        assert second.errors == 0
        assert len(await engine.breach_repository.list()) == 1
        response = await _response_timer(engine)
        assert response.status == TimerStatus.BREACHED
        level3 = [e for e in await repo.list() if e.escalation_level == 3]
        assert [e.timer_id for e in level3] == [response.id]


class TestBusinessHours:
    """Auto-pause outside business hours and auto-resume at opening."""

    @pytest.fixture
    def office_engine(self, ticket_store, sink, clock):
        policy = make_policy(
            medium_response_time=1000,
            medium_resolution_time=3000,
            use_business_hours=True,
            pause_off_hours=True,
            business_hours=WEEKDAYS_9_TO_6,
        )
        return build_in_memory_engine([policy], ticket_store, sink, clock=clock)

    @pytest.mark.asyncio
    async def test_pause_after_hours_and_resume_next_morning(self, office_engine, clock):
        engine = office_engine
        await engine.timer_service.start_timers("T1", "medium")

        clock.advance(minutes=9 * 60)  # Wednesday 19:00
        evening = await engine.monitor_service.sweep()

        assert evening.auto_paused == 2
        assert evening.timers_checked == 0
        assert all(t.is_paused for t in await engine.timer_service.get_timers("T1"))

        clock.advance(minutes=14 * 60 + 30)  # Thursday 09:30
        morning = await engine.monitor_service.sweep()

        assert morning.auto_resumed == 2
        assert morning.timers_checked == 2
        response = await _response_timer(engine)
        assert response.is_running
        assert response.total_paused_time == 870
        assert response.elapsed_time == 540

    @pytest.mark.asyncio
    async def test_holiday_is_closed(self, ticket_store, sink, clock):
        policy = make_policy(
            use_business_hours=True,
            pause_off_hours=True,
            business_hours=WEEKDAYS_9_TO_6,
            holidays=["2026-01-14"],
        )
        engine = build_in_memory_engine([policy], ticket_store, sink, clock=clock)
        await engine.timer_service.start_timers_with_durations("T1", "medium", 240, 1440, policy_id="standard")

        summary = await engine.monitor_service.sweep()

        assert summary.auto_paused == 2
