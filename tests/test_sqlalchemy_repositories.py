"""
Integration tests for the SQLAlchemy repositories and the database runtime.

Runs against a temporary SQLite file through aiosqlite.
"""

import asyncio

import pytest
import pytest_asyncio

from slaflow.config import TimerStatus, TimerType
from slaflow.core import RepositoryException
from slaflow.infrastructure.database import init_database, create_tables, close_database, get_session_context
from slaflow.main import SLARuntime
from slaflow.sla.domain import SLATimer
from slaflow.sla.infrastructure import SQLAlchemyPolicyRepository, SQLAlchemyTimerRepository
from slaflow.workflows.domain import WorkflowNode, WorkflowEdge
from slaflow.workflows.infrastructure import SQLAlchemyWorkflowRepository

from conftest import START, make_policy, make_workflow

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def database(tmp_path):
    """Fresh SQLite database with all tables."""
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables()
    yield
    await close_database()


@pytest.fixture
def runtime(database, ticket_store, sink, clock) -> SLARuntime:
    return SLARuntime(ticket_store, sink, clock=clock)


class TestPolicyRepository:
    """Tests for SQLAlchemyPolicyRepository."""

    @pytest.mark.asyncio
    async def test_round_trip(self, database):
        policy = make_policy(
            use_business_hours=True,
            business_hours={"monday": {"start": "09:00", "end": "17:00"}},
            holidays=["2026-12-25"],
            department_ids=["support"],
        )

        async with get_session_context() as session:
            await SQLAlchemyPolicyRepository(session).save(policy)

        async with get_session_context() as session:
            loaded = await SQLAlchemyPolicyRepository(session).get_by_id("standard")

        assert loaded.business_hours == {"monday": {"start": "09:00", "end": "17:00"}}
        assert loaded.holidays == ["2026-12-25"]
        assert loaded.department_ids == ["support"]
        assert loaded.response_time_for("urgent") == 15
        assert loaded.created_at == policy.created_at

    @pytest.mark.asyncio
    async def test_single_default(self, database):
        async with get_session_context() as session:
            await SQLAlchemyPolicyRepository(session).save(make_policy(id="a"))

        with pytest.raises(RepositoryException):
            async with get_session_context() as session:
                await SQLAlchemyPolicyRepository(session).save(make_policy(id="b"))

        async with get_session_context() as session:
            policies = await SQLAlchemyPolicyRepository(session).list_all()
        assert [p.id for p in policies] == ["a"]


def response_timer(timer_id: str, status: str = TimerStatus.RUNNING) -> SLATimer:
    return SLATimer(
        id=timer_id,
        conversation_id="T1",
        policy_id="standard",
        timer_type=TimerType.RESPONSE,
        target_time=240,
        remaining_time=240,
        elapsed_time=0,
        status=status,
        initial_priority="medium",
        started_at=START,
    )


class TestTimerRepository:
    """Tests for SQLAlchemyTimerRepository."""

    @pytest.mark.asyncio
    async def test_second_active_timer_is_rejected(self, database):
        async with get_session_context() as session:
            await SQLAlchemyTimerRepository(session).create_many([response_timer("r1")])

        with pytest.raises(RepositoryException):
            async with get_session_context() as session:
                await SQLAlchemyTimerRepository(session).create_many([response_timer("r2")])

    @pytest.mark.asyncio
    async def test_finished_timers_do_not_count(self, database):
        async with get_session_context() as session:
            await SQLAlchemyTimerRepository(session).create_many([
                response_timer("old-1", TimerStatus.STOPPED),
                response_timer("old-2", TimerStatus.BREACHED),
            ])
            await SQLAlchemyTimerRepository(session).create_many([response_timer("r1")])

        async with get_session_context() as session:
            timers = await SQLAlchemyTimerRepository(session).list_by_conversation("T1")
        assert sorted(t.id for t in timers) == ["old-1", "old-2", "r1"]


class TestWorkflowRepository:
    """Tests for SQLAlchemyWorkflowRepository."""

    @pytest.mark.asyncio
    async def test_graph_round_trip(self, database):
        workflow = make_workflow(
            [
                WorkflowNode(id="t", type="ticket_created", label="Created", config={"priorities": ["high"]}),
                WorkflowNode(id="c", type="condition_if", config={"field": "priority", "operator": "equals", "value": "high"}),
                WorkflowNode(id="n", type="add_note", config={"note_content": "hi"}),
            ],
            [
                WorkflowEdge(source="t", target="c", id="e1"),
                WorkflowEdge(source="c", target="n", source_handle="true", id="e2"),
            ],
            policy_id="standard",
        )

        async with get_session_context() as session:
            await SQLAlchemyWorkflowRepository(session).save(workflow)

        async with get_session_context() as session:
            loaded = await SQLAlchemyWorkflowRepository(session).get_by_id("wf-1")

        assert loaded.nodes == workflow.nodes
        assert loaded.edges == workflow.edges
        assert loaded.policy_id == "standard"
        assert loaded.is_executable is True

    @pytest.mark.asyncio
    async def test_list_executable_skips_drafts(self, database):
        async with get_session_context() as session:
            repo = SQLAlchemyWorkflowRepository(session)
            await repo.save(make_workflow([], [], workflow_id="live"))
            await repo.save(make_workflow([], [], workflow_id="draft", is_draft=True))
            await repo.save(make_workflow([], [], workflow_id="off", is_active=False))

        async with get_session_context() as session:
            repo = SQLAlchemyWorkflowRepository(session)
            executable = await repo.list_executable()
            everything = await repo.list_all()

        assert [w.id for w in executable] == ["live"]
        assert len(everything) == 3


class TestSLARuntime:
    """End-to-end runs through per-session engines."""

    @pytest.mark.asyncio
    async def test_timers_escalate_and_breach_across_sessions(self, runtime, sink, clock):
        await runtime.reload_policies([make_policy()])
        async with runtime.engine() as engine:
            result = await engine.timer_service.start_timers("T1", "medium", department_id="support")
        assert result.started is True

        clock.advance(minutes=200)
        await runtime.run_sweep()

        async with runtime.engine() as engine:
            timers = {t.timer_type: t for t in await engine.timer_service.get_timers("T1")}
        assert timers[TimerType.RESPONSE].level1_notified_at == clock.now
        assert timers[TimerType.RESPONSE].remaining_time == 40
        assert len(sink.sent) == 1

        clock.advance(minutes=45)
        await runtime.run_sweep()

        async with runtime.engine() as engine:
            breaches = await engine.breach_repository.list()
            response = await engine.timer_repository.get_by_id(timers[TimerType.RESPONSE].id)
            levels = sorted(e.escalation_level for e in await engine.escalation_repository.list())
        assert [b.breach_time for b in breaches] == [5]
        assert response.status == TimerStatus.BREACHED
        assert levels == [1, 3]

    @pytest.mark.asyncio
    async def test_concurrent_sessions_see_committed_timers(self, runtime):
        await runtime.reload_policies([make_policy()])
        started = asyncio.Event()
        release = asyncio.Event()

        async def first_unit():
            async with runtime.engine() as engine:
                result = await engine.timer_service.start_timers("T1", "medium")
                started.set()
                await release.wait()
            return result

        first_task = asyncio.ensure_future(first_unit())
        await started.wait()
        async with runtime.engine() as engine:
            second = await engine.timer_service.start_timers("T1", "medium")
            active = await engine.timer_service.get_active_timers("T1")
        release.set()
        first = await first_task

        assert first.started is True
        assert second.started is False
        assert second.reason == "active timers already exist"
        assert len(active) == 2

    @pytest.mark.asyncio
    async def test_dispatched_workflow_runs_before_commit(self, runtime, ticket):
        await runtime.reload_policies([make_policy()])
        workflow = make_workflow(
            [
                WorkflowNode(id="t", type="ticket_created"),
                WorkflowNode(id="s", type="start_sla_timer"),
            ],
            [WorkflowEdge(source="t", target="s")],
        )
        async with runtime.engine() as engine:
            await engine.workflow_repository.save(workflow)

        async with runtime.engine() as engine:
            dispatched = await engine.dispatcher.on_ticket_created(ticket)
        assert dispatched.scheduled == 1

        async with runtime.engine() as engine:
            timers = await engine.timer_service.get_active_timers("T1")
        assert {t.target_time for t in timers} == {240, 1440}

    @pytest.mark.asyncio
    async def test_time_trigger_without_workflows(self, runtime):
        await runtime.reload_policies([make_policy()])
        async with runtime.engine() as engine:
            await engine.timer_service.start_timers("T1", "medium")

        await runtime.run_time_trigger()

        async with runtime.engine() as engine:
            assert len(await engine.timer_service.get_active_timers("T1")) == 2
