"""
Shared pytest fixtures for all tests.

Provides a controllable clock, SLA policies, an in-memory ticket store
and a fully wired in-memory engine.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

# Ensure test environment
os.environ["ENVIRONMENT"] = "test"

from slaflow.main import SLAEngine, build_in_memory_engine  # noqa: E402
from slaflow.sla.domain import SLAPolicy, TicketSnapshot, AgentLoad  # noqa: E402
from slaflow.sla.infrastructure import InMemoryTicketStore, InMemoryNotificationSink  # noqa: E402
from slaflow.workflows.domain import Workflow, WorkflowNode, WorkflowEdge  # noqa: E402


# Wednesday, inside the default business hours
START = datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 0, seconds: int = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now


def make_policy(**overrides) -> SLAPolicy:
    """Policy with the standard targets and no business hours."""
    values = dict(
        id="standard",
        name="Standard",
        is_default=True,
        low_response_time=480,
        low_resolution_time=2880,
        medium_response_time=240,
        medium_resolution_time=1440,
        high_response_time=60,
        high_resolution_time=480,
        urgent_response_time=15,
        urgent_resolution_time=240,
        created_at=START - timedelta(days=30),
    )
    values.update(overrides)
    return SLAPolicy(**values)


def make_workflow(
    nodes: List[WorkflowNode],
    edges: List[WorkflowEdge],
    workflow_id: str = "wf-1",
    **overrides
) -> Workflow:
    """Active, published workflow."""
    values = dict(
        id=workflow_id,
        name=f"Workflow {workflow_id}",
        nodes=nodes,
        edges=edges,
        is_active=True,
        is_draft=False,
    )
    values.update(overrides)
    return Workflow(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> SLAPolicy:
    return make_policy()


@pytest.fixture
def ticket() -> TicketSnapshot:
    return TicketSnapshot(
        id="T1",
        priority="medium",
        status="open",
        department_id="support",
        category_id="billing",
        assignee_id="agent-1",
        channel="email",
    )


@pytest.fixture
def ticket_store(ticket) -> InMemoryTicketStore:
    return InMemoryTicketStore(
        tickets=[ticket],
        agents=[
            AgentLoad("agent-1", open_tickets=3),
            AgentLoad("agent-2", open_tickets=1),
            AgentLoad("agent-3", open_tickets=0, is_active=False),
        ],
        supervisors=["supervisor-1"],
    )


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def engine(policy, ticket_store, sink, clock) -> SLAEngine:
    """In-memory engine with one default policy and ticket T1."""
    return build_in_memory_engine(
        policies=[policy],
        ticket_store=ticket_store,
        notification_sink=sink,
        clock=clock,
    )
