"""
In-Memory SLA Adapters
=======================

Process-local implementations of the SLA repository and collaborator
interfaces. Used for embedding the engine without a database and as
test doubles.

Stored entities are copied on the way in and out so callers never share
state with the store, the same as with a database-backed repository.
"""

from copy import deepcopy
from typing import Dict, List, Optional

from slaflow.sla.application import (
    ISLAPolicyRepository, ISLATimerRepository,
    ISLABreachRepository, ISLAEscalationRepository,
    ITicketStore, INotificationSink
)
from slaflow.sla.domain import (
    SLAPolicy, SLATimer, SLABreach, SLAEscalation,
    TicketSnapshot, AgentLoad, Notification
)
from slaflow.core import RepositoryException, ResourceNotFoundException, NotificationException


class InMemoryPolicyRepository(ISLAPolicyRepository):
    """Policies kept in insertion (creation) order."""

    def __init__(self, policies: Optional[List[SLAPolicy]] = None):
        self._policies: Dict[str, SLAPolicy] = {}
        for policy in policies or []:
            self._store(policy)

    def _store(self, policy: SLAPolicy) -> None:
        if policy.is_default:
            for other in self._policies.values():
                if other.is_default and other.id != policy.id:
                    raise RepositoryException(
                        "Only one default SLA policy allowed",
                        {"policy_id": policy.id, "existing_default": other.id}
                    )
        self._policies[policy.id] = deepcopy(policy)

    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        policy = self._policies.get(policy_id)
        return deepcopy(policy) if policy else None

    async def list_active(self) -> List[SLAPolicy]:
        return [deepcopy(p) for p in self._policies.values() if p.is_active]

    async def list_all(self) -> List[SLAPolicy]:
        return [deepcopy(p) for p in self._policies.values()]

    async def save(self, policy: SLAPolicy) -> SLAPolicy:
        self._store(policy)
        return policy


class InMemoryTimerRepository(ISLATimerRepository):

    def __init__(self):
        self._timers: Dict[str, SLATimer] = {}

    async def get_by_id(self, timer_id: str) -> Optional[SLATimer]:
        timer = self._timers.get(timer_id)
        return deepcopy(timer) if timer else None

    async def list_by_conversation(
        self,
        conversation_id: str,
        statuses: Optional[List[str]] = None,
        timer_type: Optional[str] = None
    ) -> List[SLATimer]:
        return [
            deepcopy(t) for t in self._timers.values()
            if t.conversation_id == conversation_id
            and (statuses is None or t.status in statuses)
            and (timer_type is None or t.timer_type == timer_type)
        ]

    async def list_by_status(self, statuses: Optional[List[str]] = None) -> List[SLATimer]:
        return [
            deepcopy(t) for t in self._timers.values()
            if statuses is None or t.status in statuses
        ]

    async def create_many(self, timers: List[SLATimer]) -> List[SLATimer]:
        for timer in timers:
            if timer.id in self._timers:
                raise RepositoryException(f"SLA timer {timer.id} already exists")
        for timer in timers:
            self._timers[timer.id] = deepcopy(timer)
        return timers

    async def update(self, timer: SLATimer) -> SLATimer:
        if timer.id not in self._timers:
            raise RepositoryException(f"SLA timer {timer.id} not found")
        self._timers[timer.id] = deepcopy(timer)
        return timer


class InMemoryBreachRepository(ISLABreachRepository):

    def __init__(self):
        self._breaches: List[SLABreach] = []

    async def create(self, breach: SLABreach) -> SLABreach:
        if any(b.timer_id == breach.timer_id for b in self._breaches):
            raise RepositoryException(
                f"Breach already recorded for timer {breach.timer_id}"
            )
        self._breaches.append(breach)
        return breach

    async def get_by_timer(self, timer_id: str) -> Optional[SLABreach]:
        return next((b for b in self._breaches if b.timer_id == timer_id), None)

    async def list(self) -> List[SLABreach]:
        return list(self._breaches)


class InMemoryEscalationRepository(ISLAEscalationRepository):

    def __init__(self):
        self._escalations: List[SLAEscalation] = []

    async def create(self, escalation: SLAEscalation) -> SLAEscalation:
        self._escalations.append(escalation)
        return escalation

    async def list_by_conversation(self, conversation_id: str) -> List[SLAEscalation]:
        return [e for e in self._escalations if e.conversation_id == conversation_id]

    async def list(self) -> List[SLAEscalation]:
        return list(self._escalations)


class InMemoryTicketStore(ITicketStore):
    """
    Ticket store backed by a dict of TicketSnapshot.

    Records notes and the history of field updates for inspection.
    """

    def __init__(
        self,
        tickets: Optional[List[TicketSnapshot]] = None,
        agents: Optional[List[AgentLoad]] = None,
        supervisors: Optional[List[str]] = None
    ):
        self._tickets: Dict[str, TicketSnapshot] = {t.id: t for t in tickets or []}
        self._agents: Dict[str, AgentLoad] = {a.agent_id: a for a in agents or []}
        self._supervisors = list(supervisors or [])
        self.notes: List[dict] = []
        self.updates: List[dict] = []

    def add_ticket(self, ticket: TicketSnapshot) -> None:
        self._tickets[ticket.id] = ticket

    def _require(self, ticket_id: str) -> TicketSnapshot:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def get_ticket(self, ticket_id: str) -> Optional[TicketSnapshot]:
        ticket = self._tickets.get(ticket_id)
        return deepcopy(ticket) if ticket else None

    async def update_fields(self, ticket_id: str, fields: Dict[str, object]) -> None:
        ticket = self._require(ticket_id)
        for name, value in fields.items():
            if name == "category":
                name = "category_id"
            if hasattr(ticket, name):
                setattr(ticket, name, value)
        self.updates.append({"ticket_id": ticket_id, "fields": dict(fields)})

    async def assign(self, ticket_id: str, user_id: str) -> None:
        ticket = self._require(ticket_id)
        previous = ticket.assignee_id
        ticket.assignee_id = user_id

        # Keep open-ticket counts in step for round-robin
        if user_id in self._agents:
            load = self._agents[user_id]
            self._agents[user_id] = AgentLoad(load.agent_id, load.open_tickets + 1, load.is_active)
        if previous and previous in self._agents and previous != user_id:
            load = self._agents[previous]
            self._agents[previous] = AgentLoad(
                load.agent_id, max(0, load.open_tickets - 1), load.is_active
            )

    async def add_note(self, ticket_id: str, content: str, internal: bool = True) -> None:
        self._require(ticket_id)
        self.notes.append({"ticket_id": ticket_id, "content": content, "internal": internal})

    async def list_agent_loads(self) -> List[AgentLoad]:
        return list(self._agents.values())

    async def list_supervisors(self) -> List[str]:
        return list(self._supervisors)


class InMemoryNotificationSink(INotificationSink):
    """Collects notifications; can be told to fail for error-path tests."""

    def __init__(self, fail: bool = False):
        self.sent: List[Notification] = []
        self.fail = fail

    async def send(self, notification: Notification) -> bool:
        if self.fail:
            raise NotificationException(
                "delivery failed",
                {"recipient": notification.recipient}
            )
        self.sent.append(notification)
        return True
