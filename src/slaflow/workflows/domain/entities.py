"""
Workflow Domain Entities
=========================

Pure Python domain entities for workflow graphs and their execution.

A workflow is a directed graph of trigger, logic and action nodes. The
executor walks it from the trigger node, threading an immutable
ExecutionContext through the visited nodes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional


class NodeType(str, Enum):
    """Closed set of node kinds the executor understands."""

    # Triggers
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TIME_SCHEDULER = "time_scheduler"

    # SLA timers
    START_SLA_TIMER = "start_sla_timer"
    PAUSE_SLA = "pause_sla"
    RESUME_SLA = "resume_sla"
    CHECK_SLA_TIME = "check_sla_time"
    SLA_WARNING = "sla_warning"
    SLA_BREACH = "sla_breach"

    # Logic
    CONDITION_IF = "condition_if"
    MERGE_BRANCHES = "merge_branches"
    WAIT_DELAY = "wait_delay"

    # Actions
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    SEND_NOTIFICATION = "send_notification"
    UPDATE_FIELD = "update_field"
    ASSIGN_TICKET = "assign_ticket"
    ADD_NOTE = "add_note"
    ESCALATION = "escalation"

    @classmethod
    def parse(cls, value: str) -> Optional["NodeType"]:
        """NodeType for a raw type string, None when unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


TRIGGER_NODE_TYPES = (
    NodeType.TICKET_CREATED,
    NodeType.TICKET_UPDATED,
    NodeType.TIME_SCHEDULER,
)


@dataclass(frozen=True)
class WorkflowNode:
    """
    One node of a workflow graph.

    `type` is kept as the raw string so graphs with node kinds this engine
    does not know can still be loaded; such nodes fail when visited.
    """

    id: str
    type: str
    label: Optional[str] = None
    config: Mapping[str, Any] = field(default_factory=dict)

    @property
    def node_type(self) -> Optional[NodeType]:
        return NodeType.parse(self.type)

    @property
    def is_trigger(self) -> bool:
        return self.node_type in TRIGGER_NODE_TYPES


@dataclass(frozen=True)
class WorkflowEdge:
    """Directed edge; `source_handle` ("true"/"false") only matters after a condition."""

    source: str
    target: str
    source_handle: Optional[str] = None
    id: Optional[str] = None


@dataclass
class Workflow:
    """
    Workflow entity.

    Executable only when active and not a draft.
    """

    id: str
    name: str
    nodes: List[WorkflowNode] = field(default_factory=list)
    edges: List[WorkflowEdge] = field(default_factory=list)
    description: Optional[str] = None
    is_active: bool = False
    is_draft: bool = True
    policy_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def is_executable(self) -> bool:
        return self.is_active and not self.is_draft

    def trigger_node(self, kind: Optional[NodeType] = None) -> Optional[WorkflowNode]:
        """First trigger node, optionally of a specific kind."""
        for node in self.nodes:
            if kind is None and node.is_trigger:
                return node
            if kind is not None and node.node_type == kind:
                return node
        return None

    def find_node(self, node_id: str) -> Optional[WorkflowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def outgoing(self, node_id: str) -> List[WorkflowEdge]:
        """Outgoing edges in declaration order."""
        return [e for e in self.edges if e.source == node_id]


class ExecutionContext(Mapping[str, Any]):
    """
    Immutable key/value bag threaded through node execution.

    Well-known keys: conversation_id, priority, status, category,
    department, channel, event, policy_id, ticket, changes,
    percent_remaining, time_remaining. Nodes add more (e.g. sla_metrics)
    through `with_updates`, which returns a new context.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        merged = dict(values or {})
        merged.update(kwargs)
        self._values = MappingProxyType(merged)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ExecutionContext({dict(self._values)!r})"

    def with_updates(self, updates: Optional[Mapping[str, Any]]) -> "ExecutionContext":
        if not updates:
            return self
        merged = dict(self._values)
        merged.update(updates)
        return ExecutionContext(merged)

    def lookup(self, key: str) -> Any:
        """Context value, falling back to the ticket snapshot when unset."""
        value = self._values.get(key)
        if value is None or value == "":
            ticket = self._values.get("ticket")
            if isinstance(ticket, Mapping):
                return ticket.get(key)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    @property
    def conversation_id(self) -> Optional[str]:
        return self._values.get("conversation_id")

    @property
    def priority(self) -> Optional[str]:
        return self._values.get("priority")

    @property
    def status(self) -> Optional[str]:
        return self._values.get("status")

    @property
    def policy_id(self) -> Optional[str]:
        return self._values.get("policy_id")

    @property
    def event(self) -> Optional[str]:
        return self._values.get("event")


@dataclass
class NodeResult:
    """
    Outcome of executing one node.

    `updates` are merged into the context passed to the node's successors.
    `condition` is set by condition nodes only.
    """

    node_id: str
    node_type: str
    success: bool = True
    stop: bool = False
    condition: Optional[bool] = None
    message: Optional[str] = None
    error: Optional[str] = None
    updates: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def halts(self) -> bool:
        return not self.success or self.stop

    def to_dict(self) -> dict:
        result = {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "success": self.success,
        }
        if self.stop:
            result["stop"] = True
        if self.condition is not None:
            result["condition"] = self.condition
        if self.message:
            result["message"] = self.message
        if self.error:
            result["error"] = self.error
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class ExecutionResult:
    """Outcome of one workflow execution."""

    workflow_id: Optional[str]
    success: bool
    executed: bool
    message: Optional[str] = None
    error: Optional[str] = None
    trace: List[str] = field(default_factory=list)
    node_results: List[NodeResult] = field(default_factory=list)
    correlation_id: Optional[str] = None

    def failed_nodes(self) -> List[NodeResult]:
        return [r for r in self.node_results if not r.success]

    def to_dict(self) -> dict:
        result = {
            "success": self.success,
            "executed": self.executed,
            "workflow_id": self.workflow_id,
            "trace": list(self.trace),
        }
        if self.message:
            result["message"] = self.message
        if self.error:
            result["error"] = self.error
        return result
