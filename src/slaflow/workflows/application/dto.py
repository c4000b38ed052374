"""
Workflow Application DTOs
==========================

Pydantic models for the JSON form of workflow graphs.

The graph is stored and exchanged as `{"nodes": [...], "edges": [...]}`.
Nodes are accepted either flat (`{"id", "type", "config"}`) or in the
visual editor's shape (`{"id", "data": {"id": <type>, "label", "config"}}`)
and always serialized flat.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from slaflow.core import ValidationException
from slaflow.workflows.domain import Workflow, WorkflowNode, WorkflowEdge


class WorkflowNodeDTO(BaseModel):
    """Graph node."""
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="Node kind, e.g. condition_if")
    label: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = Field(None, description="Editor canvas position")

    @model_validator(mode="before")
    @classmethod
    def unwrap_editor_node(cls, values: Any) -> Any:
        """Flatten the editor's `data` envelope."""
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            data = values["data"]
            flat = {k: v for k, v in values.items() if k != "data"}
            # Top-level "type" is the editor's renderer name, not the node kind
            flat["type"] = data.get("id") or data.get("type") or flat.get("type")
            flat["label"] = data.get("label", flat.get("label"))
            flat["config"] = data.get("config") or flat.get("config") or {}
            return flat
        return values


class WorkflowEdgeDTO(BaseModel):
    """Graph edge."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    source_handle: Optional[str] = Field(None, alias="sourceHandle")


class WorkflowGraphDTO(BaseModel):
    """Nodes and edges of a workflow."""
    nodes: List[WorkflowNodeDTO] = Field(default_factory=list)
    edges: List[WorkflowEdgeDTO] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_references(self) -> "WorkflowGraphDTO":
        """Node ids are unique and every edge joins two known nodes."""
        ids = [n.id for n in self.nodes]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate node ids: {duplicates}")
        known = set(ids)
        for edge in self.edges:
            if edge.source not in known or edge.target not in known:
                raise ValueError(
                    f"edge {edge.source}->{edge.target} references an unknown node"
                )
        return self

    @classmethod
    def from_json(cls, payload: str) -> "WorkflowGraphDTO":
        """
        Parse a serialized graph.

        Raises:
            ValidationException: on malformed JSON or an invalid graph
        """
        try:
            data = json.loads(payload) if payload else {}
        except json.JSONDecodeError as e:
            raise ValidationException(f"Workflow graph is not valid JSON: {e}") from e
        return cls.from_data(data)

    @classmethod
    def from_data(cls, data: Any) -> "WorkflowGraphDTO":
        if not isinstance(data, dict):
            raise ValidationException("Workflow graph must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ValidationException(
                "Invalid workflow graph",
                {"errors": e.errors(include_url=False)}
            ) from e

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True, exclude_none=True))

    @classmethod
    def from_domain(cls, workflow: Workflow) -> "WorkflowGraphDTO":
        return cls(
            nodes=[
                WorkflowNodeDTO(id=n.id, type=n.type, label=n.label, config=dict(n.config))
                for n in workflow.nodes
            ],
            edges=[
                WorkflowEdgeDTO(id=e.id, source=e.source, target=e.target, source_handle=e.source_handle)
                for e in workflow.edges
            ],
        )

    def to_nodes(self) -> List[WorkflowNode]:
        return [
            WorkflowNode(id=n.id, type=n.type, label=n.label, config=dict(n.config))
            for n in self.nodes
        ]

    def to_edges(self) -> List[WorkflowEdge]:
        return [
            WorkflowEdge(source=e.source, target=e.target, source_handle=e.source_handle, id=e.id)
            for e in self.edges
        ]


class WorkflowDefinitionDTO(BaseModel):
    """A workflow with its metadata and graph."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: bool = False
    is_draft: bool = True
    policy_id: Optional[str] = None
    graph: WorkflowGraphDTO = Field(default_factory=WorkflowGraphDTO)

    def to_domain(self) -> Workflow:
        return Workflow(
            id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            is_draft=self.is_draft,
            policy_id=self.policy_id,
            nodes=self.graph.to_nodes(),
            edges=self.graph.to_edges(),
        )


class DispatchResult(BaseModel):
    """
    Workflows scheduled for one ticket event or time tick.

    success=False with an error when the event could not be dispatched
    (e.g. the workflow store was unavailable); executions scheduled before
    the failure keep running.
    """
    event: str
    success: bool = True
    error: Optional[str] = None
    conversation_ids: List[str] = Field(default_factory=list)
    scheduled_workflow_ids: List[str] = Field(default_factory=list)
    skipped_workflow_ids: List[str] = Field(default_factory=list)

    @property
    def scheduled(self) -> int:
        return len(self.scheduled_workflow_ids)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": f"{self.scheduled} workflow(s) scheduled for {self.event}",
            "error": self.error,
            "scheduled_workflow_ids": list(self.scheduled_workflow_ids),
        }
