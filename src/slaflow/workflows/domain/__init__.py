"""
Workflow Domain Layer
=====================

Domain layer for workflow graphs.

Contains:
- Entities: Workflow, WorkflowNode, WorkflowEdge, ExecutionContext, results
- Value Objects: ConditionEvaluator and node helper functions

This layer is framework-agnostic and contains pure business logic.
"""

from slaflow.workflows.domain.entities import (
    NodeType,
    TRIGGER_NODE_TYPES,
    WorkflowNode,
    WorkflowEdge,
    Workflow,
    ExecutionContext,
    NodeResult,
    ExecutionResult,
)
from slaflow.workflows.domain.value_objects import (
    ConditionOperator,
    ConditionEvaluator,
    render_template,
    convert_to_minutes,
    config_value,
)

__all__ = [
    "NodeType",
    "TRIGGER_NODE_TYPES",
    "WorkflowNode",
    "WorkflowEdge",
    "Workflow",
    "ExecutionContext",
    "NodeResult",
    "ExecutionResult",
    "ConditionOperator",
    "ConditionEvaluator",
    "render_template",
    "convert_to_minutes",
    "config_value",
]
