"""
Workflow Application Layer
===========================

Application layer for workflow graphs.

Contains:
- Executor: walks a graph and runs node handlers
- Dispatcher: matches ticket events and ticks to workflows
- Catalog service and repository interface
- DTOs: JSON graph validation
"""

from slaflow.workflows.application.dto import (
    WorkflowNodeDTO,
    WorkflowEdgeDTO,
    WorkflowGraphDTO,
    WorkflowDefinitionDTO,
    DispatchResult,
)
from slaflow.workflows.application.services import (
    IWorkflowRepository,
    WorkflowCatalogService,
)
from slaflow.workflows.application.executor import (
    WorkflowExecutor,
    NODE_HANDLERS,
)
from slaflow.workflows.application.dispatcher import (
    WorkflowTriggerDispatcher,
    TriggerEvent,
)

__all__ = [
    # DTOs
    "WorkflowNodeDTO",
    "WorkflowEdgeDTO",
    "WorkflowGraphDTO",
    "WorkflowDefinitionDTO",
    "DispatchResult",
    # Services
    "IWorkflowRepository",
    "WorkflowCatalogService",
    "WorkflowExecutor",
    "NODE_HANDLERS",
    "WorkflowTriggerDispatcher",
    "TriggerEvent",
]
