"""
Workflow Infrastructure Layer
==============================

Persistence for workflow definitions.
"""

from slaflow.workflows.infrastructure.models import WorkflowModel
from slaflow.workflows.infrastructure.repositories import (
    SQLAlchemyWorkflowRepository,
    InMemoryWorkflowRepository,
)

__all__ = [
    "WorkflowModel",
    "SQLAlchemyWorkflowRepository",
    "InMemoryWorkflowRepository",
]
