"""
Workflow Application Services
==============================

Repository interface for workflow definitions and the workflow catalog
service used to register, update and load graphs.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from slaflow.core import ResourceNotFoundException
from slaflow.workflows.domain import Workflow
from slaflow.workflows.application.dto import WorkflowDefinitionDTO, WorkflowGraphDTO
from slaflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class IWorkflowRepository(ABC):
    """Interface for workflow data access."""

    @abstractmethod
    async def get_by_id(self, workflow_id: str) -> Optional[Workflow]:
        """Get workflow by ID."""

    @abstractmethod
    async def list_executable(self) -> List[Workflow]:
        """Active, non-draft workflows in creation order."""

    @abstractmethod
    async def list_all(self) -> List[Workflow]:
        """All workflows in creation order."""

    @abstractmethod
    async def save(self, workflow: Workflow) -> Workflow:
        """Create or replace a workflow."""


class WorkflowCatalogService:
    """
    Registers workflow definitions and manages their draft/active state.
    """

    def __init__(self, workflow_repository: IWorkflowRepository):
        self._workflow_repo = workflow_repository

    async def register(self, definition: WorkflowDefinitionDTO) -> Workflow:
        """Create or replace a workflow from its definition."""
        workflow = definition.to_domain()
        existing = await self._workflow_repo.get_by_id(workflow.id)
        if existing is not None:
            workflow.created_at = existing.created_at
            workflow.updated_at = datetime.now(timezone.utc)
        await self._workflow_repo.save(workflow)

        logger.info(
            "Workflow registered",
            extra={
                "workflow_id": workflow.id,
                "nodes": len(workflow.nodes),
                "edges": len(workflow.edges),
                "executable": workflow.is_executable,
            }
        )
        return workflow

    async def update_graph(self, workflow_id: str, graph_json: str) -> Workflow:
        """Replace the graph of an existing workflow from its JSON form."""
        workflow = await self._require(workflow_id)
        graph = WorkflowGraphDTO.from_json(graph_json)
        workflow.nodes = graph.to_nodes()
        workflow.edges = graph.to_edges()
        workflow.updated_at = datetime.now(timezone.utc)
        return await self._workflow_repo.save(workflow)

    async def publish(self, workflow_id: str) -> Workflow:
        """Make a workflow executable (active, not draft)."""
        workflow = await self._require(workflow_id)
        workflow.is_active = True
        workflow.is_draft = False
        workflow.updated_at = datetime.now(timezone.utc)
        logger.info("Workflow published", extra={"workflow_id": workflow_id})
        return await self._workflow_repo.save(workflow)

    async def deactivate(self, workflow_id: str) -> Workflow:
        workflow = await self._require(workflow_id)
        workflow.is_active = False
        workflow.updated_at = datetime.now(timezone.utc)
        logger.info("Workflow deactivated", extra={"workflow_id": workflow_id})
        return await self._workflow_repo.save(workflow)

    async def export_graph(self, workflow_id: str) -> str:
        workflow = await self._require(workflow_id)
        return WorkflowGraphDTO.from_domain(workflow).to_json()

    async def _require(self, workflow_id: str) -> Workflow:
        workflow = await self._workflow_repo.get_by_id(workflow_id)
        if workflow is None:
            raise ResourceNotFoundException("Workflow", workflow_id)
        return workflow
