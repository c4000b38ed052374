"""
Workflow Infrastructure Repositories
=====================================

SQLAlchemy and in-memory implementations of IWorkflowRepository.
"""

from copy import deepcopy
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slaflow.workflows.domain import Workflow
from slaflow.workflows.application import IWorkflowRepository, WorkflowGraphDTO
from slaflow.workflows.infrastructure.models import WorkflowModel


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(model: WorkflowModel) -> Workflow:
    graph = WorkflowGraphDTO.from_json(model.workflow_data)
    return Workflow(
        id=model.id,
        name=model.name,
        description=model.description,
        is_active=model.is_active,
        is_draft=model.is_draft,
        policy_id=model.policy_id,
        nodes=graph.to_nodes(),
        edges=graph.to_edges(),
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at)
    )


class SQLAlchemyWorkflowRepository(IWorkflowRepository):
    """
    SQLAlchemy implementation of workflow repository.

    Graphs are validated on load; a stored graph that no longer validates
    raises ValidationException.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, workflow_id: str) -> Optional[Workflow]:
        model = await self._session.get(WorkflowModel, workflow_id)
        return _to_domain(model) if model else None

    async def list_executable(self) -> List[Workflow]:
        stmt = (
            select(WorkflowModel)
            .where(WorkflowModel.is_active == True, WorkflowModel.is_draft == False)  # noqa: E712
            .order_by(WorkflowModel.created_at.asc(), WorkflowModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_domain(m) for m in result.scalars().all()]

    async def list_all(self) -> List[Workflow]:
        stmt = select(WorkflowModel).order_by(WorkflowModel.created_at.asc(), WorkflowModel.id.asc())
        result = await self._session.execute(stmt)
        return [_to_domain(m) for m in result.scalars().all()]

    async def save(self, workflow: Workflow) -> Workflow:
        """Insert or replace a workflow by ID."""
        model = await self._session.get(WorkflowModel, workflow.id)
        if model is None:
            model = WorkflowModel(id=workflow.id, created_at=workflow.created_at)
            self._session.add(model)

        model.name = workflow.name
        model.description = workflow.description
        model.is_active = workflow.is_active
        model.is_draft = workflow.is_draft
        model.policy_id = workflow.policy_id
        model.workflow_data = WorkflowGraphDTO.from_domain(workflow).to_json()
        model.updated_at = workflow.updated_at

        await self._session.flush()
        return workflow


class InMemoryWorkflowRepository(IWorkflowRepository):
    """Workflows kept in insertion order."""

    def __init__(self, workflows: Optional[List[Workflow]] = None):
        self._workflows: Dict[str, Workflow] = {}
        for workflow in workflows or []:
            self._workflows[workflow.id] = deepcopy(workflow)

    async def get_by_id(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return deepcopy(workflow) if workflow else None

    async def list_executable(self) -> List[Workflow]:
        return [deepcopy(w) for w in self._workflows.values() if w.is_executable]

    async def list_all(self) -> List[Workflow]:
        return [deepcopy(w) for w in self._workflows.values()]

    async def save(self, workflow: Workflow) -> Workflow:
        self._workflows[workflow.id] = deepcopy(workflow)
        return workflow
