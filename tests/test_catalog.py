"""
Tests for workflow definitions: graph DTOs and the catalog service.
"""

import json

import pytest

from slaflow.core import ResourceNotFoundException, ValidationException
from slaflow.workflows.application import (
    WorkflowCatalogService, WorkflowDefinitionDTO, WorkflowGraphDTO
)
from slaflow.workflows.infrastructure import InMemoryWorkflowRepository

GRAPH = {
    "nodes": [
        {"id": "t", "type": "ticket_created"},
        {"id": "n", "type": "add_note", "config": {"note_content": "hello"}},
    ],
    "edges": [{"source": "t", "target": "n"}],
}


@pytest.fixture
def catalog() -> WorkflowCatalogService:
    return WorkflowCatalogService(InMemoryWorkflowRepository())


def definition(**overrides) -> WorkflowDefinitionDTO:
    values = dict(id="wf-1", name="Greeter", graph=GRAPH)
    values.update(overrides)
    return WorkflowDefinitionDTO(**values)


class TestWorkflowGraphDTO:
    """Tests for graph validation."""

    def test_malformed_json(self):
        with pytest.raises(ValidationException):
            WorkflowGraphDTO.from_json("{nodes: ")

    def test_edge_to_unknown_node(self):
        data = {"nodes": [{"id": "t", "type": "ticket_created"}], "edges": [{"source": "t", "target": "x"}]}

        with pytest.raises(ValidationException) as exc_info:
            WorkflowGraphDTO.from_data(data)
        assert exc_info.value.details["errors"]

    def test_duplicate_node_ids(self):
        data = {"nodes": [{"id": "t", "type": "a"}, {"id": "t", "type": "b"}]}

        with pytest.raises(ValidationException):
            WorkflowGraphDTO.from_data(data)

    def test_graph_must_be_object(self):
        with pytest.raises(ValidationException):
            WorkflowGraphDTO.from_json("[1, 2]")

    def test_empty_payload_is_empty_graph(self):
        graph = WorkflowGraphDTO.from_json("")

        assert graph.nodes == []
        assert graph.edges == []

    def test_serialized_form_is_flat(self):
        data = {
            "nodes": [
                {"id": "t", "type": "custom", "data": {"id": "ticket_created", "label": "Start"}},
                {"id": "c", "type": "condition_if"},
            ],
            "edges": [{"source": "t", "target": "c", "sourceHandle": "true"}],
        }

        payload = json.loads(WorkflowGraphDTO.from_data(data).to_json())

        assert payload["nodes"][0] == {"id": "t", "type": "ticket_created", "label": "Start", "config": {}}
        assert payload["edges"][0] == {"source": "t", "target": "c", "sourceHandle": "true"}


class TestWorkflowCatalogService:
    """Tests for registering and publishing workflows."""

    @pytest.mark.asyncio
    async def test_register_as_draft(self, catalog):
        workflow = await catalog.register(definition())

        assert workflow.is_draft is True
        assert workflow.is_executable is False
        assert [n.id for n in workflow.nodes] == ["t", "n"]

    @pytest.mark.asyncio
    async def test_publish_and_deactivate(self, catalog):
        await catalog.register(definition())

        published = await catalog.publish("wf-1")
        assert published.is_executable is True

        deactivated = await catalog.deactivate("wf-1")
        assert deactivated.is_executable is False

    @pytest.mark.asyncio
    async def test_reregister_keeps_creation_time(self, catalog):
        first = await catalog.register(definition())

        second = await catalog.register(definition(name="Greeter v2"))

        assert second.created_at == first.created_at
        assert second.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_and_export_graph(self, catalog):
        await catalog.register(definition())
        new_graph = {
            "nodes": [{"id": "t", "type": "ticket_updated", "config": {"watch_fields": ["status"]}}],
            "edges": [],
        }

        updated = await catalog.update_graph("wf-1", json.dumps(new_graph))
        exported = json.loads(await catalog.export_graph("wf-1"))

        assert [n.type for n in updated.nodes] == ["ticket_updated"]
        assert exported["nodes"][0]["config"] == {"watch_fields": ["status"]}

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, catalog):
        with pytest.raises(ResourceNotFoundException):
            await catalog.publish("missing")
