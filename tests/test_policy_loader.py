"""
Tests for the YAML policy seed loader and watcher reload.
"""

from pathlib import Path

import pytest

from slaflow.core import ConfigurationException
from slaflow.sla.infrastructure import (
    InMemoryPolicyRepository, PolicyFileLoader, PolicyFileWatcher, load_policies, DEFAULT_POLICIES
)

POLICY_YAML = """
policies:
  - id: vip
    name: VIP SLA
    department_ids: [vip]
    targets:
      High: {response: 30, resolution: 240}
    escalation_level1: 60
    escalation_level2: 90
  - id: standard
    name: Standard SLA
    is_default: true
    use_business_hours: true
    timezone: Europe/Berlin
    business_hours:
      monday: "09:00-17:00"
    holidays: ["2026-12-25"]
    targets:
      medium: {response: 240, resolution: 1440}
"""


@pytest.fixture
def policy_file(tmp_path: Path) -> Path:
    path = tmp_path / "sla_policies.yaml"
    path.write_text(POLICY_YAML)
    return path


class TestPolicyFileLoader:
    """Tests for PolicyFileLoader.parse and load_into."""

    def test_parse(self, policy_file):
        policies = PolicyFileLoader(policy_file).parse()

        by_id = {p.id: p for p in policies}
        assert set(by_id) == {"vip", "standard"}
        assert by_id["vip"].response_time_for("high") == 30
        assert by_id["vip"].department_ids == ["vip"]
        assert by_id["vip"].escalation_level1 == 60
        assert by_id["standard"].is_default is True
        assert by_id["standard"].timezone == "Europe/Berlin"
        assert by_id["standard"].response_time_for("low") is None

    def test_missing_file_uses_defaults(self, tmp_path):
        policies = PolicyFileLoader(tmp_path / "absent.yaml").parse()

        assert [p.id for p in policies] == [p["id"] for p in DEFAULT_POLICIES]
        assert sum(1 for p in policies if p.is_default) == 1

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("policies: [unclosed")

        with pytest.raises(ConfigurationException):
            PolicyFileLoader(path).parse()

    def test_unknown_priority_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "policies:\n"
            "  - id: x\n"
            "    name: X\n"
            "    targets:\n"
            "      critical: {response: 5, resolution: 10}\n"
        )

        with pytest.raises(ConfigurationException) as exc_info:
            PolicyFileLoader(path).parse()
        assert exc_info.value.details["source"] == str(path)

    @pytest.mark.asyncio
    async def test_load_into_repository(self, policy_file):
        repo = InMemoryPolicyRepository()

        await PolicyFileLoader(policy_file).load_into(repo)

        assert (await repo.get_by_id("standard")).is_default is True
        assert len(await repo.list_active()) == 2


class TestLoadPolicies:
    """Tests for load_policies validation."""

    def test_two_defaults_rejected(self):
        data = {"policies": [
            {"id": "a", "name": "A", "is_default": True},
            {"id": "b", "name": "B", "is_default": True},
        ]}

        with pytest.raises(ConfigurationException):
            load_policies(data)

    def test_thresholds_must_be_ordered(self):
        data = {"policies": [
            {"id": "a", "name": "A", "escalation_level1": 95, "escalation_level2": 80},
        ]}

        with pytest.raises(ConfigurationException):
            load_policies(data)

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationException):
            load_policies(["not", "a", "mapping"])


class TestPolicyFileWatcher:
    """Tests for reloads triggered by file changes."""

    @pytest.mark.asyncio
    async def test_reload_passes_policies_to_callback(self, policy_file):
        received = []

        async def on_reload(policies):
            received.append([p.id for p in policies])

        watcher = PolicyFileWatcher(PolicyFileLoader(policy_file), on_reload)

        assert await watcher.reload() is True
        assert received == [["vip", "standard"]]

    @pytest.mark.asyncio
    async def test_invalid_file_keeps_previous_policies(self, policy_file):
        received = []

        async def on_reload(policies):
            received.append(policies)

        watcher = PolicyFileWatcher(PolicyFileLoader(policy_file), on_reload)
        policy_file.write_text("policies: {not: a list}")

        assert await watcher.reload() is False
        assert received == []

    @pytest.mark.asyncio
    async def test_watch_missing_file_is_noop(self, tmp_path):
        async def on_reload(policies):
            pass

        watcher = PolicyFileWatcher(PolicyFileLoader(tmp_path / "absent.yaml"), on_reload)

        watcher.start_watching()

        assert watcher.is_watching is False
        watcher.stop_watching()
