"""
Tests for SLA policy resolution and policy targets.
"""

from datetime import timedelta

import pytest

from slaflow.core import RepositoryException
from slaflow.sla.application import PolicyResolver
from slaflow.sla.infrastructure import InMemoryPolicyRepository

from conftest import START, make_policy


def _scoped(policy_id: str, days_ago: int, **overrides):
    return make_policy(
        id=policy_id,
        name=policy_id,
        is_default=False,
        created_at=START - timedelta(days=days_ago),
        **overrides
    )


class TestPolicyResolver:
    """Tests for PolicyResolver.resolve."""

    @pytest.mark.asyncio
    async def test_department_policy_wins_over_default(self):
        """A matching scoped policy is preferred to the default."""
        repo = InMemoryPolicyRepository([
            make_policy(id="default"),
            _scoped("vip", 5, department_ids=["vip"]),
        ])
        resolver = PolicyResolver(repo)

        policy = await resolver.resolve("vip", None)

        assert policy.id == "vip"

    @pytest.mark.asyncio
    async def test_falls_back_to_default(self):
        """Tickets outside every scope get the default policy."""
        repo = InMemoryPolicyRepository([
            make_policy(id="default"),
            _scoped("vip", 5, department_ids=["vip"]),
        ])
        resolver = PolicyResolver(repo)

        policy = await resolver.resolve("support", "billing")

        assert policy.id == "default"

    @pytest.mark.asyncio
    async def test_first_created_match_wins(self):
        """Among several matches, the earliest created policy is chosen."""
        repo = InMemoryPolicyRepository([
            make_policy(id="default"),
            _scoped("older", 10, category_ids=["billing"]),
            _scoped("newer", 1, category_ids=["billing"]),
        ])
        resolver = PolicyResolver(repo)

        policy = await resolver.resolve(None, "billing")

        assert policy.id == "older"

    @pytest.mark.asyncio
    async def test_department_and_category_must_both_match(self):
        """Both scope filters must match when both are set."""
        repo = InMemoryPolicyRepository([
            make_policy(id="default"),
            _scoped("narrow", 5, department_ids=["vip"], category_ids=["outage"]),
        ])
        resolver = PolicyResolver(repo)

        assert (await resolver.resolve("vip", "billing")).id == "default"
        assert (await resolver.resolve("vip", "outage")).id == "narrow"

    @pytest.mark.asyncio
    async def test_inactive_policies_are_ignored(self):
        repo = InMemoryPolicyRepository([
            make_policy(id="default"),
            _scoped("vip", 5, department_ids=["vip"], is_active=False),
        ])
        resolver = PolicyResolver(repo)

        assert (await resolver.resolve("vip", None)).id == "default"

    @pytest.mark.asyncio
    async def test_no_policy_returns_none(self):
        """Without a default or a match, nothing applies."""
        repo = InMemoryPolicyRepository([_scoped("vip", 5, department_ids=["vip"])])
        resolver = PolicyResolver(repo)

        assert await resolver.resolve("support", None) is None

    @pytest.mark.asyncio
    async def test_unscoped_non_default_policy_matches_everything(self):
        repo = InMemoryPolicyRepository([
            make_policy(id="default"),
            _scoped("catch-all", 5),
        ])
        resolver = PolicyResolver(repo)

        assert (await resolver.resolve("anything", "else")).id == "catch-all"


class TestPolicyTargets:
    """Tests for SLAPolicy target lookups."""

    def test_targets_by_priority(self):
        policy = make_policy()

        assert policy.response_time_for("urgent") == 15
        assert policy.resolution_time_for("low") == 2880

    def test_priority_is_case_insensitive(self):
        policy = make_policy()

        assert policy.response_time_for("HIGH") == 60
        assert policy.response_time_for(" Medium ") == 240

    def test_unknown_priority_has_no_target(self):
        policy = make_policy()

        assert policy.response_time_for("critical") is None
        assert policy.resolution_time_for(None) is None

    def test_zero_target_means_not_configured(self):
        policy = make_policy(low_response_time=0)

        assert policy.response_time_for("low") is None

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            make_policy(escalation_level1=0)


class TestSingleDefault:
    """Only one default policy may exist."""

    def test_second_default_rejected_at_construction(self):
        with pytest.raises(RepositoryException):
            InMemoryPolicyRepository([make_policy(id="a"), make_policy(id="b")])

    @pytest.mark.asyncio
    async def test_second_default_rejected_on_save(self):
        repo = InMemoryPolicyRepository([make_policy(id="a")])

        with pytest.raises(RepositoryException):
            await repo.save(make_policy(id="b"))

    @pytest.mark.asyncio
    async def test_default_can_be_replaced_in_place(self):
        repo = InMemoryPolicyRepository([make_policy(id="a")])

        await repo.save(make_policy(id="a", name="Renamed"))

        assert (await repo.get_by_id("a")).name == "Renamed"
