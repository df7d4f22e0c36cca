"""
Tests for plans.py.

Covers:
  - the feature matrix for every known tier
  - unknown / empty / None tiers behave exactly like free
  - require() raises PlanRestriction
  - plans are read-only
"""
from __future__ import annotations

import pytest

import plans
from plans import DEFAULT_PLANS, Feature, PlanRegistry, PlanRestriction, UserPlan


@pytest.fixture
def registry() -> PlanRegistry:
    return PlanRegistry()


class TestMatrix:
    def test_free_has_nothing(self, registry):
        assert not any(registry.can_use_feature("free", f) for f in Feature)

    def test_basic_has_everything_but_agents(self, registry):
        for f in Feature:
            expected = f is not Feature.AI_AGENT_DEPLOYMENT
            assert registry.can_use_feature("basic", f) is expected

    @pytest.mark.parametrize("tier", ["pro", "teams", "ultra"])
    def test_paid_tiers_have_everything(self, registry, tier):
        assert all(registry.can_use_feature(tier, f) for f in Feature)

    def test_every_plan_defines_every_feature(self):
        for plan in DEFAULT_PLANS.values():
            assert set(plan.features) == set(Feature)

    def test_get_plan_returns_matching_tier(self, registry):
        for tier in plans.TIERS:
            assert registry.get_plan(tier).tier == tier


class TestUnknownTiers:
    @pytest.mark.parametrize("tier", ["", None, "enterprise", "PRO", "free ", "admin"])
    def test_unknown_tier_matches_free_on_every_feature(self, registry, tier):
        for f in Feature:
            assert registry.can_use_feature(tier, f) == registry.can_use_feature("free", f)

    def test_unknown_tier_resolves_to_free_plan(self, registry):
        assert registry.get_plan("platinum") is registry.get_plan("free")


class TestRequire:
    def test_allowed_feature_passes(self, registry):
        registry.require("pro", Feature.AI_AGENT_DEPLOYMENT)

    def test_denied_feature_raises(self, registry):
        with pytest.raises(PlanRestriction) as exc_info:
            registry.require("basic", Feature.AI_AGENT_DEPLOYMENT)
        assert exc_info.value.tier == "basic"
        assert exc_info.value.feature is Feature.AI_AGENT_DEPLOYMENT

    def test_unknown_tier_reported_as_free(self, registry):
        with pytest.raises(PlanRestriction) as exc_info:
            registry.require("bogus", Feature.ANALYTICS)
        assert exc_info.value.tier == "free"


class TestImmutability:
    def test_features_are_read_only(self):
        plan = DEFAULT_PLANS["free"]
        with pytest.raises(TypeError):
            plan.features[Feature.ANALYTICS] = True

    def test_registry_copies_its_table(self):
        table = dict(DEFAULT_PLANS)
        registry = PlanRegistry(table)
        table["free"] = DEFAULT_PLANS["ultra"]
        assert not registry.can_use_feature("free", Feature.ANALYTICS)

    def test_registry_requires_free_tier(self):
        with pytest.raises(ValueError):
            PlanRegistry({"pro": DEFAULT_PLANS["pro"]})


class TestModuleHelpers:
    def test_can_use_feature(self):
        assert plans.can_use_feature("pro", Feature.QR_CODES) is True
        assert plans.can_use_feature("nobody", Feature.QR_CODES) is False

    def test_custom_plan_table(self):
        custom = {
            "free": DEFAULT_PLANS["free"],
            "beta": UserPlan("beta", {f: f is Feature.API_ACCESS for f in Feature}),
        }
        registry = PlanRegistry(custom)
        assert registry.can_use_feature("beta", Feature.API_ACCESS)
        assert not registry.can_use_feature("beta", Feature.ANALYTICS)
        assert registry.get_plan("gamma").tier == "free"
