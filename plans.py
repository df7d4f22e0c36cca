"""
plans.py — subscription tiers and the features each one unlocks.

The registry is total: any tier name it doesn't know (including "" and None)
resolves to the free plan, so a typo in a tier header can never grant access.

Feature matrix:
  tier    domains bulk analytics password qr  agents api
  free      -      -      -        -      -     -     -
  basic     ✓      ✓      ✓        ✓      ✓     -     ✓
  pro       ✓      ✓      ✓        ✓      ✓     ✓     ✓
  teams     ✓      ✓      ✓        ✓      ✓     ✓     ✓
  ultra     ✓      ✓      ✓        ✓      ✓     ✓     ✓
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional


class Feature(str, enum.Enum):
    CUSTOM_DOMAINS      = "customDomains"
    BULK_CREATION       = "bulkCreation"
    ANALYTICS           = "analytics"
    PASSWORD_PROTECTION = "passwordProtection"
    QR_CODES            = "qrCodes"
    AI_AGENT_DEPLOYMENT = "aiAgentDeployment"
    API_ACCESS          = "apiAccess"


TIERS = ("free", "basic", "pro", "teams", "ultra")
DEFAULT_TIER = "free"


class PlanRestriction(Exception):
    """The caller's tier does not include the requested feature."""

    def __init__(self, tier: str, feature: Feature):
        self.tier = tier
        self.feature = feature
        super().__init__(f"Feature {feature.value} is not available on the {tier} plan")


@dataclass(frozen=True)
class UserPlan:
    tier: str
    features: Mapping[Feature, bool]

    def allows(self, feature: Feature) -> bool:
        return self.features[feature]


def _plan(tier: str, *, enabled: frozenset[Feature]) -> UserPlan:
    # Every feature gets an explicit flag so lookups never miss
    flags = {f: (f in enabled) for f in Feature}
    return UserPlan(tier=tier, features=MappingProxyType(flags))


_PAID = frozenset(Feature) - {Feature.AI_AGENT_DEPLOYMENT}

DEFAULT_PLANS: Mapping[str, UserPlan] = MappingProxyType({
    "free":  _plan("free",  enabled=frozenset()),
    "basic": _plan("basic", enabled=_PAID),
    "pro":   _plan("pro",   enabled=frozenset(Feature)),
    "teams": _plan("teams", enabled=frozenset(Feature)),
    "ultra": _plan("ultra", enabled=frozenset(Feature)),
})


class PlanRegistry:
    """Immutable tier → UserPlan table, built once at startup."""

    def __init__(self, plans: Mapping[str, UserPlan] = DEFAULT_PLANS):
        if DEFAULT_TIER not in plans:
            raise ValueError(f"Plan table must define the '{DEFAULT_TIER}' tier")
        self._plans: Mapping[str, UserPlan] = MappingProxyType(dict(plans))

    def get_plan(self, tier: Optional[str]) -> UserPlan:
        return self._plans.get(tier or DEFAULT_TIER) or self._plans[DEFAULT_TIER]

    def can_use_feature(self, tier: Optional[str], feature: Feature) -> bool:
        return self.get_plan(tier).allows(feature)

    def require(self, tier: Optional[str], feature: Feature) -> None:
        """Raise PlanRestriction unless tier includes feature."""
        if not self.can_use_feature(tier, feature):
            raise PlanRestriction(self.get_plan(tier).tier, feature)


_default_registry = PlanRegistry()


def get_plan(tier: Optional[str]) -> UserPlan:
    return _default_registry.get_plan(tier)


def can_use_feature(tier: Optional[str], feature: Feature) -> bool:
    return _default_registry.can_use_feature(tier, feature)
