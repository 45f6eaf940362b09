"""Static plan catalog mapping license tiers to limits and features."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from .models import (
    ConfigurationError,
    Feature,
    FeatureFlags,
    LicenseTier,
    Limit,
    ResourceLimits,
    ResourceType,
    UNLIMITED,
)


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a license tier and its entitlement mapping."""

    tier: LicenseTier
    display_name: str
    limits: ResourceLimits
    features: FeatureFlags

    def to_dict(self) -> Dict[str, object]:
        return {
            "licenseType": self.tier.label,
            "displayName": self.display_name,
            "limits": self.limits.to_dict(),
            "features": self.features.to_dict(),
        }


class LicenseConfiguration:
    """Immutable tier table injected into gate evaluation.

    Build it once at process start and pass it around; alternate tables (for
    tests or custom deployments) are just other instances.
    """

    def __init__(self, plans: Mapping[LicenseTier, PlanDefinition], *, validate: bool = True) -> None:
        for tier, plan in plans.items():
            if plan.tier is not tier:
                raise ConfigurationError(f"Plan registered under {tier.value} describes {plan.tier.value}")
        self._plans: Mapping[LicenseTier, PlanDefinition] = MappingProxyType(dict(plans))
        if validate:
            validate_monotonic_limits(self)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> "LicenseConfiguration":
        """Build a configuration from a JSON-style mapping.

        Expected shape::

            {"tiers": {"starter": {"displayName": "...", "limits": {...},
                                   "features": {...}, "defaultFeature": false}}}
        """

        tiers = raw.get("tiers")
        if not isinstance(tiers, Mapping) or not tiers:
            raise ConfigurationError("configuration must define a non-empty 'tiers' mapping")

        plans: Dict[LicenseTier, PlanDefinition] = {}
        for key, entry in tiers.items():
            try:
                tier = LicenseTier.parse(key)
            except LookupError as exc:
                raise ConfigurationError(f"Unknown tier in configuration: {key!r}") from exc
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"Tier {key!r} must map to an object")
            plans[tier] = PlanDefinition(
                tier=tier,
                display_name=str(entry.get("displayName") or tier.value.title()),
                limits=ResourceLimits.from_mapping(entry.get("limits") or {}),
                features=FeatureFlags.from_mapping(
                    entry.get("features") or {},
                    default=bool(entry.get("defaultFeature", False)),
                ),
            )
        return cls(plans)

    def __contains__(self, tier: object) -> bool:
        return tier in self._plans

    def __iter__(self) -> Iterator[PlanDefinition]:
        for tier in LicenseTier:
            plan = self._plans.get(tier)
            if plan is not None:
                yield plan

    @property
    def tiers(self) -> Tuple[LicenseTier, ...]:
        return tuple(plan.tier for plan in self)

    def plan_for(self, tier: LicenseTier) -> Optional[PlanDefinition]:
        return self._plans.get(tier)

    def limits_for(self, tier: LicenseTier) -> Optional[ResourceLimits]:
        plan = self._plans.get(tier)
        return plan.limits if plan else None

    def features_for(self, tier: LicenseTier) -> Optional[FeatureFlags]:
        plan = self._plans.get(tier)
        return plan.features if plan else None

    def feature_matrix(self) -> Dict[Feature, Tuple[LicenseTier, ...]]:
        """Return, per feature, the tiers in which it is enabled."""

        return {
            feature: tuple(plan.tier for plan in self if plan.features.is_enabled(feature))
            for feature in Feature
        }

    def to_dict(self) -> Dict[str, object]:
        return {"tiers": [plan.to_dict() for plan in self]}


def validate_monotonic_limits(configuration: LicenseConfiguration) -> None:
    """Ensure higher tiers never grant less than lower tiers."""

    plans = list(configuration)
    for lower, higher in zip(plans, plans[1:]):
        for resource in ResourceType:
            if not higher.limits[resource].allows(lower.limits[resource]):
                raise ConfigurationError(
                    f"{resource.value} limit decreases from {lower.tier.label} "
                    f"({lower.limits[resource].to_raw()}) to {higher.tier.label} "
                    f"({higher.limits[resource].to_raw()})"
                )


def load_configuration_file(path: Union[str, Path]) -> LicenseConfiguration:
    """Load a :class:`LicenseConfiguration` from a JSON file."""

    file_path = Path(path)
    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {file_path}: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{file_path} must contain a JSON object")
    return LicenseConfiguration.from_mapping(raw)


STARTER_LIMITS = ResourceLimits(
    users=Limit.finite(5),
    incidents=Limit.finite(100),
    assets=Limit.finite(500),
    runbooks=Limit.finite(50),
    templates=Limit.finite(100),
    storage=Limit.finite(1024),
    api_rate_limit=Limit.finite(1000),
)

PROFESSIONAL_LIMITS = ResourceLimits(
    users=Limit.finite(25),
    incidents=Limit.finite(1000),
    assets=Limit.finite(5000),
    runbooks=Limit.finite(500),
    templates=Limit.finite(1000),
    storage=Limit.finite(10240),
    api_rate_limit=Limit.finite(10000),
)

ENTERPRISE_LIMITS = ResourceLimits(
    users=UNLIMITED,
    incidents=UNLIMITED,
    assets=UNLIMITED,
    runbooks=UNLIMITED,
    templates=UNLIMITED,
    storage=UNLIMITED,
    api_rate_limit=UNLIMITED,
)

STARTER_FEATURES = FeatureFlags(
    enabled={Feature.API_ACCESS: True},
    default=False,
)

PROFESSIONAL_FEATURES = FeatureFlags(
    enabled={
        Feature.API_ACCESS: True,
        Feature.CUSTOM_DOMAINS: True,
        Feature.ADVANCED_REPORTING: True,
        Feature.AUDIT_LOGS: True,
        Feature.PRIORITY_SUPPORT: True,
        Feature.BULK_OPERATIONS: True,
    },
    default=False,
)

ENTERPRISE_FEATURES = FeatureFlags(default=True)

PLAN_CATALOG: Mapping[LicenseTier, PlanDefinition] = MappingProxyType(
    {
        LicenseTier.STARTER: PlanDefinition(
            tier=LicenseTier.STARTER,
            display_name="Starter",
            limits=STARTER_LIMITS,
            features=STARTER_FEATURES,
        ),
        LicenseTier.PROFESSIONAL: PlanDefinition(
            tier=LicenseTier.PROFESSIONAL,
            display_name="Professional",
            limits=PROFESSIONAL_LIMITS,
            features=PROFESSIONAL_FEATURES,
        ),
        LicenseTier.ENTERPRISE: PlanDefinition(
            tier=LicenseTier.ENTERPRISE,
            display_name="Enterprise",
            limits=ENTERPRISE_LIMITS,
            features=ENTERPRISE_FEATURES,
        ),
    }
)

DEFAULT_CONFIGURATION = LicenseConfiguration(PLAN_CATALOG)

FEATURE_MATRIX: Mapping[Feature, Tuple[LicenseTier, ...]] = MappingProxyType(
    DEFAULT_CONFIGURATION.feature_matrix()
)


def get_plan_definition(tier: LicenseTier) -> PlanDefinition:
    """Return a plan definition from the default catalog, raising if unsupported."""

    try:
        return PLAN_CATALOG[tier]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown license tier: {tier}") from exc
