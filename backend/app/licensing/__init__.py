"""License tiers, resource limits and feature flag tables."""

from .catalog import (
    DEFAULT_CONFIGURATION,
    FEATURE_MATRIX,
    PLAN_CATALOG,
    LicenseConfiguration,
    PlanDefinition,
    get_plan_definition,
    load_configuration_file,
    validate_monotonic_limits,
)
from .models import (
    UNLIMITED,
    ConfigurationError,
    Feature,
    FeatureFlags,
    LicenseTier,
    Limit,
    ResourceLimits,
    ResourceType,
    UnknownGateKeyError,
    UsageSnapshot,
)

__all__ = [
    "DEFAULT_CONFIGURATION",
    "FEATURE_MATRIX",
    "PLAN_CATALOG",
    "LicenseConfiguration",
    "PlanDefinition",
    "get_plan_definition",
    "load_configuration_file",
    "validate_monotonic_limits",
    "UNLIMITED",
    "ConfigurationError",
    "Feature",
    "FeatureFlags",
    "LicenseTier",
    "Limit",
    "ResourceLimits",
    "ResourceType",
    "UnknownGateKeyError",
    "UsageSnapshot",
]
