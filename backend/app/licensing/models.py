"""Domain models for license tiers, resource limits and feature flags."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UnknownGateKeyError(LookupError):
    """Raised when a tier, resource or feature identifier is not declared."""

    def __init__(self, kind: str, value: object) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"Unknown {kind}: {value!r}")


class ConfigurationError(ValueError):
    """Raised when a license configuration table is malformed."""


class LicenseTier(str, Enum):
    """Subscription levels, ordered from lowest to highest."""

    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value: object) -> "LicenseTier":
        """Resolve a tier from an enum member or a case-insensitive string."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for tier in cls:
                if tier.value == normalized:
                    return tier
        raise UnknownGateKeyError("license tier", value)

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @property
    def label(self) -> str:
        return self.name

    def next_tier(self) -> Optional["LicenseTier"]:
        """Return the tier directly above this one, or None at the top."""

        index = self.rank + 1
        if index >= len(_TIER_ORDER):
            return None
        return _TIER_ORDER[index]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LicenseTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, LicenseTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, LicenseTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, LicenseTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_ORDER = (LicenseTier.STARTER, LicenseTier.PROFESSIONAL, LicenseTier.ENTERPRISE)


class ResourceType(str, Enum):
    """Countable resources subject to per-tier quotas."""

    USERS = "users"
    INCIDENTS = "incidents"
    ASSETS = "assets"
    RUNBOOKS = "runbooks"
    TEMPLATES = "templates"
    STORAGE = "storage"

    @classmethod
    def parse(cls, value: object) -> "ResourceType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise UnknownGateKeyError("resource", value) from exc

    @property
    def limit_field(self) -> str:
        """Name of the camelCase limit key used by clients (``maxAssets``)."""

        if self is ResourceType.STORAGE:
            return "maxStorageMb"
        return f"max{self.value.capitalize()}"


class Feature(str, Enum):
    """Binary capabilities enabled per tier."""

    SSO = "sso"
    CUSTOM_DOMAINS = "customDomains"
    WHITELABELING = "whitelabeling"
    API_ACCESS = "apiAccess"
    ADVANCED_REPORTING = "advancedReporting"
    AUDIT_LOGS = "auditLogs"
    CUSTOM_INTEGRATIONS = "customIntegrations"
    PRIORITY_SUPPORT = "prioritySupport"
    UNLIMITED_USERS = "unlimitedUsers"
    BULK_OPERATIONS = "bulkOperations"

    @classmethod
    def parse(cls, value: object) -> "Feature":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise UnknownGateKeyError("feature", value) from exc


@dataclass(frozen=True)
class Limit:
    """A resource ceiling: either a finite maximum or unlimited."""

    maximum: Optional[int] = None

    def __post_init__(self) -> None:
        if self.maximum is not None and self.maximum < 0:
            raise ConfigurationError(f"limit must be >= 0, got {self.maximum}")

    @classmethod
    def finite(cls, maximum: int) -> "Limit":
        return cls(maximum=int(maximum))

    @classmethod
    def unlimited(cls) -> "Limit":
        return UNLIMITED

    @classmethod
    def coerce(cls, raw: object) -> "Limit":
        """Normalize a raw configuration value into a :class:`Limit`.

        ``None`` and ``-1`` both mean unlimited. Booleans and other negative
        numbers are rejected.
        """

        if isinstance(raw, Limit):
            return raw
        if raw is None:
            return UNLIMITED
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ConfigurationError(f"limit must be an integer or null, got {raw!r}")
        if raw == -1:
            return UNLIMITED
        return cls.finite(raw)

    @property
    def is_unlimited(self) -> bool:
        return self.maximum is None

    def allows(self, other: "Limit") -> bool:
        """Return whether this limit is at least as generous as ``other``."""

        if self.is_unlimited:
            return True
        if other.is_unlimited:
            return False
        return self.maximum >= other.maximum  # type: ignore[operator]

    def to_raw(self) -> Optional[int]:
        return self.maximum


UNLIMITED = Limit()


@dataclass(frozen=True)
class ResourceLimits:
    """Quota ceilings for one tier. Storage is expressed in MB."""

    users: Limit = UNLIMITED
    incidents: Limit = UNLIMITED
    assets: Limit = UNLIMITED
    runbooks: Limit = UNLIMITED
    templates: Limit = UNLIMITED
    storage: Limit = UNLIMITED
    api_rate_limit: Limit = UNLIMITED

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> "ResourceLimits":
        """Build limits from a mapping keyed by resource name.

        Absent keys are treated as unlimited, unknown keys are rejected.
        """

        allowed_keys = {resource.value for resource in ResourceType} | {"api_rate_limit"}
        unknown = set(raw) - allowed_keys
        if unknown:
            raise ConfigurationError(f"Unknown limit keys: {sorted(unknown)}")
        return cls(**{key: Limit.coerce(value) for key, value in raw.items()})

    def __getitem__(self, resource: ResourceType) -> Limit:
        return getattr(self, ResourceType.parse(resource).value)

    def to_dict(self) -> Dict[str, Optional[int]]:
        """Serialize using client-facing ``max*`` keys, null meaning unlimited."""

        payload: Dict[str, Optional[int]] = {
            resource.limit_field: self[resource].to_raw() for resource in ResourceType
        }
        payload["apiRateLimit"] = self.api_rate_limit.to_raw()
        return payload


@dataclass(frozen=True)
class FeatureFlags:
    """Feature enablement for one tier with a fallback default."""

    enabled: Mapping[Feature, bool] = field(default_factory=dict)
    default: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "enabled", MappingProxyType(dict(self.enabled)))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object], *, default: bool = False) -> "FeatureFlags":
        flags: Dict[Feature, bool] = {}
        for key, value in raw.items():
            try:
                feature = Feature(key)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown feature key: {key!r}") from exc
            if not isinstance(value, bool):
                raise ConfigurationError(f"Feature {key!r} must be a boolean, got {value!r}")
            flags[feature] = value
        return cls(enabled=flags, default=default)

    def is_enabled(self, feature: Feature) -> bool:
        return bool(self.enabled.get(feature, self.default))

    def to_dict(self) -> Dict[str, bool]:
        return {feature.value: self.is_enabled(feature) for feature in Feature}


class UsageSnapshot(BaseModel):
    """Current resource counts for one organization."""

    users: int = 0
    incidents: int = 0
    assets: int = 0
    runbooks: int = 0
    templates: int = 0
    storage_mb: int = Field(default=0, alias="storageMb")
    api_calls_this_hour: int = Field(default=0, alias="apiCallsThisHour")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator(
        "users",
        "incidents",
        "assets",
        "runbooks",
        "templates",
        "storage_mb",
        "api_calls_this_hour",
    )
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("usage counters must be >= 0")
        return value

    def count_for(self, resource: ResourceType) -> int:
        resource = ResourceType.parse(resource)
        if resource is ResourceType.STORAGE:
            return self.storage_mb
        return getattr(self, resource.value)
