"""Typed representations of organizations and their usage counters."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..licensing import LicenseTier, ResourceType, UnknownGateKeyError

# Resources tracked by a counter column on ``organization_limits`` rather than
# by counting rows; these support atomic reservation.
COUNTER_RESOURCES = frozenset({ResourceType.USERS, ResourceType.STORAGE})

_LEGACY_TIER_ALIASES = {"standard": LicenseTier.STARTER}


class UsageFetchError(RuntimeError):
    """Raised by repositories when current usage cannot be read."""


class OrganizationNotFoundError(LookupError):
    """Raised when no tenant exists for the requested id."""

    def __init__(self, organization_id: int) -> None:
        self.organization_id = organization_id
        super().__init__(f"Organization {organization_id} not found")


class Organization(BaseModel):
    """Tenant record carrying the subscription tier used for gating.

    ``license_type`` keeps the stored value as-is (normalized for case and
    legacy aliases) so that an unrecognized tier does not prevent loading the
    record; :attr:`license_tier` is None in that case.
    """

    id: int
    name: str
    license_type: str = Field(default=LicenseTier.STARTER.value, alias="licenseType")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("license_type", mode="before")
    @classmethod
    def _normalize_tier(cls, value: object) -> object:
        if value is None or value == "":
            return LicenseTier.STARTER.value
        if isinstance(value, LicenseTier):
            return value.value
        if isinstance(value, str):
            normalized = value.strip().lower()
            alias = _LEGACY_TIER_ALIASES.get(normalized)
            return alias.value if alias is not None else normalized
        return value

    @property
    def license_tier(self) -> Optional[LicenseTier]:
        try:
            return LicenseTier.parse(self.license_type)
        except UnknownGateKeyError:
            return None


class ApiUsageWindow(BaseModel):
    """State of an organization's hourly API counter after a consume attempt."""

    accepted: bool
    calls_this_hour: int = Field(alias="apiCallsThisHour")
    reset_at: Optional[datetime] = Field(default=None, alias="apiResetAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)
