"""Service layer combining usage lookups with quota and feature gating."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from ..feature_gates import (
    FeatureRestrictedError,
    GateContext,
    QuotaDecision,
    QuotaReason,
    QuotaThresholds,
    RateLimitDecision,
    RateLimitExceededError,
    UsageSummary,
    UsageUnavailableError,
    evaluate_quota,
    evaluate_rate_limit,
    upgrade_url,
)
from ..feature_gates.enforcement import DEFAULT_UPGRADE_URL
from ..feature_gates.quota import DEFAULT_THRESHOLDS, raise_for_decision
from ..feature_gates.rate_limit import RATE_LIMIT_WINDOW
from ..licensing import (
    DEFAULT_CONFIGURATION,
    LicenseConfiguration,
    LicenseTier,
    PlanDefinition,
    ResourceType,
    UnknownGateKeyError,
    UsageSnapshot,
)
from .models import COUNTER_RESOURCES, ApiUsageWindow, Organization, OrganizationNotFoundError, UsageFetchError

logger = logging.getLogger("quota")


class UsageRepository(Protocol):
    """Data access required to evaluate quotas for an organization."""

    def get_organization(self, organization_id: int) -> Optional[Organization]:
        ...

    def get_usage(self, organization_id: int) -> UsageSnapshot:
        ...

    def reserve_counter(
        self,
        organization_id: int,
        resource: ResourceType,
        amount: int,
        limit: Optional[int],
    ) -> Optional[int]:
        ...

    def consume_api_call(
        self,
        organization_id: int,
        limit: Optional[int],
        window: timedelta,
    ) -> ApiUsageWindow:
        ...

    def get_api_window(self, organization_id: int) -> ApiUsageWindow:
        ...


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class QuotaService:
    """Fetches tier and usage for an organization and applies the gate.

    Writes fail closed when usage cannot be read; read-only summaries fail
    open. Row-counted resources are check-then-act: two concurrent creates
    can both pass the check. Counter-backed resources (users, storage) can use
    :meth:`reserve`, which is atomic.
    """

    repository: UsageRepository
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION
    thresholds: QuotaThresholds = DEFAULT_THRESHOLDS
    strict: bool = True
    upgrade_base_url: str = DEFAULT_UPGRADE_URL
    clock: Optional[Callable[[], datetime]] = None

    def get_organization(self, organization_id: int) -> Organization:
        organization = self.repository.get_organization(organization_id)
        if organization is None:
            raise OrganizationNotFoundError(organization_id)
        return organization

    def resolve_tier(self, organization: Organization) -> Optional[LicenseTier]:
        """Return the organization's tier, or None when the stored value is unknown.

        Unknown tiers raise :class:`UnknownGateKeyError` when ``strict``.
        """

        tier = organization.license_tier
        if tier is None:
            if self.strict:
                raise UnknownGateKeyError("license tier", organization.license_type)
            logger.error(
                "Organization %s has unknown license tier %r; gating fails closed",
                organization.id,
                organization.license_type,
            )
        return tier

    def get_plan(self, organization_id: int) -> tuple[Organization, Optional[PlanDefinition]]:
        organization = self.get_organization(organization_id)
        tier = self.resolve_tier(organization)
        return organization, (self.configuration.plan_for(tier) if tier is not None else None)

    def fetch_usage(self, organization_id: int) -> Optional[UsageSnapshot]:
        """Return fresh usage, or None when the usage source is unavailable."""

        try:
            return self.repository.get_usage(organization_id)
        except UsageFetchError as exc:
            logger.warning("Usage unavailable for organization %s: %s", organization_id, exc)
            return None

    def context(self, organization_id: int) -> GateContext:
        organization = self.get_organization(organization_id)
        return GateContext(
            tier=self.resolve_tier(organization),
            usage=self.fetch_usage(organization_id),
            configuration=self.configuration,
            thresholds=self.thresholds,
            strict=self.strict,
            base_url=self.upgrade_base_url,
        )

    def summary(self, organization_id: int) -> UsageSummary:
        return self.context(organization_id).summary()

    def check(self, organization_id: int, resource: object, *, requested: int = 1) -> QuotaDecision:
        """Evaluate a prospective write without raising."""

        context = self.context(organization_id)
        if context.usage is None:
            return QuotaDecision(
                allowed=False,
                resource=self._parse_resource(resource),
                current=0,
                limit=None,
                ratio=1.0,
                reason=QuotaReason.USAGE_UNAVAILABLE,
                requested=requested,
            )
        return context.check(resource, requested=requested)

    def enforce(self, organization_id: int, resource: object, *, requested: int = 1) -> QuotaDecision:
        """Raise unless ``requested`` more units of ``resource`` may be created."""

        context = self.context(organization_id)
        if context.usage is None:
            raise UsageUnavailableError(self._parse_resource(resource))
        return context.assert_quota(resource, requested=requested)

    def reserve(self, organization_id: int, resource: object, *, amount: int = 1) -> QuotaDecision:
        """Atomically claim capacity on a counter-backed resource."""

        resource_key = ResourceType.parse(resource)
        if resource_key not in COUNTER_RESOURCES:
            raise ValueError(f"{resource_key.value} does not support atomic reservation")
        if amount < 1:
            raise ValueError("amount must be >= 1")

        tier = self.resolve_tier(self.get_organization(organization_id))
        limits = self.configuration.limits_for(tier) if tier is not None else None
        if limits is None:
            decision = evaluate_quota(
                resource_key,
                0,
                tier,
                configuration=self.configuration,
                requested=amount,
                strict=self.strict,
            )
            raise_for_decision(decision, upgrade_url=self._upgrade_url(resource_key, tier))
            return decision

        limit = limits[resource_key]
        new_value = self.repository.reserve_counter(organization_id, resource_key, amount, limit.maximum)
        if new_value is None:
            usage = self.fetch_usage(organization_id)
            current = usage.count_for(resource_key) if usage is not None else limit.maximum or 0
            decision = evaluate_quota(
                resource_key,
                current,
                tier,
                configuration=self.configuration,
                requested=amount,
                strict=self.strict,
            )
            if decision.allowed:
                # The counter moved between the refused update and the re-read.
                decision = QuotaDecision(
                    allowed=False,
                    resource=resource_key,
                    current=current,
                    limit=decision.limit,
                    ratio=decision.ratio,
                    reason=QuotaReason.LIMIT_REACHED,
                    requested=amount,
                )
            raise_for_decision(decision, upgrade_url=self._upgrade_url(resource_key, tier))

        logger.debug(
            "Reserved %s %s for organization %s (now %s)",
            amount,
            resource_key.value,
            organization_id,
            new_value,
        )
        return evaluate_quota(
            resource_key,
            max((new_value or 0) - amount, 0),
            tier,
            configuration=self.configuration,
            requested=amount,
            strict=self.strict,
        )

    def release(self, organization_id: int, resource: object, *, amount: int = 1) -> None:
        """Give back capacity on a counter-backed resource after a delete."""

        resource_key = ResourceType.parse(resource)
        if resource_key not in COUNTER_RESOURCES:
            raise ValueError(f"{resource_key.value} does not support atomic reservation")
        self.repository.reserve_counter(organization_id, resource_key, -abs(amount), None)

    def has_feature(self, organization_id: int, feature: object) -> bool:
        return self.context_without_usage(organization_id).has(feature)

    def require_feature(self, organization_id: int, feature: object) -> None:
        try:
            self.context_without_usage(organization_id).require(feature)
        except FeatureRestrictedError:
            logger.info("Feature %s restricted for organization %s", feature, organization_id)
            raise

    def context_without_usage(self, organization_id: int) -> GateContext:
        organization = self.get_organization(organization_id)
        return GateContext(
            tier=self.resolve_tier(organization),
            configuration=self.configuration,
            thresholds=self.thresholds,
            strict=self.strict,
            base_url=self.upgrade_base_url,
        )

    def rate_limit_status(self, organization_id: int) -> RateLimitDecision:
        tier = self.resolve_tier(self.get_organization(organization_id))
        window = self.repository.get_api_window(organization_id)
        if tier is None:
            return RateLimitDecision(
                allowed=False,
                current=window.calls_this_hour,
                limit=0,
                reset_at=window.reset_at,
            )
        return evaluate_rate_limit(
            window.calls_this_hour,
            window.reset_at,
            tier,
            now=_current_time(self.clock),
            configuration=self.configuration,
        )

    def enforce_rate_limit(self, organization_id: int) -> RateLimitDecision:
        """Count one API call, raising once the hourly budget is spent."""

        tier = self.resolve_tier(self.get_organization(organization_id))
        limits = self.configuration.limits_for(tier) if tier is not None else None
        limit = limits.api_rate_limit.maximum if limits is not None else 0
        window = self.repository.consume_api_call(organization_id, limit, RATE_LIMIT_WINDOW)
        now = _current_time(self.clock)
        if not window.accepted:
            reset_at = window.reset_at or now + RATE_LIMIT_WINDOW
            logger.info(
                "Rate limit reached for organization %s (%s/%s)",
                organization_id,
                window.calls_this_hour,
                limit,
            )
            raise RateLimitExceededError(window.calls_this_hour, limit or 0, reset_at)
        return RateLimitDecision(
            allowed=True,
            current=window.calls_this_hour,
            limit=limit,
            reset_at=window.reset_at,
        )

    def _parse_resource(self, resource: object) -> Optional[ResourceType]:
        try:
            return ResourceType.parse(resource)
        except UnknownGateKeyError:
            if self.strict:
                raise
            logger.error("Unknown resource %r in quota check", resource)
            return None

    def _upgrade_url(self, resource: ResourceType, tier: Optional[LicenseTier]) -> str:
        target = tier.next_tier() if tier is not None else None
        return upgrade_url(resource.value, current=tier, target=target, base_url=self.upgrade_base_url)
