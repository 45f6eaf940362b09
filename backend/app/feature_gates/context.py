"""Convenience wrapper bundling an organization's tier and usage for gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from ..licensing import (
    DEFAULT_CONFIGURATION,
    LicenseConfiguration,
    LicenseTier,
    ResourceLimits,
    ResourceType,
    UnknownGateKeyError,
    UsageSnapshot,
)
from .enforcement import DEFAULT_UPGRADE_URL, evaluate_feature, require_feature, upgrade_url
from .presentation import ControlState, QuotaBadge, UsageSummary, badge_for, control_state_for, summarize_usage
from .quota import DEFAULT_THRESHOLDS, QuotaDecision, QuotaThresholds, evaluate_quota, raise_for_decision


@dataclass(frozen=True)
class GateContext:
    """Facade exposing gating-centric helpers for one organization.

    ``tier`` is None for an organization whose stored tier is not recognized;
    with ``strict`` off every check then fails closed.
    """

    tier: Optional[LicenseTier]
    usage: Optional[UsageSnapshot] = None
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION
    thresholds: QuotaThresholds = DEFAULT_THRESHOLDS
    strict: bool = True
    base_url: str = DEFAULT_UPGRADE_URL

    @property
    def limits(self) -> Optional[ResourceLimits]:
        return self.configuration.limits_for(self.tier)

    @property
    def feature_flags(self) -> Dict[str, bool]:
        flags = self.configuration.features_for(self.tier)
        if flags is None:
            return {}
        return flags.to_dict()

    def has(self, feature: object) -> bool:
        """Return whether the feature is enabled for this tier."""

        return evaluate_feature(feature, self.tier, configuration=self.configuration, strict=self.strict)

    def require(self, feature: object) -> None:
        """Ensure a feature is enabled, raising ``FeatureRestrictedError`` otherwise."""

        require_feature(
            feature,
            self.tier,
            configuration=self.configuration,
            strict=self.strict,
            base_url=self.base_url,
        )

    def check(self, resource: object, *, requested: int = 1) -> QuotaDecision:
        """Evaluate the quota for ``resource`` against the bundled usage."""

        if self.usage is None:
            raise ValueError("GateContext has no usage snapshot to evaluate against")
        try:
            current = self.usage.count_for(ResourceType.parse(resource))
        except UnknownGateKeyError:
            if self.strict:
                raise
            # evaluate_quota logs and denies the unknown key.
            current = 0
        return evaluate_quota(
            resource,
            current,
            self.tier,
            configuration=self.configuration,
            requested=requested,
            strict=self.strict,
        )

    def assert_quota(self, resource: object, *, requested: int = 1) -> QuotaDecision:
        """Raise ``QuotaExceededError`` when the write would exceed the quota."""

        decision = self.check(resource, requested=requested)
        if not decision.allowed:
            subject = decision.resource.value if decision.resource else "plan"
            raise_for_decision(
                decision,
                upgrade_url=upgrade_url(
                    subject,
                    current=self.tier,
                    target=self.tier.next_tier() if self.tier is not None else None,
                    base_url=self.base_url,
                ),
            )
        return decision

    def badge(self, resource: object, *, show_only_warning: bool = True) -> QuotaBadge:
        return badge_for(self.check(resource), show_only_warning=show_only_warning, thresholds=self.thresholds)

    def controls(self, resource: object, *, requested: int = 1) -> ControlState:
        return control_state_for(
            self.check(resource, requested=requested),
            self.tier,
            thresholds=self.thresholds,
            base_url=self.base_url,
        )

    def summary(self) -> UsageSummary:
        return summarize_usage(
            self.usage,
            self.tier,
            configuration=self.configuration,
            thresholds=self.thresholds,
            strict=self.strict,
        )
