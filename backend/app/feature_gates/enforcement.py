"""Helpers for enforcing feature entitlements on API and service layers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlencode

from ..licensing import (
    DEFAULT_CONFIGURATION,
    Feature,
    LicenseConfiguration,
    LicenseTier,
    UnknownGateKeyError,
)
from .exceptions import FeatureRestrictedError

logger = logging.getLogger(__name__)

DEFAULT_UPGRADE_URL = "/pricing"


def evaluate_feature(
    feature: object,
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
    strict: bool = True,
) -> bool:
    """Return whether ``feature`` is enabled for ``tier``.

    Total over the declared :class:`Feature` and :class:`LicenseTier` values:
    a tier missing from ``configuration`` is treated as having nothing
    enabled. Undeclared keys raise when ``strict`` and evaluate to ``False``
    otherwise.
    """

    try:
        feature_key = Feature.parse(feature)
        tier_key = LicenseTier.parse(tier)
    except UnknownGateKeyError as exc:
        if strict:
            raise
        logger.error("Feature check failed closed: %s", exc)
        return False

    flags = configuration.features_for(tier_key)
    if flags is None:
        return False
    return flags.is_enabled(feature_key)


def required_tier(
    feature: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
) -> Optional[LicenseTier]:
    """Return the lowest configured tier that enables ``feature``."""

    feature_key = Feature.parse(feature)
    for plan in configuration:
        if plan.features.is_enabled(feature_key):
            return plan.tier
    return None


def available_in(
    feature: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
) -> Tuple[LicenseTier, ...]:
    feature_key = Feature.parse(feature)
    return tuple(plan.tier for plan in configuration if plan.features.is_enabled(feature_key))


def unavailable_features(
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
) -> List[Tuple[Feature, Optional[LicenseTier]]]:
    """List features disabled for ``tier`` with the tier that would unlock them."""

    tier_key = LicenseTier.parse(tier)
    return [
        (feature, required_tier(feature, configuration=configuration))
        for feature in Feature
        if not evaluate_feature(feature, tier_key, configuration=configuration)
    ]


def upgrade_url(
    subject: str,
    *,
    current: Optional[LicenseTier] = None,
    target: Optional[LicenseTier] = None,
    base_url: str = DEFAULT_UPGRADE_URL,
) -> str:
    """Build the plan-upgrade link for a blocked resource or feature."""

    params = {"upgrade": subject}
    if current is not None:
        params["from"] = current.value
    if target is not None:
        params["to"] = target.value
    return f"{base_url}?{urlencode(params)}"


def require_feature(
    feature: object,
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
    strict: bool = True,
    base_url: str = DEFAULT_UPGRADE_URL,
) -> None:
    """Ensure a feature is enabled for the tier before proceeding."""

    if evaluate_feature(feature, tier, configuration=configuration, strict=strict):
        return

    # Undeclared keys only reach this point when not strict.
    try:
        feature_key = Feature.parse(feature)
    except UnknownGateKeyError:
        raise FeatureRestrictedError(str(feature), None, None, upgrade_url=base_url) from None
    target = required_tier(feature_key, configuration=configuration)
    try:
        tier_key = LicenseTier.parse(tier)
    except UnknownGateKeyError:
        raise FeatureRestrictedError(
            feature_key,
            None,
            target,
            upgrade_url=upgrade_url(feature_key.value, target=target, base_url=base_url),
        ) from None

    logger.info(
        "Feature denied feature=%s tier=%s required=%s",
        feature_key.value,
        tier_key.value,
        target.value if target else None,
    )
    raise FeatureRestrictedError(
        feature_key,
        tier_key,
        target,
        upgrade_url=upgrade_url(feature_key.value, current=tier_key, target=target, base_url=base_url),
    )


@dataclass(frozen=True)
class UpgradeRecommendation:
    """Suggested next plan given the features an organization tried to use."""

    current_tier: LicenseTier
    recommended_tier: LicenseTier
    benefits: Tuple[Feature, ...]
    blocked_features: Tuple[Feature, ...]

    @property
    def is_upgrade(self) -> bool:
        return self.recommended_tier > self.current_tier


def recommend_upgrade(
    tier: object,
    attempted_features: Iterable[object] = (),
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
) -> UpgradeRecommendation:
    """Recommend the next tier up and what it would unlock."""

    current = LicenseTier.parse(tier)
    recommended = current.next_tier() or current
    attempted = {Feature.parse(feature) for feature in attempted_features}

    benefits = tuple(
        feature
        for feature in Feature
        if evaluate_feature(feature, recommended, configuration=configuration)
        and not evaluate_feature(feature, current, configuration=configuration)
    )
    return UpgradeRecommendation(
        current_tier=current,
        recommended_tier=recommended,
        benefits=benefits,
        blocked_features=tuple(feature for feature in benefits if feature in attempted),
    )
