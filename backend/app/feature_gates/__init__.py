"""Feature gating utilities coordinating quota and entitlement enforcement."""
from .context import GateContext
from .enforcement import (
    UpgradeRecommendation,
    evaluate_feature,
    recommend_upgrade,
    require_feature,
    required_tier,
    unavailable_features,
    upgrade_url,
)
from .exceptions import (
    FeatureGateError,
    FeatureRestrictedError,
    QuotaExceededError,
    RateLimitExceededError,
    UsageUnavailableError,
)
from .presentation import (
    BadgeVariant,
    ControlState,
    FeatureLockPrompt,
    QuotaAlert,
    QuotaBadge,
    QuotaProgress,
    UsageSummary,
    alert_from_payload,
    badge_for,
    control_state_for,
    feature_lock_for,
    format_storage,
    progress_for,
    summarize_usage,
)
from .quota import (
    QuotaDecision,
    QuotaReason,
    QuotaStatus,
    QuotaThresholds,
    assert_quota,
    evaluate_quota,
)
from .rate_limit import RateLimitDecision, assert_rate_limit, evaluate_rate_limit

__all__ = [
    "GateContext",
    "UpgradeRecommendation",
    "evaluate_feature",
    "recommend_upgrade",
    "require_feature",
    "required_tier",
    "unavailable_features",
    "upgrade_url",
    "FeatureGateError",
    "FeatureRestrictedError",
    "QuotaExceededError",
    "RateLimitExceededError",
    "UsageUnavailableError",
    "BadgeVariant",
    "ControlState",
    "FeatureLockPrompt",
    "QuotaAlert",
    "QuotaBadge",
    "QuotaProgress",
    "UsageSummary",
    "alert_from_payload",
    "badge_for",
    "control_state_for",
    "feature_lock_for",
    "format_storage",
    "progress_for",
    "summarize_usage",
    "QuotaDecision",
    "QuotaReason",
    "QuotaStatus",
    "QuotaThresholds",
    "assert_quota",
    "evaluate_quota",
    "RateLimitDecision",
    "assert_rate_limit",
    "evaluate_rate_limit",
]
