"""Map quota and feature decisions onto UI-facing view models.

Client surfaces (forms, dashboards, upsell prompts) consume these instead of
re-deriving thresholds themselves. Nothing here performs I/O; the same inputs
always produce the same view model.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple

from ..licensing import (
    DEFAULT_CONFIGURATION,
    Feature,
    LicenseConfiguration,
    LicenseTier,
    ResourceType,
    UnknownGateKeyError,
    UsageSnapshot,
)
from .enforcement import DEFAULT_UPGRADE_URL, available_in, evaluate_feature, required_tier, upgrade_url
from .quota import DEFAULT_THRESHOLDS, QuotaDecision, QuotaReason, QuotaStatus, QuotaThresholds, evaluate_quota

QUOTA_ERROR_CODE = "QUOTA_EXCEEDED"
FEATURE_ERROR_CODE = "FEATURE_RESTRICTED"


def format_storage(mb: int) -> str:
    """Render a storage amount given in MB."""

    if mb >= 1024:
        return f"{mb / 1024:.1f} GB"
    return f"{mb} MB"


def _formatter_for(resource: Optional[ResourceType]) -> Callable[[int], str]:
    if resource is ResourceType.STORAGE:
        return format_storage
    return str


class BadgeVariant(str, Enum):
    OUTLINE = "outline"
    SECONDARY = "secondary"
    DESTRUCTIVE = "destructive"


_STATUS_VARIANTS: Dict[QuotaStatus, BadgeVariant] = {
    QuotaStatus.HEALTHY: BadgeVariant.OUTLINE,
    QuotaStatus.WARNING: BadgeVariant.SECONDARY,
    QuotaStatus.CRITICAL: BadgeVariant.DESTRUCTIVE,
    QuotaStatus.EXCEEDED: BadgeVariant.DESTRUCTIVE,
}

_STATUS_COLORS: Dict[QuotaStatus, str] = {
    QuotaStatus.HEALTHY: "green",
    QuotaStatus.WARNING: "yellow",
    QuotaStatus.CRITICAL: "orange",
    QuotaStatus.EXCEEDED: "red",
}


# Denials not caused by usage reaching the limit.
_BLOCKED_BADGES: Dict[QuotaReason, str] = {
    QuotaReason.NOT_CONFIGURED: "{name} not available on this plan",
    QuotaReason.UNKNOWN_KEY: "{name} unavailable",
    QuotaReason.USAGE_UNAVAILABLE: "{name} usage unavailable",
}

_BLOCKED_FOOTNOTES: Dict[QuotaReason, str] = {
    QuotaReason.NOT_CONFIGURED: "This plan has no quota configured for this resource.",
    QuotaReason.UNKNOWN_KEY: "Quota could not be evaluated for the current plan.",
    QuotaReason.USAGE_UNAVAILABLE: "Usage is temporarily unavailable. Try again shortly.",
}


@dataclass(frozen=True)
class QuotaBadge:
    visible: bool
    status: QuotaStatus
    variant: BadgeVariant
    message: str


def badge_for(
    decision: QuotaDecision,
    label: Optional[str] = None,
    *,
    show_only_warning: bool = True,
    thresholds: QuotaThresholds = DEFAULT_THRESHOLDS,
) -> QuotaBadge:
    """Badge shown next to a resource counter.

    Unlimited resources never show a badge; healthy ones only when
    ``show_only_warning`` is off.
    """

    name = label or (decision.resource.value if decision.resource else "resource")
    status = decision.status(thresholds)
    if decision.reason in _BLOCKED_BADGES:
        message = _BLOCKED_BADGES[decision.reason].format(name=name)
    elif status is QuotaStatus.EXCEEDED:
        message = f"{name} limit exceeded"
    elif status.is_approaching:
        message = f"{decision.percentage}% of {name} used"
    elif decision.limit is None:
        message = f"{decision.current} {name}"
    else:
        message = f"{decision.current}/{decision.limit} {name}"

    visible = not decision.is_unlimited and not (show_only_warning and status is QuotaStatus.HEALTHY)
    return QuotaBadge(
        visible=visible,
        status=status,
        variant=_STATUS_VARIANTS[status],
        message=message,
    )


@dataclass(frozen=True)
class QuotaProgress:
    label: str
    value_text: str
    percentage: float
    status: QuotaStatus
    color: str
    markers: Tuple[int, ...]
    footnote: Optional[str]
    unlimited: bool = False


def progress_for(
    decision: QuotaDecision,
    label: Optional[str] = None,
    *,
    formatter: Optional[Callable[[int], str]] = None,
    thresholds: QuotaThresholds = DEFAULT_THRESHOLDS,
) -> QuotaProgress:
    """Progress bar state with warning/critical markers."""

    fmt = formatter or _formatter_for(decision.resource)
    name = label or (decision.resource.value if decision.resource else "")

    if decision.is_unlimited:
        return QuotaProgress(
            label=name,
            value_text=f"{fmt(decision.current)} (Unlimited)",
            percentage=0.0,
            status=QuotaStatus.HEALTHY,
            color=_STATUS_COLORS[QuotaStatus.HEALTHY],
            markers=(),
            footnote=None,
            unlimited=True,
        )

    status = decision.status(thresholds)
    percentage = min(100.0, decision.ratio * 100)
    markers = tuple(
        mark
        for mark in (round(thresholds.warning * 100), round(thresholds.critical * 100))
        if percentage >= mark
    )

    footnote: Optional[str] = None
    if decision.reason in _BLOCKED_FOOTNOTES:
        footnote = _BLOCKED_FOOTNOTES[decision.reason]
    elif status is QuotaStatus.EXCEEDED:
        footnote = "Quota exceeded. Please upgrade your plan."
    elif status is QuotaStatus.CRITICAL:
        footnote = f"{round(100 - percentage)}% quota remaining."

    limit_text = fmt(decision.limit) if decision.limit is not None else "?"
    return QuotaProgress(
        label=name,
        value_text=f"{fmt(decision.current)} / {limit_text}",
        percentage=percentage,
        status=status,
        color=_STATUS_COLORS[status],
        markers=tuple(dict.fromkeys(markers)),
        footnote=footnote,
    )


@dataclass(frozen=True)
class ControlState:
    """How a create/submit control should render for a quota decision."""

    submit_disabled: bool
    show_warning_badge: bool
    show_blocking_alert: bool
    upgrade_url: Optional[str]


def control_state_for(
    decision: QuotaDecision,
    tier: Optional[LicenseTier] = None,
    *,
    thresholds: QuotaThresholds = DEFAULT_THRESHOLDS,
    base_url: str = DEFAULT_UPGRADE_URL,
) -> ControlState:
    status = decision.status(thresholds)
    blocked = not decision.allowed
    link: Optional[str] = None
    if blocked or status.is_approaching:
        subject = decision.resource.value if decision.resource else "plan"
        target = tier.next_tier() if tier is not None else None
        link = upgrade_url(subject, current=tier, target=target, base_url=base_url)
    return ControlState(
        submit_disabled=blocked,
        show_warning_badge=not blocked and status.is_approaching,
        show_blocking_alert=blocked,
        upgrade_url=link,
    )


@dataclass(frozen=True)
class QuotaAlert:
    title: str
    message: str
    details: Optional[str]
    upgrade_url: str


def classify_error(payload: Optional[Mapping[str, object]]) -> Optional[str]:
    """Return ``"quota"`` or ``"feature"`` for gating error bodies, else None."""

    if not payload:
        return None
    code = payload.get("code")
    if code == QUOTA_ERROR_CODE:
        return "quota"
    if code == FEATURE_ERROR_CODE:
        return "feature"
    return None


def alert_from_payload(payload: Optional[Mapping[str, object]]) -> Optional[QuotaAlert]:
    """Build the upgrade alert for a structured gating error.

    Generic errors return None so callers fall back to their usual form error.
    """

    kind = classify_error(payload)
    if kind is None or payload is None:
        return None

    link = str(payload.get("upgradeUrl") or DEFAULT_UPGRADE_URL)
    message = str(payload.get("message") or "")
    if kind == "quota":
        limit = payload.get("limit")
        return QuotaAlert(
            title="Quota Exceeded",
            message=message,
            details=(
                f"Current usage: {payload.get('current')} / {limit} {payload.get('resource')}"
                if limit is not None
                else None
            ),
            upgrade_url=link,
        )
    required = payload.get("requiredLicense")
    return QuotaAlert(
        title="Feature Restricted",
        message=message,
        details=f"This feature requires a {required} plan or higher." if required else None,
        upgrade_url=link,
    )


@dataclass(frozen=True)
class FeatureLockPrompt:
    feature: Feature
    enabled: bool
    required_tier: Optional[LicenseTier]
    available_in: Tuple[LicenseTier, ...]
    badge_text: Optional[str]
    message: Optional[str]
    upgrade_url: Optional[str]


def feature_lock_for(
    feature: object,
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
    base_url: str = DEFAULT_UPGRADE_URL,
    message: Optional[str] = None,
) -> FeatureLockPrompt:
    """Locked-feature overlay for a control gated on ``feature``.

    ``tier=None`` stands for an organization whose stored tier is not
    recognized; the feature is shown as locked.
    """

    feature_key = Feature.parse(feature)
    tier_key = LicenseTier.parse(tier) if tier is not None else None
    enabled = tier_key is not None and evaluate_feature(feature_key, tier_key, configuration=configuration)
    target = required_tier(feature_key, configuration=configuration)
    tiers = available_in(feature_key, configuration=configuration)
    if enabled:
        return FeatureLockPrompt(
            feature=feature_key,
            enabled=True,
            required_tier=target,
            available_in=tiers,
            badge_text=None,
            message=None,
            upgrade_url=None,
        )

    target_label = target.label if target else LicenseTier.ENTERPRISE.label
    return FeatureLockPrompt(
        feature=feature_key,
        enabled=False,
        required_tier=target,
        available_in=tiers,
        badge_text=f"Requires {target_label} Plan",
        message=message
        or (
            f"This feature requires a {target_label} plan or higher. "
            "Upgrade now to unlock advanced capabilities."
        ),
        upgrade_url=upgrade_url(feature_key.value, current=tier_key, target=target, base_url=base_url),
    )


@dataclass(frozen=True)
class UsageLine:
    resource: ResourceType
    current: Optional[int]
    limit: Optional[int]
    unlimited: bool
    percentage: int
    status: QuotaStatus


@dataclass(frozen=True)
class UsageWarning:
    resource: ResourceType
    percentage: int
    message: str


@dataclass(frozen=True)
class UsageSummary:
    tier: Optional[LicenseTier]
    usage_available: bool
    lines: Tuple[UsageLine, ...]
    warnings: Tuple[UsageWarning, ...]

    def percentages(self) -> Dict[str, int]:
        return {line.resource.value: line.percentage for line in self.lines}


def summarize_usage(
    usage: Optional[UsageSnapshot],
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
    thresholds: QuotaThresholds = DEFAULT_THRESHOLDS,
    strict: bool = True,
) -> UsageSummary:
    """Dashboard summary of every resource for one organization.

    ``usage=None`` means the counters could not be fetched: limits are still
    listed so the dashboard stays readable, but no percentages are shown.
    An unrecognized tier raises when ``strict``; otherwise no limits are
    listed and every resource reports as blocked.
    """

    try:
        tier_key: Optional[LicenseTier] = LicenseTier.parse(tier)
    except UnknownGateKeyError:
        if strict:
            raise
        tier_key = None
    limits = configuration.limits_for(tier_key) if tier_key is not None else None
    lines = []
    warnings = []
    for resource in ResourceType:
        limit = limits[resource] if limits is not None else None
        if usage is None:
            lines.append(
                UsageLine(
                    resource=resource,
                    current=None,
                    limit=limit.maximum if limit is not None else None,
                    unlimited=bool(limit is not None and limit.is_unlimited),
                    percentage=0,
                    status=QuotaStatus.HEALTHY,
                )
            )
            continue

        decision = evaluate_quota(
            resource,
            usage.count_for(resource),
            tier_key,
            configuration=configuration,
            strict=strict,
        )
        status = decision.status(thresholds)
        line = UsageLine(
            resource=resource,
            current=decision.current,
            limit=decision.limit,
            unlimited=decision.is_unlimited,
            percentage=0 if decision.is_unlimited else decision.percentage,
            status=status,
        )
        lines.append(line)
        if status is not QuotaStatus.HEALTHY:
            if decision.reason in _BLOCKED_BADGES:
                message = _BLOCKED_BADGES[decision.reason].format(name=resource.value)
            else:
                message = f"{resource.value} usage is at {line.percentage}%"
            warnings.append(UsageWarning(resource=resource, percentage=line.percentage, message=message))

    return UsageSummary(
        tier=tier_key,
        usage_available=usage is not None,
        lines=tuple(lines),
        warnings=tuple(warnings),
    )
