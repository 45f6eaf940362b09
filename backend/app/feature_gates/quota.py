"""Resource quota evaluation utilities for feature gating."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..licensing import (
    DEFAULT_CONFIGURATION,
    LicenseConfiguration,
    LicenseTier,
    ResourceType,
    UnknownGateKeyError,
)
from .exceptions import QuotaExceededError, UsageUnavailableError

logger = logging.getLogger(__name__)


class QuotaReason(str, Enum):
    """Why a quota decision came out the way it did."""

    WITHIN_LIMIT = "within_limit"
    UNLIMITED = "unlimited"
    LIMIT_REACHED = "limit_reached"
    ZERO_LIMIT = "zero_limit"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN_KEY = "unknown_key"
    USAGE_UNAVAILABLE = "usage_unavailable"


class QuotaStatus(str, Enum):
    """Presentation bucket for a usage ratio."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"

    @property
    def is_blocking(self) -> bool:
        return self is QuotaStatus.EXCEEDED

    @property
    def is_approaching(self) -> bool:
        return self in {QuotaStatus.WARNING, QuotaStatus.CRITICAL}


@dataclass(frozen=True)
class QuotaThresholds:
    """Ratios at which usage is flagged. Exceeded is always ``1.0``."""

    warning: float = 0.8
    critical: float = 0.9

    def __post_init__(self) -> None:
        if not 0 < self.warning <= self.critical <= 1:
            raise ValueError("thresholds must satisfy 0 < warning <= critical <= 1")

    def classify(self, ratio: float) -> QuotaStatus:
        if ratio >= 1.0:
            return QuotaStatus.EXCEEDED
        if ratio >= self.critical:
            return QuotaStatus.CRITICAL
        if ratio >= self.warning:
            return QuotaStatus.WARNING
        return QuotaStatus.HEALTHY


DEFAULT_THRESHOLDS = QuotaThresholds()


@dataclass(frozen=True)
class QuotaDecision:
    """Represents the outcome of a quota check for one resource."""

    allowed: bool
    resource: Optional[ResourceType]
    current: int
    limit: Optional[int]
    ratio: float
    reason: QuotaReason
    requested: int = 1

    @property
    def is_unlimited(self) -> bool:
        return self.reason is QuotaReason.UNLIMITED

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.current, 0)

    @property
    def percentage(self) -> int:
        return round(self.ratio * 100)

    def status(self, thresholds: QuotaThresholds = DEFAULT_THRESHOLDS) -> QuotaStatus:
        if self.is_unlimited:
            return QuotaStatus.HEALTHY
        if self.reason in {
            QuotaReason.ZERO_LIMIT,
            QuotaReason.NOT_CONFIGURED,
            QuotaReason.UNKNOWN_KEY,
            QuotaReason.USAGE_UNAVAILABLE,
        }:
            return QuotaStatus.EXCEEDED
        return thresholds.classify(self.ratio)

    def to_dict(self) -> dict[str, object]:
        """Serialize the decision for logging or API responses."""

        return {
            "allowed": self.allowed,
            "resource": self.resource.value if self.resource else None,
            "current": self.current,
            "limit": self.limit,
            "remaining": self.remaining,
            "ratio": self.ratio,
            "reason": self.reason.value,
            "requested": self.requested,
        }


def _denied(
    resource: Optional[ResourceType],
    current: int,
    reason: QuotaReason,
    requested: int,
) -> QuotaDecision:
    return QuotaDecision(
        allowed=False,
        resource=resource,
        current=current,
        limit=None,
        ratio=1.0,
        reason=reason,
        requested=requested,
    )


def evaluate_quota(
    resource: object,
    current_usage: int,
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
    requested: int = 1,
    strict: bool = True,
) -> QuotaDecision:
    """Decide whether ``requested`` more units of ``resource`` may be created.

    ``current_usage == limit`` is denied: the write that would create the
    ``limit + 1``-th item must not happen. Unknown resource or tier keys raise
    :class:`UnknownGateKeyError` when ``strict`` and are denied otherwise.
    """

    if isinstance(current_usage, bool) or not isinstance(current_usage, int) or current_usage < 0:
        raise ValueError(f"current_usage must be a non-negative integer, got {current_usage!r}")
    if requested < 1:
        raise ValueError(f"requested must be >= 1, got {requested!r}")

    try:
        resource_key = ResourceType.parse(resource)
    except UnknownGateKeyError as exc:
        if strict:
            raise
        logger.error("Quota check failed closed: %s", exc)
        return _denied(None, current_usage, QuotaReason.UNKNOWN_KEY, requested)
    try:
        tier_key = LicenseTier.parse(tier)
    except UnknownGateKeyError as exc:
        if strict:
            raise
        logger.error("Quota check for %s failed closed: %s", resource_key.value, exc)
        return _denied(resource_key, current_usage, QuotaReason.UNKNOWN_KEY, requested)

    limits = configuration.limits_for(tier_key)
    if limits is None:
        logger.error("No limits configured for tier %s; denying %s", tier_key.value, resource_key.value)
        return _denied(resource_key, current_usage, QuotaReason.NOT_CONFIGURED, requested)

    limit = limits[resource_key]
    if limit.is_unlimited:
        return QuotaDecision(
            allowed=True,
            resource=resource_key,
            current=current_usage,
            limit=None,
            ratio=0.0,
            reason=QuotaReason.UNLIMITED,
            requested=requested,
        )

    maximum = limit.maximum or 0
    if maximum == 0:
        return QuotaDecision(
            allowed=False,
            resource=resource_key,
            current=current_usage,
            limit=0,
            ratio=1.0,
            reason=QuotaReason.ZERO_LIMIT,
            requested=requested,
        )

    allowed = current_usage + requested <= maximum
    return QuotaDecision(
        allowed=allowed,
        resource=resource_key,
        current=current_usage,
        limit=maximum,
        ratio=current_usage / maximum,
        reason=QuotaReason.WITHIN_LIMIT if allowed else QuotaReason.LIMIT_REACHED,
        requested=requested,
    )


def assert_quota(
    resource: object,
    current_usage: int,
    tier: object,
    *,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
    requested: int = 1,
    strict: bool = True,
    upgrade_url: Optional[str] = None,
) -> QuotaDecision:
    """Raise when creating ``requested`` more units would exceed the quota."""

    decision = evaluate_quota(
        resource,
        current_usage,
        tier,
        configuration=configuration,
        requested=requested,
        strict=strict,
    )
    raise_for_decision(decision, upgrade_url=upgrade_url)
    return decision


def denial_message(decision: QuotaDecision) -> str:
    """Human readable explanation of a denied decision."""

    name = decision.resource.value if decision.resource else "unknown resource"
    if decision.reason is QuotaReason.NOT_CONFIGURED:
        return f"No quota is configured for {name} on the current plan"
    if decision.reason is QuotaReason.UNKNOWN_KEY:
        return f"Quota for {name} could not be evaluated for the current plan"
    if decision.reason is QuotaReason.USAGE_UNAVAILABLE:
        return f"Current {name} usage could not be determined"
    return f"Quota exceeded for {name}: {decision.current}/{decision.limit}"


def raise_for_decision(decision: QuotaDecision, *, upgrade_url: Optional[str] = None) -> None:
    """Turn a denied decision into a :class:`QuotaExceededError`.

    Decisions denied because usage could not be read raise
    :class:`UsageUnavailableError` instead.
    """

    if decision.allowed:
        return
    logger.info(
        "Quota denied resource=%s current=%s limit=%s reason=%s",
        decision.resource.value if decision.resource else None,
        decision.current,
        decision.limit,
        decision.reason.value,
    )
    if decision.reason is QuotaReason.USAGE_UNAVAILABLE:
        raise UsageUnavailableError(decision.resource)
    raise QuotaExceededError(
        decision.resource,
        decision.current,
        decision.limit,
        upgrade_url=upgrade_url,
        message=denial_message(decision),
    )
