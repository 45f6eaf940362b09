"""Hourly API rate limit evaluation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..licensing import DEFAULT_CONFIGURATION, LicenseConfiguration, LicenseTier
from .exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of an API rate limit check for the current window."""

    allowed: bool
    current: int
    limit: Optional[int]
    reset_at: Optional[datetime]
    window_expired: bool = False

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.current, 0)

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "current": self.current,
            "limit": self.limit,
            "remaining": self.remaining,
            "resetAt": self.reset_at.isoformat() if self.reset_at else None,
        }


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def evaluate_rate_limit(
    calls_this_hour: int,
    reset_at: Optional[datetime],
    tier: object,
    *,
    now: Optional[datetime] = None,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
) -> RateLimitDecision:
    """Decide whether one more API call fits in the organization's window.

    A missing or elapsed ``reset_at`` starts a new window with a zero count.
    A tier without configured limits is denied.
    """

    current_time = _aware(now or datetime.now(timezone.utc))
    tier_key = LicenseTier.parse(tier)
    limits = configuration.limits_for(tier_key)
    if limits is None:
        return RateLimitDecision(allowed=False, current=calls_this_hour, limit=0, reset_at=reset_at)

    limit = limits.api_rate_limit
    if reset_at is None or current_time >= _aware(reset_at):
        logger.debug("API window for tier %s elapsed; starting a new one", tier_key.value)
        return RateLimitDecision(
            allowed=limit.is_unlimited or (limit.maximum or 0) > 0,
            current=0,
            limit=limit.maximum,
            reset_at=current_time + RATE_LIMIT_WINDOW,
            window_expired=True,
        )

    if limit.is_unlimited:
        return RateLimitDecision(allowed=True, current=calls_this_hour, limit=None, reset_at=reset_at)

    return RateLimitDecision(
        allowed=calls_this_hour < (limit.maximum or 0),
        current=calls_this_hour,
        limit=limit.maximum,
        reset_at=reset_at,
    )


def assert_rate_limit(
    calls_this_hour: int,
    reset_at: Optional[datetime],
    tier: object,
    *,
    now: Optional[datetime] = None,
    configuration: LicenseConfiguration = DEFAULT_CONFIGURATION,
) -> RateLimitDecision:
    """Raise :class:`RateLimitExceededError` when the window is exhausted."""

    decision = evaluate_rate_limit(
        calls_this_hour,
        reset_at,
        tier,
        now=now,
        configuration=configuration,
    )
    if not decision.allowed:
        raise RateLimitExceededError(
            decision.current,
            decision.limit or 0,
            decision.reset_at or _aware(now or datetime.now(timezone.utc)),
        )
    return decision
