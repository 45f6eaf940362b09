from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.feature_gates import RateLimitExceededError, assert_rate_limit, evaluate_rate_limit
from backend.app.licensing import (
    FeatureFlags,
    LicenseConfiguration,
    LicenseTier,
    Limit,
    PlanDefinition,
    ResourceLimits,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_calls_below_limit_are_allowed() -> None:
    decision = evaluate_rate_limit(999, NOW + timedelta(minutes=30), LicenseTier.STARTER, now=NOW)

    assert decision.allowed is True
    assert decision.limit == 1000
    assert decision.remaining == 1


def test_exhausted_window_is_denied() -> None:
    decision = evaluate_rate_limit(1000, NOW + timedelta(minutes=30), LicenseTier.STARTER, now=NOW)

    assert decision.allowed is False
    assert decision.remaining == 0


def test_elapsed_window_resets_counter() -> None:
    decision = evaluate_rate_limit(5000, NOW - timedelta(seconds=1), LicenseTier.STARTER, now=NOW)

    assert decision.allowed is True
    assert decision.window_expired is True
    assert decision.current == 0
    assert decision.reset_at == NOW + timedelta(hours=1)


def test_missing_reset_time_starts_a_window() -> None:
    decision = evaluate_rate_limit(0, None, LicenseTier.PROFESSIONAL, now=NOW)

    assert decision.allowed is True
    assert decision.reset_at == NOW + timedelta(hours=1)


def test_naive_reset_time_is_treated_as_utc() -> None:
    naive_reset = (NOW + timedelta(minutes=5)).replace(tzinfo=None)

    decision = evaluate_rate_limit(1000, naive_reset, LicenseTier.STARTER, now=NOW)

    assert decision.allowed is False
    assert decision.window_expired is False


def test_unlimited_tier_is_always_allowed() -> None:
    decision = evaluate_rate_limit(10_000_000, NOW + timedelta(minutes=1), LicenseTier.ENTERPRISE, now=NOW)

    assert decision.allowed is True
    assert decision.limit is None
    assert decision.remaining is None


def test_zero_limit_denies_even_in_a_new_window() -> None:
    configuration = LicenseConfiguration(
        {
            LicenseTier.STARTER: PlanDefinition(
                tier=LicenseTier.STARTER,
                display_name="Starter",
                limits=ResourceLimits(api_rate_limit=Limit.finite(0)),
                features=FeatureFlags(),
            )
        }
    )

    decision = evaluate_rate_limit(0, None, LicenseTier.STARTER, now=NOW, configuration=configuration)

    assert decision.allowed is False


def test_unconfigured_tier_is_denied() -> None:
    configuration = LicenseConfiguration(
        {
            LicenseTier.STARTER: PlanDefinition(
                tier=LicenseTier.STARTER,
                display_name="Starter",
                limits=ResourceLimits(),
                features=FeatureFlags(),
            )
        }
    )

    decision = evaluate_rate_limit(0, None, LicenseTier.ENTERPRISE, now=NOW, configuration=configuration)

    assert decision.allowed is False


def test_assert_rate_limit_raises_with_reset_time() -> None:
    reset_at = NOW + timedelta(minutes=20)

    with pytest.raises(RateLimitExceededError) as exc:
        assert_rate_limit(1000, reset_at, LicenseTier.STARTER, now=NOW)

    assert exc.value.status_code == 429
    assert exc.value.payload["code"] == "RATE_LIMIT_EXCEEDED"
    assert exc.value.payload["resetAt"] == reset_at.isoformat()
    assert exc.value.payload["limit"] == 1000


def test_decision_to_dict() -> None:
    reset_at = NOW + timedelta(minutes=20)

    payload = evaluate_rate_limit(10, reset_at, LicenseTier.STARTER, now=NOW).to_dict()

    assert payload == {
        "allowed": True,
        "current": 10,
        "limit": 1000,
        "remaining": 990,
        "resetAt": reset_at.isoformat(),
    }
