from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
import pytest

from backend.app.feature_gates import QuotaExceededError, QuotaReason
from backend.app.licensing import Feature, LicenseTier, ResourceType, UnknownGateKeyError
from backend.app.organizations.models import UsageFetchError
from backend.app.organizations.repository import PostgresUsageRepository
from backend.app.organizations.service import QuotaService


class FakeCursor:
    def __init__(self, rows: List[Optional[Dict[str, Any]]], error: Optional[Exception] = None) -> None:
        self.rows = rows
        self.error = error
        self.executed: List[Tuple[str, Any]] = []
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> None:
        if self.error is not None:
            raise self.error
        self.executed.append((sql, params))

    def fetchone(self) -> Optional[Dict[str, Any]]:
        return self.rows.pop(0) if self.rows else None

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.cursor_factories: List[Any] = []

    def cursor(self, cursor_factory=None) -> FakeCursor:
        self.cursor_factories.append(cursor_factory)
        return self._cursor


def test_get_organization_maps_row() -> None:
    cursor = FakeCursor([{"id": 3, "name": "Initech", "license_type": "professional"}])
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    organization = repository.get_organization(3)

    assert organization is not None
    assert organization.license_tier is LicenseTier.PROFESSIONAL
    assert cursor.executed[0][1] == (3,)
    assert cursor.closed is True


def test_get_organization_missing_row() -> None:
    repository = PostgresUsageRepository(conn=FakeConnection(FakeCursor([])))

    assert repository.get_organization(3) is None


def test_get_usage_builds_snapshot() -> None:
    cursor = FakeCursor(
        [
            {
                "incidents": 12,
                "assets": 40,
                "runbooks": 2,
                "templates": 0,
                "users": 4,
                "storage_mb": 300,
                "api_calls_this_hour": 17,
            }
        ]
    )
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    usage = repository.get_usage(9)

    assert usage.incidents == 12
    assert usage.storage_mb == 300
    assert usage.api_calls_this_hour == 17
    sql, params = cursor.executed[0]
    assert "communication_templates" in sql
    assert params == {"org": 9}


def test_get_usage_wraps_database_errors() -> None:
    cursor = FakeCursor([], error=psycopg2.OperationalError("connection lost"))
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    with pytest.raises(UsageFetchError):
        repository.get_usage(9)


def test_reserve_counter_uses_conditional_update() -> None:
    cursor = FakeCursor([{"value": 5}])
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    assert repository.reserve_counter(1, ResourceType.USERS, 1, 5) == 5

    insert_sql, _ = cursor.executed[0]
    update_sql, params = cursor.executed[1]
    assert "ON CONFLICT" in insert_sql
    assert "current_users + %(amount)s <= %(limit)s" in update_sql
    assert params == {"org": 1, "amount": 1, "limit": 5}


def test_reserve_counter_refused() -> None:
    repository = PostgresUsageRepository(conn=FakeConnection(FakeCursor([])))

    assert repository.reserve_counter(1, ResourceType.STORAGE, 10, 1024) is None


def test_reserve_counter_rejects_row_counted_resource() -> None:
    repository = PostgresUsageRepository(conn=FakeConnection(FakeCursor([])))

    with pytest.raises(ValueError):
        repository.reserve_counter(1, ResourceType.ASSETS, 1, 10)


def test_consume_api_call_accepted() -> None:
    reset_at = datetime(2024, 3, 1, 13, 0, tzinfo=timezone.utc)
    cursor = FakeCursor([{"api_calls_this_hour": 3, "api_reset_at": reset_at}])
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    window = repository.consume_api_call(1, 1000, timedelta(hours=1))

    assert window.accepted is True
    assert window.calls_this_hour == 3
    assert window.reset_at == reset_at
    assert cursor.executed[1][1]["window"] == timedelta(hours=1)


def test_consume_api_call_refused_reads_current_window() -> None:
    reset_at = datetime(2024, 3, 1, 13, 0, tzinfo=timezone.utc)
    cursor = FakeCursor([None, {"api_calls_this_hour": 1000, "api_reset_at": reset_at}])
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    window = repository.consume_api_call(1, 1000, timedelta(hours=1))

    assert window.accepted is False
    assert window.calls_this_hour == 1000
    assert window.reset_at == reset_at


@pytest.mark.parametrize("limit", [0, None, 1000])
def test_consume_api_call_refuses_zero_limit_in_sql(limit) -> None:
    cursor = FakeCursor([{"api_calls_this_hour": 1, "api_reset_at": None}])
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    repository.consume_api_call(1, limit, timedelta(hours=1))

    update_sql, params = cursor.executed[1]
    assert "AND (%(limit)s::integer IS NULL OR %(limit)s::integer > 0)" in update_sql
    assert params["limit"] == limit


def test_consume_api_call_with_zero_limit_is_not_accepted() -> None:
    cursor = FakeCursor([None, {"api_calls_this_hour": 0, "api_reset_at": None}])
    repository = PostgresUsageRepository(conn=FakeConnection(cursor))

    window = repository.consume_api_call(1, 0, timedelta(hours=1))

    assert window.accepted is False
    assert window.calls_this_hour == 0


def _platinum_repository(*extra_rows: Dict[str, Any]) -> PostgresUsageRepository:
    rows: List[Optional[Dict[str, Any]]] = [{"id": 9, "name": "Umbrella", "license_type": "platinum"}]
    rows.extend(extra_rows)
    return PostgresUsageRepository(conn=FakeConnection(FakeCursor(rows)))


def test_unknown_stored_tier_loads_without_a_tier() -> None:
    organization = _platinum_repository().get_organization(9)

    assert organization is not None
    assert organization.license_type == "platinum"
    assert organization.license_tier is None


def test_unknown_stored_tier_fails_closed_when_not_strict(caplog) -> None:
    usage_row = {
        "incidents": 1,
        "assets": 1,
        "runbooks": 0,
        "templates": 0,
        "users": 1,
        "storage_mb": 10,
        "api_calls_this_hour": 0,
    }

    assert QuotaService(_platinum_repository(), strict=False).has_feature(9, Feature.SSO) is False
    assert QuotaService(_platinum_repository(), strict=False).has_feature(9, Feature.API_ACCESS) is False

    decision = QuotaService(_platinum_repository(usage_row), strict=False).check(9, ResourceType.ASSETS)
    assert decision.allowed is False
    assert decision.reason is QuotaReason.UNKNOWN_KEY
    assert decision.resource is ResourceType.ASSETS

    with pytest.raises(QuotaExceededError) as exc:
        QuotaService(_platinum_repository(usage_row), strict=False).enforce(9, ResourceType.ASSETS)
    assert exc.value.payload["limit"] is None
    assert exc.value.payload["upgradeUrl"] == "/pricing?upgrade=assets"

    summary = QuotaService(_platinum_repository(usage_row), strict=False).summary(9)
    assert summary.tier is None
    assert all(line.limit is None for line in summary.lines)

    _, plan = QuotaService(_platinum_repository(), strict=False).get_plan(9)
    assert plan is None
    assert "unknown license tier 'platinum'" in caplog.text


def test_unknown_stored_tier_raises_when_strict() -> None:
    with pytest.raises(UnknownGateKeyError) as exc:
        QuotaService(_platinum_repository()).has_feature(9, Feature.SSO)

    assert exc.value.value == "platinum"
