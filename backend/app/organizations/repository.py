"""Persistence layer reading organization tiers and usage counters."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from typing import Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..licensing import ResourceType, UsageSnapshot
from .models import COUNTER_RESOURCES, ApiUsageWindow, Organization, UsageFetchError

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


_COUNTED_TABLES = {
    ResourceType.INCIDENTS: "incidents",
    ResourceType.ASSETS: "assets",
    ResourceType.RUNBOOKS: "runbooks",
    ResourceType.TEMPLATES: "communication_templates",
}

_COUNTER_COLUMNS = {
    ResourceType.USERS: "current_users",
    ResourceType.STORAGE: "current_storage_mb",
}


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_organization(row: dict) -> Organization:
    return Organization(
        id=int(row["id"]),
        name=row["name"],
        license_type=row.get("license_type"),
    )


class PostgresUsageRepository:
    """Concrete repository counting organization resources in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get_organization(self, organization_id: int) -> Optional[Organization]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, name, license_type
                FROM teams
                WHERE id = %s
                LIMIT 1
                """,
                (organization_id,),
            )
            row = cursor.fetchone()
            return _row_to_organization(row) if row else None

    def ensure_limits_row(self, organization_id: int) -> None:
        """Create the counter row for an organization if it does not exist."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO organization_limits (organization_id)
                VALUES (%s)
                ON CONFLICT (organization_id) DO NOTHING
                """,
                (organization_id,),
            )

    def get_usage(self, organization_id: int) -> UsageSnapshot:
        """Return fresh counts for every resource of the organization."""

        counts = ",\n".join(
            f"(SELECT COUNT(*) FROM {table} WHERE organization_id = %(org)s) AS {resource.value}"
            for resource, table in _COUNTED_TABLES.items()
        )
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    f"""
                    SELECT
                        {counts},
                        COALESCE(l.current_users, 0) AS users,
                        COALESCE(l.current_storage_mb, 0) AS storage_mb,
                        COALESCE(l.api_calls_this_hour, 0) AS api_calls_this_hour
                    FROM (SELECT %(org)s::integer AS organization_id) AS o
                    LEFT JOIN organization_limits AS l
                        ON l.organization_id = o.organization_id
                    """,
                    {"org": organization_id},
                )
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            raise UsageFetchError(f"Unable to read usage for organization {organization_id}") from exc

        if not row:
            raise UsageFetchError(f"No usage row returned for organization {organization_id}")
        return UsageSnapshot(
            users=int(row["users"]),
            incidents=int(row["incidents"]),
            assets=int(row["assets"]),
            runbooks=int(row["runbooks"]),
            templates=int(row["templates"]),
            storage_mb=int(row["storage_mb"]),
            api_calls_this_hour=int(row["api_calls_this_hour"]),
        )

    def reserve_counter(
        self,
        organization_id: int,
        resource: ResourceType,
        amount: int,
        limit: Optional[int],
    ) -> Optional[int]:
        """Atomically add ``amount`` to a counter unless it would pass ``limit``.

        Returns the new counter value, or None when the reservation was refused.
        ``limit=None`` means unlimited. A negative ``amount`` releases capacity.
        """

        if resource not in COUNTER_RESOURCES:
            raise ValueError(f"{resource.value} is not a counter-backed resource")
        column = _COUNTER_COLUMNS[resource]
        self.ensure_limits_row(organization_id)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE organization_limits
                SET {column} = GREATEST({column} + %(amount)s, 0),
                    updated_at = NOW()
                WHERE organization_id = %(org)s
                  AND (%(limit)s::integer IS NULL OR {column} + %(amount)s <= %(limit)s::integer)
                RETURNING {column} AS value
                """,
                {"org": organization_id, "amount": amount, "limit": limit},
            )
            row = cursor.fetchone()
            return int(row["value"]) if row else None

    def consume_api_call(
        self,
        organization_id: int,
        limit: Optional[int],
        window: timedelta,
    ) -> ApiUsageWindow:
        """Count one API call in the current window, resetting it when elapsed.

        ``limit=None`` means unlimited; a zero limit refuses every call,
        including the first one of a fresh window.
        """

        self.ensure_limits_row(organization_id)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE organization_limits
                SET api_calls_this_hour = CASE
                        WHEN api_reset_at IS NULL OR api_reset_at <= NOW() THEN 1
                        ELSE api_calls_this_hour + 1
                    END,
                    api_reset_at = CASE
                        WHEN api_reset_at IS NULL OR api_reset_at <= NOW() THEN NOW() + %(window)s
                        ELSE api_reset_at
                    END
                WHERE organization_id = %(org)s
                  AND (%(limit)s::integer IS NULL OR %(limit)s::integer > 0)
                  AND (
                    %(limit)s::integer IS NULL
                    OR api_reset_at IS NULL
                    OR api_reset_at <= NOW()
                    OR api_calls_this_hour < %(limit)s::integer
                  )
                RETURNING api_calls_this_hour, api_reset_at
                """,
                {"org": organization_id, "limit": limit, "window": window},
            )
            row = cursor.fetchone()
            if row:
                return ApiUsageWindow(
                    accepted=True,
                    calls_this_hour=int(row["api_calls_this_hour"]),
                    reset_at=row["api_reset_at"],
                )

            cursor.execute(
                """
                SELECT api_calls_this_hour, api_reset_at
                FROM organization_limits
                WHERE organization_id = %s
                """,
                (organization_id,),
            )
            current = cursor.fetchone() or {}
            return ApiUsageWindow(
                accepted=False,
                calls_this_hour=int(current.get("api_calls_this_hour") or 0),
                reset_at=current.get("api_reset_at"),
            )

    def get_api_window(self, organization_id: int) -> ApiUsageWindow:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT api_calls_this_hour, api_reset_at
                FROM organization_limits
                WHERE organization_id = %s
                """,
                (organization_id,),
            )
            row = cursor.fetchone() or {}
            return ApiUsageWindow(
                accepted=True,
                calls_this_hour=int(row.get("api_calls_this_hour") or 0),
                reset_at=row.get("api_reset_at"),
            )
