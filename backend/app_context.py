"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_get_current_organization_id: Optional[Callable[..., int]] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_organization_id: Callable[..., int],
) -> None:
    """Register application-wide dependencies required by modular routers."""

    global _get_conn
    global _get_current_organization_id

    _get_conn = get_conn
    _get_current_organization_id = get_current_organization_id


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_current_organization_id(*args: Any, **kwargs: Any) -> int:
    dependency = _require(_get_current_organization_id, "get_current_organization_id")
    return dependency(*args, **kwargs)
