"""Environment-driven settings for the quota gate service."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple
import os

_PRODUCTION_ENVIRONMENTS = {"production", "prod"}


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection parameters for the usage database."""

    host: str
    port: int
    dbname: str
    user: str
    password: str
    connect_timeout: int

    def to_connect_kwargs(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }


@dataclass(frozen=True)
class GateSettings:
    """Configuration for quota evaluation, enforcement and the HTTP surface."""

    environment: str
    strict_keys: bool
    warning_threshold: float
    critical_threshold: float
    upgrade_url: str
    license_config_path: Optional[str]
    log_level: str
    database: DatabaseConfig
    cors_origins: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_production(self) -> bool:
        return self.environment in _PRODUCTION_ENVIRONMENTS


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_settings(env: Optional[Mapping[str, str]] = None) -> GateSettings:
    """Load :class:`GateSettings` from environment variables."""

    env_mapping = os.environ if env is None else env

    environment = (env_mapping.get("APP_ENV") or "development").strip().lower() or "development"
    is_production = environment in _PRODUCTION_ENVIRONMENTS
    # Unknown gate keys raise outside production and fail closed inside it.
    strict_keys = _to_bool(env_mapping.get("GATE_STRICT_KEYS"), default=not is_production)

    warning_threshold = _to_float(env_mapping.get("QUOTA_WARNING_THRESHOLD"), default=0.8)
    critical_threshold = _to_float(env_mapping.get("QUOTA_CRITICAL_THRESHOLD"), default=0.9)
    if not 0 < warning_threshold <= critical_threshold <= 1:
        raise ValueError(
            "Quota thresholds must satisfy 0 < warning <= critical <= 1, "
            f"got warning={warning_threshold} critical={critical_threshold}"
        )

    upgrade_url = (env_mapping.get("UPGRADE_URL") or "/pricing").strip() or "/pricing"
    license_config_path = env_mapping.get("LICENSE_CONFIG_PATH") or None
    log_level = (env_mapping.get("LOG_LEVEL") or "INFO").strip().upper()

    connect_timeout = _to_int(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5)
    if connect_timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")

    database = DatabaseConfig(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "incident_response"),
        user=env_mapping.get("DB_USER", "ir_user"),
        password=env_mapping.get("DB_PASSWORD", "ir_pass"),
        connect_timeout=connect_timeout,
    )

    return GateSettings(
        environment=environment,
        strict_keys=strict_keys,
        warning_threshold=warning_threshold,
        critical_threshold=critical_threshold,
        upgrade_url=upgrade_url.rstrip("/") or "/",
        license_config_path=license_config_path,
        log_level=log_level,
        database=database,
        cors_origins=_to_csv(env_mapping.get("CORS_ORIGINS", "http://localhost:3000")),
    )
