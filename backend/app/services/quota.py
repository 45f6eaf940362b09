"""Application wiring for the quota service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..feature_gates import QuotaThresholds
from ..licensing import DEFAULT_CONFIGURATION, LicenseConfiguration, load_configuration_file
from ..organizations.repository import PostgresUsageRepository
from ..organizations.service import QuotaService

try:  # pragma: no cover - resolve settings when imported from FastAPI app
    from backend.settings import GateSettings, load_settings
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...settings import GateSettings, load_settings  # type: ignore[no-redef]


logger = logging.getLogger("quota")


def load_license_configuration(settings: GateSettings) -> LicenseConfiguration:
    """Return the tier table named by ``LICENSE_CONFIG_PATH`` or the built-in one."""

    if not settings.license_config_path:
        return DEFAULT_CONFIGURATION
    configuration = load_configuration_file(settings.license_config_path)
    logger.info("Loaded license configuration from %s", settings.license_config_path)
    return configuration


@lru_cache(maxsize=1)
def get_settings() -> GateSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_quota_service() -> QuotaService:
    settings = get_settings()
    service = QuotaService(
        repository=PostgresUsageRepository(),
        configuration=load_license_configuration(settings),
        thresholds=QuotaThresholds(
            warning=settings.warning_threshold,
            critical=settings.critical_threshold,
        ),
        strict=settings.strict_keys,
        upgrade_base_url=settings.upgrade_url,
    )
    return service


__all__ = ["get_quota_service", "get_settings", "load_license_configuration"]
