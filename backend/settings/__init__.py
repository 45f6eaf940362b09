"""Runtime configuration for the quota gate service."""

from .config import DatabaseConfig, GateSettings, load_settings

__all__ = [
    "DatabaseConfig",
    "GateSettings",
    "load_settings",
]
