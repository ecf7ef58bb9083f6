"""Configuration package."""

from budgetsync.config.settings import (
    AppSettings,
    GeminiSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
