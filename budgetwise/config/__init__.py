"""Configuration package."""

from budgetwise.config.settings import (
    AppSettings,
    BackupConfig,
    CloudinarySettings,
    GoogleSheetsSettings,
    SecurityConfig,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BackupConfig",
    "CloudinarySettings",
    "GoogleSheetsSettings",
    "SecurityConfig",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
