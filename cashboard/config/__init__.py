"""Configuration package."""

from cashboard.config.settings import (
    AppSettings,
    ExecutionSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    RuleStoreSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ExecutionSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "RuleStoreSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
