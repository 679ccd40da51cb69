"""Configuration package."""

from ledgersync.config.settings import (
    AppSettings,
    BudgetConfig,
    DatabaseSettings,
    Settings,
    SyncSettings,
    YnabSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BudgetConfig",
    "DatabaseSettings",
    "Settings",
    "SyncSettings",
    "YnabSettings",
    "get_settings",
    "validate_all_settings",
]
