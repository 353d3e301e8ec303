"""Configuration package."""

from teamledger.config.settings import (
    AppSettings,
    InvoiceSettings,
    LedgerSettings,
    NotificationSettings,
    ReconciliationSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "InvoiceSettings",
    "LedgerSettings",
    "NotificationSettings",
    "ReconciliationSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
