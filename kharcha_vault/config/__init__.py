"""Configuration package."""

from kharcha_vault.config.settings import (
    DEFAULT_CATEGORIES,
    AuditSettings,
    BackupSettings,
    Settings,
    StorageSettings,
    ValidationSettings,
    get_settings,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "AuditSettings",
    "BackupSettings",
    "Settings",
    "StorageSettings",
    "ValidationSettings",
    "get_settings",
]
