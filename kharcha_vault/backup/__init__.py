"""Backup package: snapshots, restore, retention and scheduled backups."""

from kharcha_vault.backup.manager import (
    BackupManager,
    BackupNotFoundError,
    EmptyDatasetError,
)
from kharcha_vault.backup.scheduler import BackupScheduler

__all__ = [
    "BackupManager",
    "BackupNotFoundError",
    "BackupScheduler",
    "EmptyDatasetError",
]
