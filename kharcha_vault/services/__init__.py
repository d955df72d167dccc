"""Services package."""

from kharcha_vault.services.export import (
    DirectoryExportSink,
    ExportSink,
    InMemoryExportSink,
)
from kharcha_vault.services.storage import (
    FileStorage,
    InMemoryStorage,
    KeyValueStorage,
    QuotaExceededError,
    SqlStorage,
    StorageConnectionError,
    StorageError,
    create_storage,
)

__all__ = [
    # Export sinks
    "DirectoryExportSink",
    "ExportSink",
    "InMemoryExportSink",
    # Storage services
    "FileStorage",
    "InMemoryStorage",
    "KeyValueStorage",
    "QuotaExceededError",
    "SqlStorage",
    "StorageConnectionError",
    "StorageError",
    "create_storage",
]
