"""
Storage Services Package

Provides the abstract key/value interface, owner key namespacing and three
interchangeable backends (memory, files, SQL).
"""

from kharcha_vault.services.storage.interface import (
    KeyValueStorage,
    QuotaExceededError,
    StorageConnectionError,
    StorageError,
)
from kharcha_vault.services.storage.keys import (
    StorageKeys,
    normalize_owner,
    owner_from_schedule_key,
)
from kharcha_vault.services.storage.memory import InMemoryStorage
from kharcha_vault.services.storage.file_store import FileStorage
from kharcha_vault.services.storage.sql_store import SqlStorage
from kharcha_vault.services.storage.factory import create_storage

__all__ = [
    # Interface
    "KeyValueStorage",
    # Exceptions
    "QuotaExceededError",
    "StorageConnectionError",
    "StorageError",
    # Keys
    "StorageKeys",
    "normalize_owner",
    "owner_from_schedule_key",
    # Implementations
    "FileStorage",
    "InMemoryStorage",
    "SqlStorage",
    "create_storage",
]
