"""Backend selection from configuration."""

from kharcha_vault.config import StorageSettings
from kharcha_vault.services.storage.file_store import FileStorage
from kharcha_vault.services.storage.interface import KeyValueStorage
from kharcha_vault.services.storage.memory import InMemoryStorage
from kharcha_vault.services.storage.sql_store import SqlStorage


def create_storage(settings: StorageSettings) -> KeyValueStorage:
    """
    Build the storage backend named in ``settings.backend``.

    Raises:
        StorageConnectionError: If the file directory or database cannot be opened
    """
    if settings.backend == "memory":
        return InMemoryStorage(quota_bytes=settings.quota_bytes)
    if settings.backend == "sql":
        return SqlStorage(settings.database_url)
    return FileStorage(settings.data_dir, write_attempts=settings.write_attempts)
