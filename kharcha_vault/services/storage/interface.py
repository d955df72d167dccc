"""
Abstract Storage Interface

DESIGN DECISION: Every component persists through one tiny key/value
interface. This allows us to:
1. Run against a directory of files, a SQL database, or plain memory
2. Unit test the whole core without any environment dependency
3. Delete a user by scanning one key prefix

The interface is intentionally minimal - get, set, delete, list by prefix.
Namespacing lives in ``StorageKeys`` so no backend has to know about owners.

CONTRACT: ``set`` is a full overwrite that either succeeds completely or
leaves the previous value untouched and raises ``StorageError``. Callers
never observe a partially written value.
"""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStorage(ABC):
    """
    Abstract interface for namespaced key/value persistence.

    Any storage implementation (files, SQL, memory) must implement these
    methods.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Read the value stored under ``key``.

        Returns:
            The stored text, or None if the key does not exist

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Store ``value`` under ``key``, replacing any previous value.

        Raises:
            StorageError: If the write fails (the previous value is kept)
            QuotaExceededError: If the backend is out of space
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove ``key``.

        Returns:
            True if something was removed, False if the key did not exist
        """
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """
        List keys starting with ``prefix``, sorted ascending.
        """
        pass

    async def delete_prefix(self, prefix: str) -> int:
        """
        Remove every key starting with ``prefix``.

        Returns:
            Number of keys removed
        """
        removed = 0
        for key in await self.list_keys(prefix):
            if await self.delete(key):
                removed += 1
        return removed

    async def close(self) -> None:
        """Release backend resources. Most backends hold none."""
        return None


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class QuotaExceededError(StorageError):
    """The backend has no room for the value being written."""
    pass


class StorageConnectionError(StorageError):
    """Could not reach or open the storage backend."""
    pass
