"""
In-Memory Storage Implementation

Used by tests and by sessions that do not need anything to survive the
process. An optional byte quota mimics the quota errors of browser-style
storage so the "prior value is retained" contract can be exercised.
"""

from typing import Optional

from kharcha_vault.services.storage.interface import (
    KeyValueStorage,
    QuotaExceededError,
)


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class InMemoryStorage(KeyValueStorage):
    """Dictionary-backed key/value storage."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self._data: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    @property
    def used_bytes(self) -> int:
        return sum(_entry_size(key, value) for key, value in self._data.items())

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            current = self._data.get(key)
            freed = _entry_size(key, current) if current is not None else 0
            needed = self.used_bytes - freed + _entry_size(key, value)
            if needed > self._quota_bytes:
                raise QuotaExceededError(
                    f"Storage quota exceeded writing {key} "
                    f"({needed} of {self._quota_bytes} bytes)"
                )
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))
