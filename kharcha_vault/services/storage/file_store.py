"""
File Storage Implementation

One file per key inside a single data directory. Keys are percent-encoded
into file names, so ``alice/snapshots/20240101T000000000000Z`` becomes
``alice%2Fsnapshots%2F20240101T000000000000Z.kv``.

DESIGN DECISION: Writes go to a temporary file in the same directory which
is then moved over the target with ``os.replace``. The rename is atomic, so
a crash or a full disk leaves either the old value or the new one, never a
truncated file.

TRADEOFFS:
- Listing scans the directory (fine for a personal dataset and a handful
  of snapshots)
- No cross-process locking; concurrent sessions resolve last-write-wins
"""

import errno
import os
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import structlog
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from kharcha_vault.services.storage.interface import (
    KeyValueStorage,
    QuotaExceededError,
    StorageConnectionError,
    StorageError,
)


logger = structlog.get_logger(__name__)

KEY_SUFFIX = ".kv"
TEMP_PREFIX = ".tmp-"
OUT_OF_SPACE = frozenset({errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)})


def _is_transient(error: BaseException) -> bool:
    """Out-of-space is permanent; other OS errors (locks, busy files) may clear."""
    return isinstance(error, OSError) and error.errno not in OUT_OF_SPACE


class FileStorage(KeyValueStorage):
    """
    Directory-backed key/value storage.

    Transient write failures are retried with exponential backoff before
    surfacing as ``StorageError``.
    """

    def __init__(self, root: Path, write_attempts: int = 3):
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageConnectionError(f"Cannot open data directory {self._root}: {e}")

        self._retrying = Retrying(
            stop=stop_after_attempt(write_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}{KEY_SUFFIX}"

    def _write_atomic(self, path: Path, value: str) -> None:
        fd, temp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=self._root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(value)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise

    async def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_bytes().decode("utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {key}: {e}")

    async def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        try:
            self._retrying(self._write_atomic, path, value)
        except OSError as e:
            logger.error("file_storage_write_failed", key=key, error=str(e))
            if e.errno in OUT_OF_SPACE:
                raise QuotaExceededError(f"No space left writing {key}")
            raise StorageError(f"Failed to write {key}: {e}")

    async def delete(self, key: str) -> bool:
        try:
            self._path_for(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}")

    async def list_keys(self, prefix: str = "") -> list[str]:
        try:
            names = os.listdir(self._root)
        except OSError as e:
            raise StorageError(f"Failed to list {self._root}: {e}")

        keys = []
        for name in names:
            if name.startswith(TEMP_PREFIX) or not name.endswith(KEY_SUFFIX):
                continue
            key = unquote(name[: -len(KEY_SUFFIX)])
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)
