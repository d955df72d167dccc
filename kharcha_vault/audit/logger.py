"""
Audit Logger

DESIGN DECISION: Saves, imports, backups and restores each leave an event.
Skipped rows and checksum mismatches can be traced afterwards, and the
owner can read back the history of their data.

Events are appended to a capped list under the owner's ``audit-log`` key.
A failed audit write is logged and reported as False; it never fails the
operation being audited.
"""

import json
from typing import Optional

import structlog
from pydantic import ValidationError

from kharcha_vault.config import AuditSettings
from kharcha_vault.models.audit import AuditEvent
from kharcha_vault.services.storage import KeyValueStorage, StorageError, StorageKeys


# JSON lines through the stdlib logging tree
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Writes audit events to the structured log and, for owned events, to the
    owner's ``audit-log`` key.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        settings: Optional[AuditSettings] = None,
    ):
        """
        Args:
            storage: Where owned events are appended; None keeps events
                     in the local log only
            settings: Audit configuration (persistence switch, cap)
        """
        self._storage = storage
        self._settings = settings or AuditSettings()
        self._logger = structlog.get_logger("kharcha_vault.audit")

    async def log(self, event: AuditEvent, persist: bool = True) -> bool:
        """
        Emit ``event`` at its severity.

        Always logs locally. Appends to the owner's audit log when storage
        is configured, the event has an owner, and ``persist`` is set.

        Returns True if the storage write succeeded (or nothing was persisted).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if not (persist and self._storage and self._settings.persist_events and event.owner):
            return True

        try:
            await self._append(event)
        except StorageError as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False
        return True

    async def _append(self, event: AuditEvent) -> None:
        key = StorageKeys(event.owner).audit_log
        entries = await self._read_raw(key)
        entries.append(event.model_dump(mode="json"))
        entries = entries[-self._settings.max_events_per_owner:]
        await self._storage.set(key, json.dumps(entries, ensure_ascii=False))

    async def _read_raw(self, key: str) -> list[dict]:
        stored = await self._storage.get(key)
        if stored is None:
            return []
        try:
            entries = json.loads(stored)
        except json.JSONDecodeError:
            self._logger.warning("audit_log_unreadable", key=key)
            return []
        return entries if isinstance(entries, list) else []

    async def read_events(self, owner: str, limit: Optional[int] = None) -> list[AuditEvent]:
        """
        Read back an owner's persisted events, oldest first.

        Entries that no longer parse are skipped.
        """
        if self._storage is None:
            return []

        events = []
        for entry in await self._read_raw(StorageKeys(owner).audit_log):
            try:
                events.append(AuditEvent.model_validate(entry))
            except ValidationError:
                continue
        if limit is not None:
            events = events[-limit:]
        return events
