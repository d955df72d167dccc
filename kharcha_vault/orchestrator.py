"""
Main Orchestrator for Kharcha Vault

This module ties together all the components and exposes the one contract
the UI layer (forms, charts, menus) talks to:

1. Dataset flows (save, load, export, import, delete, usage)
2. Backup flows (create, restore, list, cleanup)
3. Schedule flows (set, get, scheduler lifecycle)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No record reaches storage without passing the shared validator
- No restore or import leaves a partly written dataset
- Every step is audited

Components are built once by ``create_vault`` from injected settings, so
tests and the application can run the same core against different storage
backends and limits.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Optional, Union

import structlog

from kharcha_vault.audit import AuditLogger
from kharcha_vault.backup import BackupManager, BackupScheduler
from kharcha_vault.backup.manager import RestoreSource
from kharcha_vault.clock import Clock, utc_now
from kharcha_vault.config import Settings, get_settings
from kharcha_vault.models.audit import AuditEvent
from kharcha_vault.models.backup import BackupSchedule, LocalBackup
from kharcha_vault.models.expense import Expense
from kharcha_vault.models.results import DataUsage, ImportResult, RestoreResult
from kharcha_vault.models.upload import FileSource
from kharcha_vault.serialization import ExpenseCsvCodec
from kharcha_vault.services.dataset import ExpenseDatasetStore
from kharcha_vault.services.export import DirectoryExportSink, ExportSink
from kharcha_vault.services.storage import KeyValueStorage, create_storage
from kharcha_vault.validation import ExpenseValidator


logger = structlog.get_logger(__name__)


class ExpenseVault:
    """
    Core contract for the expense tracker's persistence and backups.

    Usage:
        vault = create_vault()
        await vault.start()
        await vault.save("alice", expenses)
        filename = await vault.create_backup("alice", expenses)
        result = await vault.restore_from_backup("alice", "backup.json")
        await vault.shutdown()
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        datasets: ExpenseDatasetStore,
        backups: BackupManager,
        scheduler: BackupScheduler,
        audit_logger: AuditLogger,
    ):
        self._storage = storage
        self._datasets = datasets
        self._backups = backups
        self._scheduler = scheduler
        self._audit = audit_logger

    @property
    def scheduler(self) -> BackupScheduler:
        return self._scheduler

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> list[str]:
        """Run overdue scheduled backups and arm the rest."""
        owners = await self._scheduler.resume_all()
        logger.info("vault_started", armed_schedules=len(owners))
        return owners

    async def shutdown(self) -> None:
        """Stop scheduled backups and release the storage backend."""
        await self._scheduler.shutdown()
        await self._storage.close()

    # =========================================================================
    # DATASET
    # =========================================================================

    async def save(
        self,
        owner: str,
        records: Iterable[Union[Expense, Mapping[str, Any]]],
    ) -> bool:
        return await self._datasets.save(owner, records)

    async def load(self, owner: str) -> list[Expense]:
        return await self._datasets.load(owner)

    async def export_to_file(self, owner: str) -> Optional[str]:
        return await self._datasets.export_to_file(owner)

    async def import_from_file(self, owner: str, source: FileSource) -> ImportResult:
        return await self._datasets.import_from_file(owner, source)

    async def delete_all_data(self, owner: str) -> bool:
        """
        Remove everything stored for ``owner``, including snapshots and the
        backup schedule, and stop its scheduled backups.
        """
        await self._scheduler.cancel(owner)
        return await self._datasets.delete_all_data(owner)

    async def get_data_usage(self, owner: str) -> DataUsage:
        return await self._datasets.get_data_usage(owner)

    async def backup_dataset(self, owner: str) -> bool:
        """Keep a timestamped copy of the stored dataset text."""
        return await self._datasets.backup_dataset(owner)

    # =========================================================================
    # BACKUPS
    # =========================================================================

    async def create_backup(
        self,
        owner: str,
        records: Optional[Sequence[Expense]] = None,
    ) -> str:
        """
        Snapshot ``records`` (the stored dataset when None) and deliver the
        backup file.

        Raises:
            EmptyDatasetError: If there is nothing to back up
        """
        if records is None:
            records = await self._datasets.load(owner)
        return await self._backups.create_backup(owner, records)

    async def restore_from_backup(self, owner: str, source: RestoreSource) -> RestoreResult:
        return await self._backups.restore(owner, source)

    async def list_local_backups(self, owner: str) -> list[LocalBackup]:
        return await self._backups.list_local_backups(owner)

    async def cleanup_old_backups(self, owner: str, retention_days: Optional[int] = None) -> int:
        return await self._backups.cleanup_old_backups(owner, retention_days)

    # =========================================================================
    # SCHEDULE
    # =========================================================================

    async def set_schedule(self, owner: str, schedule: BackupSchedule) -> BackupSchedule:
        """Persist the schedule and arm or cancel the owner's backup task."""
        stored = await self._backups.set_schedule(owner, schedule)
        if stored.enabled:
            await self._scheduler.arm(owner)
        else:
            await self._scheduler.cancel(owner)
        return stored

    async def get_schedule(self, owner: str) -> Optional[BackupSchedule]:
        return await self._backups.get_schedule(owner)

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def get_audit_trail(self, owner: str, limit: Optional[int] = None) -> list[AuditEvent]:
        """The owner's persisted audit events, oldest first."""
        return await self._audit.read_events(owner, limit=limit)


def create_vault(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStorage] = None,
    export_sink: Optional[ExportSink] = None,
    clock: Clock = utc_now,
) -> ExpenseVault:
    """
    Factory function to create all vault components.

    Args:
        settings: Configuration; loaded from the environment when None
        storage: Storage backend; built from ``settings.storage`` when None
        export_sink: Receiver of export and backup files; a directory sink
                     when ``settings.backup.export_dir`` is set, else none
        clock: Time source shared by every component

    Returns:
        A wired ExpenseVault (call ``start()`` to resume schedules)
    """
    settings = settings or get_settings()
    if storage is None:
        storage = create_storage(settings.storage)
    if export_sink is None and settings.backup.export_dir is not None:
        export_sink = DirectoryExportSink(settings.backup.export_dir)

    audit_logger = AuditLogger(storage, settings.audit)
    validator = ExpenseValidator(settings.validation, clock=clock)

    datasets = ExpenseDatasetStore(
        storage,
        validator,
        codec=ExpenseCsvCodec(validator),
        export_sink=export_sink,
        audit=audit_logger,
        settings=settings.backup,
        clock=clock,
    )
    backups = BackupManager(
        storage,
        validator,
        datasets,
        export_sink=export_sink,
        audit=audit_logger,
        settings=settings.backup,
        clock=clock,
    )
    scheduler = BackupScheduler(backups, storage, settings=settings.backup, clock=clock)

    return ExpenseVault(storage, datasets, backups, scheduler, audit_logger)
