"""
Backup Manager

Creates snapshots, keeps the local snapshot set bounded, restores from
snapshots or backup files, and persists each owner's automatic backup
schedule.

Restore flow:
    1. Resolve the source (snapshot id, path, file object, upload, text)
    2. Parse the document, format tag first            → FormatError
    3. Recompute the record checksum                    → warning only
    4. Validate every record, drop repeated ids         → skipped + errors
    5. Zero valid records                               → rejected
    6. Commit the valid subset as the owner's dataset

DESIGN DECISION: A restore never leaves a half-written dataset. Either the
dataset store commits the full valid subset or nothing is written.
"""

from collections.abc import Mapping, Sequence
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from kharcha_vault.audit import AuditLogger
from kharcha_vault.clock import Clock, ensure_aware, file_timestamp, key_timestamp, utc_now
from kharcha_vault.config import BackupSettings
from kharcha_vault.integrity import verify_checksum
from kharcha_vault.models.audit import AuditEventBuilder
from kharcha_vault.models.backup import (
    BackupMetadata,
    BackupSchedule,
    BackupSnapshot,
    DateRange,
    LocalBackup,
)
from kharcha_vault.models.expense import Expense
from kharcha_vault.models.results import FlowState, RestoreResult
from kharcha_vault.models.upload import FileSource, read_upload
from kharcha_vault.serialization import (
    FormatError,
    encode_snapshot,
    parse_snapshot,
    records_payload,
    snapshot_checksum,
)
from kharcha_vault.services.dataset import ExpenseDatasetStore
from kharcha_vault.services.export import JSON_MEDIA_TYPE, ExportSink
from kharcha_vault.services.storage import KeyValueStorage, StorageKeys
from kharcha_vault.validation import DuplicateDetector, ExpenseValidator


logger = structlog.get_logger(__name__)

BACKUP_FILE_PREFIX = "pak-kharcha-backup"

RestoreSource = Union[FileSource, bytes, Mapping[str, Any]]


def snapshot_id_order(snapshot_id: str) -> tuple[str, int]:
    """Sort key for snapshot ids; the same-instant suffix compares as a number."""
    base, _, suffix = snapshot_id.partition("-")
    return base, int(suffix) if suffix.isdigit() else 0


class BackupManager:
    """
    Snapshot creation, retention, restore and schedule persistence.

    Usage:
        manager = BackupManager(storage, validator, datasets)
        snapshot = await manager.create_snapshot("alice", records)
        result = await manager.restore("alice", snapshot_id)
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        validator: ExpenseValidator,
        datasets: ExpenseDatasetStore,
        export_sink: Optional[ExportSink] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[BackupSettings] = None,
        clock: Clock = utc_now,
    ):
        self._storage = storage
        self._validator = validator
        self._datasets = datasets
        self._export_sink = export_sink
        self._audit = audit or AuditLogger()
        self._settings = settings or BackupSettings()
        self._clock = clock

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def build_snapshot(self, owner: str, records: Sequence[Expense]) -> BackupSnapshot:
        """
        Derive metadata and assemble a snapshot without storing it.

        Raises:
            EmptyDatasetError: If ``records`` is empty
        """
        if not records:
            raise EmptyDatasetError("No expenses to backup")

        documents = [record.to_document() for record in records]
        dates = sorted(record.date for record in records)
        categories = list(dict.fromkeys(record.category for record in records))

        metadata = BackupMetadata(
            owner=owner,
            created_at=self._clock(),
            record_count=len(records),
            total_amount=sum((record.amount for record in records), Decimal("0")),
            date_range=DateRange(earliest=dates[0], latest=dates[-1]),
            distinct_categories=categories,
            checksum=snapshot_checksum(documents),
        )
        return BackupSnapshot(metadata=metadata, records=documents)

    async def create_snapshot(self, owner: str, records: Sequence[Expense]) -> BackupSnapshot:
        """
        Store a new local snapshot of ``records``.

        Only the newest ``max_local_backups`` snapshots are kept afterwards.

        Raises:
            EmptyDatasetError: If ``records`` is empty
            StorageError: If the snapshot cannot be written
        """
        keys = StorageKeys(owner)
        snapshot = self.build_snapshot(keys.owner, records)

        snapshot_id = await self._free_snapshot_id(keys, snapshot)
        await self._storage.set(keys.snapshot(snapshot_id), encode_snapshot(snapshot))

        logger.info("snapshot_created", owner=keys.owner, snapshot_id=snapshot_id)
        await self._audit.log(
            AuditEventBuilder.backup_created(keys.owner, snapshot_id, len(records))
        )
        await self._enforce_max_backups(keys)
        return snapshot

    async def _free_snapshot_id(self, keys: StorageKeys, snapshot: BackupSnapshot) -> str:
        base = key_timestamp(snapshot.metadata.created_at)
        existing = set(await self._storage.list_keys(keys.snapshot_prefix))
        candidate = base
        suffix = 1
        while keys.snapshot(candidate) in existing:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    async def _enforce_max_backups(self, keys: StorageKeys) -> None:
        backups = await self.list_local_backups(keys.owner)
        excess = backups[self._settings.max_local_backups:]
        for backup in excess:
            await self._storage.delete(keys.snapshot(backup.snapshot_id))
        if excess:
            await self._audit.log(AuditEventBuilder.backups_pruned(
                keys.owner,
                [backup.snapshot_id for backup in excess],
                f"keep newest {self._settings.max_local_backups}",
            ))

    async def create_backup(self, owner: str, records: Sequence[Expense]) -> str:
        """
        Create a local snapshot and deliver it as a downloadable JSON file.

        Returns:
            The backup file name
        """
        keys = StorageKeys(owner)
        snapshot = await self.create_snapshot(keys.owner, records)
        created_at = ensure_aware(snapshot.metadata.created_at)
        filename = f"{BACKUP_FILE_PREFIX}-{keys.owner}-{file_timestamp(created_at)}.json"

        if self._export_sink is not None:
            await self._export_sink.deliver(filename, encode_snapshot(snapshot), JSON_MEDIA_TYPE)
        await self._audit.log(
            AuditEventBuilder.export_created(keys.owner, filename, len(records))
        )
        return filename

    async def list_local_backups(self, owner: str) -> list[LocalBackup]:
        """
        Local snapshots of ``owner``, newest first.

        Entries that fail to parse are skipped with a warning.
        """
        keys = StorageKeys(owner)
        backups = []
        for key in await self._storage.list_keys(keys.snapshot_prefix):
            stored = await self._storage.get(key)
            if stored is None:
                continue
            try:
                snapshot = parse_snapshot(stored)
            except FormatError as e:
                logger.warning("snapshot_unreadable", key=key, error=str(e))
                continue
            backups.append(LocalBackup(
                snapshot_id=keys.snapshot_id_from_key(key),
                metadata=snapshot.metadata,
            ))

        backups.sort(
            key=lambda backup: (
                ensure_aware(backup.metadata.created_at),
                snapshot_id_order(backup.snapshot_id),
            ),
            reverse=True,
        )
        return backups

    async def cleanup_old_backups(self, owner: str, retention_days: Optional[int] = None) -> int:
        """
        Remove snapshots created at or before ``now - retention_days``.

        Snapshots that fail to parse are removed as well.

        Args:
            owner: Owner identity
            retention_days: Age limit in days (configured default when None)

        Returns:
            Number of snapshots removed
        """
        if retention_days is None:
            retention_days = self._settings.default_retention_days
        if retention_days < 0:
            raise ValueError("retention_days must not be negative")

        keys = StorageKeys(owner)
        cutoff = self._clock() - timedelta(days=retention_days)
        removed = []

        for key in await self._storage.list_keys(keys.snapshot_prefix):
            stored = await self._storage.get(key)
            if stored is None:
                continue
            try:
                created_at = ensure_aware(parse_snapshot(stored).metadata.created_at)
            except FormatError:
                logger.warning("corrupt_snapshot_removed", key=key)
                created_at = None
            if created_at is None or created_at <= cutoff:
                if await self._storage.delete(key):
                    removed.append(keys.snapshot_id_from_key(key))

        if removed:
            logger.info("old_backups_removed", owner=keys.owner, count=len(removed))
            await self._audit.log(AuditEventBuilder.backups_pruned(
                keys.owner, removed, f"older than {retention_days} days",
            ))
        return len(removed)

    # =========================================================================
    # RESTORE
    # =========================================================================

    async def restore(self, owner: str, source: RestoreSource) -> RestoreResult:
        """
        Restore the owner's dataset from a snapshot or backup file.

        Args:
            owner: Owner whose dataset is replaced
            source: A local snapshot id, a path or open file ending in
                    ``.json``, an UploadedFile, JSON text or bytes, or an
                    already decoded document

        Returns:
            RestoreResult; on rejection the stored dataset is unchanged

        Raises:
            StorageError: If storage fails while reading or committing
        """
        keys = StorageKeys(owner)
        label = "backup"
        try:
            label, document = await self._resolve_source(keys, source)
            snapshot = parse_snapshot(document)
        except (FormatError, BackupNotFoundError) as e:
            return await self._reject_restore(keys.owner, label, str(e))

        warnings = []
        check = verify_checksum(
            records_payload(snapshot.records),
            snapshot.metadata.checksum,
            context=f"backup {label}",
        )
        if not check.matches:
            warnings.append("Backup checksum mismatch - data may be corrupted")
            await self._audit.log(AuditEventBuilder.integrity_mismatch(
                keys.owner, "snapshot", check.expected, check.actual, entity_id=label,
            ))
        if snapshot.metadata.owner.strip().lower() != keys.owner:
            warnings.append(f"Backup was created for {snapshot.metadata.owner}")

        valid: list[Expense] = []
        errors: list[str] = []
        ids = DuplicateDetector(match_content=False)
        for index, record in enumerate(snapshot.records, start=1):
            validation = self._validator.validate(record)
            if not validation.is_valid:
                errors.append(f"Expense {index}: {validation.summary()}")
            elif not ids.accept(validation.expense):
                errors.append(f"Expense {index}: Duplicate id {validation.expense.id} skipped")
            else:
                valid.append(validation.expense)

        if not valid:
            return await self._reject_restore(
                keys.owner,
                label,
                "No valid expenses found in backup file",
                warnings=warnings + errors,
                metadata=snapshot.metadata,
            )

        await self._datasets.commit(keys.owner, valid)

        skipped = len(snapshot.records) - len(valid)
        await self._audit.log(
            AuditEventBuilder.restore_completed(keys.owner, label, len(valid), skipped)
        )
        return RestoreResult(
            success=True,
            restored_count=len(valid),
            skipped_count=skipped,
            errors=errors,
            warnings=warnings,
            metadata=snapshot.metadata,
            state=FlowState.COMMITTED_WITH_WARNINGS if skipped or warnings else FlowState.COMMITTED,
        )

    async def _resolve_source(
        self,
        keys: StorageKeys,
        source: RestoreSource,
    ) -> tuple[str, Union[str, bytes, Mapping[str, Any]]]:
        """Turn any accepted restore input into (label, document)."""
        if isinstance(source, Mapping):
            return "backup document", source
        if isinstance(source, bytes):
            return "backup data", source

        if isinstance(source, str):
            if source.lstrip()[:1] in ("{", "["):
                return "backup text", source
            stored = await self._storage.get(keys.snapshot(source))
            if stored is not None:
                return source, stored
            source = Path(source)

        if isinstance(source, Path) and not source.is_file():
            raise BackupNotFoundError(f"Backup not found: {source.name}")

        try:
            upload = read_upload(source)
        except OSError as e:
            raise BackupNotFoundError(f"Could not read backup file: {e}")
        if upload.extension != ".json":
            raise FormatError("Backup files must be in JSON format")
        return upload.name, upload.content

    async def _reject_restore(
        self,
        owner: str,
        label: str,
        reason: str,
        warnings: Optional[list[str]] = None,
        metadata: Optional[BackupMetadata] = None,
    ) -> RestoreResult:
        logger.warning("restore_rejected", owner=owner, source=label, reason=reason)
        await self._audit.log(AuditEventBuilder.restore_rejected(owner, label, reason))
        return RestoreResult.rejected(reason, warnings=warnings, metadata=metadata)

    # =========================================================================
    # SCHEDULE
    # =========================================================================

    async def get_schedule(self, owner: str) -> Optional[BackupSchedule]:
        """The owner's stored schedule, or None if unset or unreadable."""
        stored = await self._storage.get(StorageKeys(owner).schedule)
        if stored is None:
            return None
        try:
            schedule = BackupSchedule.model_validate_json(stored)
        except ValidationError:
            logger.warning("schedule_unreadable", owner=owner)
            return None
        return schedule.model_copy(update={
            "last_backup": ensure_aware(schedule.last_backup) if schedule.last_backup else None,
            "next_backup": ensure_aware(schedule.next_backup) if schedule.next_backup else None,
        })

    async def _write_schedule(self, owner: str, schedule: BackupSchedule) -> None:
        await self._storage.set(
            StorageKeys(owner).schedule,
            schedule.model_dump_json(by_alias=True),
        )

    async def set_schedule(self, owner: str, schedule: BackupSchedule) -> BackupSchedule:
        """
        Persist ``schedule`` for ``owner``.

        When enabled, ``next_backup`` is one interval after now; when
        disabled it is cleared. Returns the schedule as stored.
        """
        keys = StorageKeys(owner)
        if schedule.enabled:
            stored = schedule.model_copy(update={"next_backup": schedule.next_after(self._clock())})
        else:
            stored = schedule.model_copy(update={"next_backup": None})

        await self._write_schedule(keys.owner, stored)
        await self._audit.log(AuditEventBuilder.schedule_updated(
            keys.owner, stored.enabled, stored.frequency.value,
        ))
        return stored

    async def run_scheduled_backup(self, owner: str) -> bool:
        """
        Run the owner's automatic backup if it is due.

        The schedule is re-read first, so a schedule disabled since the
        fire was armed makes this a no-op. An empty dataset moves
        ``next_backup`` forward without taking a snapshot.

        Returns:
            True if a backup was created
        """
        keys = StorageKeys(owner)
        schedule = await self.get_schedule(keys.owner)
        if schedule is None or not schedule.enabled:
            return False

        now = self._clock()
        if not schedule.is_due(now):
            return False

        records = await self._datasets.load(keys.owner)
        if not records:
            await self._write_schedule(
                keys.owner,
                schedule.model_copy(update={"next_backup": schedule.next_after(now)}),
            )
            await self._audit.log(
                AuditEventBuilder.scheduled_backup_skipped(keys.owner, "no expenses to back up")
            )
            return False

        await self.create_backup(keys.owner, records)
        await self._write_schedule(keys.owner, schedule.model_copy(update={
            "last_backup": now,
            "next_backup": schedule.next_after(now),
        }))
        await self.cleanup_old_backups(keys.owner, schedule.retention_days)
        return True


class EmptyDatasetError(ValueError):
    """A snapshot was requested for an empty record set."""
    pass


class BackupNotFoundError(LookupError):
    """The named snapshot or backup file does not exist."""
    pass
