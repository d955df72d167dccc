"""
Expense Dataset Store

Owns an owner's stored dataset: the CSV text, the copy kept from before the
last save, and the metadata with the checksum of the stored text.

Write path:
    records → ExpenseValidator → ExpenseCsvCodec.encode → checksum
            → previous copy kept → dataset written → metadata written

Read path:
    dataset text → checksum verified (warn only) → decode → valid records

DESIGN DECISION: Saving is all-or-nothing. A direct save with a single
invalid record writes nothing and returns False. Importing is the tolerant
path: bad rows are skipped and reported, the valid rest replaces the dataset.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from kharcha_vault.audit import AuditLogger
from kharcha_vault.clock import Clock, file_timestamp, key_timestamp, utc_now
from kharcha_vault.config import BackupSettings
from kharcha_vault.integrity import compute_checksum, verify_checksum
from kharcha_vault.models.audit import AuditEventBuilder
from kharcha_vault.models.backup import DatasetMetadata
from kharcha_vault.models.expense import Expense
from kharcha_vault.models.results import DataUsage, FlowState, ImportResult
from kharcha_vault.models.upload import FileSource, read_upload
from kharcha_vault.serialization import CSV_FORMAT_VERSION, ExpenseCsvCodec, FormatError
from kharcha_vault.services.export import CSV_MEDIA_TYPE, ExportSink
from kharcha_vault.services.storage import KeyValueStorage, StorageError, StorageKeys
from kharcha_vault.validation import DuplicateDetector, ExpenseValidator


logger = structlog.get_logger(__name__)

EXPORT_TRAILER = "\n\n# Export completed at: "


class ExpenseDatasetStore:
    """
    Save, load, export and import of one owner's dataset at a time.

    Every record that reaches storage has passed the shared validator.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        validator: ExpenseValidator,
        codec: Optional[ExpenseCsvCodec] = None,
        export_sink: Optional[ExportSink] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[BackupSettings] = None,
        clock: Clock = utc_now,
    ):
        self._storage = storage
        self._validator = validator
        self._codec = codec or ExpenseCsvCodec(validator)
        self._export_sink = export_sink
        self._audit = audit or AuditLogger()
        self._settings = settings or BackupSettings()
        self._clock = clock

    # =========================================================================
    # SAVE / LOAD
    # =========================================================================

    async def save(
        self,
        owner: str,
        records: Iterable[Union[Expense, Mapping[str, Any]]],
    ) -> bool:
        """
        Replace the owner's dataset with ``records``.

        Args:
            owner: Owner identity
            records: The complete dataset, typed or as plain mappings

        Returns:
            True if saved; False if any record is invalid or an id repeats,
            in which case nothing is written

        Raises:
            StorageError: If the backend write fails
        """
        keys = StorageKeys(owner)
        accepted: list[Expense] = []
        errors: list[str] = []
        ids = DuplicateDetector(match_content=False)

        for position, candidate in enumerate(records, start=1):
            validation = self._validator.validate(candidate)
            if not validation.is_valid:
                errors.append(f"Record {position}: {validation.summary()}")
                continue
            if not ids.accept(validation.expense):
                errors.append(f"Record {position}: Duplicate id {validation.expense.id}")
                continue
            accepted.append(validation.expense)

        if errors:
            logger.warning("dataset_save_rejected", owner=keys.owner, errors=errors)
            await self._audit.log(AuditEventBuilder.dataset_save_rejected(keys.owner, errors))
            return False

        await self.commit(keys.owner, accepted)
        return True

    async def commit(self, owner: str, records: list[Expense]) -> DatasetMetadata:
        """
        Write already-validated records as the owner's dataset.

        The text stored before this call is kept under ``dataset-previous``.
        Metadata is written last so its checksum never describes text that
        was not stored. If that write fails the prior text is put back, so
        a failed commit leaves the dataset as it was.
        """
        keys = StorageKeys(owner)
        now = self._clock()
        text = self._codec.encode(keys.owner, records, now)
        metadata = DatasetMetadata(
            format_version=CSV_FORMAT_VERSION,
            owner=keys.owner,
            last_saved=now,
            record_count=len(records),
            checksum=compute_checksum(text),
        )

        previous = None
        dataset_written = False
        try:
            previous = await self._storage.get(keys.dataset)
            if previous is not None:
                await self._storage.set(keys.previous_dataset, previous)
            await self._storage.set(keys.dataset, text)
            dataset_written = True
            await self._storage.set(
                keys.dataset_meta,
                metadata.model_dump_json(by_alias=True),
            )
        except StorageError as e:
            logger.error("dataset_save_failed", owner=keys.owner, error=str(e))
            if dataset_written:
                await self._roll_back(keys, previous)
            await self._audit.log(
                AuditEventBuilder.storage_error(keys.owner, "save", str(e)),
                persist=False,
            )
            raise

        logger.info("dataset_saved", owner=keys.owner, record_count=len(records))
        await self._audit.log(
            AuditEventBuilder.dataset_saved(keys.owner, len(records), metadata.checksum)
        )
        return metadata

    async def _roll_back(self, keys: StorageKeys, previous: Optional[str]) -> None:
        """Put back the dataset text stored before a commit that failed part way."""
        try:
            if previous is None:
                await self._storage.delete(keys.dataset)
            else:
                await self._storage.set(keys.dataset, previous)
        except StorageError as e:
            logger.error("dataset_rollback_failed", owner=keys.owner, error=str(e))
            return
        logger.warning("dataset_rolled_back", owner=keys.owner)

    async def read_metadata(self, owner: str) -> Optional[DatasetMetadata]:
        """Stored dataset metadata, or None if absent or unreadable."""
        stored = await self._storage.get(StorageKeys(owner).dataset_meta)
        if stored is None:
            return None
        try:
            return DatasetMetadata.model_validate_json(stored)
        except ValidationError:
            logger.warning("dataset_metadata_unreadable", owner=owner)
            return None

    async def load(self, owner: str) -> list[Expense]:
        """
        Load the owner's dataset.

        A checksum mismatch is reported (log, ``IntegrityWarning``, audit
        event) and loading continues. Rows that fail validation are skipped.

        Returns:
            Valid records in stored order, empty if nothing is stored
        """
        keys = StorageKeys(owner)
        text = await self._storage.get(keys.dataset)
        if text is None:
            return []

        metadata = await self.read_metadata(keys.owner)
        check = verify_checksum(
            text,
            metadata.checksum if metadata else None,
            context=f"dataset of {keys.owner}",
        )
        if not check.matches:
            await self._audit.log(AuditEventBuilder.integrity_mismatch(
                keys.owner, "dataset", check.expected, check.actual,
            ))

        decoded = self._codec.decode(text)
        ids = DuplicateDetector(match_content=False)
        records = [record for record in decoded.records if ids.accept(record)]
        skipped = decoded.rows_seen - len(records)

        if decoded.errors:
            logger.warning("dataset_rows_skipped", owner=keys.owner, errors=decoded.errors)
        await self._audit.log(AuditEventBuilder.dataset_loaded(keys.owner, len(records), skipped))
        return records

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    async def export_to_file(self, owner: str) -> Optional[str]:
        """
        Deliver the stored dataset to the export sink as a CSV file.

        Returns:
            The file name, or None if the owner has no stored dataset
        """
        keys = StorageKeys(owner)
        text = await self._storage.get(keys.dataset)
        if text is None:
            return None

        now = self._clock()
        filename = f"pak-kharcha-{keys.owner}-{file_timestamp(now)}.csv"
        content = text + EXPORT_TRAILER + now.isoformat()
        if self._export_sink is not None:
            await self._export_sink.deliver(filename, content, CSV_MEDIA_TYPE)

        metadata = await self.read_metadata(keys.owner)
        record_count = metadata.record_count if metadata else 0
        await self._audit.log(AuditEventBuilder.export_created(keys.owner, filename, record_count))
        return filename

    async def import_from_file(self, owner: str, source: FileSource) -> ImportResult:
        """
        Replace the owner's dataset with the valid rows of a CSV file.

        Rows are skipped when they fail validation or duplicate an earlier
        row by id or by content. The file is rejected, and the stored
        dataset left as it was, when it is not a ``.csv`` file, is larger
        than the configured limit, is empty, has no column header, or
        yields no valid rows.
        """
        keys = StorageKeys(owner)
        try:
            upload = read_upload(source)
        except OSError as e:
            return await self._reject_import(keys.owner, str(source), f"Could not read file: {e}")

        if upload.extension != ".csv":
            return await self._reject_import(keys.owner, upload.name, "File must be a CSV file")
        if upload.size > self._settings.max_import_size_bytes:
            return await self._reject_import(
                keys.owner,
                upload.name,
                f"File size too large. Maximum size is {self._settings.max_import_size_mb}MB.",
            )

        try:
            text = upload.text()
        except UnicodeDecodeError:
            return await self._reject_import(keys.owner, upload.name, "File is not valid UTF-8 text")
        if not text.strip():
            return await self._reject_import(keys.owner, upload.name, "File is empty")

        accepted: list[Expense] = []
        errors: list[str] = []
        skipped = 0
        detector = DuplicateDetector(match_content=True)

        try:
            for row in self._codec.iter_rows(text, require_header=True):
                if not row.validation.is_valid:
                    skipped += 1
                    errors.append(row.error)
                elif not detector.accept(row.validation.expense):
                    skipped += 1
                    errors.append(f"Row {row.line_number}: Duplicate expense skipped")
                else:
                    accepted.append(row.validation.expense)
        except FormatError as e:
            return await self._reject_import(keys.owner, upload.name, str(e))

        if not accepted:
            return await self._reject_import(
                keys.owner, upload.name, "No valid expenses found in the file",
            )

        await self.commit(keys.owner, accepted)
        await self._audit.log(AuditEventBuilder.import_completed(
            keys.owner, upload.name, len(accepted), skipped,
        ))
        return ImportResult(
            success=True,
            imported_count=len(accepted),
            skipped_count=skipped,
            errors=errors,
            state=FlowState.COMMITTED_WITH_WARNINGS if skipped else FlowState.COMMITTED,
        )

    async def _reject_import(self, owner: str, filename: str, reason: str) -> ImportResult:
        logger.warning("import_rejected", owner=owner, filename=filename, reason=reason)
        await self._audit.log(AuditEventBuilder.import_rejected(owner, filename, reason))
        return ImportResult.rejected(reason)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    async def backup_dataset(self, owner: str) -> bool:
        """
        Copy the stored dataset text to a timestamped ``dataset-backups`` key.

        Only the newest ``max_dataset_backups`` copies are kept.

        Returns:
            False if the owner has no stored dataset
        """
        keys = StorageKeys(owner)
        text = await self._storage.get(keys.dataset)
        if text is None:
            return False

        await self._storage.set(keys.dataset_backup(key_timestamp(self._clock())), text)

        keep = self._settings.max_dataset_backups
        copies = await self._storage.list_keys(keys.dataset_backup_prefix)
        for key in copies[:-keep]:
            await self._storage.delete(key)
        logger.info("dataset_backed_up", owner=keys.owner, copies=min(len(copies), keep))
        return True

    async def delete_all_data(self, owner: str) -> bool:
        """
        Remove every key the owner has: dataset, metadata, snapshots,
        schedule and audit log.
        """
        keys = StorageKeys(owner)
        removed = await self._storage.delete_prefix(keys.prefix)
        # Local log only, a persisted event would recreate the namespace
        await self._audit.log(AuditEventBuilder.dataset_deleted(keys.owner, removed), persist=False)
        return True

    async def get_data_usage(self, owner: str) -> DataUsage:
        """Byte size of the stored dataset text and its record count."""
        keys = StorageKeys(owner)
        text = await self._storage.get(keys.dataset)
        if text is None:
            return DataUsage()

        metadata = await self.read_metadata(keys.owner)
        if metadata is not None:
            records = metadata.record_count
        else:
            records = len(self._codec.decode(text).records)
        return DataUsage(size_bytes=len(text.encode("utf-8")), records=records)
