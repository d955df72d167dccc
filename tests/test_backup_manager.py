"""Tests for snapshots, restore, retention and schedules."""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import FIXED_NOW, make_expense

from kharcha_vault.audit import AuditLogger
from kharcha_vault.backup import BackupManager, EmptyDatasetError
from kharcha_vault.backup.manager import snapshot_id_order
from kharcha_vault.config import AuditSettings, BackupSettings
from kharcha_vault.integrity import IntegrityWarning
from kharcha_vault.models.backup import BackupFrequency, BackupSchedule
from kharcha_vault.models.results import FlowState
from kharcha_vault.models.upload import UploadedFile
from kharcha_vault.serialization import encode_snapshot
from kharcha_vault.services.dataset import ExpenseDatasetStore
from kharcha_vault.services.storage import StorageKeys


@pytest.fixture
def audit(storage):
    return AuditLogger(storage, AuditSettings())


@pytest.fixture
def datasets(storage, validator, codec, export_sink, audit, clock):
    return ExpenseDatasetStore(
        storage, validator, codec=codec, export_sink=export_sink, audit=audit, clock=clock,
    )


@pytest.fixture
def manager(storage, validator, datasets, export_sink, audit, clock):
    return BackupManager(
        storage,
        validator,
        datasets,
        export_sink=export_sink,
        audit=audit,
        settings=BackupSettings(),
        clock=clock,
    )


@pytest.fixture
def ten_expenses():
    return [make_expense(i, amount=Decimal(f"{i}00.50")) for i in range(1, 11)]


class TestCreateSnapshot:
    """Tests for snapshot creation and count-based retention."""

    @pytest.mark.asyncio
    async def test_metadata_is_derived(self, manager, expenses):
        snapshot = await manager.create_snapshot("alice", expenses)
        metadata = snapshot.metadata

        assert metadata.owner == "alice"
        assert metadata.record_count == 3
        assert metadata.total_amount == Decimal("306")
        assert metadata.date_range.earliest == expenses[0].date
        assert metadata.date_range.latest == expenses[-1].date
        assert metadata.distinct_categories == ["Food & Groceries"]
        assert metadata.created_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_checksum_is_deterministic(self, manager, expenses):
        first = manager.build_snapshot("alice", expenses)
        second = manager.build_snapshot("alice", expenses)
        assert first.metadata.checksum == second.metadata.checksum
        changed = manager.build_snapshot("alice", [*expenses[:2], make_expense(3, description="Other")])
        assert changed.metadata.checksum != first.metadata.checksum

    @pytest.mark.asyncio
    async def test_empty_records_rejected(self, manager):
        with pytest.raises(EmptyDatasetError):
            await manager.create_snapshot("alice", [])

    @pytest.mark.asyncio
    async def test_snapshot_is_stored(self, manager, storage, expenses):
        await manager.create_snapshot("alice", expenses)
        keys = await storage.list_keys(StorageKeys("alice").snapshot_prefix)
        assert keys == ["alice/snapshots/20240615T120000000000Z"]

    @pytest.mark.asyncio
    async def test_same_instant_gets_unique_id(self, manager, expenses):
        await manager.create_snapshot("alice", expenses)
        await manager.create_snapshot("alice", expenses)
        ids = {backup.snapshot_id for backup in await manager.list_local_backups("alice")}
        assert ids == {"20240615T120000000000Z", "20240615T120000000000Z-1"}

    @pytest.mark.asyncio
    async def test_same_instant_suffixes_list_numerically(self, storage, validator, datasets, clock, expenses):
        """Test -10 lists ahead of -9 for snapshots taken in one instant."""
        manager = BackupManager(
            storage, validator, datasets, settings=BackupSettings(max_local_backups=12), clock=clock,
        )
        for _ in range(11):
            await manager.create_snapshot("alice", expenses)

        base = "20240615T120000000000Z"
        ids = [backup.snapshot_id for backup in await manager.list_local_backups("alice")]
        assert ids == [f"{base}-{n}" for n in range(10, 0, -1)] + [base]

    def test_snapshot_id_order(self):
        assert snapshot_id_order("20240615T120000000000Z-10") > snapshot_id_order("20240615T120000000000Z-9")
        assert snapshot_id_order("20240615T120000000000Z") < snapshot_id_order("20240615T120000000000Z-1")

    @pytest.mark.asyncio
    async def test_keeps_newest_five(self, manager, clock, expenses):
        for _ in range(7):
            await manager.create_snapshot("alice", expenses)
            clock.advance(minutes=1)

        backups = await manager.list_local_backups("alice")
        assert len(backups) == 5
        assert backups[0].metadata.created_at == FIXED_NOW + timedelta(minutes=6)
        assert backups[-1].metadata.created_at == FIXED_NOW + timedelta(minutes=2)


class TestCreateBackup:
    """Tests for the downloadable backup file."""

    @pytest.mark.asyncio
    async def test_backup_file_delivered(self, manager, export_sink, expenses):
        filename = await manager.create_backup("alice", expenses)

        assert filename == "pak-kharcha-backup-alice-2024-06-15T12-00-00.json"
        document = json.loads(export_sink.files[filename])
        assert document["format"] == "pak-kharcha-backup"
        assert document["metadata"]["recordCount"] == 3
        assert len(document["records"]) == 3


class TestRestore:
    """Tests for the restore flow."""

    @pytest.mark.asyncio
    async def test_backup_of_ten_restores_into_empty_dataset(
        self, manager, datasets, export_sink, ten_expenses
    ):
        """Test a 10 record backup restores exactly those 10 records."""
        filename = await manager.create_backup("alice", ten_expenses)
        upload = UploadedFile(name=filename, content=export_sink.files[filename].encode("utf-8"))

        result = await manager.restore("bob", upload)

        assert result.success is True
        assert result.restored_count == 10
        assert result.skipped_count == 0
        assert result.metadata.record_count == 10
        assert await datasets.load("bob") == ten_expenses

    @pytest.mark.asyncio
    async def test_restore_from_snapshot_id(self, manager, datasets, expenses):
        await manager.create_snapshot("alice", expenses)
        snapshot_id = (await manager.list_local_backups("alice"))[0].snapshot_id

        result = await manager.restore("alice", snapshot_id)
        assert result.success is True
        assert result.state == FlowState.COMMITTED
        assert await datasets.load("alice") == expenses

    @pytest.mark.asyncio
    async def test_restore_from_path(self, manager, datasets, expenses, tmp_path):
        path = tmp_path / "backup.json"
        path.write_text(encode_snapshot(manager.build_snapshot("alice", expenses)), encoding="utf-8")
        result = await manager.restore("alice", path)
        assert result.restored_count == 3
        assert await datasets.load("alice") == expenses

    @pytest.mark.asyncio
    async def test_restore_from_text(self, manager, expenses):
        text = encode_snapshot(manager.build_snapshot("alice", expenses))
        assert (await manager.restore("alice", text)).success is True

    @pytest.mark.asyncio
    async def test_missing_format_tag_rejected(self, manager, datasets, expenses):
        """Test a document without the tag is rejected before anything else."""
        await datasets.save("alice", expenses)
        document = manager.build_snapshot("alice", expenses).to_document()
        del document["format"]

        result = await manager.restore("alice", document)
        assert result.success is False
        assert result.errors == ["Invalid backup file format"]
        assert await datasets.load("alice") == expenses

    @pytest.mark.asyncio
    async def test_plain_json_rejected(self, manager):
        result = await manager.restore("alice", json.dumps([1, 2, 3]))
        assert result.errors == ["Invalid backup file format"]

    @pytest.mark.asyncio
    async def test_invalid_json_rejected(self, manager):
        upload = UploadedFile(name="backup.json", content=b"{not json")
        result = await manager.restore("alice", upload)
        assert result.success is False
        assert result.errors[0].startswith("Backup file is not valid JSON")

    @pytest.mark.asyncio
    async def test_missing_sections_rejected(self, manager):
        result = await manager.restore("alice", {"format": "pak-kharcha-backup", "records": []})
        assert result.errors == ["Corrupted backup file - missing required sections"]

    @pytest.mark.asyncio
    async def test_wrong_extension_rejected(self, manager, expenses):
        content = encode_snapshot(manager.build_snapshot("alice", expenses)).encode("utf-8")
        result = await manager.restore("alice", UploadedFile(name="backup.csv", content=content))
        assert result.errors == ["Backup files must be in JSON format"]

    @pytest.mark.asyncio
    async def test_unknown_snapshot_id(self, manager):
        result = await manager.restore("alice", "20200101T000000000000Z")
        assert result.success is False
        assert result.errors[0].startswith("Backup not found")

    @pytest.mark.asyncio
    async def test_zero_valid_records_leaves_dataset(self, manager, datasets, expenses):
        """Test a backup with no valid records is rejected and changes nothing."""
        await datasets.save("alice", expenses)
        document = manager.build_snapshot("alice", expenses).to_document()
        for record in document["records"]:
            record["amount"] = "-5"

        with pytest.warns(IntegrityWarning):
            result = await manager.restore("alice", document)

        assert result.success is False
        assert result.restored_count == 0
        assert result.errors == ["No valid expenses found in backup file"]
        assert await datasets.load("alice") == expenses

    @pytest.mark.asyncio
    async def test_partial_restore(self, manager, datasets, expenses):
        document = manager.build_snapshot("alice", expenses).to_document()
        document["records"].append({"id": "bad", "amount": "1", "category": "Utilities"})
        document["records"].append(dict(document["records"][0]))
        document["records"].append("not a record")

        with pytest.warns(IntegrityWarning):
            result = await manager.restore("alice", document)

        assert result.success is True
        assert result.restored_count == 3
        assert result.skipped_count == 3
        assert len(result.errors) == 3
        assert "Backup checksum mismatch - data may be corrupted" in result.warnings
        assert result.state == FlowState.COMMITTED_WITH_WARNINGS
        assert await datasets.load("alice") == expenses

    @pytest.mark.asyncio
    async def test_restoring_someone_elses_backup_warns(self, manager, expenses):
        document = manager.build_snapshot("alice", expenses).to_document()
        result = await manager.restore("bob", document)
        assert result.success is True
        assert result.warnings == ["Backup was created for alice"]

    @pytest.mark.asyncio
    async def test_legacy_backup_restores(self, manager, datasets):
        """Test a backup written by the old browser app."""
        legacy = {
            "metadata": {
                "version": "1.0",
                "username": "alice",
                "createdAt": "2024-06-01T10:00:00.000Z",
                "expenseCount": 2,
                "totalAmount": 1700,
                "dateRange": {"earliest": "2024-05-01", "latest": "2024-05-02"},
                "categories": ["Utilities", "Housing"],
                "checksum": "1234",
            },
            "expenses": [
                {"id": "1717", "amount": 500, "category": "Utilities",
                 "description": "Electricity", "date": "2024-05-01"},
                {"id": "1718", "amount": 1200, "category": "Housing",
                 "description": "Maintenance", "date": "2024-05-02T00:00:00.000Z"},
            ],
            "format": "pak-kharcha-backup",
        }
        with pytest.warns(IntegrityWarning):
            result = await manager.restore("alice", json.dumps(legacy))

        assert result.success is True
        assert result.restored_count == 2
        assert [record.amount for record in await datasets.load("alice")] == [
            Decimal("500"), Decimal("1200"),
        ]


class TestListAndCleanup:
    """Tests for listing and age-based retention."""

    @pytest.mark.asyncio
    async def test_list_newest_first_skips_corrupt(self, manager, storage, clock, expenses):
        await manager.create_snapshot("alice", expenses)
        clock.advance(hours=1)
        await manager.create_snapshot("alice", expenses)
        await storage.set(StorageKeys("alice").snapshot("garbage"), "{broken")

        backups = await manager.list_local_backups("alice")
        assert [backup.metadata.created_at for backup in backups] == [
            FIXED_NOW + timedelta(hours=1), FIXED_NOW,
        ]

    @pytest.mark.asyncio
    async def test_cleanup_zero_removes_all(self, manager, expenses):
        await manager.create_snapshot("alice", expenses)
        await manager.create_snapshot("alice", expenses)
        assert await manager.cleanup_old_backups("alice", 0) == 2
        assert await manager.list_local_backups("alice") == []

    @pytest.mark.asyncio
    async def test_cleanup_long_retention_removes_none(self, manager, expenses):
        await manager.create_snapshot("alice", expenses)
        await manager.create_snapshot("alice", expenses)
        assert await manager.cleanup_old_backups("alice", 9999) == 0
        assert len(await manager.list_local_backups("alice")) == 2

    @pytest.mark.asyncio
    async def test_cleanup_by_age(self, manager, clock, expenses):
        await manager.create_snapshot("alice", expenses)
        clock.advance(days=10)
        await manager.create_snapshot("alice", expenses)
        clock.advance(days=25)

        assert await manager.cleanup_old_backups("alice", 30) == 1
        backups = await manager.list_local_backups("alice")
        assert backups[0].metadata.created_at == FIXED_NOW + timedelta(days=10)

    @pytest.mark.asyncio
    async def test_cleanup_removes_corrupt(self, manager, storage, expenses):
        await manager.create_snapshot("alice", expenses)
        await storage.set(StorageKeys("alice").snapshot("garbage"), "{broken")
        assert await manager.cleanup_old_backups("alice", 9999) == 1
        assert await storage.get(StorageKeys("alice").snapshot("garbage")) is None

    @pytest.mark.asyncio
    async def test_cleanup_is_per_owner(self, manager, expenses):
        await manager.create_snapshot("alice", expenses)
        await manager.create_snapshot("bob", expenses)
        await manager.cleanup_old_backups("alice", 0)
        assert len(await manager.list_local_backups("bob")) == 1

    @pytest.mark.asyncio
    async def test_negative_retention(self, manager):
        with pytest.raises(ValueError):
            await manager.cleanup_old_backups("alice", -1)


class TestSchedule:
    """Tests for schedule persistence and scheduled runs."""

    @pytest.mark.asyncio
    async def test_no_schedule(self, manager):
        assert await manager.get_schedule("alice") is None

    @pytest.mark.asyncio
    async def test_enabled_schedule_gets_next_backup(self, manager):
        stored = await manager.set_schedule(
            "alice", BackupSchedule(enabled=True, frequency=BackupFrequency.WEEKLY),
        )
        assert stored.next_backup == FIXED_NOW + timedelta(days=7)
        reloaded = await manager.get_schedule("alice")
        assert reloaded.next_backup == stored.next_backup
        assert reloaded.frequency == BackupFrequency.WEEKLY

    @pytest.mark.asyncio
    async def test_disabled_schedule_clears_next_backup(self, manager):
        await manager.set_schedule("alice", BackupSchedule(enabled=True))
        stored = await manager.set_schedule("alice", BackupSchedule(enabled=False))
        assert stored.next_backup is None
        assert (await manager.get_schedule("alice")).enabled is False

    @pytest.mark.asyncio
    async def test_schedule_stored_with_camel_case(self, manager, storage):
        await manager.set_schedule("alice", BackupSchedule(enabled=True, retention_days=7))
        document = json.loads(await storage.get(StorageKeys("alice").schedule))
        assert document["retentionDays"] == 7
        assert "nextBackup" in document

    @pytest.mark.asyncio
    async def test_not_due(self, manager, datasets, expenses):
        await datasets.save("alice", expenses)
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        assert await manager.run_scheduled_backup("alice") is False

    @pytest.mark.asyncio
    async def test_due_backup_runs(self, manager, datasets, export_sink, clock, expenses):
        await datasets.save("alice", expenses)
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        clock.advance(days=1)

        assert await manager.run_scheduled_backup("alice") is True
        schedule = await manager.get_schedule("alice")
        assert schedule.last_backup == clock.now
        assert schedule.next_backup == clock.now + timedelta(days=1)
        assert len(await manager.list_local_backups("alice")) == 1
        assert len(export_sink.files) == 1

    @pytest.mark.asyncio
    async def test_due_backup_applies_retention(self, manager, datasets, clock, expenses):
        await datasets.save("alice", expenses)
        await manager.create_snapshot("alice", expenses)
        await manager.set_schedule(
            "alice", BackupSchedule(enabled=True, frequency=BackupFrequency.MONTHLY, retention_days=20),
        )
        clock.advance(days=31)

        assert await manager.run_scheduled_backup("alice") is True
        backups = await manager.list_local_backups("alice")
        assert [backup.metadata.created_at for backup in backups] == [clock.now]

    @pytest.mark.asyncio
    async def test_disabled_fire_is_noop(self, manager, datasets, clock, expenses):
        await datasets.save("alice", expenses)
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        await manager.set_schedule("alice", BackupSchedule(enabled=False))
        clock.advance(days=2)

        assert await manager.run_scheduled_backup("alice") is False
        assert await manager.list_local_backups("alice") == []

    @pytest.mark.asyncio
    async def test_empty_dataset_moves_schedule_forward(self, manager, clock):
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        clock.advance(days=1)

        assert await manager.run_scheduled_backup("alice") is False
        schedule = await manager.get_schedule("alice")
        assert schedule.next_backup == clock.now + timedelta(days=1)
        assert schedule.last_backup is None

    @pytest.mark.asyncio
    async def test_naive_stored_times_are_utc(self, manager, storage):
        await storage.set(StorageKeys("alice").schedule, json.dumps({
            "enabled": True,
            "frequency": "daily",
            "lastBackup": None,
            "nextBackup": "2024-06-14T00:00:00",
            "retentionDays": 30,
        }))
        schedule = await manager.get_schedule("alice")
        assert schedule.next_backup == datetime(2024, 6, 14, tzinfo=timezone.utc)
        assert schedule.is_due(FIXED_NOW) is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
