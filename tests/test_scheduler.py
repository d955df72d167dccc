"""Tests for the asyncio backup scheduler."""

import asyncio
import json
from datetime import timedelta

import pytest

from kharcha_vault.backup import BackupManager, BackupScheduler
from kharcha_vault.config import BackupSettings
from kharcha_vault.models.backup import BackupFrequency, BackupSchedule
from kharcha_vault.services.dataset import ExpenseDatasetStore
from kharcha_vault.services.storage import StorageKeys


class ParkingSleep:
    """
    Sleep replacement that moves the fake clock instead of waiting.

    After ``limit`` calls it parks (blocks until cancelled) so a test can
    inspect the state the scheduler reached.
    """

    def __init__(self, clock, limit: int):
        self.clock = clock
        self.limit = limit
        self.delays = []
        self.parked = asyncio.Event()
        self.before_wake = None

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if len(self.delays) > self.limit:
            self.parked.set()
            await asyncio.Event().wait()
        if self.before_wake is not None:
            await self.before_wake()
        self.clock.advance(seconds=seconds)
        await asyncio.sleep(0)


@pytest.fixture
def backup_settings():
    return BackupSettings(recheck_interval_seconds=24 * 60 * 60)


@pytest.fixture
def datasets(storage, validator, codec, clock):
    return ExpenseDatasetStore(storage, validator, codec=codec, clock=clock)


@pytest.fixture
def manager(storage, validator, datasets, backup_settings, clock):
    return BackupManager(storage, validator, datasets, settings=backup_settings, clock=clock)


def make_scheduler(manager, storage, settings, clock, limit):
    sleep = ParkingSleep(clock, limit)
    return BackupScheduler(manager, storage, settings=settings, clock=clock, sleep=sleep), sleep


class TestArm:
    """Tests for arming per-owner tasks."""

    @pytest.mark.asyncio
    async def test_fires_when_due(self, manager, datasets, storage, backup_settings, clock, expenses):
        await datasets.save("alice", expenses)
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        scheduler, sleep = make_scheduler(manager, storage, backup_settings, clock, limit=1)

        assert await scheduler.arm("alice") is True
        await asyncio.wait_for(sleep.parked.wait(), timeout=5)

        assert sleep.delays == [86400.0, 86400.0]
        assert len(await manager.list_local_backups("alice")) == 1
        schedule = await manager.get_schedule("alice")
        assert schedule.next_backup == clock.now + timedelta(days=1)
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_sleep_is_capped_by_recheck_interval(self, manager, storage, clock):
        settings = BackupSettings(recheck_interval_seconds=3600)
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.WEEKLY))
        scheduler, sleep = make_scheduler(manager, storage, settings, clock, limit=0)

        await scheduler.arm("alice")
        await asyncio.wait_for(sleep.parked.wait(), timeout=5)

        assert sleep.delays == [3600]
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_nothing_to_arm(self, manager, storage, backup_settings, clock):
        scheduler, _ = make_scheduler(manager, storage, backup_settings, clock, limit=0)
        assert await scheduler.arm("alice") is False

        await manager.set_schedule("alice", BackupSchedule(enabled=False))
        assert await scheduler.arm("alice") is False
        assert scheduler.is_armed("alice") is False

    @pytest.mark.asyncio
    async def test_cancel(self, manager, storage, backup_settings, clock):
        await manager.set_schedule("alice", BackupSchedule(enabled=True))
        scheduler, sleep = make_scheduler(manager, storage, backup_settings, clock, limit=0)

        await scheduler.arm("alice")
        await asyncio.wait_for(sleep.parked.wait(), timeout=5)
        assert scheduler.is_armed("alice") is True

        await scheduler.cancel("alice")
        assert scheduler.is_armed("alice") is False

    @pytest.mark.asyncio
    async def test_task_stops_when_schedule_disabled(self, manager, storage, backup_settings, clock):
        """Test a wake-up after disabling ends the task without a backup."""
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        scheduler, sleep = make_scheduler(manager, storage, backup_settings, clock, limit=5)

        async def disable():
            # Behind the scheduler's back; the next wake-up re-reads it
            await storage.set(
                StorageKeys("alice").schedule,
                BackupSchedule(enabled=False).model_dump_json(by_alias=True),
            )

        sleep.before_wake = disable
        assert await scheduler.arm("alice") is True

        async def wait_stopped():
            while scheduler.is_armed("alice"):
                await asyncio.sleep(0)

        await asyncio.wait_for(wait_stopped(), timeout=5)
        assert sleep.delays == [86400.0]
        assert await manager.list_local_backups("alice") == []


class TestResumeAll:
    """Tests for resuming schedules on process start."""

    @pytest.mark.asyncio
    async def test_overdue_backup_runs_immediately(
        self, manager, datasets, storage, backup_settings, clock, expenses
    ):
        await datasets.save("alice", expenses)
        await datasets.save("bob", expenses)
        await manager.set_schedule("alice", BackupSchedule(enabled=True, frequency=BackupFrequency.DAILY))
        await manager.set_schedule("bob", BackupSchedule(enabled=False))
        clock.advance(days=3)

        scheduler, sleep = make_scheduler(manager, storage, backup_settings, clock, limit=0)
        armed = await scheduler.resume_all()

        assert armed == ["alice"]
        assert len(await manager.list_local_backups("alice")) == 1
        assert await manager.list_local_backups("bob") == []
        await asyncio.wait_for(sleep.parked.wait(), timeout=5)
        await scheduler.shutdown()
        assert scheduler.is_armed("alice") is False

    @pytest.mark.asyncio
    async def test_unreadable_schedule_is_ignored(self, manager, storage, backup_settings, clock):
        await storage.set(StorageKeys("alice").schedule, json.dumps({"enabled": "maybe"}))
        scheduler, _ = make_scheduler(manager, storage, backup_settings, clock, limit=0)
        assert await scheduler.resume_all() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
