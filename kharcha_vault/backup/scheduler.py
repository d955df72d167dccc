"""
Automatic Backup Scheduler

DESIGN DECISION: The process is not assumed to run continuously. The
schedule (with ``nextBackup``) lives in storage, and on start
``resume_all`` runs every overdue backup and arms the rest. A running task
never sleeps longer than the recheck interval, so a changed system clock
or a long suspend is noticed within that interval.

One asyncio task per owner. Each wake-up re-reads the stored schedule, so
disabling a schedule is honoured even if the task was not cancelled.
"""

import asyncio
import contextlib
from typing import Awaitable, Callable, Optional

import structlog

from kharcha_vault.backup.manager import BackupManager
from kharcha_vault.clock import Clock, utc_now
from kharcha_vault.config import BackupSettings
from kharcha_vault.services.storage import (
    KeyValueStorage,
    StorageError,
    normalize_owner,
    owner_from_schedule_key,
)


logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class BackupScheduler:
    """
    Arms and cancels per-owner backup tasks.

    Usage:
        scheduler = BackupScheduler(manager, storage)
        await scheduler.resume_all()     # on process start
        await scheduler.arm("alice")     # after enabling a schedule
        await scheduler.shutdown()       # on process exit
    """

    def __init__(
        self,
        manager: BackupManager,
        storage: KeyValueStorage,
        settings: Optional[BackupSettings] = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self._manager = manager
        self._storage = storage
        self._settings = settings or BackupSettings()
        self._clock = clock
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}

    def is_armed(self, owner: str) -> bool:
        task = self._tasks.get(normalize_owner(owner))
        return task is not None and not task.done()

    async def arm(self, owner: str) -> bool:
        """
        (Re)start the backup task for ``owner``.

        Returns:
            True if a task is now running; False if the owner has no
            enabled schedule
        """
        owner = normalize_owner(owner)
        await self.cancel(owner)

        schedule = await self._manager.get_schedule(owner)
        if schedule is None or not schedule.enabled:
            return False

        task = asyncio.create_task(self._run(owner), name=f"backup-schedule-{owner}")
        task.add_done_callback(self._forget)
        self._tasks[owner] = task
        logger.info("backup_schedule_armed", owner=owner, next_backup=str(schedule.next_backup))
        return True

    async def _run(self, owner: str) -> None:
        recheck = self._settings.recheck_interval_seconds
        while True:
            schedule = await self._manager.get_schedule(owner)
            if schedule is None or not schedule.enabled or schedule.next_backup is None:
                logger.info("backup_schedule_stopped", owner=owner)
                return

            delay = (schedule.next_backup - self._clock()).total_seconds()
            if delay > 0:
                await self._sleep(min(delay, recheck))
                continue

            try:
                await self._manager.run_scheduled_backup(owner)
            except StorageError as e:
                logger.error("scheduled_backup_failed", owner=owner, error=str(e))
                await self._sleep(recheck)

    def _forget(self, task: asyncio.Task) -> None:
        for owner, running in list(self._tasks.items()):
            if running is task:
                del self._tasks[owner]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "backup_schedule_crashed",
                task=task.get_name(),
                error=str(task.exception()),
            )

    async def cancel(self, owner: str) -> None:
        """Stop the owner's task if one is running."""
        task = self._tasks.pop(normalize_owner(owner), None)
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def resume_all(self) -> list[str]:
        """
        Run overdue backups and arm every enabled schedule in storage.

        Returns:
            Owners whose schedule is now armed
        """
        armed = []
        for key in await self._storage.list_keys():
            owner = owner_from_schedule_key(key)
            if owner is None:
                continue

            schedule = await self._manager.get_schedule(owner)
            if schedule is None or not schedule.enabled:
                continue
            if schedule.is_due(self._clock()):
                logger.info("overdue_backup_running", owner=owner)
                try:
                    await self._manager.run_scheduled_backup(owner)
                except StorageError as e:
                    logger.error("scheduled_backup_failed", owner=owner, error=str(e))
            if await self.arm(owner):
                armed.append(owner)
        return armed

    async def shutdown(self) -> None:
        """Cancel every running task."""
        for owner in list(self._tasks):
            await self.cancel(owner)
