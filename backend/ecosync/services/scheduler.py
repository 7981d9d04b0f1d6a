"""Periodic background sync on the running event loop."""

import asyncio
import logging

from ecosync.models.enums import SyncTrigger

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Calls ``trigger_sync(PERIODIC)`` every ``interval_seconds`` while online."""

    def __init__(self, sync_service, interval_seconds: float):
        self.sync_service = sync_service
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval_seconds <= 0:
            logger.info("Periodic sync disabled")
            return
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            if not self.sync_service.is_online():
                continue
            try:
                await self.sync_service.trigger_sync(SyncTrigger.PERIODIC)
            except Exception:
                logger.exception("Periodic sync failed")
