"""Background update check."""

import asyncio
import logging
from typing import Callable, Optional

from patcher.services.state_manager import StateManager
from patcher.services.updater import UpdateService


class UpdateScheduler:
    """Polls the origin for a newer version on a fixed interval.

    The scheduler only observes; it never starts an update. A tick is
    skipped while a foreground operation holds the busy token, and an
    in-flight check is cancelled when one starts.
    """

    def __init__(
        self,
        updater: UpdateService,
        state_manager: StateManager,
        interval: Optional[float] = None,
        on_update_available: Optional[Callable[[], None]] = None,
    ):
        self.logger = logging.getLogger("patcher.scheduler")
        self.updater = updater
        self.state_manager = state_manager
        self.interval = interval if interval is not None else updater.config.check_interval
        self.on_update_available = on_update_available

        self.update_available = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="update-scheduler")
        self.logger.info(f"Update check scheduled every {self.interval:.0f}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Update scheduler stopped")

    async def tick(self) -> bool:
        """Run one check.

        Returns:
            True if a newer version was found on this tick
        """
        found = await self.state_manager.run_check(self.updater.check_for_update)
        if found is None:
            return False

        if found and not self.update_available:
            self.logger.info("A new update is available")
            if self.on_update_available is not None:
                self.on_update_available()
        self.update_available = found
        return found

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"Update check failed: {e}", exc_info=True)
