"""State manager: in-memory status and the foreground busy token."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from patcher.api.models import ProgressData
from patcher.models.errors import OperationInProgressError
from patcher.models.status import OperationState, StageEnum

T = TypeVar("T")


class StateManager:
    """Owns the idle/busy token and the status shown by GET /progress.

    One instance is created by the application and passed to every service
    that starts or observes an operation. Background checks run under
    ``run_check`` and are cancelled before a foreground operation proceeds,
    so the two never share the network client at the same time.
    """

    def __init__(self):
        self.logger = logging.getLogger("patcher.state_manager")

        self._state: OperationState = OperationState.IDLE
        self._operation: Optional[str] = None
        self._reserved: Optional[str] = None
        self._checks: set[asyncio.Task] = set()
        self._preempted: set[asyncio.Task] = set()

        self._current_stage: StageEnum = StageEnum.IDLE
        self._current_progress: int = 0
        self._current_message: str = "Patcher ready"
        self._current_error: Optional[str] = None

        self.logger.info("StateManager initialized")

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state is OperationState.BUSY

    @property
    def operation_name(self) -> Optional[str]:
        return self._operation

    def acquire(self, operation: str) -> None:
        """Take the busy token.

        Raises:
            OperationInProgressError: If another operation holds it
        """
        if self._reserved == operation:
            self._reserved = None
            self.logger.info(f"Operation started: {operation}")
            return
        if self.is_busy:
            raise OperationInProgressError(self._operation or "unknown")
        self._state = OperationState.BUSY
        self._operation = operation
        self.logger.info(f"Operation started: {operation}")

    def reserve(self, operation: str) -> None:
        """Take the busy token now for an operation that starts later.

        The first ``acquire`` with the same name claims the reservation.

        Raises:
            OperationInProgressError: If another operation holds the token
        """
        if self.is_busy:
            raise OperationInProgressError(self._operation or "unknown")
        self._state = OperationState.BUSY
        self._operation = operation
        self._reserved = operation
        self.logger.info(f"Operation reserved: {operation}")

    def release_reservation(self, operation: str) -> None:
        """Drop a reservation that was never claimed."""
        if self._reserved == operation:
            self.logger.warning(f"Reservation for {operation} was never claimed")
            self._reserved = None
            self.release()

    def release(self) -> None:
        if self._operation is not None:
            self.logger.info(f"Operation finished: {self._operation}")
        self._state = OperationState.IDLE
        self._operation = None
        self._reserved = None

    @asynccontextmanager
    async def operation(self, name: str) -> AsyncIterator["StateManager"]:
        """Hold the busy token for the duration of a foreground operation.

        In-flight background checks are cancelled and awaited first.
        """
        self.acquire(name)
        try:
            await self._preempt_checks()
            yield self
        finally:
            self.release()

    async def run_check(self, check: Callable[[], Awaitable[T]]) -> Optional[T]:
        """Run a background check unless a foreground operation is running.

        Args:
            check: Coroutine function performing the check

        Returns:
            The check's result, or None if it was skipped or preempted
        """
        if self.is_busy:
            self.logger.debug(f"Skipping background check, {self._operation} in progress")
            return None

        task = asyncio.ensure_future(check())
        self._checks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if task not in self._preempted:
                raise
            self.logger.info("Background check cancelled by foreground operation")
            return None
        finally:
            self._checks.discard(task)
            self._preempted.discard(task)

    async def _preempt_checks(self) -> None:
        checks = [task for task in self._checks if not task.done()]
        if not checks:
            return
        self.logger.info(f"Cancelling {len(checks)} background check(s)")
        for task in checks:
            self._preempted.add(task)
            task.cancel()
        await asyncio.gather(*checks, return_exceptions=True)

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint."""
        return ProgressData(
            stage=self._current_stage,
            state=self._state,
            operation=self._operation,
            progress=self._current_progress,
            message=self._current_message,
            error=self._current_error,
        )

    def update_status(
        self,
        stage: StageEnum,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status state.

        Args:
            stage: Current lifecycle stage
            progress: Percentage completion (0-100)
            message: Human-readable description
            error: Error message if stage == failed
        """
        self._current_stage = stage
        self._current_progress = max(0, min(100, progress))
        self._current_message = message
        self._current_error = error
        self.logger.debug(
            f"Status updated: stage={stage.value}, progress={progress}%, message={message}"
        )

    def set_progress(self, progress: int) -> None:
        """Progress callback for the current stage."""
        self._current_progress = max(0, min(100, progress))

    def reset(self) -> None:
        """Reset status to idle (does not touch the busy token)."""
        self._current_stage = StageEnum.IDLE
        self._current_progress = 0
        self._current_message = "Patcher ready"
        self._current_error = None
        self.logger.info("State reset to idle")
