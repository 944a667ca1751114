"""Unit tests for StateManager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from patcher.models.errors import OperationInProgressError
from patcher.models.status import OperationState, StageEnum
from patcher.services.state_manager import StateManager


@pytest.mark.unit
class TestStateManager:
    """Test StateManager in isolation."""

    def test_instances_are_independent(self):
        """Each application owns its own state manager."""
        manager1 = StateManager()
        manager2 = StateManager()
        manager1.acquire("update")
        assert manager1 is not manager2
        assert not manager2.is_busy

    def test_initial_state(self):
        """Test initial state after initialization."""
        manager = StateManager()
        status = manager.get_status()

        assert status.stage == StageEnum.IDLE
        assert status.state == OperationState.IDLE
        assert status.progress == 0
        assert status.message == "Patcher ready"
        assert status.error is None

    def test_update_status(self):
        """Test updating in-memory status."""
        manager = StateManager()

        manager.update_status(
            stage=StageEnum.PATCHING,
            progress=50,
            message="Updating...",
            error=None
        )

        status = manager.get_status()
        assert status.stage == StageEnum.PATCHING
        assert status.progress == 50
        assert status.message == "Updating..."
        assert status.error is None

    def test_update_status_with_error(self):
        """Test updating status with error."""
        manager = StateManager()

        manager.update_status(
            stage=StageEnum.FAILED,
            progress=0,
            message="Update failed",
            error="CHECKSUM_MISMATCH: checksum error for a.dat",
        )

        status = manager.get_status()
        assert status.stage == StageEnum.FAILED
        assert status.error == "CHECKSUM_MISMATCH: checksum error for a.dat"

    def test_progress_is_clamped(self):
        manager = StateManager()
        manager.update_status(StageEnum.PATCHING, 150, "x")
        assert manager.get_status().progress == 100
        manager.set_progress(-5)
        assert manager.get_status().progress == 0

    def test_reset_state(self):
        """Test resetting state to idle."""
        manager = StateManager()
        manager.update_status(StageEnum.FAILED, 10, "Update failed", "boom")

        manager.reset()

        status = manager.get_status()
        assert status.stage == StageEnum.IDLE
        assert status.progress == 0
        assert status.error is None

    def test_acquire_and_release(self):
        manager = StateManager()
        manager.acquire("repair")

        assert manager.is_busy
        assert manager.state == OperationState.BUSY
        assert manager.operation_name == "repair"
        assert manager.get_status().operation == "repair"

        with pytest.raises(OperationInProgressError) as exc_info:
            manager.acquire("update")
        assert exc_info.value.running == "repair"

        manager.release()
        assert not manager.is_busy
        assert manager.operation_name is None

    @pytest.mark.asyncio
    async def test_operation_context_releases_on_error(self):
        manager = StateManager()

        with pytest.raises(RuntimeError):
            async with manager.operation("update"):
                assert manager.is_busy
                raise RuntimeError("boom")

        assert not manager.is_busy

    @pytest.mark.asyncio
    async def test_nested_operation_rejected(self):
        manager = StateManager()

        async with manager.operation("update"):
            with pytest.raises(OperationInProgressError):
                async with manager.operation("install"):
                    pass
            assert manager.operation_name == "update"

        assert not manager.is_busy

    def test_reservation_claimed_by_same_operation(self):
        manager = StateManager()
        manager.reserve("update")

        assert manager.is_busy
        with pytest.raises(OperationInProgressError):
            manager.reserve("repair")
        with pytest.raises(OperationInProgressError):
            manager.acquire("repair")

        manager.acquire("update")
        assert manager.operation_name == "update"
        with pytest.raises(OperationInProgressError):
            manager.acquire("update")

        manager.release()
        assert not manager.is_busy

    def test_unclaimed_reservation_released(self):
        manager = StateManager()
        manager.reserve("install")

        manager.release_reservation("install")

        assert not manager.is_busy

    @pytest.mark.asyncio
    async def test_claimed_reservation_not_released_twice(self):
        manager = StateManager()
        manager.reserve("update")

        async with manager.operation("update"):
            manager.release_reservation("update")
            assert manager.is_busy

        assert not manager.is_busy


@pytest.mark.unit
class TestBackgroundChecks:
    """Background checks never overlap a foreground operation."""

    @pytest.mark.asyncio
    async def test_check_result_returned(self):
        manager = StateManager()
        assert await manager.run_check(AsyncMock(return_value=True)) is True

    @pytest.mark.asyncio
    async def test_check_skipped_while_busy(self):
        manager = StateManager()
        check = AsyncMock(return_value=True)
        manager.acquire("repair")

        assert await manager.run_check(check) is None
        check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreground_operation_cancels_check(self):
        manager = StateManager()
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_check():
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return True

        background = asyncio.create_task(manager.run_check(slow_check))
        await started.wait()

        async with manager.operation("update"):
            assert cancelled.is_set()
            assert manager.is_busy

        assert await background is None
        assert not manager.is_busy

    @pytest.mark.asyncio
    async def test_check_errors_propagate(self):
        manager = StateManager()
        with pytest.raises(RuntimeError):
            await manager.run_check(AsyncMock(side_effect=RuntimeError("boom")))
