"""Unit tests for ProcessManager."""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from patcher.services.process import ProcessManager, ProcessResult, ProcessTimeoutError


def _mock_process(stdout=b"", stderr=b"", returncode=0):
    process = MagicMock()
    process.pid = 4242
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.kill = MagicMock()
    process.wait = AsyncMock(return_value=-9)
    return process


async def _hang():
    await asyncio.sleep(10)


@pytest.mark.unit
class TestProcessManager:
    """Test ProcessManager in isolation."""

    @pytest.fixture
    def process_manager(self):
        """Create ProcessManager instance."""
        return ProcessManager(kill_grace=0.1)

    @pytest.mark.asyncio
    async def test_run_success(self, process_manager):
        """Test capturing output of a finished process."""
        mock_process = _mock_process(b"extracted 3 files\n", b"")

        with patch("asyncio.create_subprocess_exec", return_value=mock_process) as mock_exec:
            result = await process_manager.run(["cabextract", "-q", "p.cab"], timeout=5)

        assert result == ProcessResult(0, "extracted 3 files\n", "")
        assert result.ok
        assert mock_exec.call_args.args == ("cabextract", "-q", "p.cab")

    @pytest.mark.asyncio
    async def test_run_nonzero_exit(self, process_manager):
        mock_process = _mock_process(b"", b"bad cabinet", returncode=2)

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            result = await process_manager.run(["cabextract", "p.cab"], timeout=5)

        assert not result.ok
        assert result.stderr == "bad cabinet"

    @pytest.mark.asyncio
    async def test_run_timeout_kills_process(self, process_manager):
        mock_process = _mock_process()
        mock_process.communicate = _hang

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            with pytest.raises(ProcessTimeoutError) as exc_info:
                await process_manager.run(["curl", "https://x"], timeout=0.01)

        mock_process.kill.assert_called_once()
        mock_process.wait.assert_awaited()
        assert exc_info.value.program == "curl"

    @pytest.mark.asyncio
    async def test_kill_tolerates_exited_process(self, process_manager):
        mock_process = _mock_process()
        mock_process.communicate = _hang
        mock_process.kill.side_effect = ProcessLookupError()

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            with pytest.raises(ProcessTimeoutError):
                await process_manager.run(["curl", "https://x"], timeout=0.01)

        mock_process.wait.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_program_propagates(self, process_manager):
        with patch(
            "asyncio.create_subprocess_exec", side_effect=FileNotFoundError("nope")
        ):
            with pytest.raises(FileNotFoundError):
                await process_manager.run(["nope"], timeout=5)

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self, process_manager):
        mock_process = _mock_process()
        mock_process.communicate = _hang

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            task = asyncio.create_task(process_manager.run(["curl", "https://x"], timeout=30))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        mock_process.kill.assert_called_once()
