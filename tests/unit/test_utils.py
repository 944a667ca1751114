"""Unit tests for scratch directories and the reachability check."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from patcher.utils.network import is_origin_reachable
from patcher.utils.scratch import scratch_dir


@pytest.mark.unit
class TestScratchDir:

    def test_removed_on_success(self, tmp_path):
        with scratch_dir("LauncherPatch_", tmp_path) as path:
            (path / "nested").mkdir()
            (path / "nested" / "file").write_bytes(b"x")
            assert path.name.startswith("LauncherPatch_")
        assert not path.exists()

    def test_removed_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with scratch_dir("LauncherRepair_", tmp_path) as path:
                raise RuntimeError("boom")
        assert not path.exists()


@pytest.mark.unit
class TestIsOriginReachable:

    @pytest.mark.asyncio
    async def test_reachable(self):
        writer = MagicMock()
        writer.wait_closed = AsyncMock()

        with patch(
            "asyncio.open_connection", AsyncMock(return_value=(MagicMock(), writer))
        ) as mock_open:
            assert await is_origin_reachable("https://cdn.example.com/ENG")

        mock_open.assert_awaited_once_with("cdn.example.com", 443)
        writer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_explicit_port(self):
        writer = MagicMock()
        writer.wait_closed = AsyncMock()

        with patch(
            "asyncio.open_connection", AsyncMock(return_value=(MagicMock(), writer))
        ) as mock_open:
            await is_origin_reachable("http://localhost:8080/ENG")

        mock_open.assert_awaited_once_with("localhost", 8080)

    @pytest.mark.asyncio
    async def test_unreachable(self):
        with patch("asyncio.open_connection", AsyncMock(side_effect=OSError("no route"))):
            assert not await is_origin_reachable("https://cdn.example.com/ENG")

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def hang(host, port):
            await asyncio.sleep(10)

        with patch("asyncio.open_connection", hang):
            assert not await is_origin_reachable("https://cdn.example.com", timeout=0.01)
