"""Unit tests for main.py lifespan wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from patcher.config import PatcherConfig


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.start = MagicMock()
    scheduler.stop = AsyncMock()
    return scheduler


@pytest.fixture
def client(tmp_path, monkeypatch, scheduler):
    """Run the real lifespan in a scratch working directory."""
    from patcher.main import app

    monkeypatch.chdir(tmp_path)
    install = tmp_path / "install"
    install.mkdir()
    (install / "patch.ini").write_text("[patch]\r\nversion = ENG_1\r\n", newline="")
    config = PatcherConfig(origin="https://patch.example.com/ENG", install_dir=install)

    with patch("patcher.main.setup_logger") as mock_log, \
         patch("patcher.main.PatcherConfig") as MockConfig, \
         patch("patcher.main.UpdateScheduler", return_value=scheduler):
        mock_log.return_value = MagicMock()
        MockConfig.from_install_dir.return_value = config
        with TestClient(app) as c:
            yield c


@pytest.mark.unit
class TestLifespan:

    def test_health(self, client):
        body = client.get("/").json()
        assert body["status"] == "ok"
        assert body["service"] == "tree-patcher"

    def test_services_wired(self, client, scheduler):
        state = client.app.state
        assert state.updater.state_manager is state.state_manager
        assert state.repair.state_manager is state.state_manager
        assert state.updater.downloader is state.downloader
        assert state.config.origin == "https://patch.example.com/ENG"
        scheduler.start.assert_called_once()

    def test_progress_endpoint_available(self, client):
        body = client.get("/api/v1.0/progress").json()
        assert body["data"]["message"] == "Patcher ready"

    def test_check_uses_local_manifest(self, client):
        client.app.state.updater.downloader.fetch_text = AsyncMock(
            return_value="[patch]\r\nversion = ENG_2\r\n"
        )
        body = client.get("/api/v1.0/check").json()
        assert body["data"] == {"update_available": True, "local_version": "ENG_1"}

    def test_shutdown_stops_scheduler(self, tmp_path, monkeypatch, scheduler):
        from patcher.main import app

        monkeypatch.chdir(tmp_path)
        config = PatcherConfig(install_dir=tmp_path)
        with patch("patcher.main.setup_logger"), \
             patch("patcher.main.PatcherConfig") as MockConfig, \
             patch("patcher.main.UpdateScheduler", return_value=scheduler):
            MockConfig.from_install_dir.return_value = config
            with TestClient(app):
                pass

        scheduler.stop.assert_awaited_once()
