"""Unit tests for configuration and local manifest storage."""

import pytest
from pydantic import ValidationError

from patcher.config import DEFAULT_ORIGIN, PatcherConfig, read_origin
from patcher.services.manifest_store import ManifestStore


@pytest.mark.unit
class TestPatcherConfig:
    """Test defaults, URL templates and overrides."""

    def test_defaults(self, tmp_path):
        config = PatcherConfig(install_dir=tmp_path)
        assert config.origin == DEFAULT_ORIGIN
        assert config.max_attempts == 5
        assert config.check_interval == 300
        assert config.min_free_space == 500 * 1024 * 1024
        assert not config.is_installed

    def test_origin_normalized(self):
        config = PatcherConfig(origin="http://cdn.example.com/ENG/")
        assert config.origin == "https://cdn.example.com/ENG"

    def test_urls(self):
        config = PatcherConfig(origin="https://cdn.example.com/ENG")
        assert config.launcher_manifest_url == (
            "https://cdn.example.com/ENG/microvolts/Patcher/patchLauncher.ini"
        )
        assert config.patch_manifest_url == "https://cdn.example.com/ENG/microvolts/patch.ini"
        assert config.asset_url == "https://cdn.example.com/ENG/microvolts/Full/data/cgd.dip"
        assert config.full_archive_url == "https://cdn.example.com/ENG/microvolts/Full/Full.zip"

    def test_local_paths(self, tmp_path):
        config = PatcherConfig(install_dir=tmp_path)
        assert config.patch_manifest_path == tmp_path / "patch.ini"
        assert config.launcher_manifest_path == tmp_path / "patchLauncher.ini"
        assert config.asset_path == tmp_path / "data" / "cgd.dip"

    @pytest.mark.parametrize("attempts", [4, 8])
    def test_retry_budget_bounds(self, attempts):
        with pytest.raises(ValidationError):
            PatcherConfig(max_attempts=attempts)

    def test_from_install_dir_reads_updateinfo(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PATCHER_ORIGIN", raising=False)
        (tmp_path / "updateinfo.ini").write_text(
            "[update]\r\naddr = https://mirror.example.com/ENG\r\n", encoding="utf-8"
        )

        config = PatcherConfig.from_install_dir(tmp_path)

        assert config.origin == "https://mirror.example.com/ENG"
        assert config.install_dir == tmp_path
        assert config.is_installed

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PATCHER_ORIGIN", "https://env.example.com/ENG")
        monkeypatch.setenv("PATCHER_MAX_ATTEMPTS", "7")

        config = PatcherConfig.from_install_dir(tmp_path, backoff_base=0)

        assert config.origin == "https://env.example.com/ENG"
        assert config.max_attempts == 7
        assert config.backoff_base == 0

    def test_read_origin_missing(self, tmp_path):
        assert read_origin(tmp_path / "updateinfo.ini") == ""


@pytest.mark.unit
class TestManifestStore:
    """Test local manifest persistence."""

    def test_round_trip_preserves_line_endings(self, config):
        store = ManifestStore(config)
        text = "[patch]\r\nversion = ENG_2.0.3.7\r\n"

        store.write_patch(text)

        assert store.read_patch() == text
        assert config.patch_manifest_path.read_bytes() == text.encode()
        assert store.local_version() == "ENG_2.0.3.7"
        assert not list(config.install_dir.glob("*.tmp"))

    def test_missing(self, config):
        store = ManifestStore(config)
        assert store.read_patch() is None
        assert store.read_launcher() is None
        assert store.local_version() == ""

    def test_launcher(self, config):
        store = ManifestStore(config)
        store.write_launcher("[launcher]\nversion = 3\n")
        assert store.read_launcher() == "[launcher]\nversion = 3\n"
