"""Global pytest fixtures and configuration."""

import sys
import zipfile
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from patcher.config import PatcherConfig  # noqa: E402

ORIGIN = "https://patch.example.com/ENG"


@pytest.fixture
def install_dir(tmp_path):
    """Empty install tree."""
    path = tmp_path / "install"
    path.mkdir()
    return path


@pytest.fixture
def config(install_dir):
    """Config pointed at a fake origin with zero backoff."""
    return PatcherConfig(origin=ORIGIN, install_dir=install_dir, backoff_base=0)


@pytest.fixture
def patch_manifest():
    """Build a patch.ini document for a version."""
    def build(version: str, *history: str) -> str:
        text = f"[patch]\r\nversion = {version}\r\n"
        for old in history:
            text += f"[patch]\r\nversion = {old}\r\n"
        return text
    return build


@pytest.fixture
def sample_zip(tmp_path):
    """Full archive with a small tree."""
    archive = tmp_path / "Full.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("launcher.exe", b"launcher")
        zf.writestr("game.exe", b"game binary")
        zf.writestr("data/cgd.dip", b"asset")
        zf.writestr("data/config/ENG/option.ini", b"[options]\r\n")
    return archive
