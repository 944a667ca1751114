"""Patcher configuration.

The origin address comes from ``updateinfo.ini`` in the install directory
(``[update]`` section, ``addr = ...``). Everything else has defaults that can
be overridden through ``PATCHER_*`` environment variables.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from patcher.models.manifest import read_section_value

DEFAULT_ORIGIN = "https://cdn.toybattles.net/ENG"
UPDATE_INFO_FILE = "updateinfo.ini"

MB = 1024 * 1024


class PatcherConfig(BaseModel):
    """Settings for one install tree and one remote origin."""

    origin: str = Field(DEFAULT_ORIGIN, description="Distribution server base URL")
    install_dir: Path = Field(
        default_factory=Path.cwd, description="Root of the managed application tree"
    )

    # Fetcher
    max_attempts: int = Field(5, ge=5, le=7, description="Retry budget per fetch")
    backoff_base: float = Field(2.0, ge=0, description="Seconds × attempt index")
    head_timeout: float = Field(30.0, gt=0)
    text_timeout: float = Field(120.0, gt=0)
    bytes_timeout: float = Field(30 * 60.0, gt=0)
    file_timeout: float = Field(60 * 60.0, gt=0)
    progress_interval: float = Field(1.0, gt=0, description="Min seconds between reports")

    # Pre-flight
    min_free_space: int = Field(500 * MB, ge=0)
    repair_space_buffer: int = Field(100 * MB, ge=0)
    network_check_timeout: float = Field(5.0, gt=0)

    # Unpacker
    unpack_base_timeout: float = Field(5 * 60.0, gt=0)
    unpack_timeout_per_100mb: float = Field(60.0, ge=0)
    kill_grace: float = Field(10.0, gt=0)

    # Background check
    check_interval: float = Field(5 * 60.0, gt=0)

    # Local files
    launcher_manifest_name: str = "patchLauncher.ini"
    patch_manifest_name: str = "patch.ini"
    asset_relpath: str = "data/cgd.dip"
    protected_paths: list[str] = Field(
        default_factory=lambda: ["data/config/ENG/option.ini"]
    )
    protected_names: list[str] = Field(default_factory=lambda: ["launcher.txt"])
    install_skip_names: list[str] = Field(
        default_factory=lambda: ["launcher.exe", "launcher.txt"]
    )

    @field_validator("origin")
    @classmethod
    def normalize_origin(cls, v: str) -> str:
        """Force HTTPS and drop the trailing slash."""
        v = v.strip()
        if v.startswith("http://"):
            v = "https://" + v[len("http://"):]
        return v.rstrip("/")

    @property
    def launcher_manifest_url(self) -> str:
        return f"{self.origin}/microvolts/Patcher/patchLauncher.ini"

    @property
    def patch_manifest_url(self) -> str:
        return f"{self.origin}/microvolts/patch.ini"

    @property
    def asset_url(self) -> str:
        return f"{self.origin}/microvolts/Full/data/cgd.dip"

    @property
    def full_archive_url(self) -> str:
        return f"{self.origin}/microvolts/Full/Full.zip"

    @property
    def launcher_manifest_path(self) -> Path:
        return self.install_dir / self.launcher_manifest_name

    @property
    def patch_manifest_path(self) -> Path:
        return self.install_dir / self.patch_manifest_name

    @property
    def asset_path(self) -> Path:
        return self.install_dir / self.asset_relpath

    @property
    def is_installed(self) -> bool:
        return (self.install_dir / UPDATE_INFO_FILE).exists()

    @classmethod
    def from_install_dir(
        cls, install_dir: Optional[Path] = None, **overrides: Any
    ) -> "PatcherConfig":
        """Build config from ``updateinfo.ini`` plus environment overrides."""
        install_dir = Path(install_dir or os.getenv("PATCHER_INSTALL_DIR") or Path.cwd())
        values: dict[str, Any] = {"install_dir": install_dir}

        origin = read_origin(install_dir / UPDATE_INFO_FILE)
        if origin:
            values["origin"] = origin

        env_map = {
            "PATCHER_ORIGIN": "origin",
            "PATCHER_MAX_ATTEMPTS": "max_attempts",
            "PATCHER_BACKOFF_BASE": "backoff_base",
            "PATCHER_CHECK_INTERVAL": "check_interval",
            "PATCHER_MIN_FREE_SPACE": "min_free_space",
        }
        for env_name, field in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field] = value

        values.update(overrides)
        return cls(**values)


def read_origin(update_info_path: Path) -> str:
    """Read ``[update] addr = ...`` from an updateinfo file.

    Returns:
        The configured address, or "" if the file or key is missing
    """
    logger = logging.getLogger("patcher.config")
    if not update_info_path.exists():
        logger.debug(f"No {update_info_path.name}, using default origin")
        return ""

    text = update_info_path.read_text(encoding="utf-8", errors="replace")
    origin = read_section_value(text, "[update]", "addr = ")
    if origin:
        logger.info(f"Origin from {update_info_path.name}: {origin}")
    return origin
