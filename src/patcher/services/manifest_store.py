"""Local copies of the launcher and patch manifests."""

import logging
import os
from pathlib import Path
from typing import Optional

from patcher.config import PatcherConfig
from patcher.models.manifest import get_version


class ManifestStore:
    """Reads and rewrites the plaintext manifests kept in the install dir.

    Text is read and written with ``newline=""`` so a byte-identical remote
    document compares equal to the local copy.
    """

    def __init__(self, config: Optional[PatcherConfig] = None):
        self.logger = logging.getLogger("patcher.manifest_store")
        self.config = config or PatcherConfig()

    def read_launcher(self) -> Optional[str]:
        return self._read(self.config.launcher_manifest_path)

    def write_launcher(self, text: str) -> None:
        self._write(self.config.launcher_manifest_path, text)

    def read_patch(self) -> Optional[str]:
        return self._read(self.config.patch_manifest_path)

    def write_patch(self, text: str) -> None:
        self._write(self.config.patch_manifest_path, text)

    def local_version(self) -> str:
        """Installed version, or "" when no usable patch manifest exists."""
        return get_version(self.read_patch())

    def _read(self, path: Path) -> Optional[str]:
        if not path.exists():
            self.logger.debug(f"No local {path.name}")
            return None
        with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
            return f.read()

    def _write(self, path: Path, text: str) -> None:
        """Full rewrite through a temp file and rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.parent / f"{path.name}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            self.logger.error(f"Failed to write {path.name}: {e}", exc_info=True)
            raise
        self.logger.info(f"Wrote {path.name} ({len(text)} chars)")
