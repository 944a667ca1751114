"""Archive extraction with an external cabinet tool and a ZIP fallback."""

import asyncio
import logging
import os
import zipfile
from pathlib import Path
from typing import Optional, Union

from patcher.config import PatcherConfig
from patcher.models.errors import ExtractionError
from patcher.services.process import ProcessManager, ProcessTimeoutError
from patcher.utils.progress import ProgressCallback, ProgressRange, as_range

HUNDRED_MB = 100 * 1024 * 1024


class UnpackService:
    """Extracts patch archives into a scratch directory."""

    def __init__(
        self,
        config: Optional[PatcherConfig] = None,
        process_manager: Optional[ProcessManager] = None,
    ):
        self.logger = logging.getLogger("patcher.unpack")
        self.config = config or PatcherConfig()
        self.process_manager = process_manager or ProcessManager(self.config.kill_grace)

    def compute_timeout(self, archive_size: int) -> float:
        """Base timeout plus one increment per full 100MB of archive."""
        return (
            self.config.unpack_base_timeout
            + (archive_size // HUNDRED_MB) * self.config.unpack_timeout_per_100mb
        )

    def cab_command(self, archive_path: Path, dest_dir: Path) -> list[str]:
        if os.name == "nt":
            return ["expand.exe", str(archive_path), "-F:*", str(dest_dir)]
        tool = self.process_manager.which("cabextract") or "cabextract"
        return [tool, "-q", "-d", str(dest_dir), str(archive_path)]

    async def unpack(
        self,
        archive_path: Path,
        dest_dir: Path,
        progress: Union[ProgressRange, ProgressCallback, None] = None,
        start: int = 0,
        end: int = 100,
    ) -> None:
        """Extract ``archive_path`` into ``dest_dir``.

        Args:
            archive_path: Downloaded archive
            dest_dir: Existing scratch directory
            progress: Callback or range receiving 0-100 values

        Raises:
            ExtractionError: If both the cabinet tool and ZIP extraction fail
        """
        report = as_range(progress, start, end)
        dest_dir.mkdir(parents=True, exist_ok=True)

        try:
            await self._expand_cab(archive_path, dest_dir)
        except ExtractionError as primary:
            self.logger.warning(f"Cabinet extraction failed ({primary}), trying ZIP")
            try:
                await asyncio.to_thread(extract_zip, archive_path, dest_dir)
            except ExtractionError as fallback:
                self.logger.error(f"ZIP fallback failed: {fallback}")
                raise ExtractionError(
                    f"Could not unpack {archive_path.name}: {primary.args[0]}"
                ) from fallback
            self.logger.info(f"Extracted {archive_path.name} as ZIP")

        report.complete()

    async def _expand_cab(self, archive_path: Path, dest_dir: Path) -> None:
        timeout = self.compute_timeout(archive_path.stat().st_size)
        args = self.cab_command(archive_path, dest_dir)
        self.logger.info(f"Starting {Path(args[0]).name} (timeout={timeout:.0f}s)")

        try:
            result = await self.process_manager.run(args, timeout)
        except FileNotFoundError:
            raise ExtractionError(f"Failed to start {args[0]}")
        except ProcessTimeoutError as e:
            raise ExtractionError(f"{e} while unpacking the patch")

        self.logger.info(f"{Path(args[0]).name} exited with code {result.returncode}")
        if not result.ok:
            raise ExtractionError(
                f"{Path(args[0]).name} failed with code {result.returncode}: "
                f"{result.stderr.strip() or result.stdout.strip()}"
            )


def extract_zip(archive_path: Path, dest_dir: Path) -> list[Path]:
    """Extract a ZIP archive, refusing members that escape ``dest_dir``.

    Returns:
        Paths of the extracted files

    Raises:
        ExtractionError: If the file is not a valid ZIP or is unsafe
    """
    root = dest_dir.resolve()
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for member in zf.namelist():
                target = (root / member).resolve()
                if target != root and root not in target.parents:
                    raise ExtractionError(f"Unsafe path in archive: {member}")
            zf.extractall(root)
            return [root / name for name in zf.namelist() if not name.endswith("/")]
    except zipfile.BadZipFile as e:
        raise ExtractionError(f"Invalid ZIP archive: {e}")
    except OSError as e:
        raise ExtractionError(f"Failed to extract {archive_path.name}: {e}")
