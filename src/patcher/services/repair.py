"""Full-archive installation and repair.

Both operations re-fetch the complete archive from the origin and copy it
over the install tree; this is the only recovery path beyond the patch
chain.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

from patcher.config import PatcherConfig
from patcher.models.errors import InsufficientDiskSpaceError, PatcherError, UpdateError
from patcher.models.status import StageEnum
from patcher.services.deploy import DeployService
from patcher.services.download import DownloadService
from patcher.services.manifest_store import ManifestStore
from patcher.services.state_manager import StateManager
from patcher.services.unpack import extract_zip
from patcher.utils.progress import ProgressCallback, ProgressRange
from patcher.utils.scratch import scratch_dir


class RepairService:
    """Installs or repairs the tree from the full archive."""

    def __init__(
        self,
        config: Optional[PatcherConfig] = None,
        state_manager: Optional[StateManager] = None,
        downloader: Optional[DownloadService] = None,
        deployer: Optional[DeployService] = None,
        store: Optional[ManifestStore] = None,
        disk_usage: Callable = shutil.disk_usage,
    ):
        self.logger = logging.getLogger("patcher.repair")
        self.config = config or PatcherConfig()
        self.state_manager = state_manager or StateManager()
        self.downloader = downloader or DownloadService(self.config)
        self.deployer = deployer or DeployService(self.config, self.downloader)
        self.store = store or ManifestStore(self.config)
        self._disk_usage = disk_usage

    async def install(self, progress: Optional[ProgressCallback] = None) -> list[Path]:
        """First installation into an empty (or partial) tree.

        The launcher's own files are never overwritten.
        """
        return await self._run(
            "install",
            download_end=50,
            skip_names=self.config.install_skip_names,
            skip_paths=[],
            progress=progress,
        )

    async def repair(self, progress: Optional[ProgressCallback] = None) -> list[Path]:
        """Overwrite the tree with a fresh copy of the full archive.

        User options (``protected_paths``) are kept.
        """
        return await self._run(
            "repair",
            download_end=80,
            skip_names=[],
            skip_paths=self.config.protected_paths,
            progress=progress,
        )

    async def check_disk_space(self, scratch_parent: Path) -> None:
        """Best-effort space check based on the archive's advertised size.

        Raises:
            InsufficientDiskSpaceError: If either volume is too small
        """
        size = await self.downloader.get_content_length(self.config.full_archive_url)
        if size is None:
            self.logger.info("Archive size unknown, skipping disk space check")
            return

        required_scratch = size + self.config.repair_space_buffer
        required_install = size * 2
        scratch_free = self._disk_usage(scratch_parent).free
        install_free = self._disk_usage(self.config.install_dir).free
        if scratch_free < required_scratch or install_free < required_install:
            raise InsufficientDiskSpaceError(
                f"Insufficient disk space: archive is {size} bytes, "
                f"{scratch_free} free for download, {install_free} free for install"
            )

    async def _run(
        self,
        operation: str,
        download_end: int,
        skip_names: list[str],
        skip_paths: list[str],
        progress: Optional[ProgressCallback],
    ) -> list[Path]:
        async with self.state_manager.operation(operation):
            report = ProgressRange(self._progress_sink(progress))
            self.state_manager.update_status(
                stage=StageEnum.DOWNLOADING,
                progress=0,
                message=f"Starting {operation}...",
            )
            try:
                installed = await self._install_full_archive(
                    report, download_end, skip_names, skip_paths
                )
            except (PatcherError, OSError) as e:
                self.logger.error(f"{operation} failed: {e}", exc_info=True)
                self.state_manager.update_status(
                    stage=StageEnum.FAILED,
                    progress=0,
                    message=f"{operation.capitalize()} failed",
                    error=str(e),
                )
                raise UpdateError(operation.capitalize(), e) from e

            self.state_manager.update_status(
                stage=StageEnum.SUCCESS,
                progress=100,
                message=f"{operation.capitalize()} complete",
            )
            return installed

    async def _install_full_archive(
        self,
        report: ProgressRange,
        download_end: int,
        skip_names: list[str],
        skip_paths: list[str],
    ) -> list[Path]:
        scratch_parent = Path(tempfile.gettempdir())
        await self.check_disk_space(scratch_parent)

        with scratch_dir("LauncherRepair_", scratch_parent) as tmp:
            archive = tmp / "Full.zip"
            extract_dir = tmp / "extracted"

            await self.downloader.fetch_file(
                self.config.full_archive_url, archive, report, 0, download_end
            )

            self.state_manager.update_status(
                stage=StageEnum.INSTALLING,
                progress=report.last,
                message="Extracting files...",
            )
            await asyncio.to_thread(extract_zip, archive, extract_dir)

            installed = await self.deployer.install_tree(
                extract_dir, skip_names, skip_paths, report.sub(download_end, 95)
            )

        patch_manifest = await self.downloader.fetch_text(self.config.patch_manifest_url)
        if patch_manifest is not None:
            self.store.write_patch(patch_manifest)
        report.complete()
        return installed

    def _progress_sink(self, progress: Optional[ProgressCallback]) -> ProgressCallback:
        def sink(value: int) -> None:
            self.state_manager.set_progress(value)
            if progress is not None:
                progress(value)

        return sink
