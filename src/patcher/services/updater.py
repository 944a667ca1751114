"""Update orchestrator.

One run walks a fixed sequence::

    CHECK_PRECONDITIONS → SYNC_LAUNCHER_MANIFEST → APPLY_PATCH_CHAIN
        → VERIFY_AUXILIARY_ASSET → DONE

The local patch manifest (the installed-version pointer) is only rewritten
after the patch work for the transition has succeeded.
"""

import asyncio
import logging
import os
import shutil
from typing import Awaitable, Callable, Optional

from patcher.config import PatcherConfig
from patcher.models.errors import (
    InsufficientDiskSpaceError,
    NetworkUnavailableError,
    PatcherError,
    UpdateError,
)
from patcher.models.manifest import PatchStep, UpdateResult, get_version
from patcher.models.status import StageEnum
from patcher.services.deploy import DeployService
from patcher.services.download import DownloadService
from patcher.services.manifest_store import ManifestStore
from patcher.services.patch_chain import PatchChainResolver
from patcher.services.state_manager import StateManager
from patcher.utils.network import is_origin_reachable
from patcher.utils.progress import ProgressCallback, ProgressRange
from patcher.utils.verification import compute_adler32

NetworkCheck = Callable[[], Awaitable[bool]]


class UpdateService:
    """Brings the install tree and local manifests up to the remote state."""

    def __init__(
        self,
        config: Optional[PatcherConfig] = None,
        state_manager: Optional[StateManager] = None,
        downloader: Optional[DownloadService] = None,
        deployer: Optional[DeployService] = None,
        resolver: Optional[PatchChainResolver] = None,
        store: Optional[ManifestStore] = None,
        network_check: Optional[NetworkCheck] = None,
        disk_usage: Callable = shutil.disk_usage,
    ):
        self.logger = logging.getLogger("patcher.updater")
        self.config = config or PatcherConfig()
        self.state_manager = state_manager or StateManager()
        self.downloader = downloader or DownloadService(self.config)
        self.deployer = deployer or DeployService(self.config, self.downloader)
        self.resolver = resolver or PatchChainResolver(
            self.config, self.downloader, self.deployer
        )
        self.store = store or ManifestStore(self.config)
        self._network_check = network_check or (
            lambda: is_origin_reachable(self.config.origin, self.config.network_check_timeout)
        )
        self._disk_usage = disk_usage

    async def run(self, progress: Optional[ProgressCallback] = None) -> UpdateResult:
        """Run a full update.

        Args:
            progress: Optional callback receiving 0-100 values

        Returns:
            UpdateResult describing what changed

        Raises:
            OperationInProgressError: If another foreground operation is running
            UpdateError: Wrapping the terminal failure of any phase
        """
        async with self.state_manager.operation("update"):
            report = ProgressRange(self._progress_sink(progress))
            try:
                result = await self._run(report)
            except (PatcherError, OSError) as e:
                self.logger.error(f"Update failed: {e}", exc_info=True)
                self.state_manager.update_status(
                    stage=StageEnum.FAILED,
                    progress=0,
                    message="Update failed",
                    error=str(e),
                )
                raise UpdateError("Update", e) from e

            self.state_manager.update_status(
                stage=StageEnum.SUCCESS,
                progress=100,
                message=f"Up to date: {result.local_version or 'unknown'}",
            )
            return result

    async def _run(self, report: ProgressRange) -> UpdateResult:
        result = UpdateResult()

        self.state_manager.update_status(
            stage=StageEnum.CHECKING, progress=0, message="Checking network and disk space..."
        )
        await self.check_preconditions()

        self._stage(StageEnum.SYNCING_LAUNCHER, "Checking launcher manifest...")
        result.launcher_manifest_updated = await self.sync_launcher_manifest(
            report.sub(0, 5)
        )

        self._stage(StageEnum.PATCHING, "Updating...")
        await self.apply_patch_manifest(result, report.sub(5, 95))

        self._stage(StageEnum.VERIFYING_ASSET, "Verifying game data...")
        result.asset_refreshed = await self.verify_auxiliary_asset(report.sub(95, 100))

        report.complete()
        self.logger.info(
            f"Update finished: version={result.local_version}, changed={result.changed}"
        )
        return result

    async def check_preconditions(self) -> None:
        """Fail before any write when offline or short on disk space.

        Raises:
            NetworkUnavailableError: If the origin cannot be reached
            InsufficientDiskSpaceError: If free space does not exceed the floor
        """
        if not await self._network_check():
            raise NetworkUnavailableError("No internet connection available.")

        free = self._disk_usage(self.config.install_dir).free
        if free <= self.config.min_free_space:
            raise InsufficientDiskSpaceError(
                f"Insufficient disk space for updates ({free // (1024 * 1024)}MB free). "
                "Please free up space and try again."
            )

    async def sync_launcher_manifest(self, report: ProgressRange) -> bool:
        """Mirror the remote launcher manifest; no patching involved.

        Returns:
            True if the local copy was rewritten
        """
        remote = await self.downloader.fetch_text(self.config.launcher_manifest_url)
        if remote is None:
            self.logger.warning("Remote launcher manifest not found")
            report.complete()
            return False

        local = self.store.read_launcher()
        if local is not None and local == remote:
            self.logger.info("Launcher manifest unchanged")
            report.complete()
            return False

        self.store.write_launcher(remote)
        report.complete()
        return True

    async def apply_patch_manifest(self, result: UpdateResult, report: ProgressRange) -> None:
        """Compare local and remote patch manifests and patch accordingly."""
        remote = await self.downloader.fetch_text(self.config.patch_manifest_url)
        if remote is None:
            self.logger.warning("Remote patch manifest not found")
            report.complete()
            return

        local = self.store.read_patch()
        local_version = get_version(local)
        remote_version = get_version(remote)
        result.local_version = local_version
        result.remote_version = remote_version
        self.logger.info(f"Local version: {local_version}, Remote version: {remote_version}")

        if not remote_version:
            self.logger.warning("Remote patch manifest declares no version")
        elif not local_version:
            self.logger.info("No local version, first synchronization")
            self.store.write_patch(remote)
            result.patch_manifest_updated = True
            result.local_version = remote_version
        elif remote_version > local_version:
            chain = await self.resolver.apply_chain(
                local_version, remote_version, remote, report
            )
            result.chain = chain
            if chain.any_applied:
                self.store.write_patch(remote)
                result.patch_manifest_updated = True
                result.local_version = remote_version
            else:
                self.logger.warning("No patch step succeeded, keeping local manifest")
        elif remote_version == local_version:
            if compute_adler32(local.encode()) != compute_adler32(remote.encode()):
                await self._repatch_same_version(local_version, report)
                self.store.write_patch(remote)
                result.patch_manifest_updated = True
            else:
                self.logger.info("Patch manifest unchanged")
        else:
            self.logger.warning(
                f"Local version {local_version} is ahead of remote {remote_version}"
            )

        report.complete()

    async def _repatch_same_version(self, version: str, report: ProgressRange) -> None:
        """Content changed without a version bump: re-apply the direct patch."""
        self.logger.info(f"Patch manifest for {version} changed, re-applying patch")
        step = PatchStep.between(self.config.origin, version, version)
        checksum_xml = await self.downloader.fetch_text(step.manifest_url)
        if checksum_xml is None:
            self.logger.warning(f"No direct patch for {version}, refreshing manifest only")
            return
        await self.deployer.apply_patch(version, version, report, checksum_xml=checksum_xml)

    async def verify_auxiliary_asset(self, report: ProgressRange) -> bool:
        """Refresh the large data blob when its checksum differs from the server's.

        Returns:
            True if the local copy was overwritten
        """
        path = self.config.asset_path
        if not path.exists():
            report.complete()
            return False

        remote = await self.downloader.fetch_bytes(self.config.asset_url, report)
        if remote is None:
            report.complete()
            return False

        local = await asyncio.to_thread(path.read_bytes)
        if compute_adler32(local) == compute_adler32(remote):
            self.logger.info(f"{path.name} checksums match.")
            return False

        self.logger.info(f"{path.name} checksum mismatch. Updating...")
        tmp_path = path.parent / f"{path.name}.tmp"
        try:
            await asyncio.to_thread(tmp_path.write_bytes, remote)
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        self.logger.info(f"{path.name} updated successfully.")
        return True

    async def check_for_update(self) -> bool:
        """Silent check: is the remote version newer than the installed one?

        Never raises; failures are logged and reported as "no update".
        """
        local = self.store.read_patch()
        if local is None:
            return False
        try:
            remote = await self.downloader.fetch_text(self.config.patch_manifest_url)
        except PatcherError as e:
            self.logger.warning(f"Background update check failed: {e}")
            return False
        if remote is None:
            return False
        return get_version(remote) > get_version(local)

    def _stage(self, stage: StageEnum, message: str) -> None:
        status = self.state_manager.get_status()
        self.state_manager.update_status(stage=stage, progress=status.progress, message=message)

    def _progress_sink(self, progress: Optional[ProgressCallback]) -> ProgressCallback:
        def sink(value: int) -> None:
            self.state_manager.set_progress(value)
            if progress is not None:
                progress(value)

        return sink
