"""Deployment service: applies one patch step or a full tree to the install dir."""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Optional, Union

from patcher.config import PatcherConfig
from patcher.models.errors import ErrorKind, FetchError
from patcher.models.manifest import PatchStep, parse_checksum_map
from patcher.services.download import DownloadService
from patcher.services.unpack import UnpackService
from patcher.utils.progress import ProgressCallback, ProgressRange, as_range
from patcher.utils.scratch import scratch_dir
from patcher.utils.verification import verify_checksum_or_raise


class DeployService:
    """Downloads, unpacks, verifies and commits patch payloads."""

    def __init__(
        self,
        config: Optional[PatcherConfig] = None,
        downloader: Optional[DownloadService] = None,
        unpacker: Optional[UnpackService] = None,
    ):
        """Initialize deployment service.

        Args:
            config: Patcher settings
            downloader: Fetcher used for archives and sidecars
            unpacker: Archive extractor
        """
        self.logger = logging.getLogger("patcher.deploy")
        self.config = config or PatcherConfig()
        self.downloader = downloader or DownloadService(self.config)
        self.unpacker = unpacker or UnpackService(self.config)

    async def apply_patch(
        self,
        from_version: str,
        to_version: str,
        progress: Union[ProgressRange, ProgressCallback, None] = None,
        checksum_xml: Optional[str] = None,
    ) -> list[Path]:
        """Apply the direct patch ``from_version`` → ``to_version``.

        Download occupies 0-75 of the range, extraction 75-90 and the file
        commit 90-100.

        Args:
            from_version: Version the tree is at
            to_version: Version the patch produces
            progress: Callback or range receiving 0-100 values
            checksum_xml: Sidecar document if the caller already fetched it

        Returns:
            Install-tree paths that were written

        Raises:
            FetchError: If the archive or its sidecar cannot be fetched
            ExtractionError: If the archive cannot be unpacked
            ChecksumMismatchError: If an extracted file fails verification
        """
        step = PatchStep.between(self.config.origin, from_version, to_version)
        report = as_range(progress)
        self.logger.info(f"Applying patch {from_version} -> {to_version}")

        with scratch_dir("LauncherPatch_") as tmp:
            archive = tmp / "patch.cab"
            extract_dir = tmp / "extracted"

            await self.downloader.fetch_file(step.archive_url, archive, report, 0, 75)
            self.logger.info(f"CAB file downloaded to {archive}")

            if checksum_xml is None:
                checksum_xml = await self.downloader.fetch_text(step.manifest_url)
                if checksum_xml is None:
                    raise FetchError(
                        "Failed to download checksum manifest",
                        ErrorKind.NOT_FOUND,
                        url=step.manifest_url,
                    )
            checksums = parse_checksum_map(checksum_xml)

            await self.unpacker.unpack(archive, extract_dir, report, 75, 90)

            files = sorted(p for p in extract_dir.rglob("*") if p.is_file())
            self.verify_files(files, checksums)
            committed = await self.commit_patch_files(
                extract_dir, files, report.sub(90, 100)
            )

        report.complete()
        self.logger.info(
            f"Patch {from_version} -> {to_version} applied ({len(committed)} files)"
        )
        return committed

    def verify_files(self, files: Iterable[Path], checksums: dict[str, str]) -> None:
        """Check every file named in ``checksums`` before anything is copied.

        Raises:
            ChecksumMismatchError: On the first file that does not match
        """
        for path in files:
            expected = checksums.get(path.name)
            if expected is None:
                continue
            verify_checksum_or_raise(path.name, path.read_bytes(), expected)
        self.logger.debug("All checksummed files verified")

    def is_protected(self, relative: Path) -> bool:
        if relative.name.lower() in (n.lower() for n in self.config.protected_names):
            return True
        rel = relative.as_posix().lower()
        return any(rel == p.lower() for p in self.config.protected_paths)

    async def commit_patch_files(
        self, extract_dir: Path, files: list[Path], progress: ProgressRange
    ) -> list[Path]:
        """Copy verified files into the install tree.

        Patch payloads carry a packaging suffix, so the committed name drops
        the last extension of the extracted name.
        """
        committed = []
        for idx, source in enumerate(files, start=1):
            relative = source.relative_to(extract_dir)
            target_rel = relative.with_name(relative.stem)
            if self.is_protected(relative) or self.is_protected(target_rel):
                self.logger.info(f"Skipping protected file {relative.as_posix()}")
                continue

            target = self.config.install_dir / target_rel
            await self._replace_file(source, target)
            committed.append(target)
            progress.report(idx * 100 / len(files))

        progress.complete()
        return committed

    async def install_tree(
        self,
        source_dir: Path,
        skip_names: Iterable[str] = (),
        skip_paths: Iterable[str] = (),
        progress: Union[ProgressRange, ProgressCallback, None] = None,
    ) -> list[Path]:
        """Copy a full extracted tree (install / repair) into the install dir.

        Args:
            source_dir: Extracted full archive
            skip_names: File names never copied (case-insensitive)
            skip_paths: Relative posix paths never copied (case-insensitive)
            progress: Callback or range receiving 0-100 values

        Returns:
            Install-tree paths that were written
        """
        report = as_range(progress)
        skip = {n.lower() for n in skip_names}
        skip_rel = {p.lower() for p in skip_paths}
        files = sorted(p for p in source_dir.rglob("*") if p.is_file())
        committed = []

        for idx, source in enumerate(files, start=1):
            relative = source.relative_to(source_dir)
            if relative.name.lower() in skip or relative.as_posix().lower() in skip_rel:
                self.logger.debug(f"Skipping {relative.as_posix()}")
                continue

            target = self.config.install_dir / relative
            await self._replace_file(source, target)
            committed.append(target)
            report.report(idx * 100 / len(files))

        report.complete()
        self.logger.info(f"Installed {len(committed)} files into {self.config.install_dir}")
        return committed

    async def _replace_file(self, source: Path, target: Path) -> None:
        """Write ``target`` through a temp file and an atomic rename."""
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.parent / f"{target.name}.tmp"
        try:
            await asyncio.to_thread(shutil.copyfile, source, tmp_path)
            os.replace(tmp_path, target)
            self.logger.debug(f"Replaced {target}")
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            self.logger.error(f"Failed to replace file {target}: {e}")
            raise
