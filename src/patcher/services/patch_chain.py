"""Patch chain resolution and best-effort application.

Versions are compared as plain strings (ordinal order). "ENG_2.0.3.9" sorts
after "ENG_2.0.3.10"; the server's version format is expected to keep a
fixed digit count.
"""

import logging
from typing import Optional, Union

from patcher.config import PatcherConfig
from patcher.models.errors import PatcherError
from patcher.models.manifest import ChainResult, PatchStep, list_versions
from patcher.services.deploy import DeployService
from patcher.services.download import DownloadService
from patcher.utils.progress import ProgressCallback, ProgressRange, as_range


def resolve_chain(
    installed_version: str, target_version: str, candidates: list[str]
) -> list[str]:
    """Ordered versions to walk from ``installed_version`` to ``target_version``.

    Args:
        installed_version: Version currently on disk ("" if unknown)
        target_version: Version to end at
        candidates: Versions enumerated by the remote manifest

    Returns:
        Ascending versions strictly greater than ``installed_version``,
        ending exactly at ``target_version`` (empty if already there)
    """
    if not target_version or target_version <= installed_version:
        return []
    chain = sorted(
        {v for v in candidates if installed_version < v <= target_version}
    )
    if not chain or chain[-1] != target_version:
        chain.append(target_version)
    return chain


class PatchChainResolver:
    """Walks a patch chain, probing each step's sidecar before applying it."""

    def __init__(
        self,
        config: Optional[PatcherConfig] = None,
        downloader: Optional[DownloadService] = None,
        deployer: Optional[DeployService] = None,
    ):
        self.logger = logging.getLogger("patcher.patch_chain")
        self.config = config or PatcherConfig()
        self.downloader = downloader or DownloadService(self.config)
        self.deployer = deployer or DeployService(self.config, self.downloader)

    @staticmethod
    def parse_versions(manifest_text: str) -> list[str]:
        return list_versions(manifest_text)

    def resolve_chain(
        self, installed_version: str, target_version: str, manifest_text: str = ""
    ) -> list[str]:
        return resolve_chain(
            installed_version, target_version, self.parse_versions(manifest_text)
        )

    async def apply_chain(
        self,
        installed_version: str,
        target_version: str,
        manifest_text: str = "",
        progress: Union[ProgressRange, ProgressCallback, None] = None,
    ) -> ChainResult:
        """Apply every available step between the two versions, in order.

        A step without a sidecar on the server is skipped; a step that fails
        is logged. In both cases the cursor still advances to the next
        version, so a missing or broken intermediate patch never blocks the
        chain.

        Returns:
            ChainResult listing applied, skipped and failed target versions
        """
        report = as_range(progress)
        chain = self.resolve_chain(installed_version, target_version, manifest_text)
        result = ChainResult(start_version=installed_version, final_version=installed_version)
        self.logger.info(f"Resolved chain {installed_version!r} -> {chain}")

        cursor = installed_version
        for next_version, step_range in zip(chain, report.split(len(chain))):
            step = PatchStep.between(self.config.origin, cursor, next_version)
            checksum_xml = await self._probe(step)

            if checksum_xml is None:
                self.logger.info(f"No direct patch {cursor} -> {next_version}, skipping")
                result.skipped.append(next_version)
            else:
                try:
                    await self.deployer.apply_patch(
                        cursor, next_version, step_range, checksum_xml=checksum_xml
                    )
                    result.applied.append(next_version)
                except (PatcherError, OSError) as e:
                    self.logger.error(f"Patch {cursor} -> {next_version} failed: {e}")
                    result.failed.append(next_version)

            step_range.complete()
            cursor = next_version

        result.final_version = cursor
        report.complete()
        return result

    async def _probe(self, step: PatchStep) -> Optional[str]:
        """Sidecar text if the step exists on the server, else None."""
        try:
            return await self.downloader.fetch_text(step.manifest_url)
        except PatcherError as e:
            self.logger.warning(f"Probe for {step.manifest_url} failed: {e}")
            return None
