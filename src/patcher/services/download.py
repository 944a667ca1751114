"""Download service with strategy escalation across retries."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar, Union

from patcher.config import PatcherConfig
from patcher.models.errors import ErrorKind, FetchError
from patcher.services.process import ProcessManager
from patcher.services.transport import (
    HttpxTransport,
    TransportStrategy,
    default_strategies,
)
from patcher.utils.logging import log_exception_chain
from patcher.utils.progress import ProgressCallback, ProgressRange, as_range

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class DownloadService:
    """Fetches files and documents with a fixed retry budget.

    Attempt *i* uses ``strategies[i - 1]`` (the last strategy is reused once
    the list runs out). Before every attempt the destination is removed, so a
    failed attempt never leaves a partial file behind.
    """

    def __init__(
        self,
        config: Optional[PatcherConfig] = None,
        strategies: Optional[list[TransportStrategy]] = None,
        http: Optional[HttpxTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize download service.

        Args:
            config: Patcher settings (defaults if None)
            strategies: Ordered transports indexed by attempt
            http: Client used for in-memory requests
            sleep: Backoff sleep (injectable for tests)
        """
        self.logger = logging.getLogger("patcher.download")
        self.config = config or PatcherConfig()
        self.http = http or HttpxTransport(progress_interval=self.config.progress_interval)
        self.strategies = strategies or default_strategies(
            ProcessManager(self.config.kill_grace), self.http
        )
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    def strategy_for(self, attempt: int) -> TransportStrategy:
        """Transport used for a 1-based attempt index."""
        return self.strategies[min(attempt, len(self.strategies)) - 1]

    async def close(self) -> None:
        for strategy in {id(s): s for s in [*self.strategies, self.http]}.values():
            await strategy.close()

    async def fetch_file(
        self,
        url: str,
        destination: Path,
        progress: Union[ProgressRange, ProgressCallback, None] = None,
        start: int = 0,
        end: int = 100,
    ) -> Path:
        """Download ``url`` to ``destination``.

        Args:
            url: HTTPS URL to download from
            destination: Target file path
            progress: Callback or range receiving 0-100 values
            start: Lower bound of the reported range
            end: Upper bound of the reported range (always reported on success)

        Returns:
            ``destination`` once the complete file is on disk

        Raises:
            FetchError: When the retry budget is exhausted or the server
                answers with a non-retryable status
        """
        report = as_range(progress, start, end)
        timeout = self.config.file_timeout
        last_error: Optional[FetchError] = None
        attempt = 0

        for attempt in range(1, self.max_attempts + 1):
            self.logger.info(f"Starting download (attempt {attempt}/{self.max_attempts}): {url}")
            self._remove_partial(destination)
            strategy = self.strategy_for(attempt)

            try:
                await asyncio.wait_for(
                    strategy.attempt(url, destination, timeout, report), timeout
                )
            except asyncio.TimeoutError:
                last_error = FetchError(
                    f"{strategy.name} attempt timed out after {timeout:.0f}s",
                    ErrorKind.TIMEOUT,
                    url=url,
                )
            except FetchError as e:
                last_error = e
            else:
                strip_zone_identifier(destination)
                report.complete()
                self.logger.info(f"Download completed: {destination}")
                return destination

            if not await self._after_failure(last_error, url, attempt):
                break

        self._remove_partial(destination)
        raise self._terminal(url, attempt, last_error)

    async def fetch_text(self, url: str) -> Optional[str]:
        """Download a small document into memory.

        Returns:
            Document text, or None if the server answers 404

        Raises:
            FetchError: When the retry budget is exhausted
        """
        return await self._request(
            url, lambda: self.http.get_text(url), self.config.text_timeout
        )

    async def fetch_bytes(
        self,
        url: str,
        progress: Union[ProgressRange, ProgressCallback, None] = None,
        start: int = 0,
        end: int = 100,
    ) -> Optional[bytes]:
        """Download a payload into memory.

        Returns:
            Payload bytes, or None if the server answers 404

        Raises:
            FetchError: When the retry budget is exhausted
        """
        report = as_range(progress, start, end)
        data = await self._request(
            url, lambda: self.http.get_bytes(url, report), self.config.bytes_timeout
        )
        if data is not None:
            report.complete()
        return data

    async def get_content_length(self, url: str) -> Optional[int]:
        """Advertised size of ``url`` via HEAD, or None if unknown.

        Failures are logged and reported as "unknown"; callers treat the
        size as a best-effort hint.
        """
        try:
            return await self._request(
                url, lambda: self.http.head_length(url), self.config.head_timeout
            )
        except FetchError as e:
            self.logger.warning(f"Error getting content length from {url}: {e}")
            return None

    async def _request(
        self, url: str, operation: Callable[[], Awaitable[T]], timeout: float
    ) -> Optional[T]:
        last_error: Optional[FetchError] = None
        attempt = 0

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(operation(), timeout)
            except asyncio.TimeoutError:
                last_error = FetchError(
                    f"Request timed out after {timeout:.0f}s", ErrorKind.TIMEOUT, url=url
                )
            except FetchError as e:
                if e.kind is ErrorKind.NOT_FOUND:
                    self.logger.info(f"Not found: {url}")
                    return None
                last_error = e

            if not await self._after_failure(last_error, url, attempt):
                break

        raise self._terminal(url, attempt, last_error)

    async def _after_failure(self, error: FetchError, url: str, attempt: int) -> bool:
        """Log, reset poisoned connections and back off.

        Returns:
            True if another attempt should follow
        """
        self.logger.warning(
            f"Error downloading {url} (attempt {attempt}/{self.max_attempts}): {error}"
        )
        log_exception_chain(self.logger, error)

        if not error.retryable:
            return False
        if error.kind.resets_connection:
            await self._reset_connections()
        if attempt >= self.max_attempts:
            return False

        delay = attempt * self.config.backoff_base
        self.logger.info(f"Retrying in {delay:.0f} seconds...")
        await self._sleep(delay)
        return True

    async def _reset_connections(self) -> None:
        for strategy in {id(s): s for s in [*self.strategies, self.http]}.values():
            await strategy.reset()

    def _terminal(self, url: str, attempt: int, error: Optional[FetchError]) -> FetchError:
        if error is None:
            return FetchError(f"Failed to download {url}", url=url)
        self.logger.error(f"Giving up on {url} after {attempt} attempt(s): {error}")
        terminal = FetchError(
            f"Failed to download {url} after {attempt} attempt(s): {error.args[0]}",
            error.kind,
            url=url,
            status_code=error.status_code,
        )
        terminal.__cause__ = error
        return terminal

    def _remove_partial(self, destination: Path) -> None:
        if destination.exists():
            self.logger.debug(f"Removing partial file {destination}")
            destination.unlink()


def strip_zone_identifier(path: Path) -> None:
    """Drop the Windows "downloaded from the internet" marker stream."""
    if os.name != "nt":
        return
    try:
        os.remove(f"{path}:Zone.Identifier")
    except FileNotFoundError:
        pass
    except OSError as e:
        logging.getLogger("patcher.download").debug(f"Could not strip Zone.Identifier: {e}")
