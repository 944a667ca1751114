"""Transport strategies for single HTTP(S) fetch attempts.

Each strategy performs exactly one attempt behind the same interface::

    await strategy.attempt(url, destination, timeout, progress) -> bytes written

The resilient fetcher picks a strategy by attempt index. Strategies never
retry on their own and raise ``FetchError`` tagged with an ``ErrorKind``.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

from patcher.models.errors import ErrorKind, FetchError
from patcher.services.process import ProcessManager, ProcessTimeoutError
from patcher.utils.progress import ProgressRange, Throttle

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
CHUNK_SIZE = 32 * 1024


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP error status to an error kind."""
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code >= 500 or status_code in (408, 429):
        return ErrorKind.TRANSPORT
    return ErrorKind.HTTP_STATUS


class TransportStrategy:
    """Capability interface shared by all transports."""

    name = "transport"

    async def attempt(
        self,
        url: str,
        destination: Path,
        timeout: float,
        progress: ProgressRange,
    ) -> int:
        raise NotImplementedError

    async def reset(self) -> None:
        """Discard pooled connection state (no-op for stateless transports)."""

    async def close(self) -> None:
        """Release resources held by the transport."""


class ProcessTransport(TransportStrategy):
    """Download through an external program writing straight to disk."""

    program = ""

    def __init__(
        self,
        process_manager: Optional[ProcessManager] = None,
        poll_interval: float = 1.0,
    ):
        self.logger = logging.getLogger(f"patcher.transport.{self.name}")
        self.process_manager = process_manager or ProcessManager()
        self.poll_interval = poll_interval

    def build_command(self, url: str, destination: Path, timeout: float) -> list[str]:
        raise NotImplementedError

    async def attempt(
        self,
        url: str,
        destination: Path,
        timeout: float,
        progress: ProgressRange,
    ) -> int:
        self.logger.info(f"Using {self.name} for download")
        destination.parent.mkdir(parents=True, exist_ok=True)
        args = self.build_command(url, destination, timeout)

        done = asyncio.Event()
        poller = asyncio.create_task(self._poll_progress(destination, progress, done))
        try:
            result = await self.process_manager.run(args, timeout)
        except FileNotFoundError:
            raise FetchError(f"{args[0]} is not available", ErrorKind.TRANSPORT, url=url)
        except ProcessTimeoutError as e:
            raise FetchError(str(e), ErrorKind.TIMEOUT, url=url)
        finally:
            done.set()
            await poller

        if not result.ok:
            self.logger.warning(f"{self.name} error: {result.stderr.strip()}")
            raise FetchError(
                f"{self.name} download failed with exit code "
                f"{result.returncode}: {result.stderr.strip()}",
                ErrorKind.TRANSPORT,
                url=url,
            )

        if not destination.exists() or destination.stat().st_size == 0:
            raise FetchError(
                "Download completed but file is missing or empty",
                ErrorKind.TRANSPORT,
                url=url,
            )

        size = destination.stat().st_size
        self.logger.info(f"{self.name} download completed. File size: {size} bytes")
        return size

    async def _poll_progress(
        self, destination: Path, progress: ProgressRange, done: asyncio.Event
    ) -> None:
        # The tool gives no byte counts, so creep towards (but never reach) the end
        value = 0
        while not done.is_set():
            try:
                await asyncio.wait_for(done.wait(), self.poll_interval)
            except asyncio.TimeoutError:
                pass
            if not done.is_set() and destination.exists():
                value = min(95, value + 2)
                progress.report(value)


class CurlTransport(ProcessTransport):
    """curl binary, backed by the operating system's TLS stack."""

    name = "curl"
    program = "curl"

    def build_command(self, url: str, destination: Path, timeout: float) -> list[str]:
        return [
            self.process_manager.which(self.program) or self.program,
            "--location",
            "--fail",
            "--silent",
            "--show-error",
            "--max-time",
            str(int(timeout)),
            "--output",
            str(destination),
            url,
        ]


class ScriptedTransport(ProcessTransport):
    """Scripted download utility: PowerShell on Windows, wget elsewhere."""

    name = "scripted"

    def build_command(self, url: str, destination: Path, timeout: float) -> list[str]:
        if os.name == "nt":
            escaped_url = url.replace("'", "''")
            escaped_path = str(destination).replace("'", "''")
            script = (
                "$ProgressPreference = 'SilentlyContinue'; "
                "[Net.ServicePointManager]::SecurityProtocol = "
                "[Net.SecurityProtocolType]::Tls12 -bor [Net.SecurityProtocolType]::Tls13; "
                f"Invoke-WebRequest -Uri '{escaped_url}' -OutFile '{escaped_path}' -UseBasicParsing"
            )
            return [
                "powershell.exe",
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy",
                "Bypass",
                "-Command",
                script,
            ]
        return [
            self.process_manager.which("wget") or "wget",
            "--quiet",
            "--tries=1",
            f"--timeout={int(timeout)}",
            "--output-document",
            str(destination),
            url,
        ]


class HttpxTransport(TransportStrategy):
    """Raw streaming client; also serves in-memory text/bytes/HEAD requests."""

    name = "httpx"

    def __init__(self, progress_interval: float = 1.0, verify: bool = True):
        self.logger = logging.getLogger("patcher.transport.httpx")
        self.progress_interval = progress_interval
        self.verify = verify
        self._client: Optional[httpx.AsyncClient] = None

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            verify=self.verify,
            timeout=httpx.Timeout(60.0),
            limits=httpx.Limits(max_connections=2, keepalive_expiry=0),
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "*/*",
                "Accept-Encoding": "identity",
                "Connection": "close",
            },
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def reset(self) -> None:
        """Drop the client and its connection pool; the next request rebuilds it."""
        old, self._client = self._client, None
        if old is not None:
            await old.aclose()
            self.logger.info("HTTP client reset")

    async def close(self) -> None:
        await self.reset()

    def _wrap(self, url: str, exc: Exception) -> FetchError:
        if isinstance(exc, FetchError):
            return exc
        if isinstance(exc, httpx.HTTPStatusError):
            code = exc.response.status_code
            return FetchError(
                f"HTTP {code} for {url}", classify_status(code), url=url, status_code=code
            )
        if isinstance(exc, httpx.TimeoutException):
            return FetchError(f"Timed out: {exc}", ErrorKind.TIMEOUT, url=url)
        return FetchError(f"{type(exc).__name__}: {exc}", ErrorKind.TRANSPORT, url=url)

    def _wrap_truncated(
        self, url: str, exc: httpx.RemoteProtocolError, total: Optional[int], received: int
    ) -> FetchError:
        # Peer closed before the advertised length arrived
        if total is not None and received < total:
            return _size_mismatch(url, total, received)
        return self._wrap(url, exc)

    async def attempt(
        self,
        url: str,
        destination: Path,
        timeout: float,
        progress: ProgressRange,
    ) -> int:
        self.logger.info("Using HTTP client for download")
        destination.parent.mkdir(parents=True, exist_ok=True)
        headers = {"Cache-Control": "no-cache, no-store"}
        throttle = Throttle(self.progress_interval)
        total: Optional[int] = None
        downloaded = 0

        try:
            async with self.client.stream("GET", url, headers=headers) as response:
                response.raise_for_status()
                total = _content_length(response)
                self.logger.info(f"Content-Length: {total if total is not None else 'unknown'}")

                # Exclusive create: the fetcher removed any stale file first
                async with aiofiles.open(destination, "xb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                        await f.write(chunk)
                        downloaded += len(chunk)
                        if throttle.ready():
                            progress.report(_percent(downloaded, total))
        except httpx.RemoteProtocolError as e:
            raise self._wrap_truncated(url, e, total, downloaded) from e
        except (httpx.HTTPError, OSError) as e:
            raise self._wrap(url, e) from e

        _check_size(url, total, downloaded)
        return downloaded

    async def get_text(self, url: str) -> str:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            return response.text
        except httpx.HTTPError as e:
            raise self._wrap(url, e) from e

    async def get_bytes(self, url: str, progress: ProgressRange) -> bytes:
        throttle = Throttle(self.progress_interval)
        buffer = bytearray()
        total: Optional[int] = None
        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                total = _content_length(response)
                async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                    buffer.extend(chunk)
                    if throttle.ready():
                        progress.report(_percent(len(buffer), total))
        except httpx.RemoteProtocolError as e:
            raise self._wrap_truncated(url, e, total, len(buffer)) from e
        except httpx.HTTPError as e:
            raise self._wrap(url, e) from e

        _check_size(url, total, len(buffer))
        return bytes(buffer)

    async def head_length(self, url: str) -> Optional[int]:
        try:
            response = await self.client.head(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self._wrap(url, e) from e
        return _content_length(response)


def _content_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Content-Length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _percent(downloaded: int, total: Optional[int]) -> float:
    if total:
        return downloaded * 100 / total
    # Unknown size: one percent per megabyte
    return min(99.0, downloaded / (1024 * 1024))


def _size_mismatch(url: str, total: int, downloaded: int) -> FetchError:
    return FetchError(
        f"Size mismatch: expected {total}, got {downloaded}",
        ErrorKind.SIZE_MISMATCH,
        url=url,
    )


def _check_size(url: str, total: Optional[int], downloaded: int) -> None:
    if total is not None and downloaded != total:
        raise _size_mismatch(url, total, downloaded)


def default_strategies(
    process_manager: Optional[ProcessManager] = None,
    http: Optional[HttpxTransport] = None,
) -> list[TransportStrategy]:
    """Escalation order: curl ×2, scripted utility ×2, raw client for the rest."""
    process_manager = process_manager or ProcessManager()
    curl = CurlTransport(process_manager)
    scripted = ScriptedTransport(process_manager)
    http = http or HttpxTransport()
    return [curl, curl, scripted, scripted, http]
