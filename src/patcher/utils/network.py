"""Network reachability check for the distribution server."""

import asyncio
import logging

import httpx


async def is_origin_reachable(origin: str, timeout: float = 5.0) -> bool:
    """Open (and close) a TCP connection to the origin's host.

    Args:
        origin: Base URL of the distribution server
        timeout: Seconds allowed for the connection

    Returns:
        True if the connection succeeded
    """
    logger = logging.getLogger("patcher.network")
    url = httpx.URL(origin)
    port = url.port or (443 if url.scheme == "https" else 80)

    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(url.host, port), timeout)
    except (OSError, asyncio.TimeoutError) as e:
        logger.warning(f"Cannot reach {url.host}:{port}: {e!r}")
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True
