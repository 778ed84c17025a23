from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from urllib.parse import urlparse

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

_TIMEOUT_SECONDS = 60
_MAX_REDIRECTS = 5
_MAX_ATTEMPTS = 3


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying media download in {wait:.0f}s (attempt {attempt}/{_MAX_ATTEMPTS})...")


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(_MAX_ATTEMPTS),
    before_sleep=_on_retry,
    reraise=True,
)
async def fetch_media(client: httpx.AsyncClient, url: str) -> bytes:
    response = await client.get(url)
    response.raise_for_status()
    return response.content


def is_remote_link(link: str) -> bool:
    return urlparse(link).scheme in ("http", "https")


async def save_media(
    link: str,
    destination: Path,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Write the media behind `link` to `destination`; returns the byte count.

    Remote links are fetched over HTTP, anything else is treated as a local path.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    if is_remote_link(link):
        async with httpx.AsyncClient(
            timeout=_TIMEOUT_SECONDS,
            follow_redirects=True,
            max_redirects=_MAX_REDIRECTS,
            transport=transport,
        ) as client:
            data = await fetch_media(client, link)
        await asyncio.to_thread(destination.write_bytes, data)
        logger.debug(f"Fetched {len(data)} bytes from {link} into {destination}")
        return len(data)

    source = Path(link).expanduser()
    await asyncio.to_thread(shutil.copyfile, source, destination)
    size = destination.stat().st_size
    logger.debug(f"Copied {size} bytes from {source} into {destination}")
    return size
