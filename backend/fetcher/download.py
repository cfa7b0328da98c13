"""Streaming downloads from the upstream origins."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog

from fetcher.errors import CacheFilesystemError, UpstreamFetchError
from shared.storage import atomic_write

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path
    from typing import BinaryIO

logger = structlog.get_logger()


@dataclass(frozen=True)
class PayloadInfo:
    """Response metadata kept after the body has been written to disk."""

    url: str
    content_type: str
    content_disposition: str
    size: int


def create_http_client(timeout_seconds: float, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build the pooled client shared by all downloads of one application."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=True,
        transport=transport,
    )


@contextlib.asynccontextmanager
async def open_upstream(client: httpx.AsyncClient, url: str) -> AsyncIterator[httpx.Response]:
    """Open a streaming GET and yield the response if its status is 2xx.

    Transport errors raised while opening or while the caller reads the body
    are converted to UpstreamFetchError.
    """
    try:
        async with client.stream("GET", url) as response:
            if not response.is_success:
                raise UpstreamFetchError(url, "Upstream returned an error status", status_code=response.status_code)
            yield response
    except httpx.HTTPError as e:
        raise UpstreamFetchError(url, f"Upstream request failed: {type(e).__name__}") from e


async def _copy_body(response: httpx.Response, sink: BinaryIO) -> int:
    written = 0
    async for chunk in response.aiter_bytes():
        sink.write(chunk)
        written += len(chunk)
    return written


def _payload_info(response: httpx.Response, size: int) -> PayloadInfo:
    return PayloadInfo(
        url=str(response.url),
        content_type=response.headers.get("content-type", ""),
        content_disposition=response.headers.get("content-disposition", ""),
        size=size,
    )


async def download_file(client: httpx.AsyncClient, url: str, target: Path) -> PayloadInfo:
    """Stream url into target, which only appears once the body is complete."""
    logger.info("downloading", url=url, target=target.name)
    async with open_upstream(client, url) as response:
        try:
            with atomic_write(target) as sink:
                size = await _copy_body(response, sink)
        except OSError as e:
            raise CacheFilesystemError(f"Could not write {target.name}: {e.strerror}") from e
    logger.info("download complete", url=url, target=target.name, bytes=size)
    return _payload_info(response, size)


async def download_to_staging(client: httpx.AsyncClient, url: str, staged: Path) -> PayloadInfo:
    """Stream url into an already-reserved staging file, truncating it first."""
    logger.info("downloading to staging", url=url)
    async with open_upstream(client, url) as response:
        try:
            with staged.open("wb") as sink:
                size = await _copy_body(response, sink)
        except OSError as e:
            raise CacheFilesystemError(f"Could not write staging file: {e.strerror}") from e
    logger.info("download complete", url=url, bytes=size)
    return _payload_info(response, size)
