"""Test doubles for the upstream origins and cache directories."""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from fetcher.config import FetcherConfig

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

REPLAY_ORIGIN = "http://replays.test/replays"
MAP_ORIGIN = "http://maps.test/api/download"


def make_config(root: Path) -> FetcherConfig:
    return FetcherConfig(
        replay_origin=REPLAY_ORIGIN,
        map_origin=MAP_ORIGIN,
        resources_dir=root / "resources",
        downloads_dir=root / "downloads",
    )


def build_zip(entries: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def damage_entry(data: bytes, name: str) -> bytes:
    """Overwrite the start of one entry's deflate stream, leaving the zip directory intact."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(name)
    # Local header: 30 fixed bytes plus the name; writestr adds no extra field.
    start = info.header_offset + 30 + len(info.filename.encode())
    length = min(20, info.compress_size)
    damaged = bytearray(data)
    damaged[start : start + length] = b"\xff" * length
    return bytes(damaged)


def bsp_headers(map_name: str) -> dict[str, str]:
    return {
        "content-type": "application/octet-stream",
        "content-disposition": f'attachment; filename="{map_name}.bsp"',
    }


def zip_headers(map_name: str) -> dict[str, str]:
    return {
        "content-type": "application/zip",
        "content-disposition": f'attachment; filename="{map_name}.zip"',
    }


class BrokenStream(httpx.AsyncByteStream):
    """Response body that yields a first chunk, then drops the connection."""

    def __init__(self, head: bytes) -> None:
        self._head = head

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._head
        raise httpx.ReadError("connection reset by peer")


@dataclass
class _Route:
    status_code: int = 200
    content: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    broken: bool = False
    error: Exception | None = None


class FakeOrigin:
    """In-memory upstream that records every request it receives.

    Unregistered URLs answer 404.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, _Route] = {}

    def add(
        self,
        url: str,
        content: bytes = b"",
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._routes[str(httpx.URL(url))] = _Route(status_code=status_code, content=content, headers=headers or {})

    def add_broken(self, url: str, head: bytes) -> None:
        self._routes[str(httpx.URL(url))] = _Route(content=head, broken=True)

    def add_error(self, url: str, error: Exception) -> None:
        self._routes[str(httpx.URL(url))] = _Route(error=error)

    def requested_urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, content=b"not found")
        if route.error is not None:
            raise route.error
        if route.broken:
            return httpx.Response(200, stream=BrokenStream(route.content))
        return httpx.Response(route.status_code, content=route.content, headers=route.headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, follow_redirects=True)
