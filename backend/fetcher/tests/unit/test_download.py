import errno
from unittest.mock import patch

import httpx
import pytest

from fetcher.download import create_http_client, download_file, download_to_staging
from fetcher.errors import CacheFilesystemError, UpstreamFetchError
from fetcher.tests.helpers import REPLAY_ORIGIN, FakeOrigin

URL = f"{REPLAY_ORIGIN}/kz_a_0_1_2_pure.dat"


@pytest.fixture
def origin():
    return FakeOrigin()


class TestDownloadFile:
    @pytest.mark.asyncio
    async def test_writes_body_to_target(self, origin, tmp_path):
        origin.add(URL, b"\x01\x02replay", headers={"content-type": "application/octet-stream"})
        target = tmp_path / "replays" / "kz_a_0_1_2_pure_5.dat"

        async with origin.client() as client:
            info = await download_file(client, URL, target)

        assert target.read_bytes() == b"\x01\x02replay"
        assert info.size == 8
        assert info.content_type == "application/octet-stream"
        assert info.url == URL

    @pytest.mark.asyncio
    async def test_error_status_raises_and_writes_nothing(self, origin, tmp_path):
        origin.add(URL, b"<html>gone</html>", status_code=404)
        target = tmp_path / "run.dat"

        async with origin.client() as client:
            with pytest.raises(UpstreamFetchError) as exc_info:
                await download_file(client, URL, target)

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == URL
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_server_error_raises(self, origin, tmp_path):
        origin.add(URL, status_code=503)

        async with origin.client() as client:
            with pytest.raises(UpstreamFetchError):
                await download_file(client, URL, tmp_path / "run.dat")

    @pytest.mark.asyncio
    async def test_connection_error_raises(self, origin, tmp_path):
        origin.add_error(URL, httpx.ConnectError("connection refused"))

        async with origin.client() as client:
            with pytest.raises(UpstreamFetchError, match="ConnectError") as exc_info:
                await download_file(client, URL, tmp_path / "run.dat")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout_raises(self, origin, tmp_path):
        origin.add_error(URL, httpx.ReadTimeout("timed out"))

        async with origin.client() as client:
            with pytest.raises(UpstreamFetchError, match="ReadTimeout"):
                await download_file(client, URL, tmp_path / "run.dat")

    @pytest.mark.asyncio
    async def test_interrupted_body_leaves_no_file(self, origin, tmp_path):
        origin.add_broken(URL, b"first half")
        target = tmp_path / "run.dat"

        async with origin.client() as client:
            with pytest.raises(UpstreamFetchError, match="ReadError"):
                await download_file(client, URL, target)

        assert not target.exists()
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_disk_error_becomes_cache_filesystem_error(self, origin, tmp_path):
        origin.add(URL, b"data")

        async with origin.client() as client:
            with (
                patch("os.fsync", side_effect=OSError(errno.ENOSPC, "No space left on device")),
                pytest.raises(CacheFilesystemError, match="No space left"),
            ):
                await download_file(client, URL, tmp_path / "run.dat")

        assert list(tmp_path.iterdir()) == []


class TestDownloadToStaging:
    @pytest.mark.asyncio
    async def test_overwrites_reserved_file_and_reports_headers(self, origin, tmp_path):
        url = "http://maps.test/api/download/kz_a"
        origin.add(url, b"zipbytes", headers={"content-disposition": 'attachment; filename="kz_a.zip"'})
        staged = tmp_path / ".kz_a_x.part"
        staged.write_bytes(b"stale")

        async with origin.client() as client:
            info = await download_to_staging(client, url, staged)

        assert staged.read_bytes() == b"zipbytes"
        assert info.content_disposition == 'attachment; filename="kz_a.zip"'


class TestCreateHttpClient:
    @pytest.mark.asyncio
    async def test_follows_redirects_and_applies_timeout(self):
        client = create_http_client(12.5)
        try:
            assert client.follow_redirects is True
            assert client.timeout.read == 12.5
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_uses_given_transport(self, origin, tmp_path):
        origin.add(URL, b"x")
        client = create_http_client(5.0, transport=origin.transport)
        try:
            await download_file(client, URL, tmp_path / "run.dat")
        finally:
            await client.aclose()

        assert origin.requested_urls() == [URL]
