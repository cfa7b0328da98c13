"""Local cache of per-map resource bundles.

A bundle counts as present when its sentinel file, maps/<map>.bsp under the
resource root, exists. The map origin answers with either a bare .bsp or a
zip archive of the map plus its resources (textures, sprites, wads). The
two are told apart by response metadata, not by sniffing content.

Archives are extracted into a private staging directory, pruned, checked for
the sentinel, and only then merged into the resource root with the sentinel
moved last. A corrupt or incomplete archive therefore never leaves a
sentinel behind.
"""

from __future__ import annotations

import asyncio
import re
import zipfile
import zlib
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from fetcher.download import download_to_staging
from fetcher.errors import ArchiveError, CacheFilesystemError, UpstreamFetchError
from fetcher.identity import MAP_SUFFIX, validate_map_name
from shared.storage import merge_tree, prune_children, publish_file, temporary_directory, temporary_path

if TYPE_CHECKING:
    import httpx

    from fetcher.config import FetcherConfig
    from fetcher.download import PayloadInfo

logger = structlog.get_logger()

_DISPOSITION_FILENAME_RE = re.compile(r"""filename\*?=(?:[\w-]+'[\w-]*')?"?([^";]+)"?""", re.IGNORECASE)

_ZIP_CONTENT_TYPES = {"application/zip", "application/x-zip", "application/x-zip-compressed"}


class PayloadKind(Enum):
    MAP = "map"
    ARCHIVE = "archive"


def _disposition_filename(disposition: str) -> str | None:
    match = _DISPOSITION_FILENAME_RE.search(disposition)
    return match.group(1).strip() if match else None


def classify_payload(info: PayloadInfo) -> PayloadKind:
    """Decide whether a map-origin response is a bare map file or an archive.

    A Content-Disposition filename ending in .bsp means a bare map. Anything
    else, including a response without metadata, is treated as an archive;
    a payload that is not really a zip then fails extraction.
    """
    filename = _disposition_filename(info.content_disposition)
    if filename is not None:
        return PayloadKind.MAP if filename.lower().endswith(MAP_SUFFIX) else PayloadKind.ARCHIVE

    if MAP_SUFFIX in info.content_disposition.lower():
        return PayloadKind.MAP
    content_type = info.content_type.split(";")[0].strip().lower()
    if content_type not in _ZIP_CONTENT_TYPES:
        logger.debug("map payload has no archive content type, assuming archive", content_type=content_type)
    return PayloadKind.ARCHIVE


def sentinel_relpath(map_name: str) -> Path:
    return Path("maps") / f"{map_name}{MAP_SUFFIX}"


def extract_bundle(archive: Path, resources_dir: Path, map_name: str, pruned_entries: tuple[str, ...]) -> list[str]:
    """Extract a map archive into resources_dir, dropping unused top-level entries.

    Runs synchronously; call it from a worker thread. Entries are unpacked
    into a scratch directory beside the archive, outside the served resource
    root. Returns the names of the pruned entries. Raises ArchiveError when
    the archive is unreadable or lacks the map's sentinel file, in which case
    nothing is merged.
    """
    sentinel = sentinel_relpath(map_name)
    with temporary_directory(archive.parent, prefix=".extract_") as staging:
        try:
            with zipfile.ZipFile(archive) as zf:
                broken = zf.testzip()
                if broken is not None:
                    raise ArchiveError(f"Corrupt entry {broken!r} in archive for {map_name}")
                zf.extractall(staging)
        except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError) as e:
            # zlib.error: damaged deflate stream; RuntimeError: encrypted entries;
            # NotImplementedError: unsupported compression
            raise ArchiveError(f"Unreadable archive for {map_name}: {e}") from e

        pruned = prune_children(staging, pruned_entries)
        if not (staging / sentinel).is_file():
            raise ArchiveError(f"Archive for {map_name} does not contain {sentinel.as_posix()}")

        merge_tree(staging, resources_dir, commit_last=sentinel)
    return pruned


class MapBundleCache:
    def __init__(self, config: FetcherConfig, client: httpx.AsyncClient) -> None:
        self._config = config
        self._client = client

    def sentinel_path(self, map_name: str) -> Path:
        return self._config.resources_dir / sentinel_relpath(map_name)

    def is_cached(self, map_name: str) -> bool:
        return self.sentinel_path(map_name).is_file()

    async def ensure_map_bundle(self, map_name: str) -> Path:
        """Return the sentinel path for map_name, fetching the bundle on a miss."""
        validate_map_name(map_name)
        sentinel = self.sentinel_path(map_name)
        if sentinel.is_file():
            logger.info("map cache hit", map_name=map_name)
            return sentinel

        logger.info("map resources missing, fetching", map_name=map_name)
        url = self._config.map_url(map_name)
        try:
            with temporary_path(self._config.downloads_dir, prefix=f".{map_name}_") as staged:
                info = await download_to_staging(self._client, url, staged)
                kind = classify_payload(info)
                logger.info("map payload received", map_name=map_name, kind=kind, bytes=info.size)
                if kind is PayloadKind.MAP:
                    if info.size == 0:
                        raise UpstreamFetchError(url, "Upstream returned an empty map file")
                    await asyncio.to_thread(publish_file, staged, sentinel)
                else:
                    pruned = await asyncio.to_thread(
                        extract_bundle,
                        staged,
                        self._config.resources_dir,
                        map_name,
                        self._config.pruned_entries,
                    )
                    logger.info("map archive extracted", map_name=map_name, pruned=pruned)
        except OSError as e:
            raise CacheFilesystemError(f"Could not store resources for {map_name}: {e.strerror}") from e

        if not sentinel.is_file():
            raise ArchiveError(f"Map file for {map_name} missing after fetch")
        return sentinel
