"""Local cache of per-run replay files.

The cache holds at most one file per replay prefix. A request for a run id
that is not cached evicts every other cached version of the same prefix
before the new file is downloaded.

Known limitation: eviction and download are not guarded by a lock. Two
concurrent misses on the same prefix both evict and both download; the
last rename wins and the upstream is fetched twice. This is accepted under
the single-writer-process deployment and the per-client rate limit.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from fetcher.download import download_file
from fetcher.errors import CacheFilesystemError
from shared.storage import remove_matching

if TYPE_CHECKING:
    from pathlib import Path

    import httpx

    from fetcher.config import FetcherConfig
    from fetcher.identity import RunIdentity

logger = structlog.get_logger()


class ReplayCache:
    def __init__(self, config: FetcherConfig, client: httpx.AsyncClient) -> None:
        self._config = config
        self._client = client

    def local_path(self, identity: RunIdentity) -> Path:
        return self._config.replays_dir / identity.replay_filename

    def is_cached(self, identity: RunIdentity) -> bool:
        return self.local_path(identity).is_file()

    async def ensure_replay(self, identity: RunIdentity) -> Path:
        """Return the local path of the identity's replay, downloading it on a miss."""
        target = self.local_path(identity)
        if target.is_file():
            logger.info("replay cache hit", filename=identity.replay_filename)
            return target

        await self._evict_stale(identity)
        url = self._config.replay_url(identity.remote_replay_name)
        await download_file(self._client, url, target)
        return target

    async def _evict_stale(self, identity: RunIdentity) -> None:
        try:
            removed = await asyncio.to_thread(
                remove_matching,
                self._config.replays_dir,
                identity.stale_replay_pattern,
            )
        except OSError as e:
            raise CacheFilesystemError(f"Could not evict stale replays for {identity.replay_prefix}") from e
        if removed:
            logger.info(
                "evicted stale replays",
                prefix=identity.replay_prefix,
                files=[p.name for p in removed],
            )
