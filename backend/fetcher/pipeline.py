"""Validate a run request and make its replay and map assets available locally."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from fetcher.errors import RequestValidationError, RunFetchError, ValidationReason
from fetcher.identity import parse_run_identity
from fetcher.maps import MapBundleCache
from fetcher.replays import ReplayCache

if TYPE_CHECKING:
    import httpx

    from fetcher.config import FetcherConfig

logger = structlog.get_logger()

FETCH_FAILURE_MESSAGE = "Failed to download run. Please try again later."


class FailureKind(Enum):
    VALIDATION = "validation"
    FETCH = "fetch"


@dataclass(frozen=True)
class PreparedRun:
    replay_filename: str
    map_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"success": True, "replayFilename": self.replay_filename, "mapName": self.map_name}


@dataclass(frozen=True)
class PrepareFailure:
    """A request that could not be served. message is safe to show the client."""

    kind: FailureKind
    message: str
    reason: ValidationReason | None = None


PrepareOutcome = PreparedRun | PrepareFailure


def _log_orphaned_failure(task: asyncio.Task[PrepareOutcome]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "detached run preparation failed",
            error=str(error),
            error_type=type(error).__name__,
            exc_info=error,
        )


class RunPreparer:
    """Entry point of the fetch pipeline.

    Never raises for expected failures: validation problems and fetch errors
    come back as PrepareFailure. Unexpected exceptions propagate.
    """

    def __init__(self, replays: ReplayCache, maps: MapBundleCache) -> None:
        self._replays = replays
        self._maps = maps
        self._detached: set[asyncio.Task[PrepareOutcome]] = set()

    @classmethod
    def from_config(cls, config: FetcherConfig, client: httpx.AsyncClient) -> RunPreparer:
        return cls(ReplayCache(config, client), MapBundleCache(config, client))

    @property
    def in_flight(self) -> int:
        return len(self._detached)

    async def prepare(self, run_id: str | None, map_name: str | None, unique_id: str | None) -> PrepareOutcome:
        try:
            identity = parse_run_identity(run_id, map_name, unique_id)
        except RequestValidationError as e:
            logger.info("rejected run request", reason=e.reason)
            return PrepareFailure(kind=FailureKind.VALIDATION, message=e.message, reason=e.reason)

        log = logger.bind(map_name=identity.map_name, prefix=identity.replay_prefix, run_id=identity.run_id)
        log.info("preparing run")

        # Both fetches run to completion even if one fails, so a partial
        # success still lands in the cache for the next attempt.
        results = await asyncio.gather(
            self._replays.ensure_replay(identity),
            self._maps.ensure_map_bundle(identity.map_name),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, RunFetchError):
                raise failure
        if failures:
            for failure in failures:
                log.error("failed to prepare run", error=str(failure), error_type=type(failure).__name__, exc_info=failure)
            return PrepareFailure(kind=FailureKind.FETCH, message=FETCH_FAILURE_MESSAGE)

        log.info("run ready", replay_filename=identity.replay_filename)
        return PreparedRun(replay_filename=identity.replay_filename, map_name=identity.map_name)

    async def prepare_detached(
        self,
        run_id: str | None,
        map_name: str | None,
        unique_id: str | None,
    ) -> PrepareOutcome:
        """Like prepare(), but the work survives cancellation of the caller.

        If the awaiting request is cancelled (client went away), the
        download keeps running and still populates the cache.
        """
        task = asyncio.create_task(self.prepare(run_id, map_name, unique_id))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Nobody is left to await the task, so its failure is reported here.
            task.add_done_callback(_log_orphaned_failure)
            raise
