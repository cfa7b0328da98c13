"""Explicit configuration for the fetch pipeline.

The pipeline never reads the environment; the viewer settings build one of
these and pass it in.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_MAP_ORIGIN = "https://hlkz.sourceruns.org/api/download"
DEFAULT_DOWNLOAD_TIMEOUT_SECONDS = 60.0

# Top-level archive entries the viewer never loads.
PRUNED_BUNDLE_ENTRIES: tuple[str, ...] = ("sound", "sounds", "models")


@dataclass(frozen=True)
class FetcherConfig:
    replay_origin: str
    resources_dir: Path
    downloads_dir: Path
    map_origin: str = DEFAULT_MAP_ORIGIN
    download_timeout_seconds: float = DEFAULT_DOWNLOAD_TIMEOUT_SECONDS
    pruned_entries: tuple[str, ...] = PRUNED_BUNDLE_ENTRIES

    @property
    def replays_dir(self) -> Path:
        return self.resources_dir / "replays"

    @property
    def maps_dir(self) -> Path:
        return self.resources_dir / "maps"

    def replay_url(self, remote_name: str) -> str:
        return f"{self.replay_origin.rstrip('/')}/{remote_name}"

    def map_url(self, map_name: str) -> str:
        return f"{self.map_origin.rstrip('/')}/{map_name}"

    def prepare_directories(self) -> None:
        """Create the cache directory tree if it does not exist yet."""
        for directory in (self.replays_dir, self.maps_dir, self.downloads_dir):
            directory.mkdir(parents=True, exist_ok=True)
