"""Request validation and cache-key derivation for a replay run.

Every string that later becomes part of a filesystem path or an upstream URL
passes through parse_run_identity first. The patterns only admit ASCII
letters, digits and a few separators, which rules out path traversal and
shell metacharacters before any name is built.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from fetcher.errors import RequestValidationError, ValidationReason

_RUN_ID_RE = re.compile(r"\d+", re.ASCII)
_MAP_NAME_RE = re.compile(r"[a-zA-Z0-9_\-\[\]]+")
_STEAM_ID_RE = re.compile(r"STEAM_[0-5]:[0-1]:\d+", re.ASCII)

REPLAY_SUFFIX = ".dat"
MAP_SUFFIX = ".bsp"


@dataclass(frozen=True)
class SteamId:
    """A legacy STEAM_X:Y:Z identifier split into its three numeric segments."""

    universe: str
    auth_server: str
    account_number: str

    @classmethod
    def parse(cls, value: str) -> SteamId:
        """Split a pre-validated "STEAM_X:Y:Z" string into its segments."""
        head, auth_server, account_number = value.split(":")
        universe = head.split("_")[1]
        return cls(universe=universe, auth_server=auth_server, account_number=account_number)


@dataclass(frozen=True)
class RunIdentity:
    run_id: str
    map_name: str
    steam_id: SteamId

    @property
    def replay_prefix(self) -> str:
        """Cache key shared by every run id of one player on one map.

        Matches the upstream replay naming: map, then the three Steam id
        segments in the order they appear in the id, then "_pure".
        """
        sid = self.steam_id
        return f"{self.map_name}_{sid.universe}_{sid.auth_server}_{sid.account_number}_pure"

    @property
    def replay_filename(self) -> str:
        return f"{self.replay_prefix}_{self.run_id}{REPLAY_SUFFIX}"

    @property
    def remote_replay_name(self) -> str:
        return f"{self.replay_prefix}{REPLAY_SUFFIX}"

    @property
    def stale_replay_pattern(self) -> re.Pattern[str]:
        """Matches every cached version of this prefix, current one included."""
        return re.compile(rf"{re.escape(self.replay_prefix)}_\d+{re.escape(REPLAY_SUFFIX)}", re.ASCII)


def _matches(pattern: re.Pattern[str], value: str) -> bool:
    return pattern.fullmatch(value) is not None


def validate_map_name(map_name: str | None) -> str:
    """Return map_name if it is present and well-formed, else raise RequestValidationError."""
    if not map_name:
        raise RequestValidationError(ValidationReason.MISSING_FIELD)
    if not _matches(_MAP_NAME_RE, map_name):
        raise RequestValidationError(ValidationReason.INVALID_MAP_NAME)
    return map_name


def parse_run_identity(run_id: str | None, map_name: str | None, unique_id: str | None) -> RunIdentity:
    """Validate the three request fields and build a RunIdentity.

    Checks run in a fixed order and stop at the first failure: presence of
    all three fields, then run id, map name and Steam id formats.
    """
    if not run_id or not map_name or not unique_id:
        raise RequestValidationError(ValidationReason.MISSING_FIELD)
    if not _matches(_RUN_ID_RE, run_id):
        raise RequestValidationError(ValidationReason.INVALID_ID)
    validate_map_name(map_name)
    if not _matches(_STEAM_ID_RE, unique_id):
        raise RequestValidationError(ValidationReason.INVALID_UNIQUE_ID)

    return RunIdentity(run_id=run_id, map_name=map_name, steam_id=SteamId.parse(unique_id))
