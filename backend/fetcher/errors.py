"""Typed errors raised by the fetch pipeline.

Validation failures carry a client-facing reason. Every failure after
validation is a RunFetchError subclass; the pipeline boundary catches the
base class and reports one generic message, so subclasses exist for logging
and tests rather than for the client.
"""

from enum import Enum


class ValidationReason(Enum):
    MISSING_FIELD = "missing_field"
    INVALID_ID = "invalid_id"
    INVALID_MAP_NAME = "invalid_map_name"
    INVALID_UNIQUE_ID = "invalid_unique_id"


VALIDATION_MESSAGES: dict[ValidationReason, str] = {
    ValidationReason.MISSING_FIELD: "Missing id or mapName or uniqueId",
    ValidationReason.INVALID_ID: "Invalid id format",
    ValidationReason.INVALID_MAP_NAME: "Invalid mapName format",
    ValidationReason.INVALID_UNIQUE_ID: "Invalid uniqueId format",
}


class RequestValidationError(ValueError):
    """A request field is missing or malformed. Raised before any I/O."""

    def __init__(self, reason: ValidationReason) -> None:
        self.reason = reason
        super().__init__(VALIDATION_MESSAGES[reason])

    @property
    def message(self) -> str:
        return VALIDATION_MESSAGES[self.reason]


class RunFetchError(Exception):
    """Base class for failures while making a run's assets available locally."""


class UpstreamFetchError(RunFetchError):
    """The origin could not be reached, timed out, or answered with a non-success status.

    Attributes:
        url: The upstream URL that was requested.
        status_code: HTTP status of the response, or None for transport failures.
    """

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"{message} ({url})")


class ArchiveError(RunFetchError):
    """A map archive was corrupt or did not contain the expected map file."""


class CacheFilesystemError(RunFetchError):
    """A local cache operation (eviction, write, rename, extraction commit) failed."""
