"""Logging setup for the replay relay.

structlog renders through stdlib logging, so the relay's own events, uvicorn
and httpx share one set of handlers. LOG_FORMAT selects "json" or "console"
(the default) and LOG_LEVEL takes a stdlib level name, INFO by default.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_JSON_BY_FORMAT = {"json": True, "console": False, "": False}
_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# httpx and httpcore log every upstream request; uvicorn.access every response.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


@dataclass(frozen=True)
class LogOptions:
    json: bool
    level: int

    @classmethod
    def from_env(cls) -> LogOptions:
        """Read LOG_FORMAT and LOG_LEVEL, raising ValueError on unknown values."""
        log_format = os.environ.get("LOG_FORMAT", "").lower()
        if log_format not in _JSON_BY_FORMAT:
            msg = f"Invalid LOG_FORMAT={log_format!r}. Must be 'json', 'console', or unset."
            raise ValueError(msg)
        level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
        if level_name not in _LEVEL_NAMES:
            msg = f"Invalid LOG_LEVEL={level_name!r}. Must be one of {', '.join(_LEVEL_NAMES)}."
            raise ValueError(msg)
        return cls(json=_JSON_BY_FORMAT[log_format], level=logging.getLevelName(level_name))


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log payload and failure kinds by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def _formatter(*, json_mode: bool, colors: bool) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def _configure_structlog() -> None:
    # Tracebacks are rendered by the handler formatters, not in this chain.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _serialize_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _open_log_file(log_dir: Path | str) -> Path:
    dir_path = Path(log_dir)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path / f"{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
    *,
    stream: TextIO | None = None,
) -> Path | None:
    """Install structlog and replace the root logger's handlers.

    Console output goes to stream (stdout by default). A non-empty log_dir
    adds a timestamped log file there, whose path is returned.
    """
    options = LogOptions.from_env()
    if stream is None:
        stream = sys.stdout

    _configure_structlog()

    root_logger = logging.getLogger()
    root_logger.setLevel(options.level if level is None else level)
    root_logger.handlers.clear()
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    console = logging.StreamHandler(stream)
    console.setFormatter(_formatter(json_mode=options.json, colors=stream.isatty()))
    root_logger.addHandler(console)

    if not log_dir:
        return None

    file_path = _open_log_file(log_dir)
    file_handler = logging.FileHandler(file_path)
    file_handler.setFormatter(_formatter(json_mode=options.json, colors=False))
    root_logger.addHandler(file_handler)
    return file_path
