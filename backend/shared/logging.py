"""Logging setup shared by the bingo server and its tests.

Room and connection code logs through structlog; everything ends up in stdlib
``logging`` handlers so uvicorn and library records share one output.

``LOG_LEVEL`` picks the root level (INFO when unset). ``LOG_FORMAT=json``
switches to one JSON object per line; ``console`` or unset keeps the
key=value console renderer.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_LEVELS = {name: getattr(logging, name) for name in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
_FORMATS = {"": False, "console": False, "json": True}

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

T = TypeVar("T")


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log enum members by value (``status=playing`` instead of ``RoomStatus.PLAYING``)."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def _is_test() -> bool:
    return "pytest" in sys.modules


def _env_choice(var: str, choices: dict[str, T], default: str) -> T:
    raw = os.environ.get(var, default)
    key = raw.lower() if var == "LOG_FORMAT" else raw.upper()
    if key not in choices:
        allowed = ", ".join(sorted(name or "unset" for name in choices))
        msg = f"Invalid {var}={raw!r}. Expected one of: {allowed}."
        raise ValueError(msg)
    return choices[key]


def _handler(handler: logging.Handler, *, json_mode: bool, colors: bool) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        ),
    )
    return handler


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
) -> Path | None:
    """Install the structlog pipeline and the root handlers.

    Safe to call more than once; existing root handlers are replaced. With
    ``log_dir`` set, outside pytest, records are also written to a new file
    named after the start time, and its path is returned.
    """
    json_mode = _env_choice("LOG_FORMAT", _FORMATS, "")
    if level is None:
        level = _env_choice("LOG_LEVEL", _LEVELS, "INFO")

    # Exceptions are formatted per handler, see _handler.
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

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    root.addHandler(_handler(logging.StreamHandler(sys.stdout), json_mode=json_mode, colors=sys.stdout.isatty()))

    if log_dir is None or _is_test():
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"
    root.addHandler(_handler(logging.FileHandler(log_path), json_mode=json_mode, colors=False))
    return log_path
