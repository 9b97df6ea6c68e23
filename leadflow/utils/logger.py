"""
Logging setup for the leadflow engine.

Every module obtains its logger through ``get_logger(__name__)`` so all
output lives under the ``leadflow`` namespace. ``setup_logging`` attaches
a console handler (plain or JSON-lines) and, optionally, a file handler.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "leadflow"

_CONSOLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"
_CONSOLE_FORMAT_TS = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_timestamp:
            payload["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return a logger, nesting foreign module names under ``leadflow``."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    format_type: str = "console",
    include_timestamp: bool = True,
) -> logging.Logger:
    """
    Configure the ``leadflow`` logger hierarchy.

    Calling this repeatedly replaces the handlers installed by a previous
    call, so it is safe to use from notebooks and tests.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for a ``leadflow.log`` file (None = console only)
        format_type: ``"console"`` for plain text, ``"json"`` for JSON lines
        include_timestamp: Whether to prefix records with their time

    Returns:
        The configured root ``leadflow`` logger
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    if format_type not in ("console", "json"):
        raise ValueError(f"format_type must be 'console' or 'json', got {format_type!r}")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(numeric_level)

    for handler in list(root.handlers):
        if getattr(handler, "_leadflow_handler", False):
            root.removeHandler(handler)
            handler.close()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter(include_timestamp=include_timestamp)
    else:
        formatter = logging.Formatter(
            _CONSOLE_FORMAT_TS if include_timestamp else _CONSOLE_FORMAT
        )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console._leadflow_handler = True  # type: ignore[attr-defined]
    root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path / "leadflow.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._leadflow_handler = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    return root
