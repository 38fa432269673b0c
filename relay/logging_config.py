"""Logging setup for the upload relay.

Everything goes through loguru. Records emitted through the standard library
(uvicorn, botocore, googleapiclient) are forwarded by ``InterceptHandler`` so a
single sink configuration covers the whole process.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from loguru import logger

SERVICE_NAME = "cloud-relay"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# Standard library loggers that would otherwise bypass the loguru sinks.
FORWARDED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "botocore", "googleapiclient")
QUIET_LOGGERS = {"botocore": "WARNING", "googleapiclient": "WARNING"}


class InterceptHandler(logging.Handler):
    """Route standard ``logging`` records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _json_line(record: dict[str, Any]) -> str:
    entry: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "service": SERVICE_NAME,
        "logger": record["name"],
        "message": record["message"],
    }
    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "value": str(exc_value) if exc_value else None,
        }
    entry.update({key: value for key, value in record["extra"].items() if key != "json"})

    # loguru treats the returned string as a template.
    record["extra"]["json"] = json.dumps(entry, ensure_ascii=False, default=str)
    return "{extra[json]}\n"


def _forward_stdlib_logging(level: str) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in FORWARDED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
        std_logger.setLevel(QUIET_LOGGERS.get(name, level))


def setup_logging(
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | None = None,
) -> None:
    """Replace all loguru sinks with the relay's own.

    Args:
        level: Minimum level for every sink.
        json_format: Emit one JSON object per line instead of colored text.
        log_file: Optional file sink, rotated at 10 MB and kept for a week.
    """
    level = level.upper()
    fmt: Any = _json_line if json_format else CONSOLE_FORMAT

    logger.remove()
    logger.add(sys.stderr, format=fmt, level=level, colorize=not json_format)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=fmt,
            level=level,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
        )

    _forward_stdlib_logging(level)


__all__ = ["InterceptHandler", "setup_logging"]
