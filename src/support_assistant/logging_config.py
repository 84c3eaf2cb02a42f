"""Loguru setup: one logging backend for the app, the CLI and third-party libraries."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

# stdlib loggers that would otherwise bypass loguru
_INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "fastapi",
    "openai",
    "httpx",
    "pydantic_ai",
)

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward a stdlib ``logging`` record to loguru, keeping the caller's frame."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(*, level: str = "INFO", json: bool = False, log_file: Path | None = None) -> None:
    """Replace all loguru sinks and route stdlib logging through loguru.

    Args:
        level: Minimum level for every sink.
        json: Serialize records as JSON lines instead of the coloured console format.
        log_file: Optional path for an additional rotating file sink.
    """
    logger.remove()

    if json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=True)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, serialize=json, rotation="10 MB", retention=5)

    intercept = InterceptHandler()
    for name in _INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [intercept]
        stdlib_logger.propagate = False

    logging.root.handlers = [intercept]
    logging.root.setLevel(logging.DEBUG)
