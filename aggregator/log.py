"""Logging setup (loguru). Configure once from the entry point."""

from __future__ import annotations
from typing import Optional
import sys

from loguru import logger


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"

_CONFIGURED = False


def configure_logging(
    level: str = "WARNING",
    log_file: Optional[str] = None,
    rotation: str = "1 day",
    retention: str = "30 days"
) -> None:
    """
    Replace loguru's default sink with a stderr sink at `level`, plus an
    optional rotating file sink.
    """
    global _CONFIGURED

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if log_file:
        logger.add(
            sink=log_file,
            rotation=rotation,
            retention=retention,
            level="DEBUG",
            format=LOG_FORMAT,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    if not _CONFIGURED:
        logger.debug("Logger initialized")
    _CONFIGURED = True
