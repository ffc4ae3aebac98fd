"""Loguru sink configuration for the refindex CLI and services."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", file: str | Path | None = None) -> None:
    """Replace loguru's default sink with a stderr sink at *level*.

    Args:
        level: Minimum level name for the stderr sink (e.g. "DEBUG", "WARNING").
        file: Optional log file path. Rotated at 10 MB, kept for 5 files.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_FORMAT)
    if file:
        logger.add(
            str(file),
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
