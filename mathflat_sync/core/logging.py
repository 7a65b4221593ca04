"""Loguru sink setup shared by the API server and the CLI."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from config import Settings, get_settings


def configure_logging(settings: Settings | None = None, level: str | None = None) -> None:
    """
    Replace the default loguru sink with the service sinks.

    Args:
        settings: Settings to read LOG_LEVEL / LOG_FILE from (default: cached)
        level: Override for the stderr sink level
    """
    settings = settings or get_settings()
    stderr_level = level or settings.log_level

    logger.remove()
    logger.add(
        sys.stderr,
        level=stderr_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {name} | {message}",
    )

    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
