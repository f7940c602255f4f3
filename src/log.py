"""Logging setup (loguru sinks for console and optional rotating file)."""

import os
import sys

from loguru import logger

from config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging() -> None:
    """Replace loguru's default sink with the configured ones."""
    logger.remove()

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    if settings.LOG_TO_FILE:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        logger.add(
            settings.LOG_FILE_PATH,
            format=FILE_FORMAT,
            level=settings.LOG_LEVEL,
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            encoding="utf-8",
            enqueue=True,
        )

    logger.info(f"Logging initialised: level={settings.LOG_LEVEL}, file={settings.LOG_TO_FILE}")
