"""loguru sink setup."""

import sys
from pathlib import Path

from loguru import logger

from .config import LoggingSettings


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(settings: LoggingSettings) -> None:
    """
    Replace loguru's default sink with stderr plus an optional rotating file.

    Args:
        settings: Logging section of the application settings
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.level, format=LOG_FORMAT)

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "autotrader.log",
            level=settings.level,
            rotation=settings.rotation,
            retention=settings.retention,
            enqueue=True,
        )

    logger.debug(f"Logging configured at {settings.level}")
