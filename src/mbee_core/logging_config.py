"""Logging setup for MBEE core."""
import logging
from typing import Optional

from .config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """
    Configure root logging once and return the package logger.

    Args:
        settings: Settings to read the level from (defaults to ``get_settings()``)

    Returns:
        The ``mbee-core`` logger
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger("mbee-core")
    logger.setLevel(level)
    return logger
