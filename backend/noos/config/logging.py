"""
Logging setup.

Every module logs through ``logging.getLogger(__name__)``; this only wires
the ``noos`` logger tree to a console handler once at startup.
"""

import logging
from typing import Optional

from noos.config.settings import Settings, settings as default_settings

ROOT_LOGGER_NAME = "noos"

_configured = False


def configure_logging(config: Optional[Settings] = None) -> logging.Logger:
    """Attach a console handler to the package logger (idempotent)."""
    global _configured
    config = config or default_settings
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logger.setLevel(level)

    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
        logger.addHandler(handler)
        _configured = True

    return logger
