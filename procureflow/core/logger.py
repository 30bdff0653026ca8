"""Logging setup for the API process and the Celery worker.

Every module logs through ``logging.getLogger(__name__)``; those loggers
propagate to the ``procureflow`` package logger configured here.
"""

import logging
import logging.handlers
import os
from typing import Optional

from procureflow.core.config import Settings, get_settings

PACKAGE_LOGGER = "procureflow"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(process)d] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiosmtplib", "celery.beat")


def setup_logger(
    component: str,
    settings: Optional[Settings] = None,
    *,
    console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the package logger for one process.

    Args:
        component: Process name ("api" or "worker"); names the log file
        settings: Application settings, read for ``log_level`` and ``log_dir``
        console: Also log to stderr
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files kept

    Returns:
        The ``procureflow`` logger
    """
    settings = settings or get_settings()
    logger = logging.getLogger(PACKAGE_LOGGER)

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {settings.log_level}")
    logger.setLevel(level)

    # Already configured in this process
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if settings.log_dir:
        os.makedirs(settings.log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            os.path.join(settings.log_dir, f"{PACKAGE_LOGGER}-{component}.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    quiet_level = logging.DEBUG if settings.debug else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    logger.debug(f"Logging configured for {component} at {settings.log_level.upper()}")
    return logger
