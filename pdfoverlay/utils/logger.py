"""Logging configuration and utilities."""

import logging
import sys

from pdfoverlay.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ROOT_LOGGER_NAME = "pdfoverlay"


def setup_logger(name: str | None = None, level: str | None = None) -> logging.Logger:
    """Set up and return a configured logger.

    Only the root ``pdfoverlay`` logger gets a handler; component loggers
    created with :func:`get_logger` propagate to it.
    """
    logger = logging.getLogger(name or ROOT_LOGGER_NAME)
    log_level = (level or settings.log_level).upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Return a child of the application logger, e.g. ``pdfoverlay.compositor``."""
    return logger.getChild(component)


# Default logger instance
logger = setup_logger(ROOT_LOGGER_NAME)
