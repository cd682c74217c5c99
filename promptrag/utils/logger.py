"""
Logger factory shared by all promptrag modules.

Usage:
    from ..utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Reindexed prompt %s", prompt_id)
"""

import logging
import sys

from ..config import settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str, level: str | int | None = None) -> logging.Logger:
    """
    Return a named logger writing to stdout.

    The level defaults to ``settings.LOG_LEVEL``. Handlers are attached only
    once per logger name.
    """
    resolved = level if level is not None else settings.LOG_LEVEL
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(resolved)
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        # Avoid duplicate lines through the root logger
        logger.propagate = False

    return logger
