"""
Market Bot - Logging
=====================
Pre-configured logger factory so every module logs in the same format.

Verbosity comes from ``settings.LOG_LEVEL`` when set, otherwise from
``settings.ENV``:
  • ``"dev"``  → DEBUG level
  • ``"prod"`` → WARNING level

Usage:
    from marketbot.src.utils.logger import get_logger
    logger = get_logger(__name__)
"""

import logging
import sys

from marketbot.config.settings import settings

_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def resolve_level(env: str, override: str | None = None) -> int:
    """Map ``ENV`` / ``LOG_LEVEL`` to a ``logging`` level; unknown envs get INFO."""
    if override:
        return logging.getLevelName(override.upper())
    return _ENV_LEVEL_MAP.get(env, logging.INFO)


_DEFAULT_LEVEL = resolve_level(settings.ENV, settings.LOG_LEVEL)


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Return a named logger writing to stdout.

    Args:
        name:  Usually the caller's ``__name__``.
        level: Per-logger override of the configured level.
    """
    resolved_level = level if level is not None else _DEFAULT_LEVEL
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(resolved_level)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved_level)
        handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

        # Handled here; the root logger would print it twice
        logger.propagate = False

    return logger
