"""Named loggers for the clsgemm modules.

Each module grabs its logger at import time, so changing the level later
(e.g. from the CLI) has to go through ``set_level`` to reach loggers that
already exist.
"""

from __future__ import annotations

import logging
import os
from typing import Union

import coloredlogs

from .. import config as _cfg

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LOGGERS: dict[str, logging.Logger] = {}


def resolve_level(level: Union[str, int, None]) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    return getattr(logging, str(level).upper(), logging.INFO)


def get_logger(name: str = "clsgemm") -> logging.Logger:
    logger = _LOGGERS.get(name)
    if logger is not None:
        return logger
    logger = logging.getLogger(name)
    if not logger.handlers:
        level = resolve_level(os.environ.get("CLSGEMM_LOG_LEVEL") or _cfg.get("CLSGEMM_LOG_LEVEL"))
        coloredlogs.install(level=level, logger=logger, fmt=LOG_FORMAT)
        logger.setLevel(level)
        logger.propagate = False
    _LOGGERS[name] = logger
    return logger


def set_level(level: Union[str, int, None]) -> int:
    """Apply ``level`` to every clsgemm logger created so far and to their handlers."""
    lvl = resolve_level(level)
    for logger in _LOGGERS.values():
        logger.setLevel(lvl)
        for handler in logger.handlers:
            handler.setLevel(lvl)
    return lvl


def known_loggers() -> list[str]:
    return sorted(_LOGGERS)


__all__ = ["get_logger", "set_level", "resolve_level", "known_loggers", "LOG_FORMAT"]
