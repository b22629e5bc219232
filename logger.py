# logger.py
import logging
from typing import Optional, Set

import colorlog

import config

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Names of the loggers configured by get_logger
_configured: Set[str] = set()


def _parse_level(level: str) -> int:
    return getattr(logging, str(level).upper(), logging.INFO)


def _console_handler() -> logging.Handler:
    handler = colorlog.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter("%(log_color)s" + LOG_FORMAT, datefmt=DATE_FORMAT, log_colors=LEVEL_COLORS))
    return handler


def _file_handler(path: str) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def get_logger(name: str, level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Colored console logger that also writes to the batch log file.

    A logger that already has handlers is returned as is, so modules can
    call this at import time without stacking duplicate output.
    """
    logger = colorlog.getLogger(name)
    _configured.add(name)
    if logger.handlers:
        return logger

    logger.setLevel(_parse_level(level))
    logger.propagate = False
    logger.addHandler(_console_handler())
    logger.addHandler(_file_handler(log_file or config.LOG_FILE))
    return logger


def set_level(level: str) -> None:
    """Apply a new level to every logger created through get_logger."""
    value = _parse_level(level)
    for name in sorted(_configured):
        colorlog.getLogger(name).setLevel(value)
