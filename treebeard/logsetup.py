"""Process-wide logging configuration."""

from __future__ import annotations

import logging
import sys
from datetime import datetime

LOGGER_NAME = "treebeard"
_DISABLED_LEVEL = logging.CRITICAL + 1


class _RFC3339Formatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")


def init_logging(is_log_enabled: bool, log_path: str) -> logging.Logger:
    """Configure the package logger.

    Debug output is enabled or switched off entirely. With an empty
    ``log_path`` records go to standard error, otherwise they are appended
    to the given file.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if is_log_enabled else _DISABLED_LEVEL)
    logger.propagate = False

    if log_path:
        handler: logging.Handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter('{"level":"%(levelname)s","time":"%(asctime)s","message":%(message)r}'))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_RFC3339Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    return logger