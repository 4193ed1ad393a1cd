"""Centralized logging configuration for amberqs."""
import logging
import os
from pathlib import Path
from typing import Optional, Union

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LEVEL_ENV = "AMBERQS_LOG_LEVEL"


class LogFilter(logging.Filter):
    """Filter out rich's own debug chatter."""
    def filter(self, record):
        if record.name.startswith("rich") and record.levelno < logging.WARNING:
            return False
        return True


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if level is None:
        level = os.environ.get(LEVEL_ENV, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(log_file: Optional[Path] = None, level: Optional[Union[int, str]] = None):
    """Set up the root logger.

    Console output belongs to :mod:`amberqs.utils.reporting`, so the only real
    handler is the optional log file. Without one a ``NullHandler`` keeps the
    logging module from falling back to stderr.
    """
    handlers: list = []
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        main_handler = logging.FileHandler(filename=log_file, mode="a")
        main_handler.setFormatter(logging.Formatter(FORMAT, DATE_FORMAT))
        main_handler.addFilter(LogFilter())
        handlers.append(main_handler)
    else:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=_resolve_level(level),
        handlers=handlers,
        force=True
    )
