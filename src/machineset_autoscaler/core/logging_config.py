#!/usr/bin/env python3
"""
Logging setup for the autoscaler service

Configured once from main(); library modules only call
logging.getLogger(__name__).
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LEVEL_COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
}
RESET = '\033[0m'

# Kubernetes and AAP calls run on executor threads; the thread name tells pollers apart
CONSOLE_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s"

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("requests", "urllib3", "kubernetes", "uvicorn.access")


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    def format(self, record):
        color = LEVEL_COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        # Handlers share the record; color a copy only
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{RESET}"
        return super().format(record)


def _console_handler(level: int, enable_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT) if enable_colors else logging.Formatter(CONSOLE_FORMAT))
    return handler


def _file_handler(log_file: str, level: int) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_colors: bool = True
) -> None:
    """
    Replace the root handlers with a console handler and, optionally, a file handler

    Args:
        level: Level name; unknown names fall back to INFO
        log_file: File to log to as well, parent directories are created
        enable_colors: Color level names on the console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(_console_handler(numeric_level, enable_colors))
    if log_file:
        root_logger.addHandler(_file_handler(log_file, numeric_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {logging.getLevelName(numeric_level)} level"
                + (f", writing to {log_file}" if log_file else ""))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_separator(logger: logging.Logger, title: str = "", width: int = 60) -> None:
    """Log a full-width separator line, optionally with a centered title"""
    if title:
        logger.info(f" {title} ".center(width, "="))
    else:
        logger.info("=" * width)


def log_section(logger: logging.Logger, title: str) -> None:
    logger.info(f"--- {title} ---")
