"""
Logging setup for splinereg runs.

Console and file handlers are attached to a named logger for the
duration of a run and detached again afterwards.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Marks handlers installed by setup_logger so reset_logger leaves others alone.
_HANDLER_TAG = '_splinereg_handler'


def setup_logger(name: str = 'splinereg',
                 level: int = logging.INFO,
                 log_file: Optional[str] = None,
                 log_to_console: bool = True) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually the package name)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path; parent directories are created
        log_to_console: Attach a stdout handler

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    reset_logger(name)
    logger.setLevel(level)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
        setattr(console_handler, _HANDLER_TAG, True)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        setattr(file_handler, _HANDLER_TAG, True)
        logger.addHandler(file_handler)

    return logger


def reset_logger(name: str = 'splinereg') -> None:
    """Detach and close handlers previously installed by setup_logger and restore the level."""
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)
