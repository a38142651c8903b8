"""
Logging Utilities

Every module obtains its logger through ``setup_logger(__name__)`` so that
console/file formatting is consistent across maps, serialization and matching.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "ndt_gridmap"


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs are also written there

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def set_log_level(level: Union[int, str], log_file: Optional[str] = None) -> None:
    """
    Re-level every ``ndt_gridmap`` logger created so far.

    Used by entry points after the configuration has been loaded, since module
    loggers are created at import time with the default level.

    Args:
        level: Logging level as int or name ("DEBUG", "INFO", ...)
        log_file: Optional log file to attach to the package loggers
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level}")

    file_handler = None
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    for name, logger in list(logging.root.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        if file_handler is not None and logger.handlers:
            file_handler.setLevel(level)
            logger.addHandler(file_handler)
