"""
Logging Configuration
=====================
Centralized logging setup for the market strategy runner.

Features:
- Console and file logging
- Log rotation, with a separate errors-only file
- Tagged log lines: [PLACE ORDER..............] Successfully placed ...
- A TaggedLogger sink that is handed to each component at construction
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from config import (
    DIRS, LOG_LEVEL, LOG_FORMAT, LOG_DATE_FORMAT, LOG_TAG_WIDTH,
    LOG_MAX_BYTES, LOG_BACKUP_COUNT,
)

ROOT_LOGGER_NAME = "market_strategy"


def pad_tag(tag: str, width: int = LOG_TAG_WIDTH) -> str:
    """Pad a tag with dots so log columns line up."""
    tag = str(tag)
    return tag + "." * max(width - len(tag) - 1, 0)


class TagFilter(logging.Filter):
    """
    Guarantees every record has a padded `tag` attribute.

    Records logged through TaggedLogger carry their own tag; anything else
    (third-party libraries, plain module loggers) is tagged with the last
    part of its logger name.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        tag = getattr(record, 'tag', None)
        if tag is None:
            tag = record.name.rsplit('.', 1)[-1].upper()
        if not getattr(record, '_tag_padded', False):
            record.tag = pad_tag(tag)
            record._tag_padded = True
        return True


class TaggedLogger:
    """
    Diagnostic sink with (level, tag, message...) calls.

    Usage:
        log = TaggedLogger(get_logger("gateway"))
        log.info("GET POSITIONS", "Successfully retrieved", 3, "open positions")

    Parts are joined with single spaces. Purely an observer: nothing here
    feeds back into control flow.
    """

    def __init__(self, logger=None):
        if logger is None:
            logger = get_logger("app")
        elif isinstance(logger, str):
            logger = get_logger(logger)
        self.logger = logger

    def _log(self, level: int, tag: str, parts, exc_info=False):
        if not self.logger.isEnabledFor(level):
            return
        message = " ".join(str(p) for p in parts)
        self.logger.log(level, message, extra={'tag': tag}, exc_info=exc_info)

    def debug(self, tag: str, *parts):
        self._log(logging.DEBUG, tag, parts)

    def info(self, tag: str, *parts):
        self._log(logging.INFO, tag, parts)

    def warning(self, tag: str, *parts):
        self._log(logging.WARNING, tag, parts)

    def error(self, tag: str, *parts, exc_info=False):
        self._log(logging.ERROR, tag, parts, exc_info=exc_info)

    def success(self, verbose: bool, tag: str, *parts):
        """INFO when the component is verbose, DEBUG otherwise."""
        self._log(logging.INFO if verbose else logging.DEBUG, tag, parts)


def setup_logging(
    name: str = ROOT_LOGGER_NAME,
    level: str = None,
    log_to_file: bool = True,
    log_to_console: bool = True
) -> logging.Logger:
    """
    Set up logging for the market strategy runner.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_to_file: Whether to log to file
        log_to_console: Whether to log to console

    Returns:
        Configured logger
    """
    level = level or LOG_LEVEL

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    tag_filter = TagFilter()

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(formatter)
        console_handler.addFilter(tag_filter)
        logger.addHandler(console_handler)

    if log_to_file:
        log_dir = DIRS.get("logs")
        if log_dir:
            log_dir.mkdir(parents=True, exist_ok=True)

            # Main log file (rotating)
            file_handler = RotatingFileHandler(
                log_dir / f"{name}.log",
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT
            )
            file_handler.setLevel(getattr(logging, level.upper()))
            file_handler.setFormatter(formatter)
            file_handler.addFilter(tag_filter)
            logger.addHandler(file_handler)

            # Error log file (separate)
            error_handler = RotatingFileHandler(
                log_dir / f"{name}_errors.log",
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(formatter)
            error_handler.addFilter(tag_filter)
            logger.addHandler(error_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific component.

    Args:
        name: Component name (e.g., 'gateway', 'scheduler')

    Returns:
        Logger instance under the package root logger
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_tagged_logger(name: str) -> TaggedLogger:
    return TaggedLogger(get_logger(name))


class LogContext:
    """
    Context manager for temporary log level changes.

    Usage:
        with LogContext(logging.DEBUG):
            # Debug logging enabled here
            ...
        # Back to normal level
    """

    def __init__(self, level: int, name: str = ROOT_LOGGER_NAME):
        self.level = level
        self.name = name
        self.previous_level: Optional[int] = None

    def __enter__(self):
        logger = logging.getLogger(self.name)
        self.previous_level = logger.level
        logger.setLevel(self.level)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logging.getLogger(self.name).setLevel(self.previous_level)
        return False
