"""Logging configuration for deepsight."""

import logging
import logging.handlers
import os

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ROOT_LOGGER_NAME = "deepsight"


def _get_log_level(level_name: str) -> int:
    """Convert a level name such as 'debug' to its logging constant."""
    level = logging.getLevelName(str(level_name).upper())
    if isinstance(level, int):
        return level
    raise ValueError(f"Invalid log level: {level_name!r}")


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Configure the package logger.

    Calling this again replaces the previously installed handlers.

    Args:
        level: Level name applied to every handler.
        log_file: Optional path for a rotating log file.
        console: Whether to log to stderr. The dashboard turns this off because
            the terminal is owned by the UI.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files kept.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(_get_log_level(level))
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
