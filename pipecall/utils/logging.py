"""
pipecall Logging Utilities

This module provides structured logging for host and worker processes
with consistent formatting on both sides of a channel.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

ROOT_LOGGER = "pipecall"

# Set by configure_logging(); applies to loggers created afterwards too
_settings: Dict[str, Any] = {}


def _formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt='%(asctime)s | %(process)d | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def _add_file_handler(logger: logging.Logger, log_file: Union[str, Path]):
    log_path = Path(log_file)
    target = os.path.abspath(log_path)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(_formatter())
    logger.addHandler(file_handler)


def get_logger(
    name: str,
    level: Optional[Union[str, int]] = None,
    log_file: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)
        level: Logging level, defaults to the configured level,
            then $PIPECALL_LOG_LEVEL, then INFO
        log_file: Optional file for logging output

    Returns:
        logging.Logger: Configured logger
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    if level is None:
        level = _settings.get('level') or os.environ.get("PIPECALL_LOG_LEVEL", logging.INFO)
    logger.setLevel(_resolve_level(level))

    # Console handler; stderr keeps stdout free for a worker's own output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(_formatter())
    logger.addHandler(console_handler)

    if log_file is None:
        log_file = _settings.get('log_file') or os.environ.get("PIPECALL_LOG_FILE") or None

    if log_file:
        _add_file_handler(logger, log_file)

    return logger


def configure_logging(config) -> None:
    """
    Apply ``config.log_level`` and ``config.log_file`` to every pipecall logger.

    Loggers already handed out by :func:`get_logger` are updated in place;
    loggers created later pick the same settings up as their defaults.

    Args:
        config: A RuntimeConfig, or anything with ``log_level`` and
            ``log_file`` attributes
    """
    level = _resolve_level(config.log_level)
    _settings['level'] = level
    _settings['log_file'] = config.log_file

    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
            continue
        # Only loggers built by get_logger carry their own handlers
        if not logger.handlers:
            continue
        logger.setLevel(level)
        if config.log_file:
            _add_file_handler(logger, config.log_file)
