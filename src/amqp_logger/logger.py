"""Logging configuration for the AMQP logger service using loguru."""

import os
import sys
from typing import Optional

from loguru import logger

# loguru has no "warn" level; the service accepts it for compatibility
LEVEL_ALIASES = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}

PRETTY_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level> | {extra}"
)


def resolve_level(log_level: str) -> str:
    """
    Translate a configured level name into a loguru level.

    Args:
        log_level: Level name (debug, info, warn, error, any case)

    Returns:
        The loguru level name
    """
    return LEVEL_ALIASES.get(log_level.strip().lower(), log_level.strip().upper())


def setup_logger(
    log_level: str = "info",
    pretty: bool = False,
    log_file: Optional[str] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    compression: str = "zip",
) -> None:
    """
    Configure loguru for the service.

    Records go to stdout as one JSON document per line so a log collector can
    ship them together with their bound fields. With ``pretty`` enabled a
    colorized human-readable format is used instead.

    Args:
        log_level: Logging level (debug, info, warn, error)
        pretty: Use the colorized console format instead of JSON lines
        log_file: Optional path of an additional rotating log file
        rotation: Log rotation size for the file sink
        retention: How long to keep old log files
        compression: Compression format for rotated files
    """
    level = resolve_level(log_level)

    # Remove default handler
    logger.remove()
    logger.configure(extra={"name": "amqp_logger"})

    if pretty:
        logger.add(
            sys.stdout,
            level=level,
            format=PRETTY_FORMAT,
            colorize=True,
        )
    else:
        logger.add(sys.stdout, level=level, serialize=True)

    if log_file:
        if not os.path.isabs(log_file):
            log_file = os.path.abspath(log_file)
        logger.add(
            log_file,
            level=level,
            serialize=True,
            rotation=rotation,
            retention=retention,
            compression=compression,
            encoding="utf-8",
        )


def get_logger(name: Optional[str] = None):
    """
    Get a configured logger instance.

    Args:
        name: Optional name for the logger

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger
