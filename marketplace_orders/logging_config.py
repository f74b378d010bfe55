"""
Logging configuration for the marketplace orders core.

The daily reconciliation job runs under cron, so besides stdout the log can
also be appended to a file that survives the process.

Usage:
    from marketplace_orders.logging_config import setup_logging
    setup_logging()  # Once per process, before the first log line

Environment variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
    LOG_FILE: Optional path; package log lines are appended there as well
"""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _resolve_level(level: Optional[str]) -> str:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = level.upper()
    return level if level in VALID_LEVELS else "INFO"


def _attach_file_handler(logger: logging.Logger, path: str) -> None:
    path = os.path.abspath(path)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == path:
            return
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> str:
    """
    Configure logging for the package.

    Args:
        level: Level name; falls back to LOG_LEVEL, then INFO. Unknown names
            are treated as INFO.
        log_file: Append log lines to this file too; falls back to LOG_FILE.

    Returns:
        The level name that was applied
    """
    level = _resolve_level(level)
    numeric_level = getattr(logging, level)

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stdout,
    )

    package_logger = logging.getLogger("marketplace_orders")
    package_logger.setLevel(numeric_level)

    log_file = log_file or os.getenv("LOG_FILE")
    if log_file:
        _attach_file_handler(package_logger, log_file)

    # SQL echo is only useful when debugging queries
    sql_level = logging.INFO if level == "DEBUG" else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(sql_level)

    logging.getLogger(__name__).debug("Logging configured at %s level", level)
    return level
