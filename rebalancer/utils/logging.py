"""Logging setup for the portfolio rebalancer.

Two outputs exist:
- Console: human-readable lines on stdout, level from ``logging.level``
- Event log: rotating JSON-lines files under ``logging.event_log_dir``,
  written by ``JsonEventLog`` through ``create_rotating_handler``
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

from rebalancer.utils.config import resolve_path

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
EVENT_FORMAT = '{"logged_at": "%(asctime)s", "level": "%(levelname)s", "event": %(message)s}'

# Libraries that log every scheduler tick or HTTP connection at INFO
NOISY_LOGGERS = ("apscheduler", "urllib3")


def _level_number(level: str) -> int:
    numeric_level = logging.getLevelName(level.upper())
    if isinstance(numeric_level, int):
        return numeric_level
    return logging.INFO


def setup_logging(level: str = "INFO") -> None:
    """Send rebalancer logs to stdout at ``level``.

    Unknown level names fall back to INFO. The scheduler and HTTP pool
    loggers stay at WARNING unless DEBUG is requested.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = _level_number(level)
    logging.basicConfig(
        level=numeric_level,
        format=CONSOLE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def setup_logging_from_config(config: Any) -> Optional[Path]:
    """Configure console logging and locate the event log directory.

    Args:
        config: Config instance (anything exposing ``get(key, default)``)

    Returns:
        Directory for JSON event logs, anchored at the project root, or
        None when ``logging.event_log_dir`` is unset
    """
    setup_logging(level=config.get("logging.level", "INFO"))

    event_log_dir = config.get("logging.event_log_dir")
    if not event_log_dir:
        return None
    return resolve_path(event_log_dir)


def create_rotating_handler(
    log_file: Path,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 30,
) -> logging.handlers.RotatingFileHandler:
    """Create a size-rotated handler that writes one JSON object per line.

    Messages passed through it must already be JSON documents.

    Args:
        log_file: Target file; its directory is created if missing
        max_bytes: Maximum size per file before rotation (default 10 MB)
        backup_count: Number of rotated files to keep

    Returns:
        Handler with the event JSON formatter attached
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(EVENT_FORMAT))
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log ``message`` followed by ``key=value`` context.

    Context fields whose value is None are left out.

    Example:
        >>> log_with_context(
        ...     logger, "warning", "Rebalance rejected",
        ...     portfolio_id=3, reason="CooldownActiveError"
        ... )
        # Logs: "Rebalance rejected | portfolio_id=3 reason=CooldownActiveError"
    """
    levelno = _level_number(level)
    if not logger.isEnabledFor(levelno):
        return

    fields = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    if fields:
        logger.log(levelno, "%s | %s", message, fields)
    else:
        logger.log(levelno, "%s", message)
