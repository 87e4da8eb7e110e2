"""
Non-Blocking Logging Configuration

QueueHandler-based logging: log calls only enqueue records, and a background
QueueListener thread writes them to stderr (and optionally a file). Database
calls are blocking already, so log I/O should not add to request latency.

Usage:
    from utils.logger import configure_non_blocking_logging, stop_logging

    configure_non_blocking_logging()          # level from LOG_LEVEL
    ...
    stop_logging()                            # atexit does this too
"""

import atexit
import logging
import logging.handlers
import os
import queue
import sys
from typing import List, Optional

# Set by configure_non_blocking_logging(), cleared by stop_logging()
_log_listener: Optional[logging.handlers.QueueListener] = None

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%H:%M:%S"


def resolve_log_level(value: str | None) -> int:
    """Resolve a log level from a level name or number. Unknown values give INFO."""
    if value is None:
        return logging.INFO

    stripped = value.strip().upper()
    if stripped == "WARN":
        stripped = "WARNING"

    level = logging.getLevelName(stripped)
    if isinstance(level, int):
        return level

    try:
        return int(stripped)
    except ValueError:
        return logging.INFO


def configure_non_blocking_logging(
    level: int | str | None = None,
    log_file: str | None = None,
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    queue_size: int = -1,
) -> logging.handlers.QueueListener:
    """
    Route the root logger through a queue to a background writer thread.

    Args:
        level: Level or level name (default: LOG_LEVEL env var, else INFO)
        log_file: Also write to this file (default: DB_LOG_FILE env var)
        log_format: Format string for log messages
        date_format: Format string for timestamps
        queue_size: Max queued records (-1 for unbounded)

    Returns:
        The running QueueListener. Calling again replaces it.
    """
    global _log_listener

    if level is None or isinstance(level, str):
        level = resolve_log_level(level or os.getenv("LOG_LEVEL"))
    if log_file is None:
        log_file = os.getenv("DB_LOG_FILE") or None

    stop_logging()

    formatter = logging.Formatter(log_format, datefmt=date_format)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    log_queue: queue.Queue = queue.Queue(queue_size)
    listener = logging.handlers.QueueListener(log_queue, *handlers, respect_handler_level=True)
    listener.start()

    queue_handler = logging.handlers.QueueHandler(log_queue)
    queue_handler.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(queue_handler)

    _log_listener = listener
    return listener


def get_log_listener() -> Optional[logging.handlers.QueueListener]:
    """The running listener, or None before configure_non_blocking_logging()."""
    return _log_listener


def stop_logging() -> None:
    """Stop the background logging thread and flush remaining records."""
    global _log_listener
    if _log_listener is not None:
        listener, _log_listener = _log_listener, None
        listener.stop()
        for handler in listener.handlers:
            handler.close()


def is_logging_configured() -> bool:
    """True while a listener is running."""
    return _log_listener is not None


atexit.register(stop_logging)


__all__ = [
    "configure_non_blocking_logging",
    "get_log_listener",
    "stop_logging",
    "is_logging_configured",
    "resolve_log_level",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_DATE_FORMAT",
]
