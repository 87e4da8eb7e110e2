"""
Shared utilities module.

Contains:
- logger: Non-blocking logging configuration
"""

from utils.logger import (
    configure_non_blocking_logging,
    get_log_listener,
    stop_logging,
    is_logging_configured,
    resolve_log_level,
    DEFAULT_LOG_FORMAT,
    DEFAULT_DATE_FORMAT,
)

__all__ = [
    # Logger
    "configure_non_blocking_logging",
    "get_log_listener",
    "stop_logging",
    "is_logging_configured",
    "resolve_log_level",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_DATE_FORMAT",
]
