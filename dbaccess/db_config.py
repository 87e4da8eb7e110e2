"""
Database Configuration Module
=============================

Centralized settings for the data-access layer with LIVE/DEBUG mode support.

Environment Variables:
    DB_MODE: 'LIVE' (default) or 'DEBUG'. In DEBUG every schema manager wraps
        its work in an outer transaction that is never committed.
    DB_CONNECTION_TIME_LIMIT: Seconds a cached connection may be reused (default: 300)
    DB_LOCATION_ALIAS_<NAME>: Resolve location <NAME> to another location
        (e.g. DB_LOCATION_ALIAS_DEFAULT=LIVE)
    DB_SESSION_TIME_ZONE: Session time zone (default: America/Los_Angeles)
    DB_CLIENT_ENCODING: Session client encoding (default: UTF8)
    DB_CONNECTION_TIMEOUT: Connect timeout in seconds (default: 30)
    DB_STATEMENT_TIMEOUT_MS: Per-session statement timeout, 0 disables (default: 0)
    DB_MAX_RETRIES: Connection attempts before giving up (default: 3)
    DB_RETRY_DELAY_BASE: Exponential backoff base in seconds (default: 2.0)

Usage:
    from dbaccess.db_config import get_settings, is_debug_mode

    settings = get_settings()
    if is_debug_mode():
        print("Writes will be rolled back when the process exits")
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from dbaccess.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

# Upper default for callers building their own settings; the
# environment-driven default below is the one used at run time.
DEFAULT_TIME_LIMIT = 600
RUNTIME_TIME_LIMIT = 300

DEFAULT_LOCATION = "DEFAULT"
ALIAS_PREFIX = "DB_LOCATION_ALIAS_"


# =============================================================================
# MODES
# =============================================================================

class ExecutionMode(str, Enum):
    """Process-wide execution mode."""
    LIVE = "LIVE"
    DEBUG = "DEBUG"


class AccessMode(str, Enum):
    """Which credential set (and replica) a connection uses."""
    READ = "READ"
    WRITE = "WRITE"


def parse_execution_mode(value: str | None) -> ExecutionMode:
    """
    Parse an execution mode name.

    Args:
        value: Mode name, case-insensitive. None means LIVE.

    Raises:
        ConfigurationError: If the name is not LIVE or DEBUG
    """
    if value is None or not value.strip():
        return ExecutionMode.LIVE
    try:
        return ExecutionMode(value.strip().upper())
    except ValueError:
        raise ConfigurationError(f"Unknown DB_MODE: {value!r} (expected LIVE or DEBUG)")


def parse_access_mode(value) -> AccessMode:
    """
    Parse an access mode.

    Raises:
        ConfigurationError: If the value is not READ or WRITE
    """
    if isinstance(value, AccessMode):
        return value
    if isinstance(value, str):
        try:
            return AccessMode(value.upper())
        except ValueError:
            pass
    raise ConfigurationError(f"Invalid access mode: {value!r} (expected READ or WRITE)")


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class DatabaseSettings:
    """Settings shared by the connection cache and schema managers."""
    mode: ExecutionMode = ExecutionMode.LIVE
    time_limit: float = DEFAULT_TIME_LIMIT
    location_aliases: Mapping[str, str] = field(default_factory=dict)
    session_time_zone: str = "America/Los_Angeles"
    client_encoding: str = "UTF8"
    connect_timeout: int = 30
    statement_timeout_ms: int = 0
    max_retries: int = 3
    retry_delay_base: float = 2.0

    @property
    def is_debug(self) -> bool:
        return self.mode is ExecutionMode.DEBUG

    def resolve_location_alias(self, location: str) -> str:
        """
        Resolve a db location into its final location.

        If an alias is configured for the location (e.g.
        DB_LOCATION_ALIAS_DEFAULT=TEST), return its target, otherwise return
        the location unchanged. Lookups are case-insensitive.
        """
        key = location.upper()
        return self.location_aliases.get(key, key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DatabaseSettings":
        """
        Create settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        aliases: Dict[str, str] = {}
        for name, target in env.items():
            if name.startswith(ALIAS_PREFIX) and target:
                aliases[name[len(ALIAS_PREFIX):].upper()] = target.strip().upper()

        try:
            return cls(
                mode=parse_execution_mode(env.get("DB_MODE")),
                time_limit=float(env.get("DB_CONNECTION_TIME_LIMIT", RUNTIME_TIME_LIMIT)),
                location_aliases=aliases,
                session_time_zone=env.get("DB_SESSION_TIME_ZONE", "America/Los_Angeles"),
                client_encoding=env.get("DB_CLIENT_ENCODING", "UTF8"),
                connect_timeout=int(env.get("DB_CONNECTION_TIMEOUT", "30")),
                statement_timeout_ms=int(env.get("DB_STATEMENT_TIMEOUT_MS", "0")),
                max_retries=int(env.get("DB_MAX_RETRIES", "3")),
                retry_delay_base=float(env.get("DB_RETRY_DELAY_BASE", "2.0")),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid numeric database setting: {exc}") from exc


# =============================================================================
# VALIDATION
# =============================================================================

def validate_settings(settings: DatabaseSettings) -> tuple[bool, str]:
    """
    Validate settings values.

    Returns:
        Tuple of (is_valid, error_message)
    """
    problems = []
    if settings.time_limit <= 0:
        problems.append("DB_CONNECTION_TIME_LIMIT must be positive")
    if settings.max_retries < 1:
        problems.append("DB_MAX_RETRIES must be at least 1")
    if settings.statement_timeout_ms < 0:
        problems.append("DB_STATEMENT_TIMEOUT_MS must not be negative")
    for source, target in settings.location_aliases.items():
        if source == target:
            problems.append(f"Location alias {source} points to itself")

    if problems:
        return False, "; ".join(problems)
    return True, ""


# =============================================================================
# PROCESS DEFAULT
# =============================================================================

_settings: Optional[DatabaseSettings] = None


def get_settings() -> DatabaseSettings:
    """Get the process-wide settings, loading them from the environment once."""
    global _settings

    if _settings is None:
        _settings = DatabaseSettings.from_env()
        is_valid, message = validate_settings(_settings)
        if not is_valid:
            raise ConfigurationError(message)
        logger.info(
            f"Database mode: {_settings.mode.value} "
            f"(connection time limit {_settings.time_limit:.0f}s)"
        )

    return _settings


def reset_settings() -> None:
    """Forget the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None


def is_debug_mode() -> bool:
    """Check whether the process runs in DEBUG mode."""
    return get_settings().is_debug
