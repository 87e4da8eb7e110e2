"""
Database Connection Cache
=========================

Process-wide registry of live connections, keyed by location, schema label,
access mode and an optional discriminator.

Features:
- One connection per key, reused for DB_CONNECTION_TIME_LIMIT seconds
- Expired entries are replaced transparently (the old handle is dropped)
- Separate key spaces for LIVE and DEBUG mode
- Session time zone / client encoding set on every new connection
- Connect retries with exponential backoff
- DEBUG connections start inside an outer transaction that is never committed
- Create-on-miss is locked per key; a slow connect blocks only callers of that key

Usage:
    from dbaccess.connection_cache import get_connection_cache

    handle = get_connection_cache().get_connection("LIVE", "APP", "READ")
    rows = handle.fetch_all("SELECT * FROM leads")
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

import psycopg2

from dbaccess.credentials import (
    CredentialsProvider,
    DatabaseCredentials,
    EnvCredentialsProvider,
)
from dbaccess.db_config import (
    DEFAULT_LOCATION,
    AccessMode,
    DatabaseSettings,
    get_settings,
    parse_access_mode,
)
from dbaccess.errors import ConfigurationError, ConnectionFailedError
from dbaccess.raw_connection import connect
from dbaccess.transactional_handle import TransactionalHandle

logger = logging.getLogger(__name__)


@dataclass
class CachedConnection:
    handle: TransactionalHandle
    created_at: float


def make_cache_key(
    location: str,
    schema_label: str,
    access_mode: AccessMode,
    discriminator: Optional[str] = None,
) -> str:
    """Unique key for a connection. A discriminator is appended, never substituted."""
    key = f"{location}_{schema_label}_{access_mode.value}"
    if discriminator is not None:
        key += f"_{discriminator}"
    return key


class ConnectionCache:
    """
    Time-boxed cache of transactional handles.

    Args:
        settings: Mode, time limit, aliases and session settings
        credentials: Credential source (see dbaccess.credentials)
        connector: Opens a raw connection from credentials and a connect
            timeout (default: psycopg2 via dbaccess.raw_connection.connect)
        clock: Returns the current time in seconds
        sleep: Used between connect retries
    """

    def __init__(
        self,
        settings: DatabaseSettings,
        credentials: CredentialsProvider,
        connector: Callable = connect,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self._credentials = credentials
        self._connector = connector
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._live: Dict[str, CachedConnection] = {}
        self._debug: Dict[str, CachedConnection] = {}
        self._key_locks: Dict[str, Lock] = {}

    def resolve_location_alias(self, location: str) -> str:
        return self.settings.resolve_location_alias(location)

    def _key_space(self) -> Dict[str, CachedConnection]:
        return self._debug if self.settings.is_debug else self._live

    def _lookup_credentials(self, location: str, schema_label: str, access_mode) -> DatabaseCredentials:
        all_credentials = self._credentials.get_credentials()
        if not all_credentials:
            raise ConfigurationError(
                "No database credentials found. Set DBCRED__<ENV>__<SCHEMA>__<MODE>__<FIELD> "
                "variables or pass a credentials provider."
            )

        try:
            mode = parse_access_mode(access_mode)
        except ConfigurationError:
            raise ConfigurationError(
                f"Missing credentials for {location}: {schema_label} -> {access_mode}"
            )

        creds = all_credentials.get(location, {}).get(schema_label, {}).get(mode.value)
        if creds is None:
            raise ConfigurationError(
                f"Missing credentials for {location}: {schema_label} -> {mode.value}"
            )
        return creds

    # =========================================================================
    # CONNECTION CREATION
    # =========================================================================

    def _open_raw(self, creds: DatabaseCredentials):
        """Open a raw connection, retrying operational errors with backoff."""
        max_attempts = self.settings.max_retries
        last_exception: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return self._connector(creds, self.settings.connect_timeout)
            except psycopg2.OperationalError as exc:
                last_exception = exc
                if attempt < max_attempts:
                    delay = self.settings.retry_delay_base ** min(attempt, 3)  # Capped at base^3
                    logger.warning(
                        f"Database connection failed (attempt {attempt}/{max_attempts}): {exc}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    self._sleep(delay)
                else:
                    logger.error(
                        f"Database connection failed after {max_attempts} attempts: {exc}",
                        exc_info=True,
                    )

        raise ConnectionFailedError(
            f"Database connection failed: {last_exception}"
        ) from last_exception

    def _create_handle(self, creds: DatabaseCredentials) -> TransactionalHandle:
        handle = TransactionalHandle(self._open_raw(creds), self.settings.mode)

        session_statements = [
            ("SET TIME ZONE {}", self.settings.session_time_zone),
            ("SET client_encoding TO {}", self.settings.client_encoding),
        ]
        if self.settings.statement_timeout_ms > 0:
            session_statements.append(
                ("SET statement_timeout TO {}", self.settings.statement_timeout_ms)
            )

        for template, value in session_statements:
            result = handle.query_prepared(template.format(handle.placeholder), [value])
            if result is None:
                handle.close()
                raise ConnectionFailedError(f"Failed to initialise session: {template.format(value)}")
            result.close()

        # Every DEBUG connection lives inside an outer transaction that is never
        # committed, including connections that replace an expired one
        if self.settings.is_debug:
            handle.begin_transaction()

        return handle

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def _fresh_handle(self, key: str) -> Optional[TransactionalHandle]:
        """The cached handle for key if it is still within the time limit."""
        with self._lock:
            cached = self._key_space().get(key)
            if cached is None:
                return None
            if self._clock() - cached.created_at < self.settings.time_limit:
                return cached.handle
        return None

    def _creation_lock(self, key: str) -> Lock:
        with self._lock:
            return self._key_locks.setdefault(key, Lock())

    def get_connection(
        self,
        location: str,
        schema_label: str,
        access_mode="WRITE",
        discriminator: Optional[str] = None,
    ) -> TransactionalHandle:
        """
        Get a cached connection, creating it on a miss or after expiry.

        Only callers of the same key wait while a connection is being opened.

        Args:
            location: Location name or alias (e.g. LIVE, DEFAULT)
            schema_label: Label of the schema in the credentials
            access_mode: READ or WRITE
            discriminator: Optional extra key part for otherwise identical connections

        Raises:
            ConfigurationError: If no credentials match or the mode is invalid
            ConnectionFailedError: If a new connection cannot be opened
        """
        location = self.resolve_location_alias(location)
        schema_label = schema_label.upper()
        creds = self._lookup_credentials(location, schema_label, access_mode)
        mode = parse_access_mode(access_mode)
        key = make_cache_key(location, schema_label, mode, discriminator)

        handle = self._fresh_handle(key)
        if handle is not None:
            return handle

        with self._creation_lock(key):
            # Another caller may have created it while we waited
            handle = self._fresh_handle(key)
            if handle is not None:
                return handle

            handle = self._create_handle(creds)
            with self._lock:
                space = self._key_space()
                replaced = key in space
                space[key] = CachedConnection(handle=handle, created_at=self._clock())
            logger.info(
                f"{'Replaced expired' if replaced else 'Opened'} {self.settings.mode.value} connection {key} "
                f"({creds.host}:{creds.port}/{creds.database})"
            )
            return handle

    def forget_connection(
        self,
        schema_label: str,
        location: str = DEFAULT_LOCATION,
        access_mode="WRITE",
        discriminator: Optional[str] = None,
    ) -> None:
        """Drop one LIVE-mode connection from the cache. No-op if it is not cached."""
        key = make_cache_key(
            self.resolve_location_alias(location),
            schema_label.upper(),
            parse_access_mode(access_mode),
            discriminator,
        )
        with self._lock:
            if self._live.pop(key, None) is not None:
                logger.debug(f"Forgot connection {key}")

    def forget_all_connections(self) -> None:
        """Drop every LIVE-mode connection. DEBUG-mode connections are kept."""
        with self._lock:
            self._live = {}
        logger.debug("Forgot all live connections")

    def close_all(self) -> None:
        """
        Close every cached connection in both key spaces.

        Call this when the application is shutting down.
        """
        with self._lock:
            entries = list(self._live.values()) + list(self._debug.values())
            self._live = {}
            self._debug = {}

        if entries:
            logger.info(f"Closing {len(entries)} cached database connection(s)")
        for entry in entries:
            entry.handle.close()

    def get_cache_stats(self) -> dict:
        with self._lock:
            return {
                "mode": self.settings.mode.value,
                "time_limit": self.settings.time_limit,
                "live_connections": len(self._live),
                "debug_connections": len(self._debug),
            }


# =============================================================================
# PROCESS DEFAULT
# =============================================================================

_cache: Optional[ConnectionCache] = None
_cache_lock = Lock()


def get_connection_cache() -> ConnectionCache:
    """Get or create the process-wide connection cache."""
    global _cache

    with _cache_lock:
        if _cache is None:
            _cache = ConnectionCache(get_settings(), EnvCredentialsProvider())
        return _cache


def set_connection_cache(cache: Optional[ConnectionCache]) -> None:
    """Install a cache built by the application (or None to rebuild from the environment)."""
    global _cache

    with _cache_lock:
        _cache = cache


def close_all_connections() -> None:
    """Close the process-wide cache's connections (for graceful shutdown)."""
    with _cache_lock:
        cache = _cache
    if cache is not None:
        cache.close_all()
