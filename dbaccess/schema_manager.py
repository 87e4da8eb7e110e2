"""
Schema Manager
==============

Per-schema facade used by storage classes. Routes each call to a READ or WRITE
connection from the connection cache and tracks whether a transaction is open.

Routing rule: the requested mode is forced to WRITE when the manager is
critical, when it has an active transaction, or when the process runs in
DEBUG mode. Reads inside a transaction therefore see the transaction's writes.

Usage:
    from dbaccess.schema_manager import SchemaManager

    db = SchemaManager.instance("APP")
    lead = db.fetch_row("SELECT * FROM leads WHERE id = %s", [lead_id])

    with db.transaction():
        db.insert("leads", {"name": "Ana", "date_created": NOW})
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from dbaccess.connection_cache import ConnectionCache, get_connection_cache
from dbaccess.db_config import DEFAULT_LOCATION, AccessMode, parse_access_mode
from dbaccess.errors import NoConnectionError
from dbaccess.transactional_handle import PreparedStatement, TransactionalHandle

logger = logging.getLogger(__name__)

ManagerKey = Tuple[str, str, bool, Optional[str]]


class ManagerRegistry:
    """Holds one SchemaManager per (location, schema label, critical, discriminator)."""

    def __init__(self, cache: Optional[ConnectionCache] = None):
        self._cache = cache
        self._managers: Dict[ManagerKey, "SchemaManager"] = {}
        self._lock = Lock()

    @property
    def cache(self) -> ConnectionCache:
        return self._cache if self._cache is not None else get_connection_cache()

    def get(
        self,
        schema_label: str,
        location: str = DEFAULT_LOCATION,
        critical: bool = False,
        discriminator: Optional[str] = None,
        factory=None,
    ) -> "SchemaManager":
        cache = self.cache
        location = cache.resolve_location_alias(location)
        key = (location, (schema_label or "").upper(), bool(critical), discriminator)

        with self._lock:
            manager = self._managers.get(key)
            if manager is None:
                factory = factory or SchemaManager
                manager = factory(
                    schema_label,
                    location,
                    critical=critical,
                    discriminator=discriminator,
                    cache=cache,
                )
                self._managers[key] = manager
            return manager

    def clear(self) -> None:
        with self._lock:
            self._managers = {}

    def __len__(self) -> int:
        return len(self._managers)


_default_registry = ManagerRegistry()


def get_manager_registry() -> ManagerRegistry:
    return _default_registry


class SchemaManager:
    """Facade over the connection cache for one schema label."""

    def __init__(
        self,
        schema_label: str,
        location: str = DEFAULT_LOCATION,
        critical: bool = False,
        discriminator: Optional[str] = None,
        cache: Optional[ConnectionCache] = None,
    ):
        """
        Prefer SchemaManager.instance(), which returns the shared manager for
        identical arguments.

        Args:
            schema_label: Label of the schema in the credentials
            location: Location of the database (e.g. LIVE, TEST, DEFAULT)
            critical: Use WRITE connections for every query
            discriminator: Custom key for otherwise identical connections
            cache: Connection cache (default: the process-wide cache)
        """
        self.cache = cache if cache is not None else get_connection_cache()
        self.location = location.upper()
        self.schema_label = schema_label.upper() if schema_label else ""
        self.critical = bool(critical)
        self.discriminator = discriminator
        self.has_active_transaction = False

        if self.cache.settings.is_debug:
            self._attach_debug_connection()

    @classmethod
    def instance(
        cls,
        schema_label: str,
        location: str = DEFAULT_LOCATION,
        critical: bool = False,
        discriminator: Optional[str] = None,
        registry: Optional[ManagerRegistry] = None,
    ) -> "SchemaManager":
        """Get the shared manager for these arguments, creating it on first use."""
        registry = registry if registry is not None else get_manager_registry()
        return registry.get(schema_label, location, critical, discriminator, factory=cls)

    def _attach_debug_connection(self) -> None:
        # The cache opens the outer transaction when it creates a DEBUG
        # connection, so managers sharing a connection share it too
        if self.get_conn(AccessMode.WRITE) is not None:
            logger.info(f"DEBUG mode: writes to {self.schema_label} will not be committed")

    def forget(
        self,
        schema_label: Optional[str] = None,
        location: Optional[str] = None,
        access_mode="WRITE",
        discriminator: Optional[str] = None,
    ) -> None:
        """Remove a connection from the cache. Defaults to this manager's key parts."""
        self.cache.forget_connection(
            schema_label or self.schema_label,
            location or self.location,
            access_mode,
            discriminator if discriminator is not None else self.discriminator,
        )

    def forget_all(self) -> None:
        """Remove every live connection from the cache."""
        self.cache.forget_all_connections()

    def set_schema_label(self, schema_label: str) -> None:
        self.schema_label = schema_label.upper()

    # =========================================================================
    # ROUTING
    # =========================================================================

    def get_conn(self, access_mode, schema_label: Optional[str] = None) -> Optional[TransactionalHandle]:
        """
        Get the connection for a call.

        Args:
            access_mode: Requested mode; forced to WRITE for critical managers,
                during a transaction and in DEBUG mode
            schema_label: Overrides this manager's schema label

        Returns:
            The handle, or None when no schema label is known
        """
        schema_label = schema_label or self.schema_label
        if not schema_label:
            return None

        mode = parse_access_mode(access_mode)
        if self.critical or self.has_active_transaction or self.cache.settings.is_debug:
            mode = AccessMode.WRITE

        return self.cache.get_connection(
            self.location,
            schema_label,
            mode,
            self.discriminator,
        )

    def _require_conn(self, access_mode, schema_label: Optional[str] = None) -> TransactionalHandle:
        conn = self.get_conn(access_mode, schema_label)
        if conn is None:
            raise NoConnectionError(
                f"No schema label set for manager at {self.location}; operation skipped"
            )
        return conn

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def begin_transaction(self) -> int:
        """Start a transaction on the WRITE connection. Returns the new depth."""
        depth = self._require_conn(AccessMode.WRITE).begin_transaction()
        self.has_active_transaction = True
        return depth

    def commit(self) -> bool:
        self.has_active_transaction = False
        self._require_conn(AccessMode.WRITE).commit()
        return True

    def roll_back(self) -> bool:
        self.has_active_transaction = False
        self._require_conn(AccessMode.WRITE).roll_back()
        return True

    def last_insert_id(self) -> Any:
        return self._require_conn(AccessMode.WRITE).last_insert_id()

    @contextmanager
    def transaction(self):
        """
        Run a block in a transaction: commit on success, roll back on error.

        Usage:
            with db.transaction():
                db.insert(...)
                db.update(...)
        """
        self.begin_transaction()
        try:
            yield self
        except Exception:
            self.roll_back()
            raise
        else:
            self.commit()

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    def prepare(self, query: str, schema_label: Optional[str] = None) -> PreparedStatement:
        return self._require_conn(AccessMode.WRITE, schema_label).prepare(query)

    def query_prepared(self, query, params: Any = (), schema_label: Optional[str] = None):
        """Execute a statement on the WRITE connection. Returns the cursor or None."""
        return self._require_conn(AccessMode.WRITE, schema_label).query_prepared(query, params)

    def insert(self, table: str, values: Mapping[str, Any], schema_label: Optional[str] = None, id_field: Optional[str] = "id") -> Any:
        """Insert one row. Returns the new row id, None on statement failure."""
        return self._require_conn(AccessMode.WRITE, schema_label).insert(table, values, id_field)

    def multi_insert(self, table: str, rows: Sequence[Mapping[str, Any]], schema_label: Optional[str] = None) -> Optional[int]:
        """Insert several rows. Returns the number inserted, None on statement failure."""
        return self._require_conn(AccessMode.WRITE, schema_label).multi_insert(table, rows)

    def update(self, table: str, values: Mapping[str, Any], id, id_field: str = "id", schema_label: Optional[str] = None) -> Optional[int]:
        """Update rows by id or Condition. Returns the number updated, None on statement failure."""
        return self._require_conn(AccessMode.WRITE, schema_label).update(table, values, id, id_field)

    # =========================================================================
    # READ PATH
    # =========================================================================

    def fetch_none(self, query, params: Any = None, schema_label: Optional[str] = None):
        return self._require_conn(AccessMode.READ, schema_label).fetch_none(query, params)

    def fetch_one(self, query, params: Any = None, schema_label: Optional[str] = None) -> Any:
        return self._require_conn(AccessMode.READ, schema_label).fetch_one(query, params)

    def fetch_one_strict(self, query, params: Any = None, error_msg: str = "Query returned no value", schema_label: Optional[str] = None) -> Any:
        return self._require_conn(AccessMode.READ, schema_label).fetch_one_strict(query, params, error_msg)

    def fetch_column(self, query, params: Any = None, column_number: int = 0, schema_label: Optional[str] = None):
        return self._require_conn(AccessMode.READ, schema_label).fetch_column(query, params, column_number)

    def fetch_row(self, query, params: Any = None, as_dict: bool = True, schema_label: Optional[str] = None):
        return self._require_conn(AccessMode.READ, schema_label).fetch_row(query, params, as_dict)

    def fetch_all(self, query, params: Any = None, as_dict: bool = True, schema_label: Optional[str] = None):
        return self._require_conn(AccessMode.READ, schema_label).fetch_all(query, params, as_dict)

    def fetch_all_as_dictionary(self, query, params: Any = None, column_number: int = 0, schema_label: Optional[str] = None):
        return self._require_conn(AccessMode.READ, schema_label).fetch_all_as_dictionary(query, params, column_number)
