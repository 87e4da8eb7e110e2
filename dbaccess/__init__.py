"""
Database access module.

Contains:
- db_config: Settings (LIVE/DEBUG mode, connection time limit, aliases)
- credentials: Credential sources keyed by location/schema/access mode
- connection_cache: Time-boxed connection cache
- schema_manager: Per-schema facade used by storage classes
- transactional_handle: Transaction nesting and statement builders
- storage/: Storage classes for the application tables
"""

from dbaccess.db_config import (
    AccessMode,
    DatabaseSettings,
    ExecutionMode,
    get_settings,
    is_debug_mode,
    validate_settings,
)
from dbaccess.credentials import (
    DatabaseCredentials,
    EnvCredentialsProvider,
    StaticCredentialsProvider,
)
from dbaccess.errors import (
    ConfigurationError,
    ConnectionFailedError,
    DataAccessError,
    NoConnectionError,
    StatementError,
    TransactionStateError,
)
from dbaccess.expressions import NOW, Condition, Literal
from dbaccess.transactional_handle import TransactionalHandle
from dbaccess.connection_cache import (
    ConnectionCache,
    close_all_connections,
    get_connection_cache,
    set_connection_cache,
)
from dbaccess.schema_manager import ManagerRegistry, SchemaManager

__all__ = [
    # Config
    "AccessMode",
    "DatabaseSettings",
    "ExecutionMode",
    "get_settings",
    "is_debug_mode",
    "validate_settings",
    # Credentials
    "DatabaseCredentials",
    "EnvCredentialsProvider",
    "StaticCredentialsProvider",
    # Errors
    "ConfigurationError",
    "ConnectionFailedError",
    "DataAccessError",
    "NoConnectionError",
    "StatementError",
    "TransactionStateError",
    # Statements
    "NOW",
    "Condition",
    "Literal",
    "TransactionalHandle",
    # Cache
    "ConnectionCache",
    "close_all_connections",
    "get_connection_cache",
    "set_connection_cache",
    # Facade
    "ManagerRegistry",
    "SchemaManager",
]
