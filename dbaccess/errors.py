"""
Data Access Errors
==================

Exception taxonomy for the data-access layer.

- ConfigurationError: missing/invalid credentials or settings
- TransactionStateError: begin/commit/rollback out of sequence
- NoConnectionError: no schema label or connection for a facade call
- StatementError: strict fetch variants only
- ConnectionFailedError: physical connection could not be opened
"""


class DataAccessError(Exception):
    """Base exception for the data-access layer."""
    pass


class ConfigurationError(DataAccessError):
    """Credentials or settings are missing or invalid."""
    pass


class TransactionStateError(DataAccessError):
    """A transaction call was made out of sequence for the active mode."""
    pass


class NoConnectionError(DataAccessError):
    """No connection is available for the requested schema/mode."""
    pass


class StatementError(DataAccessError):
    """A statement failed or returned no rows in a strict fetch."""
    pass


class ConnectionFailedError(DataAccessError):
    """The database could not be reached after all retries."""
    pass
