"""
Raw psycopg2 connection wrapper.

Exposes the primitives the transactional handle builds on: execute a statement
with bound parameters, and physical BEGIN / COMMIT / ROLLBACK. The underlying
connection runs in autocommit mode so that a transaction exists only between
an explicit begin() and commit()/rollback().
"""

import logging
from typing import Any, Optional, Sequence

import psycopg2
import psycopg2.extensions

from dbaccess.credentials import DatabaseCredentials

logger = logging.getLogger(__name__)


class RawConnection:
    """Single physical database connection."""

    # psycopg2 uses the "format" paramstyle
    placeholder = "%s"
    Error = psycopg2.Error

    def __init__(self, conn: psycopg2.extensions.connection):
        self._conn = conn
        self._conn.autocommit = True

    @property
    def closed(self) -> bool:
        return bool(self._conn.closed)

    def execute(self, query: str, params: Optional[Sequence[Any]] = None, cursor_factory=None):
        """
        Execute a statement and return its cursor.

        The cursor is left open so the caller can fetch from it. Pass
        cursor_factory=RealDictCursor for rows keyed by column name.

        Raises:
            psycopg2.Error: If the statement fails
        """
        cursor = self._conn.cursor(cursor_factory=cursor_factory)
        try:
            if params is None:
                cursor.execute(query)
            else:
                cursor.execute(query, tuple(params))
        except Exception:
            cursor.close()
            raise
        return cursor

    def _run(self, statement: str) -> None:
        with self._conn.cursor() as cur:
            cur.execute(statement)

    def begin(self) -> None:
        self._run("BEGIN")

    def commit(self) -> None:
        self._run("COMMIT")

    def rollback(self) -> None:
        self._run("ROLLBACK")

    def last_insert_id(self) -> Any:
        with self._conn.cursor() as cur:
            cur.execute("SELECT lastval()")
            row = cur.fetchone()
            return row[0] if row else None

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()


def connect(credentials: DatabaseCredentials, connect_timeout: int = 30) -> RawConnection:
    """
    Open a new physical connection.

    Args:
        credentials: Host/database/user/password to connect with
        connect_timeout: Seconds before the connect attempt is abandoned

    Raises:
        psycopg2.OperationalError: If the server cannot be reached
    """
    conn = psycopg2.connect(
        **credentials.as_connect_kwargs(),
        connect_timeout=connect_timeout,
    )
    logger.debug(
        f"Opened connection to {credentials.host}:{credentials.port}/{credentials.database}"
    )
    return RawConnection(conn)
