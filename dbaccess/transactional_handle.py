"""
Transactional Database Handle
=============================

Wraps one raw connection with:
- Nested-transaction accounting whose rules depend on the execution mode
  (see dbaccess.transactions)
- Statement builders for INSERT, multi-row INSERT and UPDATE that bind every
  plain value as a parameter
- Result-shaping fetch helpers

Values passed to the builders are plain scalars (bound), Literal fragments
(inlined, e.g. NOW()) or Condition objects:

    handle.insert("users", {"username": "ana", "date_created": NOW})
    handle.update("users", {"password": digest}, Condition("username = %s", ["ana"]))

Statement failures are logged and reported as None. Only fetch_one_strict()
raises StatementError.
"""

import logging
import traceback
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from psycopg2.extras import RealDictCursor

from dbaccess.db_config import ExecutionMode
from dbaccess.errors import StatementError
from dbaccess.expressions import is_expression
from dbaccess.transactions import (
    PhysicalAction,
    TransactionEvent,
    TransactionState,
    TransactionTracker,
)

logger = logging.getLogger(__name__)


class PreparedStatement:
    """Statement text kept for repeated execution through query_prepared()."""

    def __init__(self, query: str):
        self.query = query

    def __repr__(self) -> str:
        return f"PreparedStatement({self.query!r})"


class TransactionalHandle:
    """Connection handle with transaction nesting and safe statement building."""

    def __init__(self, raw, mode: ExecutionMode = ExecutionMode.LIVE):
        """
        Args:
            raw: Raw connection (see dbaccess.raw_connection.RawConnection)
            mode: Execution mode deciding the nesting rules
        """
        self._raw = raw
        self._tx = TransactionTracker(mode)
        self.placeholder = raw.placeholder

    @property
    def mode(self) -> ExecutionMode:
        return self._tx.mode

    @property
    def transaction_depth(self) -> int:
        return self._tx.depth

    @property
    def transaction_state(self) -> TransactionState:
        return self._tx.state

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def _transition(self, event: TransactionEvent) -> int:
        transition = self._tx.plan(event)
        if transition.action is PhysicalAction.BEGIN:
            self._raw.begin()
        elif transition.action is PhysicalAction.COMMIT:
            self._raw.commit()
        elif transition.action is PhysicalAction.ROLLBACK:
            self._raw.rollback()
        depth = self._tx.apply(transition)
        logger.debug(
            f"Transaction {event.value} ({self.mode.value}): depth {depth}"
            + ("" if transition.action else " (logical)")
        )
        return depth

    def begin_transaction(self) -> int:
        """
        Start a transaction, or a logical nested one in DEBUG mode.

        Returns:
            The new transaction depth

        Raises:
            TransactionStateError: If the mode does not allow another level
        """
        return self._transition(TransactionEvent.BEGIN)

    def commit(self) -> int:
        """
        Commit the innermost transaction.

        In LIVE mode this commits on the server. In DEBUG mode only a nested
        level can be committed and nothing reaches the server.

        Raises:
            TransactionStateError: If there is nothing to commit
        """
        return self._transition(TransactionEvent.COMMIT)

    def roll_back(self) -> int:
        """Roll back the innermost transaction. Same rules as commit()."""
        return self._transition(TransactionEvent.ROLLBACK)

    def last_insert_id(self) -> Any:
        try:
            return self._raw.last_insert_id()
        except self._raw.Error as exc:
            logger.error(f"Failed to read last insert id: {exc}", exc_info=True)
            return None

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def prepare(self, query: str) -> PreparedStatement:
        return PreparedStatement(query)

    def query_prepared(self, query, params: Any = ()):
        """
        Execute a statement with bound parameters.

        Args:
            query: SQL text or a PreparedStatement
            params: Sequence of parameters; any other value except None is
                treated as a single parameter. None or an empty sequence runs
                the statement without parameters.

        Returns:
            The result cursor on success, None on failure
        """
        return self._do_query(query, params)

    def _do_query(self, query, params, cursor_factory=None):
        if params is not None and not isinstance(params, (list, tuple)):
            params = [params]
        # No parameters means no placeholder interpolation, so a literal % survives
        return self._execute(query, list(params) if params else None, cursor_factory)

    def _execute(self, query, params: Optional[list], cursor_factory=None):
        if isinstance(query, PreparedStatement):
            query = query.query
        elif not isinstance(query, str):
            raise TypeError(
                f"query must be SQL text or a PreparedStatement, not {type(query).__name__}"
            )
        try:
            return self._raw.execute(query, params, cursor_factory=cursor_factory)
        except self._raw.Error as exc:
            logger.error(f"Query failed: {exc} | SQL: {query[:200]}", exc_info=True)
            return None

    # =========================================================================
    # FETCH
    # =========================================================================

    def fetch_none(self, query, params: Any = None):
        """Run a query and leave fetching to the caller. Returns the cursor or None."""
        return self._do_query(query, params)

    def fetch_one(self, query, params: Any = None) -> Any:
        """First column of the first row, or None on failure / no rows."""
        result = self._do_query(query, params)
        if result is None:
            return None
        with result:
            row = result.fetchone()
        return row[0] if row else None

    def fetch_one_strict(self, query, params: Any = None, error_msg: str = "Query returned no value") -> Any:
        """
        Like fetch_one(), but a failed query or an empty result raises.

        Raises:
            StatementError: With error_msg and a stack snapshot
        """
        result = self._do_query(query, params)
        if result is None:
            self._strict_failure(error_msg, "Execution failed.")
        with result:
            row = result.fetchone()
        if not row:
            self._strict_failure(error_msg, "No rows found.")
        return row[0]

    def _strict_failure(self, error_msg: str, reason: str) -> None:
        stack = "".join(traceback.format_stack()[:-2])
        logger.error(f"{error_msg}: {reason}\nBacktrace:\n{stack}")
        raise StatementError(f"{error_msg}: {reason}\nBacktrace:\n{stack}")

    def fetch_column(self, query, params: Any = None, column_number: int = 0) -> Optional[List[Any]]:
        """One column from every row."""
        result = self._do_query(query, params)
        if result is None:
            return None
        with result:
            return [row[column_number] for row in result.fetchall()]

    def fetch_row(self, query, params: Any = None, as_dict: bool = True):
        """
        First row of the result set.

        Returns:
            Dict keyed by column name (or the raw row when as_dict is False),
            None on failure or when there are no rows
        """
        result = self._do_query(query, params, RealDictCursor if as_dict else None)
        if result is None:
            return None
        with result:
            row = result.fetchone()
        if row is None:
            return None
        return dict(row) if as_dict else row

    def fetch_one_row(self, query, params: Sequence[Any]):
        """Entire first row as a dict. Parameters are required."""
        return self.fetch_row(query, list(params))

    def fetch_all(self, query, params: Any = None, as_dict: bool = True) -> Optional[list]:
        """Every row of the result set."""
        result = self._do_query(query, params, RealDictCursor if as_dict else None)
        if result is None:
            return None
        with result:
            rows = result.fetchall()
        if not as_dict:
            return list(rows)
        return [dict(row) for row in rows]

    def fetch_all_as_dictionary(self, query, params: Any = None, column_number: int = 0) -> Optional[Dict[Any, list]]:
        """
        Group rows by their first column.

        Returns:
            {first column value: [value of column_number among the remaining
            columns, one per row]}
        """
        result = self._do_query(query, params)
        if result is None:
            return None
        grouped: Dict[Any, list] = {}
        with result:
            for row in result.fetchall():
                grouped.setdefault(row[0], []).append(row[1 + column_number])
        return grouped

    # =========================================================================
    # STATEMENT BUILDERS
    # =========================================================================

    def _render_value(self, value: Any, data: list) -> str:
        """Return the SQL for one value, appending its bound parameters to data."""
        if is_expression(value):
            logger.debug(f"Inlining literal SQL fragment: {value.get_expression()}")
            data.extend(value.get_args())
            return value.get_expression()
        data.append(value)
        return self.placeholder

    def build_insert(self, table: str, values: Mapping[str, Any]) -> Tuple[str, list]:
        """Build an INSERT statement and its parameters."""
        if not values:
            raise ValueError("insert requires at least one column")
        data: list = []
        fields = list(values)
        placeholders = [self._render_value(values[f], data) for f in fields]
        sql = "INSERT INTO {} ({}) VALUES ({})".format(
            table,
            ", ".join(fields),
            ", ".join(placeholders),
        )
        return sql, data

    def build_multi_insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> Tuple[str, list]:
        """
        Build a multi-row INSERT statement and its parameters.

        The column list comes from the first row. Every other row must supply
        exactly the same columns; rows listing them in another order are
        re-aligned.

        Raises:
            ValueError: If rows is empty or a row's columns differ
        """
        if not rows:
            raise ValueError("multi_insert requires at least one row")
        fields = list(rows[0])
        if not fields:
            raise ValueError("multi_insert requires at least one column")

        expected = set(fields)
        data: list = []
        tuples = []
        for index, row in enumerate(rows):
            if set(row) != expected:
                missing = sorted(expected - set(row))
                extra = sorted(set(row) - expected)
                raise ValueError(
                    f"Row {index} columns do not match the first row "
                    f"(missing: {missing}, unexpected: {extra})"
                )
            placeholders = [self._render_value(row[f], data) for f in fields]
            tuples.append("({})".format(", ".join(placeholders)))

        sql = "INSERT INTO {} ({}) VALUES {}".format(
            table,
            ", ".join(fields),
            ", ".join(tuples),
        )
        return sql, data

    def build_update(self, table: str, values: Mapping[str, Any], id, id_field: str = "id") -> Tuple[str, list]:
        """Build an UPDATE statement and its parameters."""
        if not values:
            raise ValueError("update requires at least one column")
        data: list = []
        pairs = [f"{field}={self._render_value(value, data)}" for field, value in values.items()]

        if is_expression(id):
            conditional = id.get_expression()
            data.extend(id.get_args())
        else:
            data.append(id)
            conditional = f"{id_field} = {self.placeholder}"

        sql = "UPDATE {} SET {} WHERE {}".format(table, ", ".join(pairs), conditional)
        return sql, data

    def insert(self, table: str, values: Mapping[str, Any], id_field: Optional[str] = "id") -> Any:
        """
        Insert one row.

        Args:
            table: Table name
            values: Column -> value map
            id_field: Column returned as the new row id. None skips RETURNING
                and the row count is returned instead.

        Returns:
            The new row id on success, None on failure
        """
        sql, data = self.build_insert(table, values)
        if id_field:
            sql += f" RETURNING {id_field}"
        result = self.query_prepared(sql, data)
        if result is None:
            return None
        with result:
            if id_field:
                row = result.fetchone()
                return row[0] if row else None
            return result.rowcount

    def multi_insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> Optional[int]:
        """Insert several rows in one statement. Returns the number of rows inserted."""
        sql, data = self.build_multi_insert(table, rows)
        result = self.query_prepared(sql, data)
        if result is None:
            return None
        with result:
            return result.rowcount

    def update(self, table: str, values: Mapping[str, Any], id, id_field: str = "id") -> Optional[int]:
        """
        Update rows matching an id or a Condition.

        Returns:
            Number of rows updated, None on failure
        """
        sql, data = self.build_update(table, values, id, id_field)
        result = self.query_prepared(sql, data)
        if result is None:
            return None
        with result:
            return result.rowcount

    @staticmethod
    def generate_sql_fields(field_spec) -> str:
        """
        Generate an SQL field list.

        Plain entries pass through, ``{name: alias}`` entries become
        ``name AS alias`` and ``(expr, alias)`` tuples become ``expr AS alias``.
        An empty spec gives ``*``.

        Raises:
            ValueError: For a tuple that does not have exactly two items
        """
        if not field_spec:
            return "*"

        items = field_spec.items() if isinstance(field_spec, Mapping) else enumerate(field_spec)
        clauses = []
        for name, alias in items:
            if isinstance(name, int):
                if isinstance(alias, (tuple, list)):
                    if len(alias) != 2:
                        raise ValueError('Invalid "tuple" - must be (only) two items.')
                    clauses.append(f"{alias[0]} AS {alias[1]}")
                else:
                    clauses.append(alias)
            else:
                clauses.append(f"{name} AS {alias}")
        return ", ".join(clauses)

    def close(self) -> None:
        """Close the physical connection. Any open transaction is discarded by the server."""
        try:
            self._raw.close()
        except self._raw.Error as exc:
            logger.warning(f"Error closing connection: {exc}")
