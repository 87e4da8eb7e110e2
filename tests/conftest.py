"""
Shared fixtures for the data access tests.

No database is needed: FakeRawConnection records every statement and returns
queued result sets, and FakeConnector hands out one per connect call.
"""

import time
from collections import deque

import pytest
from psycopg2.extras import RealDictCursor

from dbaccess.connection_cache import ConnectionCache
from dbaccess.credentials import DatabaseCredentials, StaticCredentialsProvider
from dbaccess.db_config import DatabaseSettings, ExecutionMode
from dbaccess.schema_manager import ManagerRegistry
from dbaccess.transactional_handle import TransactionalHandle


class FakeDatabaseError(Exception):
    pass


class FakeCursor:
    def __init__(self, rows=(), columns=(), rowcount=None):
        self._rows = list(rows)
        self._columns = list(columns)
        self.description = [(name, None, None, None, None, None, None) for name in columns]
        self.rowcount = len(self._rows) if rowcount is None else rowcount
        self.closed = False
        self.factory = None

    def as_dict_rows(self):
        """Switch to RealDictCursor-style rows."""
        self._rows = [dict(zip(self._columns, row)) for row in self._rows]
        return self

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FakeRawConnection:
    placeholder = "?"
    Error = FakeDatabaseError

    def __init__(self, credentials=None):
        self.credentials = credentials
        self.executed = []
        self.cursors = []
        self.transaction_calls = []
        self.closed = False
        self.fail_on = None
        self._results = deque()

    def queue_result(self, rows=(), columns=(), rowcount=None):
        self._results.append(FakeCursor(rows, columns, rowcount))

    def execute(self, query, params=None, cursor_factory=None):
        self.executed.append((query, None if params is None else list(params)))
        if self.fail_on and self.fail_on in query:
            raise FakeDatabaseError(f"failed: {query}")
        if self._results and not query.startswith("SET "):
            cursor = self._results.popleft()
        else:
            cursor = FakeCursor(rowcount=0)
        cursor.factory = cursor_factory
        if cursor_factory is RealDictCursor:
            cursor.as_dict_rows()
        self.cursors.append(cursor)
        return cursor

    def statements(self):
        """Executed SQL without the session setup statements."""
        return [(q, p) for q, p in self.executed if not q.startswith("SET ")]

    def begin(self):
        self.transaction_calls.append("BEGIN")

    def commit(self):
        self.transaction_calls.append("COMMIT")

    def rollback(self):
        self.transaction_calls.append("ROLLBACK")

    def last_insert_id(self):
        return 7

    def close(self):
        self.closed = True


class FakeConnector:
    def __init__(self):
        self.opened = []
        self.failures = []
        self.delay = 0

    def __call__(self, credentials, connect_timeout):
        if self.delay:
            time.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        raw = FakeRawConnection(credentials)
        self.opened.append(raw)
        return raw


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def raw():
    return FakeRawConnection()


@pytest.fixture
def handle(raw):
    return TransactionalHandle(raw, ExecutionMode.LIVE)


@pytest.fixture
def debug_handle(raw):
    return TransactionalHandle(raw, ExecutionMode.DEBUG)


@pytest.fixture
def credentials():
    def creds(host):
        return DatabaseCredentials(host=host, database="app", user="app_user", password="secret")

    return StaticCredentialsProvider({
        "LIVE": {
            "APP": {"READ": creds("replica.live"), "WRITE": creds("primary.live")},
            "REPORTS": {"READ": creds("reports.live")},
        },
        "TEST": {
            "APP": {"READ": creds("replica.test"), "WRITE": creds("primary.test")},
        },
    })


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_cache(credentials, connector, clock):
    def _make(mode=ExecutionMode.LIVE, **overrides):
        options = {
            "mode": mode,
            "time_limit": 300,
            "location_aliases": {"DEFAULT": "LIVE"},
        }
        options.update(overrides)
        return ConnectionCache(
            DatabaseSettings(**options),
            credentials,
            connector=connector,
            clock=clock,
            sleep=lambda seconds: None,
        )

    return _make


@pytest.fixture
def cache(make_cache):
    return make_cache()


@pytest.fixture
def debug_cache(make_cache):
    return make_cache(ExecutionMode.DEBUG)


@pytest.fixture
def registry(cache):
    return ManagerRegistry(cache)
