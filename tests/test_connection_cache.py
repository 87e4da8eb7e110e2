"""
Unit Tests for ConnectionCache

Uses a fake connector and clock, so expiry can be tested without waiting.
"""

import threading
import time

import psycopg2
import pytest

from dbaccess.connection_cache import ConnectionCache, make_cache_key
from dbaccess.db_config import AccessMode, ExecutionMode
from dbaccess.credentials import StaticCredentialsProvider
from dbaccess.errors import ConfigurationError, ConnectionFailedError
from dbaccess.transactional_handle import TransactionalHandle
from dbaccess.transactions import TransactionState


class TestCacheKey:

    def test_plain_key(self):
        assert make_cache_key("LIVE", "APP", AccessMode.READ) == "LIVE_APP_READ"

    def test_discriminator_is_appended(self):
        assert make_cache_key("LIVE", "APP", AccessMode.READ, "batch") == "LIVE_APP_READ_batch"


class TestReuse:

    def test_same_handle_within_time_limit(self, cache, connector, clock):
        first = cache.get_connection("LIVE", "APP", "READ")
        clock.advance(299)
        second = cache.get_connection("LIVE", "APP", "READ")

        assert first is second
        assert isinstance(first, TransactionalHandle)
        assert len(connector.opened) == 1

    def test_new_handle_after_time_limit(self, cache, connector, clock):
        first = cache.get_connection("LIVE", "APP", "READ")
        clock.advance(300)
        second = cache.get_connection("LIVE", "APP", "READ")

        assert first is not second
        assert len(connector.opened) == 2
        # the expired connection is dropped, not closed
        assert connector.opened[0].closed is False

    def test_time_limit_is_configurable(self, make_cache, clock):
        cache = make_cache(time_limit=10)
        first = cache.get_connection("LIVE", "APP", "WRITE")
        clock.advance(11)

        assert cache.get_connection("LIVE", "APP", "WRITE") is not first

    def test_read_and_write_are_separate(self, cache, connector):
        read = cache.get_connection("LIVE", "APP", "READ")
        write = cache.get_connection("LIVE", "APP", "WRITE")

        assert read is not write
        assert [raw.credentials.host for raw in connector.opened] == ["replica.live", "primary.live"]

    def test_discriminator_never_collides(self, cache):
        plain = cache.get_connection("LIVE", "APP", "READ")
        custom = cache.get_connection("LIVE", "APP", "READ", discriminator="export")

        assert plain is not custom
        assert cache.get_connection("LIVE", "APP", "READ", discriminator="export") is custom

    def test_alias_is_resolved(self, cache, connector):
        via_alias = cache.get_connection("DEFAULT", "APP", "READ")

        assert cache.get_connection("LIVE", "APP", "READ") is via_alias
        assert connector.opened[0].credentials.host == "replica.live"

    def test_labels_are_case_insensitive(self, cache):
        assert cache.get_connection("live", "app", "read") is cache.get_connection("LIVE", "APP", "READ")


class TestSessionSetup:

    def test_time_zone_and_encoding_set(self, cache, connector):
        cache.get_connection("LIVE", "APP", "WRITE")

        assert connector.opened[0].executed == [
            ("SET TIME ZONE ?", ["America/Los_Angeles"]),
            ("SET client_encoding TO ?", ["UTF8"]),
        ]

    def test_statement_timeout(self, make_cache, connector):
        cache = make_cache(statement_timeout_ms=5000)
        cache.get_connection("LIVE", "APP", "WRITE")

        assert ("SET statement_timeout TO ?", [5000]) in connector.opened[0].executed

    def test_setup_cursors_are_closed(self, cache, connector):
        cache.get_connection("LIVE", "APP", "WRITE")

        assert all(cursor.closed for cursor in connector.opened[0].cursors)

    def test_failed_session_setup(self, cache, connector):
        open_raw = connector.__call__

        def failing_connector(credentials, timeout):
            raw = open_raw(credentials, timeout)
            raw.fail_on = "TIME ZONE"
            return raw

        cache._connector = failing_connector

        with pytest.raises(ConnectionFailedError):
            cache.get_connection("LIVE", "APP", "WRITE")
        assert connector.opened[0].closed is True


class TestConfigurationErrors:

    def test_empty_credentials(self, make_cache, connector, clock):
        cache = ConnectionCache(make_cache().settings, StaticCredentialsProvider({}), connector=connector, clock=clock)

        with pytest.raises(ConfigurationError, match="No database credentials"):
            cache.get_connection("LIVE", "APP", "READ")

    def test_unknown_location(self, cache):
        with pytest.raises(ConfigurationError, match="STAGING: APP -> READ"):
            cache.get_connection("STAGING", "APP", "READ")

    def test_unknown_schema(self, cache):
        with pytest.raises(ConfigurationError):
            cache.get_connection("LIVE", "BILLING", "READ")

    def test_missing_mode_credentials(self, cache):
        with pytest.raises(ConfigurationError, match="REPORTS -> WRITE"):
            cache.get_connection("LIVE", "REPORTS", "WRITE")

    def test_invalid_access_mode(self, cache, connector):
        with pytest.raises(ConfigurationError):
            cache.get_connection("LIVE", "APP", "ADMIN")
        assert connector.opened == []


class TestRetries:

    def test_retries_operational_errors(self, cache, connector):
        connector.failures = [psycopg2.OperationalError("timeout"), psycopg2.OperationalError("timeout")]

        handle = cache.get_connection("LIVE", "APP", "READ")

        assert handle is not None
        assert len(connector.opened) == 1

    def test_gives_up_after_max_retries(self, make_cache, connector):
        cache = make_cache(max_retries=2)
        connector.failures = [psycopg2.OperationalError("down")] * 2

        with pytest.raises(ConnectionFailedError, match="down"):
            cache.get_connection("LIVE", "APP", "READ")

    def test_backoff_delays(self, make_cache, connector):
        cache = make_cache(max_retries=3, retry_delay_base=2.0)
        delays = []
        cache._sleep = delays.append
        connector.failures = [psycopg2.OperationalError("down")] * 2

        cache.get_connection("LIVE", "APP", "READ")

        assert delays == [2.0, 4.0]


class TestForget:

    def test_forget_connection(self, cache):
        first = cache.get_connection("LIVE", "APP", "WRITE")
        cache.forget_connection("APP", "LIVE", "WRITE")

        assert cache.get_connection("LIVE", "APP", "WRITE") is not first

    def test_forget_resolves_alias(self, cache):
        first = cache.get_connection("LIVE", "APP", "WRITE")
        cache.forget_connection("APP")

        assert cache.get_connection("LIVE", "APP", "WRITE") is not first

    def test_forget_requires_matching_discriminator(self, cache):
        custom = cache.get_connection("LIVE", "APP", "WRITE", discriminator="export")
        cache.forget_connection("APP", "LIVE", "WRITE")

        assert cache.get_connection("LIVE", "APP", "WRITE", discriminator="export") is custom

        cache.forget_connection("APP", "LIVE", "WRITE", discriminator="export")
        assert cache.get_connection("LIVE", "APP", "WRITE", discriminator="export") is not custom

    def test_forget_missing_is_noop(self, cache):
        cache.forget_connection("APP", "TEST", "READ")

    def test_forget_all_builds_fresh_handles(self, cache):
        before = [cache.get_connection("LIVE", "APP", mode) for mode in ("READ", "WRITE")]
        cache.forget_all_connections()
        after = [cache.get_connection("LIVE", "APP", mode) for mode in ("READ", "WRITE")]

        assert all(a is not b for a, b in zip(before, after))


class TestDebugKeySpace:

    def test_debug_handles_use_debug_mode(self, debug_cache):
        handle = debug_cache.get_connection("LIVE", "APP", "WRITE")

        assert handle.mode is ExecutionMode.DEBUG
        assert debug_cache.get_cache_stats()["debug_connections"] == 1
        assert debug_cache.get_cache_stats()["live_connections"] == 0

    def test_forget_all_keeps_debug_connections(self, debug_cache):
        handle = debug_cache.get_connection("LIVE", "APP", "WRITE")
        debug_cache.forget_all_connections()
        debug_cache.forget_connection("APP", "LIVE", "WRITE")

        assert debug_cache.get_connection("LIVE", "APP", "WRITE") is handle


def test_close_all(cache, connector):
    cache.get_connection("LIVE", "APP", "READ")
    cache.get_connection("LIVE", "APP", "WRITE")

    cache.close_all()

    assert all(raw.closed for raw in connector.opened)
    assert cache.get_cache_stats()["live_connections"] == 0


class TestDebugOuterTransaction:

    def test_new_handle_starts_in_outer_transaction(self, debug_cache, connector):
        handle = debug_cache.get_connection("LIVE", "APP", "WRITE")

        assert handle.transaction_state is TransactionState.OPEN
        assert connector.opened[0].transaction_calls == ["BEGIN"]

    def test_replacement_after_expiry_starts_in_outer_transaction(self, debug_cache, connector, clock):
        first = debug_cache.get_connection("LIVE", "APP", "WRITE")
        clock.advance(301)

        second = debug_cache.get_connection("LIVE", "APP", "WRITE")

        assert second is not first
        assert second.transaction_state is TransactionState.OPEN
        assert connector.opened[1].transaction_calls == ["BEGIN"]

    def test_live_handles_start_without_transaction(self, cache, connector):
        handle = cache.get_connection("LIVE", "APP", "WRITE")

        assert handle.transaction_state is TransactionState.NONE
        assert connector.opened[0].transaction_calls == []


class TestConcurrency:

    def test_one_connection_per_key_under_contention(self, cache, connector):
        connector.delay = 0.1
        handles = []

        def worker():
            handles.append(cache.get_connection("LIVE", "APP", "WRITE"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(connector.opened) == 1
        assert len(handles) == 8
        assert all(handle is handles[0] for handle in handles)

    def test_slow_connect_does_not_block_other_keys(self, cache, connector):
        cache.get_connection("LIVE", "APP", "READ")
        connecting = threading.Event()

        def slow_connector(credentials, timeout):
            connecting.set()
            time.sleep(0.5)
            return connector(credentials, timeout)

        cache._connector = slow_connector
        writer = threading.Thread(target=cache.get_connection, args=("LIVE", "APP", "WRITE"))
        writer.start()
        assert connecting.wait(1)

        started = time.monotonic()
        cache.get_connection("LIVE", "APP", "READ")
        elapsed = time.monotonic() - started
        writer.join()

        assert elapsed < 0.2
        assert len(connector.opened) == 2
