from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import pytest

from sagadb.connection_manager import PRIMARY, ConnectionManager
from sagadb.exceptions import DatabaseConnectionError, DatabaseError, StatementError
from sagadb.infrastructure.dialects import SQLiteDialect

HEALTH_CHECK_INTERVAL = 30.0
IDLE_TIMEOUT = 120.0


class _FakeDriverError(Exception):
    pass


class _FakeCursor:
    description = None
    rowcount = 1
    lastrowid = None

    def __init__(self, connection: "_FakeConnection") -> None:
        self._connection = connection

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        if self._connection.broken:
            raise _FakeDriverError("server closed the connection (gone)")
        if "bad" in sql:
            raise _FakeDriverError("syntax error near bad")
        self._connection.executed.append((sql, params))

    def fetchall(self) -> list:
        return []

    def close(self) -> None:
        pass


class _FakeConnection:
    def __init__(self, number: int) -> None:
        self.number = number
        self.broken = False
        self.closed = False
        self.executed: List[tuple] = []

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)


class _FakeDriver:
    name = "fake"
    error_types = (_FakeDriverError,)

    def __init__(self, failures: int = 0) -> None:
        self.dialect = SQLiteDialect()
        self.failures = failures
        self.connect_calls = 0
        self.connections: List[_FakeConnection] = []
        self.shutdown_calls = 0

    def connect(self) -> _FakeConnection:
        self.connect_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise DatabaseConnectionError("connection refused")
        connection = _FakeConnection(len(self.connections) + 1)
        self.connections.append(connection)
        return connection

    def close(self, raw: _FakeConnection) -> None:
        raw.closed = True

    def translate_error(self, exc: BaseException, sql: Optional[str], bindings: Sequence[Any]) -> DatabaseError:
        if "gone" in str(exc):
            return DatabaseConnectionError(str(exc))
        return StatementError(str(exc), sql=sql, bindings=bindings)

    def shutdown(self) -> None:
        self.shutdown_calls += 1


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def driver() -> _FakeDriver:
    return _FakeDriver()


def make_manager(driver: _FakeDriver, clock: _Clock, **kwargs) -> ConnectionManager:
    options = {
        "health_check_interval": HEALTH_CHECK_INTERVAL,
        "idle_timeout": IDLE_TIMEOUT,
        "max_connections": 3,
        "reconnect_attempts": 3,
        "reconnect_backoff": 0,
        "clock": clock,
    }
    options.update(kwargs)
    return ConnectionManager(driver, **options)


def _pings(connection: _FakeConnection) -> int:
    return sum(1 for sql, _ in connection.executed if sql == "SELECT 1")


def test_primary_is_opened_eagerly(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)

    assert manager.has_connection(PRIMARY)
    stats = manager.get_stats()
    assert stats["active_connections"] == 1
    assert stats["total_created"] == 1
    assert stats["connection_health"] == {PRIMARY: True}


def test_initial_connect_is_retried() -> None:
    driver = _FakeDriver(failures=2)
    make_manager(driver, _Clock())
    assert driver.connect_calls == 3


def test_initial_connect_gives_up_after_attempts() -> None:
    driver = _FakeDriver(failures=5)
    with pytest.raises(DatabaseConnectionError, match="refused"):
        make_manager(driver, _Clock(), reconnect_attempts=2)
    assert driver.connect_calls == 2


def test_health_check_is_throttled(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    raw = driver.connections[0]

    assert manager.is_healthy()
    clock.advance(HEALTH_CHECK_INTERVAL - 1)
    assert manager.is_healthy()
    assert _pings(raw) == 0

    clock.advance(2)
    assert manager.is_healthy()
    assert _pings(raw) == 1
    assert manager.is_healthy()
    assert _pings(raw) == 1


def test_acquire_reconnects_a_dead_connection(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    seen: List[str] = []
    manager.add_reconnect_listener(seen.append)
    driver.connections[0].broken = True
    clock.advance(HEALTH_CHECK_INTERVAL + 1)

    with manager.connection() as managed:
        assert managed.raw is driver.connections[1]

    assert driver.connections[0].closed
    assert seen == [PRIMARY]
    state = manager.connection_state()
    assert state.reconnect_count == 1
    assert state.is_healthy
    assert manager.get_stats()["reconnects"] == 1


def test_reconnect_failure_raises_and_leaves_connection_unhealthy(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock, reconnect_attempts=2)
    driver.failures = 2

    with pytest.raises(DatabaseConnectionError, match="failed after 2 attempt") as excinfo:
        manager.reconnect()

    assert isinstance(excinfo.value.__cause__, DatabaseConnectionError)
    assert excinfo.value.connection_id == PRIMARY
    assert manager.get_stats()["connection_health"][PRIMARY] is False


def test_named_connections_are_bounded(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock, max_connections=2)

    reporting = manager.open_connection("reporting")
    assert manager.open_connection("reporting") is reporting
    with pytest.raises(DatabaseConnectionError, match="limit of 2"):
        manager.open_connection("analytics")


def test_close_connection(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    manager.open_connection("reporting")

    assert manager.close_connection("reporting") is True
    assert manager.close_connection("reporting") is False
    assert not manager.has_connection("reporting")
    with pytest.raises(DatabaseConnectionError, match="primary connection cannot be closed"):
        manager.close_connection(PRIMARY)
    with pytest.raises(DatabaseConnectionError, match="No open connection"):
        manager.acquire("reporting")


def test_cleanup_idle_skips_primary_and_leased(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    manager.open_connection("idle")
    manager.open_connection("busy")
    leased = manager.acquire("busy")
    clock.advance(IDLE_TIMEOUT + 1)

    assert manager.cleanup_idle() == 1
    assert not manager.has_connection("idle")
    assert manager.has_connection("busy")
    assert manager.has_connection(PRIMARY)

    manager.release(leased)
    clock.advance(IDLE_TIMEOUT + 1)
    assert manager.cleanup_idle() == 1
    assert manager.get_stats()["total_closed"] == 2


def test_execute_counts_queries_and_logs(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock, query_log_enabled=True)

    manager.execute("INSERT INTO t (password) VALUES (?)", ["x" * 150])
    manager.execute("SELECT 2")

    log = manager.get_query_log()
    assert [entry["sql"] for entry in log] == ["INSERT INTO t (password) VALUES (?)", "SELECT 2"]
    assert log[0]["bindings"][0].endswith("...")
    assert log[0]["connection"] == PRIMARY
    assert driver.connections[0].executed[-1] == ("SELECT 2", None)
    assert manager.get_stats()["queries_executed"] == 2
    assert manager.connection_state().query_count == 2

    manager.clear_query_log()
    manager.disable_query_log()
    manager.execute("SELECT 3")
    assert manager.get_query_log() == []
    assert not manager.query_log_enabled


def test_execute_translates_driver_errors(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)

    with pytest.raises(StatementError, match="syntax error") as excinfo:
        manager.execute("SELECT bad", [1])
    assert isinstance(excinfo.value.__cause__, _FakeDriverError)
    assert excinfo.value.sql == "SELECT bad"
    assert manager.get_stats()["queries_executed"] == 0


def test_connection_errors_mark_the_connection_unhealthy(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    driver.connections[0].broken = True

    with pytest.raises(DatabaseConnectionError) as excinfo:
        manager.execute("SELECT 1")
    assert excinfo.value.connection_id == PRIMARY
    assert manager.get_stats()["connection_health"][PRIMARY] is False

    # The next lease reconnects instead of reusing the broken connection.
    manager.execute("SELECT 1")
    assert len(driver.connections) == 2


def test_slow_queries_are_logged(driver: _FakeDriver, clock: _Clock, caplog: pytest.LogCaptureFixture) -> None:
    manager = make_manager(driver, clock, slow_query_ms=0)
    with caplog.at_level(logging.WARNING, logger="sagadb.connection_manager"):
        manager.execute("SELECT 1")
    assert any("[SLOW QUERY]" in record.getMessage() for record in caplog.records)


def test_close_all_shuts_driver_down(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    manager.open_connection("reporting")

    manager.close_all()

    assert all(connection.closed for connection in driver.connections)
    assert driver.shutdown_calls == 1
    assert manager.get_stats()["active_connections"] == 0


def test_configuration_and_uptime(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)
    clock.advance(10)
    config = manager.get_configuration()
    assert config["driver"] == "fake"
    assert config["dialect"] == "sqlite"
    assert config["max_connections"] == 3
    stats = manager.get_stats()
    assert stats["uptime_seconds"] == pytest.approx(10)
    assert stats["idle_seconds"] == pytest.approx(10)


def test_leases_are_released_on_every_exit_path(driver: _FakeDriver, clock: _Clock) -> None:
    manager = make_manager(driver, clock)

    assert manager.with_connection(lambda managed: managed.state.leases) == 1
    assert manager.connection_state().leases == 0

    with pytest.raises(RuntimeError):
        manager.with_connection(lambda managed: (_ for _ in ()).throw(RuntimeError("boom")))
    assert manager.connection_state().leases == 0

    with pytest.raises(KeyError):
        with manager.connection() as managed:
            assert managed.state.leases == 1
            raise KeyError("boom")
    assert manager.connection_state().leases == 0
