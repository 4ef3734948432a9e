"""
Connection lifecycle management.

``ConnectionManager`` owns a small registry of named connections opened
through a ``Driver``. The ``"primary"`` connection is opened at construction
and lives until ``close_all``; additional named connections are opened on
demand (bounded by ``max_connections``) and reclaimed by ``cleanup_idle``.

Every lease goes through a throttled health check: a connection that fails
its ping is reconnected (with tenacity backoff) before it is handed out.
``execute`` is the single choke point where SQL reaches a driver, so query
counting, slow-query warnings, the optional query log and driver error
translation all happen there.
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Generator,
    List,
    Optional,
    Sequence,
    TypedDict,
    TypeVar,
)

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sagadb.exceptions import DatabaseConnectionError, sanitize_bindings, truncate_sql
from sagadb.infrastructure.dialects import Dialect
from sagadb.infrastructure.drivers import Driver
from sagadb.result_set import ResultSet
from sagadb.utils.logging import get_logger

log = get_logger(__name__)

PRIMARY = "primary"
T = TypeVar("T")


@dataclass
class ConnectionState:
    """Bookkeeping for one named connection. Times come from the manager's clock."""

    id: str
    created_at: float
    is_healthy: bool = True
    reconnect_count: int = 0
    query_count: int = 0
    last_activity: float = 0.0
    last_health_check: float = 0.0
    leases: int = 0
    # Set when the connection was replaced under an open transaction.
    transaction_lost: bool = False


@dataclass
class ManagedConnection:
    state: ConnectionState
    raw: Any

    @property
    def id(self) -> str:
        return self.state.id


class ConnectionStats(TypedDict):
    active_connections: int
    total_created: int
    total_closed: int
    queries_executed: int
    reconnects: int
    connection_health: Dict[str, bool]
    uptime_seconds: float
    idle_seconds: float


class QueryLogEntry(TypedDict):
    sql: str
    bindings: Any
    duration_ms: float
    connection: str


class ConnectionManager:
    """
    Registry of health-checked, named connections.

    Parameters
    ----------
    driver : Driver
        Opens, closes and translates errors for raw DB-API connections.
    health_check_interval : float
        Minimum seconds between two pings of the same connection.
    idle_timeout : float
        Seconds without activity after which a non-primary, unleased
        connection is closed by ``cleanup_idle``.
    max_connections : int
        Upper bound on simultaneously open connections, primary included.
    reconnect_attempts : int
        Connection attempts per open/reconnect before giving up.
    reconnect_backoff : float
        Multiplier for the exponential wait between attempts (0 disables waiting).
    slow_query_ms : float
        Statements slower than this are logged as ``[SLOW QUERY]`` warnings.
    query_log_enabled : bool
        Start with the in-memory query log switched on.
    clock : callable
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        driver: Driver,
        *,
        health_check_interval: float = 60.0,
        idle_timeout: float = 300.0,
        max_connections: int = 10,
        reconnect_attempts: int = 3,
        reconnect_backoff: float = 1.0,
        slow_query_ms: float = 50.0,
        query_log_enabled: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._driver = driver
        self.health_check_interval = health_check_interval
        self.idle_timeout = idle_timeout
        self.max_connections = max(1, max_connections)
        self.reconnect_attempts = max(1, reconnect_attempts)
        self.reconnect_backoff = reconnect_backoff
        self.slow_query_ms = slow_query_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._connections: Dict[str, ManagedConnection] = {}
        self._reconnect_listeners: List[Callable[[str], None]] = []
        self._query_log: List[QueryLogEntry] = []
        self._query_log_enabled = query_log_enabled
        self._started_at = clock()
        self._last_activity = self._started_at
        self._total_created = 0
        self._total_closed = 0
        self._queries_executed = 0
        self._reconnects = 0
        self._open(PRIMARY)

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def dialect(self) -> Dialect:
        return self._driver.dialect

    # -- opening / closing ------------------------------------------------------------

    def _connect_with_retry(self) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.reconnect_attempts),
            wait=wait_exponential(multiplier=self.reconnect_backoff, max=30),
            retry=retry_if_exception_type(DatabaseConnectionError),
            reraise=True,
        )
        return retrying(self._driver.connect)

    def _open(self, connection_id: str) -> ManagedConnection:
        raw = self._connect_with_retry()
        now = self._clock()
        state = ConnectionState(
            id=connection_id, created_at=now, last_activity=now, last_health_check=now
        )
        managed = ManagedConnection(state=state, raw=raw)
        with self._lock:
            self._connections[connection_id] = managed
            self._total_created += 1
        log.debug(
            "[CONN OPEN] connection opened",
            extra={"connection": connection_id, "driver": self._driver.name},
        )
        return managed

    def _close(self, managed: ManagedConnection) -> None:
        try:
            self._driver.close(managed.raw)
        except self._driver.error_types as exc:
            log.warning(
                "[CONN CLOSE] driver failed to close connection",
                extra={"connection": managed.id, "error": str(exc)},
            )
        with self._lock:
            self._total_closed += 1
        log.debug("[CONN CLOSE] connection closed", extra={"connection": managed.id})

    def _get(self, connection_id: str) -> ManagedConnection:
        with self._lock:
            managed = self._connections.get(connection_id)
        if managed is None:
            raise DatabaseConnectionError(
                f"No open connection named '{connection_id}'", connection_id=connection_id
            )
        return managed

    def has_connection(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._connections

    def open_connection(self, connection_id: str) -> ManagedConnection:
        """Open a named connection, or return it if it is already open."""
        with self._lock:
            existing = self._connections.get(connection_id)
            if existing is not None:
                return existing
            if len(self._connections) >= self.max_connections:
                raise DatabaseConnectionError(
                    f"Connection limit of {self.max_connections} reached",
                    connection_id=connection_id,
                )
        return self._open(connection_id)

    def close_connection(self, connection_id: str) -> bool:
        """
        Close a non-primary connection.

        Idempotent: closing a name that is not open returns False. The primary
        connection can only be closed through ``close_all``.
        """
        if connection_id == PRIMARY:
            raise DatabaseConnectionError(
                "The primary connection cannot be closed individually", connection_id=PRIMARY
            )
        with self._lock:
            managed = self._connections.pop(connection_id, None)
        if managed is None:
            return False
        self._close(managed)
        return True

    def close_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for managed in connections:
            self._close(managed)
        self._driver.shutdown()
        log.info("[CONN CLOSE ALL] all connections closed", extra={"closed": len(connections)})

    # -- leasing ----------------------------------------------------------------------

    def _touch(self, managed: ManagedConnection) -> None:
        now = self._clock()
        managed.state.last_activity = now
        self._last_activity = now

    def acquire(self, connection_id: str = PRIMARY) -> ManagedConnection:
        """Lease a connection, reconnecting first if its health check fails."""
        managed = self._get(connection_id)
        if not self.is_healthy(connection_id):
            managed = self.reconnect(connection_id)
        with self._lock:
            managed.state.leases += 1
        self._touch(managed)
        return managed

    def release(self, managed: ManagedConnection) -> None:
        with self._lock:
            managed.state.leases = max(0, managed.state.leases - 1)
        self._touch(managed)

    def with_connection(
        self, fn: Callable[[ManagedConnection], T], connection_id: str = PRIMARY
    ) -> T:
        managed = self.acquire(connection_id)
        try:
            return fn(managed)
        finally:
            self.release(managed)

    @contextlib.contextmanager
    def connection(self, connection_id: str = PRIMARY) -> Generator[ManagedConnection, None, None]:
        managed = self.acquire(connection_id)
        try:
            yield managed
        finally:
            self.release(managed)

    # -- health -----------------------------------------------------------------------

    def ping(self, connection_id: str = PRIMARY) -> bool:
        """Run the dialect's liveness probe and record the outcome."""
        managed = self._get(connection_id)
        try:
            cursor = managed.raw.cursor()
            try:
                cursor.execute(self.dialect.ping_sql)
                cursor.fetchall()
            finally:
                cursor.close()
            healthy = True
        except self._driver.error_types as exc:
            log.warning(
                "[PING FAILED] liveness probe failed",
                extra={"connection": connection_id, "error": str(exc)},
            )
            healthy = False
        managed.state.is_healthy = healthy
        managed.state.last_health_check = self._clock()
        return healthy

    def is_healthy(self, connection_id: str = PRIMARY) -> bool:
        """Cached health, re-pinged only once ``health_check_interval`` has elapsed."""
        managed = self._get(connection_id)
        elapsed = self._clock() - managed.state.last_health_check
        if managed.state.is_healthy and elapsed < self.health_check_interval:
            return True
        return self.ping(connection_id)

    def reconnect(self, connection_id: str = PRIMARY) -> ManagedConnection:
        """
        Replace the raw connection behind ``connection_id``.

        Raises
        ------
        DatabaseConnectionError
            If every attempt failed; the connection stays registered but unhealthy.
        """
        managed = self._get(connection_id)
        try:
            self._driver.close(managed.raw)
        except self._driver.error_types as exc:
            log.debug(
                "[RECONNECT] discarding broken connection failed",
                extra={"connection": connection_id, "error": str(exc)},
            )
        try:
            raw = self._connect_with_retry()
        except DatabaseConnectionError as exc:
            managed.state.is_healthy = False
            log.error(
                "[RECONNECT FAILED] giving up",
                extra={"connection": connection_id, "attempts": self.reconnect_attempts},
            )
            raise DatabaseConnectionError(
                f"Reconnecting '{connection_id}' failed after {self.reconnect_attempts} attempt(s)",
                connection_id=connection_id,
            ) from exc
        now = self._clock()
        managed.raw = raw
        managed.state.is_healthy = True
        managed.state.last_health_check = now
        managed.state.last_activity = now
        managed.state.reconnect_count += 1
        with self._lock:
            self._reconnects += 1
            listeners = list(self._reconnect_listeners)
        log.info(
            "[RECONNECT] connection re-established",
            extra={"connection": connection_id, "reconnect_count": managed.state.reconnect_count},
        )
        for listener in listeners:
            listener(connection_id)
        return managed

    def add_reconnect_listener(self, listener: Callable[[str], None]) -> None:
        """Register ``listener(connection_id)``, called after every successful reconnect."""
        with self._lock:
            self._reconnect_listeners.append(listener)

    def mark_transaction_lost(self, connection_id: str, lost: bool = True) -> None:
        """
        Block (or unblock) statements on a connection whose open transaction
        disappeared with the connection it was started on.
        """
        with self._lock:
            managed = self._connections.get(connection_id)
            if managed is not None:
                managed.state.transaction_lost = lost

    def cleanup_idle(self) -> int:
        """Close idle, unleased non-primary connections. Returns how many were closed."""
        now = self._clock()
        with self._lock:
            idle = [
                managed
                for connection_id, managed in self._connections.items()
                if connection_id != PRIMARY
                and managed.state.leases == 0
                and now - managed.state.last_activity > self.idle_timeout
            ]
            for managed in idle:
                del self._connections[managed.id]
        for managed in idle:
            self._close(managed)
        if idle:
            log.info("[CONN CLEANUP] closed idle connections", extra={"closed": len(idle)})
        return len(idle)

    # -- execution --------------------------------------------------------------------

    def record_query(self, connection_id: str = PRIMARY) -> None:
        managed = self._get(connection_id)
        with self._lock:
            managed.state.query_count += 1
            self._queries_executed += 1
        self._touch(managed)

    def execute(
        self, sql: str, bindings: Sequence[Any] = (), connection_id: str = PRIMARY
    ) -> ResultSet:
        """
        Run one statement and materialize its result.

        Driver exceptions are translated into the sagadb taxonomy and chained.
        A connection-level failure marks the connection unhealthy so the next
        lease reconnects it.

        Raises
        ------
        DatabaseConnectionError
            If the connection was replaced while a transaction was open and
            that transaction has not been rolled back yet.
        """
        params = tuple(bindings)
        managed = self.acquire(connection_id)
        started = time.perf_counter()
        try:
            if managed.state.transaction_lost:
                raise DatabaseConnectionError(
                    f"Connection '{connection_id}' was replaced while a transaction was open; "
                    "roll back before running further statements",
                    connection_id=connection_id,
                )
            cursor = managed.raw.cursor()
            try:
                if params:
                    cursor.execute(sql, params)
                else:
                    cursor.execute(sql)
                result = ResultSet.from_cursor(cursor)
            finally:
                cursor.close()
        except self._driver.error_types as exc:
            error = self._driver.translate_error(exc, sql, params)
            if isinstance(error, DatabaseConnectionError):
                managed.state.is_healthy = False
                error.connection_id = connection_id
            log.debug(
                "[QUERY FAILED] statement rejected",
                extra={"connection": connection_id, "sql": truncate_sql(sql), "error": str(exc)},
            )
            raise error from exc
        finally:
            self.release(managed)

        duration_ms = (time.perf_counter() - started) * 1000.0
        self.record_query(connection_id)
        if duration_ms >= self.slow_query_ms:
            log.warning(
                "[SLOW QUERY] %.1f ms",
                duration_ms,
                extra={"connection": connection_id, "sql": truncate_sql(sql)},
            )
        if self._query_log_enabled:
            entry: QueryLogEntry = {
                "sql": sql,
                "bindings": sanitize_bindings(params),
                "duration_ms": duration_ms,
                "connection": connection_id,
            }
            with self._lock:
                self._query_log.append(entry)
        return result

    # -- query log --------------------------------------------------------------------

    def enable_query_log(self) -> None:
        self._query_log_enabled = True

    def disable_query_log(self) -> None:
        self._query_log_enabled = False

    @property
    def query_log_enabled(self) -> bool:
        return self._query_log_enabled

    def get_query_log(self) -> List[QueryLogEntry]:
        with self._lock:
            return list(self._query_log)

    def clear_query_log(self) -> None:
        with self._lock:
            self._query_log.clear()

    # -- reporting --------------------------------------------------------------------

    def get_stats(self) -> ConnectionStats:
        now = self._clock()
        with self._lock:
            return {
                "active_connections": len(self._connections),
                "total_created": self._total_created,
                "total_closed": self._total_closed,
                "queries_executed": self._queries_executed,
                "reconnects": self._reconnects,
                "connection_health": {
                    connection_id: managed.state.is_healthy
                    for connection_id, managed in self._connections.items()
                },
                "uptime_seconds": now - self._started_at,
                "idle_seconds": now - self._last_activity,
            }

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "driver": self._driver.name,
            "dialect": self.dialect.name,
            "health_check_interval": self.health_check_interval,
            "idle_timeout": self.idle_timeout,
            "max_connections": self.max_connections,
            "reconnect_attempts": self.reconnect_attempts,
            "reconnect_backoff": self.reconnect_backoff,
            "slow_query_ms": self.slow_query_ms,
            "query_log_enabled": self._query_log_enabled,
        }

    def connection_state(self, connection_id: str = PRIMARY) -> ConnectionState:
        return self._get(connection_id).state


__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStats",
    "ManagedConnection",
    "PRIMARY",
    "QueryLogEntry",
]
