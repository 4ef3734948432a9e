"""
Single entry point composing the access layer.

``DatabaseFacade`` wires one ``ConnectionManager`` to the builders and
managers that use it, applying the configured table prefix and batching
limits everywhere:

    with create_database(get_settings()) as db:
        db.schema().create_table("users", [...])
        with db.transaction().atomic():
            user_id = db.table("users").insert({"email": "a@example.com"})
        active = db.table("users").where("active", True).count()
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

from sagadb.batch_executor import BatchExecutor
from sagadb.config import Settings, get_settings
from sagadb.connection_manager import PRIMARY, ConnectionManager
from sagadb.infrastructure.dialects import Dialect
from sagadb.infrastructure.drivers import Driver
from sagadb.migrations import MigrationRunner
from sagadb.query_builder import QueryBuilder
from sagadb.result_set import ResultSet
from sagadb.schema_manager import SchemaManager
from sagadb.transaction_manager import TransactionManager
from sagadb.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class _ConnectionExecutor:
    """Binds builder execution to one named connection."""

    def __init__(self, connections: ConnectionManager, connection_id: str) -> None:
        self._connections = connections
        self._connection_id = connection_id

    def execute(self, sql: str, bindings: Sequence[Any] = ()) -> ResultSet:
        return self._connections.execute(sql, bindings, self._connection_id)


class DatabaseFacade:
    """
    Composition root of the access layer.

    Parameters
    ----------
    driver : Driver
        Engine adapter; the facade's dialect is the driver's.
    settings : Settings, optional
        Lifecycle, batching and naming configuration. Defaults to ``get_settings()``.
    clock : callable
        Monotonic time source handed to the connection manager.
    """

    def __init__(
        self,
        driver: Driver,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._connections = ConnectionManager(
            driver,
            health_check_interval=self.settings.health_check_interval,
            idle_timeout=self.settings.idle_timeout,
            max_connections=self.settings.max_connections,
            reconnect_attempts=self.settings.reconnect_attempts,
            reconnect_backoff=self.settings.reconnect_backoff,
            slow_query_ms=self.settings.slow_query_ms,
            query_log_enabled=self.settings.query_log_enabled,
            clock=clock,
        )
        self._transactions: Dict[str, TransactionManager] = {}
        self._schema = SchemaManager(
            self._connections,
            transactions=self.transaction(),
            table_prefix=self.settings.table_prefix,
        )
        self._batch = BatchExecutor(
            self._connections,
            self.transaction(),
            self.table,
            default_batch_size=self.settings.default_batch_size,
            max_batch_size=self.settings.max_batch_size,
            max_query_bytes=self.settings.max_query_bytes,
        )
        self._migrations: Optional[MigrationRunner] = None
        log.debug(
            "[DB READY] facade initialized",
            extra={"driver": driver.name, "table_prefix": self.settings.table_prefix},
        )

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def dialect(self) -> Dialect:
        return self._connections.dialect

    @property
    def table_prefix(self) -> str:
        return self.settings.table_prefix

    # -- builders and managers --------------------------------------------------------

    def query(self, table: Optional[str] = None, connection_id: str = PRIMARY) -> QueryBuilder:
        executor = (
            self._connections
            if connection_id == PRIMARY
            else _ConnectionExecutor(self._connections, connection_id)
        )
        builder = QueryBuilder(self.dialect, executor, self.table_prefix)
        return builder.from_(table) if table else builder

    def table(self, name: str) -> QueryBuilder:
        return self.query(name)

    def transaction(self, connection_id: str = PRIMARY) -> TransactionManager:
        """The transaction manager of ``connection_id``, opening that connection if needed."""
        manager = self._transactions.get(connection_id)
        if manager is None:
            if connection_id != PRIMARY:
                self._connections.open_connection(connection_id)
            manager = TransactionManager(self._connections, connection_id)
            self._transactions[connection_id] = manager
        return manager

    def schema(self) -> SchemaManager:
        return self._schema

    def batch(self) -> BatchExecutor:
        return self._batch

    def migrations(self) -> MigrationRunner:
        if self._migrations is None:
            self._migrations = MigrationRunner(self)
        return self._migrations

    # -- raw access -------------------------------------------------------------------

    def select(self, sql: str, bindings: Sequence[Any] = ()) -> ResultSet:
        """Run a read statement written by the caller. Values must go through ``bindings``."""
        return self._connections.execute(sql, bindings)

    def statement(self, sql: str, bindings: Sequence[Any] = ()) -> int:
        """Run a write statement written by the caller and return the affected-row count."""
        return self._connections.execute(sql, bindings).affected_rows

    def transactional(self, fn: Callable[[], T]) -> T:
        return self.transaction().transactional(fn)

    def get_table_name(self, name: str) -> str:
        return self._schema.get_table_name(name)

    def debug_info(self) -> Dict[str, Any]:
        return {
            "driver": self._connections.driver.name,
            "dialect": self.dialect.name,
            "table_prefix": self.table_prefix,
            "configuration": self._connections.get_configuration(),
            "connections": self._connections.get_stats(),
            "transaction_levels": {
                connection_id: manager.level for connection_id, manager in self._transactions.items()
            },
            "batch": self._batch.get_stats(),
        }

    # -- lifecycle --------------------------------------------------------------------

    def close(self) -> None:
        self._connections.close_all()

    def __enter__(self) -> "DatabaseFacade":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["DatabaseFacade"]
