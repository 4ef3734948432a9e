"""
Concrete database drivers.

A driver knows how to open and close raw DB-API connections for one engine
and how to translate that engine's exceptions into the sagadb taxonomy.
Connections are always opened in autocommit mode: transaction boundaries are
issued explicitly (BEGIN / SAVEPOINT / COMMIT) by the TransactionManager so
the same nesting logic works on every engine.

Two drivers ship with the package:

- ``PostgresDriver``: psycopg 3, optionally leasing from a psycopg_pool pool.
- ``SqliteDriver``: the standard library sqlite3 module; ``:memory:`` doubles
  as the in-process test backend.

Any other DB-API driver can be plugged in by implementing the ``Driver``
protocol (for example a MySQL client paired with ``MySQLDialect``).
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any, Optional, Protocol, Sequence, Tuple, Type, runtime_checkable

import psycopg
from psycopg_pool import ConnectionPool

from sagadb.exceptions import (
    ConstraintViolation,
    DatabaseConnectionError,
    DatabaseError,
    StatementError,
)
from sagadb.infrastructure.dialects import Dialect, PostgresDialect, SQLiteDialect
from sagadb.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class Driver(Protocol):
    """
    Boundary between the access layer and a DB-API module.

    Attributes
    ----------
    name : str
        Short engine identifier used in logs and stats.
    dialect : Dialect
        Rendering rules matching the engine.
    error_types : tuple of exception types
        Driver exceptions that ``translate_error`` understands.
    """

    name: str
    dialect: Dialect
    error_types: Tuple[Type[BaseException], ...]

    def connect(self) -> Any:
        """Open a raw DB-API connection in autocommit mode."""
        ...

    def close(self, raw: Any) -> None:
        """Close (or return to its pool) a raw connection."""
        ...

    def translate_error(
        self, exc: BaseException, sql: Optional[str], bindings: Sequence[Any]
    ) -> DatabaseError:
        """Map a driver exception onto the sagadb error taxonomy."""
        ...

    def shutdown(self) -> None:
        """Release driver-wide resources (pools)."""
        ...


_SQLITE_CONSTRAINT_KINDS = (
    ("UNIQUE constraint failed", "unique"),
    ("PRIMARY KEY", "unique"),
    ("FOREIGN KEY constraint failed", "foreign_key"),
    ("NOT NULL constraint failed", "not_null"),
    ("CHECK constraint failed", "check"),
)


class SqliteDriver:
    """
    stdlib sqlite3 driver.

    Parameters
    ----------
    database : str
        File path, or ``":memory:"`` for a private in-memory database.
    timeout : float
        Seconds to wait on a locked database before raising.
    """

    name = "sqlite"
    error_types: Tuple[Type[BaseException], ...] = (sqlite3.Error,)

    def __init__(self, database: str = ":memory:", timeout: float = 5.0) -> None:
        self.database = database
        self.timeout = timeout
        self.dialect = SQLiteDialect()

    def connect(self) -> sqlite3.Connection:
        try:
            raw = sqlite3.connect(
                self.database,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            raw.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(
                f"Could not open sqlite database '{self.database}': {exc}"
            ) from exc
        return raw

    def close(self, raw: Any) -> None:
        raw.close()

    def translate_error(
        self, exc: BaseException, sql: Optional[str], bindings: Sequence[Any]
    ) -> DatabaseError:
        message = str(exc)
        code = getattr(exc, "sqlite_errorname", None)
        if isinstance(exc, sqlite3.IntegrityError):
            kind = next(
                (label for marker, label in _SQLITE_CONSTRAINT_KINDS if marker in message),
                "unknown",
            )
            return ConstraintViolation(
                message, kind=kind, sql=sql, bindings=bindings, driver_code=code
            )
        if isinstance(exc, sqlite3.ProgrammingError) and "closed" in message.lower():
            return DatabaseConnectionError(message)
        if code is None and isinstance(exc, sqlite3.OperationalError) and "locked" in message:
            code = "SQLITE_BUSY"
        return StatementError(message, sql=sql, bindings=bindings, driver_code=code)

    def shutdown(self) -> None:
        """Nothing to release: sqlite connections are closed individually."""


class PostgresDriver:
    """
    psycopg 3 driver with optional connection pooling.

    When ``pool_max_size`` is greater than zero, connections are leased from a
    lazily created ``psycopg_pool.ConnectionPool`` and returned to it on
    ``close``; otherwise each ``connect`` opens a dedicated connection.
    """

    name = "postgres"
    error_types: Tuple[Type[BaseException], ...] = (psycopg.Error,)

    def __init__(
        self,
        dsn: str,
        connect_timeout: int = 10,
        pool_min_size: int = 0,
        pool_max_size: int = 0,
    ) -> None:
        self.dsn = dsn
        self.connect_timeout = connect_timeout
        self.pool_min_size = pool_min_size
        self.pool_max_size = pool_max_size
        self.dialect = PostgresDialect()
        self._pool: Optional[ConnectionPool] = None
        self._lock = threading.Lock()

    def _get_pool(self) -> ConnectionPool:
        with self._lock:
            if self._pool is None:
                self._pool = ConnectionPool(
                    conninfo=self.dsn,
                    min_size=self.pool_min_size,
                    max_size=self.pool_max_size,
                    kwargs={"autocommit": True, "connect_timeout": self.connect_timeout},
                    open=True,
                )
            return self._pool

    def connect(self) -> psycopg.Connection:
        try:
            if self.pool_max_size > 0:
                return self._get_pool().getconn()
            return psycopg.connect(
                self.dsn, autocommit=True, connect_timeout=self.connect_timeout
            )
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise DatabaseConnectionError(f"Could not connect to postgres: {exc}") from exc

    def close(self, raw: Any) -> None:
        if self._pool is not None:
            self._pool.putconn(raw)
        else:
            raw.close()

    def translate_error(
        self, exc: BaseException, sql: Optional[str], bindings: Sequence[Any]
    ) -> DatabaseError:
        sqlstate = getattr(exc, "sqlstate", None)
        message = str(exc).strip()
        if isinstance(exc, psycopg.IntegrityError):
            kind = {
                "23505": "unique",
                "23503": "foreign_key",
                "23502": "not_null",
                "23514": "check",
            }.get(sqlstate or "", "unknown")
            return ConstraintViolation(
                message, kind=kind, sql=sql, bindings=bindings, sqlstate=sqlstate
            )
        if isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError)) and (
            sqlstate is None or sqlstate.startswith("08")
        ):
            return DatabaseConnectionError(message)
        return StatementError(message, sql=sql, bindings=bindings, sqlstate=sqlstate)

    def shutdown(self) -> None:
        with self._lock:
            if self._pool is not None:
                log.debug("[POOL CLOSE] closing postgres pool", extra={"max_size": self.pool_max_size})
                self._pool.close()
                self._pool = None


__all__ = ["Driver", "SqliteDriver", "PostgresDriver"]
