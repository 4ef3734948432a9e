"""
Typed error taxonomy for the database access layer.

Every public operation either returns a well-typed result or raises exactly
one subclass of :class:`DatabaseError`. Driver exceptions never escape raw:
each driver translates them into this hierarchy (see
``sagadb.infrastructure.drivers``) and chains the original as ``__cause__``.

Hierarchy
---------
DatabaseError
    DatabaseConnectionError   cannot establish a connection, or ping failed
    StatementError            malformed SQL or driver rejection
        ConstraintViolation   duplicate key / foreign key / not null / check
    ValidationError           invalid definition or identifier (never reaches a connection)
    RecordNotFoundError       a query that must return a row returned none
    TransactionStateError     commit/rollback without a transaction, illegal state change
    BatchError                a bulk chunk failed; the whole call was rolled back
    MigrationError            a migration failed to apply or revert
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence, Union

MAX_SQL_LENGTH = 500
MAX_BINDING_LENGTH = 100
SENSITIVE_KEYS = ("password", "passwd", "secret", "token", "api_key", "apikey", "credential")

# Engine codes that indicate a transient conflict worth retrying.
DEADLOCK_SQLSTATES = frozenset({"40001", "40P01"})
DEADLOCK_DRIVER_CODES = frozenset({1213, "SQLITE_BUSY", "SQLITE_LOCKED"})
LOCK_TIMEOUT_DRIVER_CODES = frozenset({1205})
LOCK_TIMEOUT_SQLSTATES = frozenset({"55P03"})

Bindings = Union[Sequence[Any], Mapping[str, Any]]


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(bytes(value))} bytes>"
    if isinstance(value, str) and len(value) > MAX_BINDING_LENGTH:
        return value[:MAX_BINDING_LENGTH] + "..."
    return value


def sanitize_bindings(bindings: Optional[Bindings]) -> Union[list, dict]:
    """
    Make bindings safe to attach to an exception or a log line.

    Long strings are truncated, binary values are summarized by length, and
    mapping entries whose key looks like a credential are redacted.
    """
    if bindings is None:
        return []
    if isinstance(bindings, Mapping):
        cleaned = {}
        for key, value in bindings.items():
            if any(marker in str(key).lower() for marker in SENSITIVE_KEYS):
                cleaned[key] = "[REDACTED]"
            else:
                cleaned[key] = _sanitize_value(value)
        return cleaned
    return [_sanitize_value(value) for value in bindings]


def truncate_sql(sql: Optional[str]) -> Optional[str]:
    if sql is None or len(sql) <= MAX_SQL_LENGTH:
        return sql
    return sql[:MAX_SQL_LENGTH] + "..."


class DatabaseError(Exception):
    """Base class for every error raised by sagadb."""


class DatabaseConnectionError(DatabaseError):
    """A connection could not be established, or a liveness probe failed."""

    def __init__(self, message: str, connection_id: Optional[str] = None):
        self.connection_id = connection_id
        super().__init__(message)


class StatementError(DatabaseError):
    """
    A statement was rejected, either at build time or by the driver.

    Parameters
    ----------
    message : str
        Human readable description.
    sql : str, optional
        The offending statement (truncated for safety).
    bindings : sequence or mapping, optional
        Bound values (sanitized before storing).
    sqlstate : str, optional
        Five character SQLSTATE reported by the engine, when available.
    driver_code : int or str, optional
        Engine specific error code (MySQL errno, SQLite error name, ...).
    """

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        bindings: Optional[Bindings] = None,
        sqlstate: Optional[str] = None,
        driver_code: Optional[Union[int, str]] = None,
    ):
        self.sql = truncate_sql(sql)
        self.bindings = sanitize_bindings(bindings)
        self.sqlstate = sqlstate
        self.driver_code = driver_code
        super().__init__(message)

    @property
    def is_deadlock(self) -> bool:
        return self.sqlstate in DEADLOCK_SQLSTATES or self.driver_code in DEADLOCK_DRIVER_CODES

    @property
    def is_lock_timeout(self) -> bool:
        return (
            self.sqlstate in LOCK_TIMEOUT_SQLSTATES
            or self.driver_code in LOCK_TIMEOUT_DRIVER_CODES
        )

    @property
    def is_retryable(self) -> bool:
        """True for transient conflicts where re-running the transaction may succeed."""
        return self.is_deadlock or self.is_lock_timeout

    def __str__(self) -> str:
        base = super().__str__()
        if self.sql:
            return f"{base} [sql: {self.sql}]"
        return base


class ConstraintViolation(StatementError):
    """
    An integrity constraint rejected the statement.

    ``kind`` is one of ``unique``, ``foreign_key``, ``not_null``, ``check`` or
    ``unknown`` when the driver does not say.
    """

    def __init__(self, message: str, kind: str = "unknown", **kwargs: Any):
        self.kind = kind
        super().__init__(message, **kwargs)

    @property
    def is_duplicate_key(self) -> bool:
        return self.kind == "unique"

    @property
    def is_foreign_key_violation(self) -> bool:
        return self.kind == "foreign_key"


class ValidationError(DatabaseError, ValueError):
    """An invalid definition or identifier, rejected before any SQL is generated."""


class RecordNotFoundError(DatabaseError):
    """A query that must match at least one row matched none."""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        super().__init__(message)


class TransactionStateError(DatabaseError):
    """The requested transaction operation is illegal in the current state."""


class BatchError(DatabaseError):
    """
    A chunk of a bulk operation failed and the whole call was rolled back.

    The driver-level error is available as ``__cause__``.
    """

    def __init__(self, operation: str, table: str, chunk_index: int, chunks_total: int):
        self.operation = operation
        self.table = table
        self.chunk_index = chunk_index
        self.chunks_total = chunks_total
        super().__init__(
            f"{operation} on '{table}' failed at chunk {chunk_index + 1}/{chunks_total}; "
            "all chunks were rolled back"
        )


class MigrationError(DatabaseError):
    """A migration could not be applied or reverted."""

    def __init__(self, message: str, migration: Optional[str] = None):
        self.migration = migration
        super().__init__(message)


__all__ = [
    "DatabaseError",
    "DatabaseConnectionError",
    "StatementError",
    "ConstraintViolation",
    "ValidationError",
    "RecordNotFoundError",
    "TransactionStateError",
    "BatchError",
    "MigrationError",
    "sanitize_bindings",
    "truncate_sql",
]
