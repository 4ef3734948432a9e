"""
Chunked bulk writes and paged reads.

Every bulk write follows the same shape:

1. normalize the input rows and split them into chunks bounded both by the
   row count (``batch_size``, clamped to ``max_batch_size``), by an
   estimated serialized-SQL byte budget (``max_query_bytes``) and by the
   engine's bound-parameter limit;
2. compile one statement per chunk (bad identifiers fail here, before any
   transaction is opened);
3. run the statements sequentially inside ``TransactionManager.atomic()``.

A failing chunk rolls back every chunk of the same call and surfaces as a
``BatchError`` chained to the driver error. Inside an outer transaction the
call becomes a savepoint, so only its own work is undone. Statistics are
updated only once the call's transaction has committed.
"""

from __future__ import annotations

from typing import (
    Any,
    Callable,
    Dict,
    Generator,
    Hashable,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypedDict,
    TypeVar,
    Union,
)

from sagadb.connection_manager import ConnectionManager
from sagadb.exceptions import BatchError, DatabaseError, StatementError
from sagadb.query_builder import CompiledStatement, QueryBuilder
from sagadb.result_set import Row
from sagadb.transaction_manager import TransactionManager
from sagadb.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_BATCH_SIZE = 500
MAX_BATCH_SIZE = 1000
MAX_QUERY_BYTES = 1_048_576

T = TypeVar("T")
RowInput = Union[Sequence[Any], Mapping[str, Any]]


class BatchStats(TypedDict):
    inserts: int
    upserts: int
    updates: int
    deletes: int
    batches_executed: int


def _empty_stats() -> BatchStats:
    return {"inserts": 0, "upserts": 0, "updates": 0, "deletes": 0, "batches_executed": 0}


def _value_bytes(value: Any) -> int:
    if value is None:
        return 4
    if isinstance(value, (bytes, bytearray, memoryview)):
        return len(bytes(value))
    return len(str(value).encode("utf-8")) + 2


def estimate_row_bytes(row: Iterable[Any]) -> int:
    """Rough size of one row once rendered as ``(v1, v2, ...)`` in a VALUES list."""
    values = list(row)
    return sum(_value_bytes(value) for value in values) + 2 * len(values) + 2


class BatchExecutor:
    """
    Bulk insert/upsert/update/delete plus streaming reads.

    Parameters
    ----------
    connections : ConnectionManager
        Executes the compiled statements.
    transactions : TransactionManager
        Wraps each bulk call so it is all-or-nothing.
    query_factory : callable
        ``query_factory(table)`` returns a ``QueryBuilder`` targeting ``table``
        (with the facade's table prefix applied).
    max_parameters : int, optional
        Bound-parameter ceiling per statement; defaults to the dialect's.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        transactions: TransactionManager,
        query_factory: Callable[[str], QueryBuilder],
        *,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        max_query_bytes: int = MAX_QUERY_BYTES,
        max_parameters: Optional[int] = None,
    ) -> None:
        self._connections = connections
        self._transactions = transactions
        self._query_factory = query_factory
        self.max_batch_size = max(1, max_batch_size)
        self.default_batch_size = max(1, min(default_batch_size, self.max_batch_size))
        self.max_query_bytes = max(1, max_query_bytes)
        self.max_parameters = max(1, max_parameters or connections.dialect.max_parameters)
        self._stats = _empty_stats()

    # -- sizing -----------------------------------------------------------------------

    def _clamp(self, batch_size: Optional[int]) -> int:
        if batch_size is None:
            return self.default_batch_size
        return max(1, min(self.max_batch_size, batch_size))

    def calculate_optimal_batch_size(self, sample_row: RowInput) -> int:
        """Largest row count whose estimated SQL fits the byte budget twice over, capped at ``max_batch_size``."""
        values = sample_row.values() if isinstance(sample_row, Mapping) else sample_row
        size = max(1, estimate_row_bytes(values) * 2)
        return max(1, min(self.max_batch_size, self.max_query_bytes // size))

    def _chunk(
        self,
        items: Sequence[T],
        batch_size: Optional[int],
        size_of: Callable[[T], int],
        params_per_item: int = 1,
    ) -> List[List[T]]:
        # Engines cap the number of bound parameters per statement.
        limit = min(self._clamp(batch_size), max(1, self.max_parameters // max(1, params_per_item)))
        chunks: List[List[T]] = []
        current: List[T] = []
        current_bytes = 0
        for item in items:
            item_bytes = size_of(item)
            if current and (len(current) >= limit or current_bytes + item_bytes > self.max_query_bytes):
                chunks.append(current)
                current, current_bytes = [], 0
            current.append(item)
            current_bytes += item_bytes
        if current:
            chunks.append(current)
        return chunks

    @staticmethod
    def _normalize_rows(columns: Sequence[str], rows: Iterable[RowInput]) -> List[Tuple[Any, ...]]:
        normalized = []
        for position, row in enumerate(rows):
            if isinstance(row, Mapping):
                missing = [column for column in columns if column not in row]
                if missing:
                    raise StatementError(f"Row {position} is missing columns {missing}")
                normalized.append(tuple(row[column] for column in columns))
            else:
                values = tuple(row)
                if len(values) != len(columns):
                    raise StatementError(
                        f"Row {position} has {len(values)} value(s) but {len(columns)} column(s) were given"
                    )
                normalized.append(values)
        return normalized

    # -- execution --------------------------------------------------------------------

    def _execute(self, operation: str, table: str, statements: Sequence[CompiledStatement]) -> int:
        total = 0
        chunks_total = len(statements)
        with self._transactions.atomic():
            for index, statement in enumerate(statements):
                try:
                    result = self._connections.execute(
                        statement.sql, statement.bindings, self._transactions.connection_id
                    )
                except DatabaseError as exc:
                    log.error(
                        "[BATCH FAILED] chunk failed; rolling back the whole call",
                        extra={
                            "operation": operation,
                            "table": table,
                            "chunk": index + 1,
                            "chunks": chunks_total,
                            "error": str(exc),
                        },
                    )
                    raise BatchError(operation, table, index, chunks_total) from exc
                total += result.affected_rows
                log.debug(
                    "[BATCH CHUNK] chunk executed",
                    extra={
                        "operation": operation,
                        "table": table,
                        "chunk": index + 1,
                        "chunks": chunks_total,
                        "affected": result.affected_rows,
                    },
                )
        return total

    def _record(self, kind: str, count: int, batches: int) -> None:
        self._stats[kind] += count  # type: ignore[literal-required]
        self._stats["batches_executed"] += batches

    # -- bulk writes ------------------------------------------------------------------

    def bulk_insert(
        self,
        table: str,
        columns: Sequence[str],
        rows: Iterable[RowInput],
        batch_size: Optional[int] = None,
    ) -> int:
        """Insert all rows or none of them; returns the number of rows inserted."""
        normalized = self._normalize_rows(columns, rows)
        if not normalized:
            return 0
        builder = self._query_factory(table)
        chunks = self._chunk(normalized, batch_size, estimate_row_bytes, len(columns))
        statements = [builder.compile_insert(columns, chunk) for chunk in chunks]
        inserted = self._execute("bulk_insert", table, statements)
        self._record("inserts", inserted, len(statements))
        log.info(
            "[BATCH DONE] bulk insert",
            extra={"table": table, "rows": inserted, "chunks": len(statements)},
        )
        return inserted

    def bulk_upsert(
        self,
        table: str,
        columns: Sequence[str],
        rows: Iterable[RowInput],
        update_columns: Sequence[str],
        conflict_columns: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
    ) -> int:
        """
        Insert rows, updating ``update_columns`` of rows that hit a unique key.

        The returned count is the driver's affected-row figure, whose meaning
        for updated rows differs between engines (MySQL counts them twice).
        """
        normalized = self._normalize_rows(columns, rows)
        if not normalized:
            return 0
        builder = self._query_factory(table)
        chunks = self._chunk(normalized, batch_size, estimate_row_bytes, len(columns))
        statements = [
            builder.compile_upsert(columns, chunk, update_columns, conflict_columns or ())
            for chunk in chunks
        ]
        affected = self._execute("bulk_upsert", table, statements)
        self._record("upserts", affected, len(statements))
        log.info(
            "[BATCH DONE] bulk upsert",
            extra={"table": table, "rows": affected, "chunks": len(statements)},
        )
        return affected

    def bulk_update(
        self,
        table: str,
        key_column: str,
        update_column: str,
        values: Mapping[Hashable, Any],
        batch_size: Optional[int] = None,
    ) -> int:
        """Set ``update_column`` per key with one CASE-style UPDATE per chunk."""
        updates = {key: {update_column: value} for key, value in values.items()}
        return self.bulk_update_multiple(table, key_column, updates, batch_size)

    def bulk_update_multiple(
        self,
        table: str,
        key_column: str,
        updates: Mapping[Hashable, Mapping[str, Any]],
        batch_size: Optional[int] = None,
    ) -> int:
        """
        Update several columns per key.

        Keys are grouped by the exact set of columns they update, and each
        group is chunked into CASE-style UPDATE statements.
        """
        if not updates:
            return 0
        groups: Dict[Tuple[str, ...], List[Tuple[Hashable, Mapping[str, Any]]]] = {}
        for key, row in updates.items():
            if not row:
                raise StatementError(f"No columns to update for key {key!r}")
            groups.setdefault(tuple(sorted(row)), []).append((key, row))

        builder = self._query_factory(table)
        statements: List[CompiledStatement] = []
        for columns, items in groups.items():
            # WHEN ? THEN ? per updated column, plus the key in the IN list.
            chunks = self._chunk(
                items,
                batch_size,
                lambda item: estimate_row_bytes((item[0], *item[1].values())) * 2,
                2 * len(columns) + 1,
            )
            statements.extend(builder.compile_case_update(key_column, dict(chunk)) for chunk in chunks)

        updated = self._execute("bulk_update", table, statements)
        self._record("updates", updated, len(statements))
        log.info(
            "[BATCH DONE] bulk update",
            extra={"table": table, "rows": updated, "chunks": len(statements), "groups": len(groups)},
        )
        return updated

    def bulk_delete(
        self,
        table: str,
        column: str,
        values: Iterable[Any],
        batch_size: Optional[int] = None,
    ) -> int:
        """Delete rows whose ``column`` is in ``values``, chunked into IN (...) deletes."""
        keys = list(values)
        if not keys:
            return 0
        builder = self._query_factory(table)
        chunks = self._chunk(keys, batch_size, _value_bytes)
        statements = [builder.where_in(column, chunk).compile_delete() for chunk in chunks]
        deleted = self._execute("bulk_delete", table, statements)
        self._record("deletes", deleted, len(statements))
        log.info(
            "[BATCH DONE] bulk delete",
            extra={"table": table, "rows": deleted, "chunks": len(statements)},
        )
        return deleted

    # -- reads / generic --------------------------------------------------------------

    def stream_results(
        self,
        table: str,
        conditions: Optional[Union[Mapping[str, Any], Callable[[QueryBuilder], QueryBuilder]]] = None,
        chunk_size: Optional[int] = None,
        order_by: str = "id",
    ) -> Generator[Row, None, None]:
        """
        Yield rows page by page using ordered LIMIT/OFFSET queries.

        Stops after the first page shorter than ``chunk_size``. Pages are read
        independently, so concurrent writes may cause rows to be skipped or
        repeated; this is a best-effort snapshot.
        """
        size = self._clamp(chunk_size)
        builder = self._query_factory(table)
        if callable(conditions):
            builder = conditions(builder)
        elif conditions:
            builder = builder.where(dict(conditions))
        builder = builder.order_by(order_by)
        offset = 0
        while True:
            page = builder.limit(size).offset(offset).execute()
            yield from page
            if page.row_count < size:
                return
            offset += size

    def process_batch(
        self,
        items: Iterable[T],
        processor: Callable[[List[T]], Any],
        batch_size: Optional[int] = None,
    ) -> int:
        """Feed ``items`` to ``processor`` in lists of ``batch_size``; returns the number processed."""
        size = self._clamp(batch_size)
        processed = 0
        buffer: List[T] = []
        for item in items:
            buffer.append(item)
            if len(buffer) >= size:
                processor(buffer)
                processed += len(buffer)
                buffer = []
        if buffer:
            processor(buffer)
            processed += len(buffer)
        log.debug("[BATCH PROCESS] items processed", extra={"items": processed, "batch_size": size})
        return processed

    # -- stats ------------------------------------------------------------------------

    def get_stats(self) -> BatchStats:
        return dict(self._stats)  # type: ignore[return-value]

    def reset_stats(self) -> None:
        self._stats = _empty_stats()


__all__ = [
    "BatchExecutor",
    "BatchStats",
    "DEFAULT_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "MAX_QUERY_BYTES",
    "estimate_row_bytes",
]
