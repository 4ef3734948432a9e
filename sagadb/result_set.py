"""
Materialized result sets.

A ``ResultSet`` holds every row produced by one statement execution (no
server-side cursor is assumed) together with column metadata and, for
writes, the affected-row count and last insert id. It offers two views over
the same rows:

- a forward cursor (``fetch``, ``fetch_all``, ``fetch_column``) that can be
  ``rewind``-ed without re-querying;
- whole-set helpers (``map``, ``filter``, ``pluck``, ``fetch_all_keyed_by``,
  iteration) that never move the cursor.

Rows are ordered dicts mapping column name to a scalar value.
"""

from __future__ import annotations

import json
from typing import (
    Any,
    Callable,
    Dict,
    Hashable,
    Iterator,
    List,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from pydantic import BaseModel

Row = Dict[str, Any]
T = TypeVar("T")


class ColumnMeta(BaseModel):
    """Column metadata as reported by the DB-API ``cursor.description``."""

    name: str
    position: int
    type_code: Optional[Any] = None
    display_size: Optional[int] = None
    internal_size: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    null_ok: Optional[bool] = None

    model_config = {
        "frozen": True,
        "arbitrary_types_allowed": True,
    }

    @classmethod
    def from_description(cls, description: Sequence[Any]) -> List["ColumnMeta"]:
        columns = []
        for position, entry in enumerate(description):
            padded = list(entry) + [None] * (7 - len(entry))
            columns.append(
                cls(
                    name=padded[0],
                    position=position,
                    type_code=padded[1],
                    display_size=padded[2],
                    internal_size=padded[3],
                    precision=padded[4],
                    scale=padded[5],
                    null_ok=padded[6],
                )
            )
        return columns


def _normalize(value: Any) -> Any:
    if isinstance(value, (memoryview, bytearray)):
        return bytes(value)
    return value


class ResultSet:
    """
    Materialized rows from a single execution.

    Parameters
    ----------
    rows : list of dict
        Rows in result order; each dict is ordered by column.
    columns : list of ColumnMeta, optional
        Column metadata. Derived from the first row's keys when omitted.
    affected_rows : int
        Rows changed by a write statement (0 for reads).
    last_insert_id : int, optional
        Identifier generated by the last insert, when the driver reports one.
    """

    def __init__(
        self,
        rows: Optional[List[Row]] = None,
        columns: Optional[List[ColumnMeta]] = None,
        affected_rows: int = 0,
        last_insert_id: Optional[Any] = None,
    ) -> None:
        self._rows: List[Row] = list(rows or [])
        if columns is None:
            names = list(self._rows[0].keys()) if self._rows else []
            columns = [ColumnMeta(name=name, position=i) for i, name in enumerate(names)]
        self._columns = columns
        self._position = 0
        self._freed = False
        self.affected_rows = affected_rows
        self.last_insert_id = last_insert_id

    # -- factories --------------------------------------------------------------------

    @classmethod
    def from_cursor(cls, cursor: Any) -> "ResultSet":
        """Drain a DB-API cursor into a materialized result set."""
        affected = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
        last_id = getattr(cursor, "lastrowid", None) or None
        if cursor.description is None:
            return cls.from_write(affected, last_id)
        columns = ColumnMeta.from_description(cursor.description)
        names = [column.name for column in columns]
        rows = [
            {name: _normalize(value) for name, value in zip(names, record)}
            for record in cursor.fetchall()
        ]
        return cls(rows, columns, affected_rows=affected, last_insert_id=last_id)

    @classmethod
    def from_rows(cls, rows: List[Row]) -> "ResultSet":
        return cls([dict(row) for row in rows])

    @classmethod
    def from_write(cls, affected_rows: int, last_insert_id: Optional[Any] = None) -> "ResultSet":
        return cls([], [], affected_rows=affected_rows, last_insert_id=last_insert_id)

    @classmethod
    def empty(cls) -> "ResultSet":
        return cls([], [])

    # -- cursor -----------------------------------------------------------------------

    def fetch(self) -> Optional[Row]:
        """Return the next row and advance the cursor, or None when exhausted."""
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    def fetch_all(self) -> List[Row]:
        """Return every row the cursor has not yet passed, and exhaust it."""
        remaining = self._rows[self._position:]
        self._position = len(self._rows)
        return remaining

    def fetch_column(self, index: int = 0) -> Any:
        """Return column ``index`` of the next row, or None when exhausted."""
        row = self.fetch()
        if row is None:
            return None
        return list(row.values())[index]

    def fetch_all_column(self, index: int = 0) -> List[Any]:
        return [list(row.values())[index] for row in self.fetch_all()]

    def rewind(self) -> "ResultSet":
        """Reset the cursor to the first row. The query is not re-issued."""
        self._position = 0
        return self

    # -- keyed access -----------------------------------------------------------------

    def fetch_all_keyed_by(self, column: str) -> Dict[Hashable, Row]:
        """Index rows by ``column``; on duplicate keys the last row wins."""
        return {row[column]: row for row in self._rows}

    def fetch_all_grouped_by(self, column: str) -> Dict[Hashable, List[Row]]:
        """Group rows by ``column``, preserving row order inside each group."""
        groups: Dict[Hashable, List[Row]] = {}
        for row in self._rows:
            groups.setdefault(row[column], []).append(row)
        return groups

    def first(self) -> Optional[Row]:
        return self._rows[0] if self._rows else None

    def last(self) -> Optional[Row]:
        return self._rows[-1] if self._rows else None

    def row(self, index: int) -> Optional[Row]:
        if 0 <= index < len(self._rows):
            return self._rows[index]
        return None

    def value(self, column: str, default: Any = None) -> Any:
        """Value of ``column`` in the first row."""
        first = self.first()
        if first is None:
            return default
        return first.get(column, default)

    def pluck(self, column: str) -> List[Any]:
        return [row.get(column) for row in self._rows]

    def pluck_keyed(self, value_column: str, key_column: str) -> Dict[Hashable, Any]:
        return {row[key_column]: row.get(value_column) for row in self._rows}

    # -- metadata ---------------------------------------------------------------------

    @property
    def row_count(self) -> int:
        return len(self._rows)

    @property
    def column_count(self) -> int:
        return len(self._columns)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self._columns]

    def column_meta(self, column: Optional[Union[int, str]] = None) -> Any:
        """All column metadata, or one entry by position or name."""
        if column is None:
            return list(self._columns)
        if isinstance(column, int):
            return self._columns[column]
        for meta in self._columns:
            if meta.name == column:
                return meta
        raise KeyError(column)

    def is_empty(self) -> bool:
        return not self._rows

    def is_not_empty(self) -> bool:
        return bool(self._rows)

    # -- functional helpers -----------------------------------------------------------

    def map(self, fn: Callable[[Row], T]) -> List[T]:
        return [fn(row) for row in self._rows]

    def filter(self, predicate: Callable[[Row], bool]) -> List[Row]:
        return [row for row in self._rows if predicate(row)]

    def first_where(self, predicate: Callable[[Row], bool]) -> Optional[Row]:
        return next((row for row in self._rows if predicate(row)), None)

    def any(self, predicate: Callable[[Row], bool]) -> bool:
        return any(predicate(row) for row in self._rows)

    def all(self, predicate: Callable[[Row], bool]) -> bool:
        return all(predicate(row) for row in self._rows)

    def reduce(self, fn: Callable[[T, Row], T], initial: T) -> T:
        accumulator = initial
        for row in self._rows:
            accumulator = fn(accumulator, row)
        return accumulator

    def chunk(self, size: int) -> Iterator[List[Row]]:
        if size < 1:
            raise ValueError("chunk size must be at least 1")
        for start in range(0, len(self._rows), size):
            yield self._rows[start:start + size]

    # -- lifecycle / output -----------------------------------------------------------

    def free(self) -> None:
        """Drop the materialized rows early; the set then behaves as empty."""
        self._rows = []
        self._position = 0
        self._freed = True

    @property
    def is_freed(self) -> bool:
        return self._freed

    def to_list(self) -> List[Row]:
        return list(self._rows)

    def to_json(self, **kwargs: Any) -> str:
        kwargs.setdefault("default", str)
        return json.dumps(self._rows, **kwargs)

    def __iter__(self) -> Iterator[Row]:
        return iter(list(self._rows))

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self) -> str:
        return (
            f"ResultSet(rows={len(self._rows)}, columns={self.column_names}, "
            f"affected_rows={self.affected_rows})"
        )


__all__ = ["ColumnMeta", "ResultSet", "Row"]
