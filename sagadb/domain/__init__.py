"""
Domain package for sagadb.

Exports the value types describing schemas (columns, indexes, foreign keys,
table options) and transaction isolation levels. Everything here is pure
data plus validation; nothing touches a connection.
"""

from sagadb.domain.isolation import IsolationLevel
from sagadb.domain.schema import (
    ColumnDefinition,
    ColumnType,
    ForeignKeyDefinition,
    IndexDefinition,
    IndexType,
    ReferentialAction,
    TableOptions,
)

__all__ = [
    "ColumnDefinition",
    "ColumnType",
    "ForeignKeyDefinition",
    "IndexDefinition",
    "IndexType",
    "IsolationLevel",
    "ReferentialAction",
    "TableOptions",
]
