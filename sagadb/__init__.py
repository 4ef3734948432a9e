"""
sagadb - a relational database access layer.

Composes a fluent, immutable query builder, nested transactions over
savepoints, dialect-aware DDL, chunked bulk operations and health-checked
connections behind one facade:

    from sagadb import create_database

    with create_database() as db:
        rows = db.table("users").where("active", True).order_by("id").get()

Postgres (psycopg) and SQLite drivers ship with the package; the MySQL
dialect renders complete SQL for any DB-API MySQL driver plugged in through
the ``Driver`` protocol.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from sagadb.batch_executor import BatchExecutor, BatchStats
from sagadb.config import Settings, get_settings
from sagadb.connection_manager import ConnectionManager, ConnectionStats
from sagadb.domain.isolation import IsolationLevel
from sagadb.domain.schema import (
    ColumnDefinition,
    ColumnType,
    ForeignKeyDefinition,
    IndexDefinition,
    ReferentialAction,
    TableOptions,
)
from sagadb.exceptions import (
    BatchError,
    ConstraintViolation,
    DatabaseConnectionError,
    DatabaseError,
    MigrationError,
    RecordNotFoundError,
    StatementError,
    TransactionStateError,
    ValidationError,
)
from sagadb.facade import DatabaseFacade
from sagadb.infrastructure.db_factory import create_database, create_driver
from sagadb.migrations import Migration, MigrationRunner
from sagadb.query_builder import CompiledStatement, QueryBuilder
from sagadb.result_set import ResultSet
from sagadb.schema_manager import SchemaManager, TableAlteration
from sagadb.transaction_manager import TransactionManager
from sagadb.utils.logging import configure_logging, get_logger

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Entry points
    "DatabaseFacade",
    "create_database",
    "create_driver",
    # Components
    "BatchExecutor",
    "BatchStats",
    "CompiledStatement",
    "ConnectionManager",
    "ConnectionStats",
    "Migration",
    "MigrationRunner",
    "QueryBuilder",
    "ResultSet",
    "SchemaManager",
    "TableAlteration",
    "TransactionManager",
    # Schema values
    "ColumnDefinition",
    "ColumnType",
    "ForeignKeyDefinition",
    "IndexDefinition",
    "IsolationLevel",
    "ReferentialAction",
    "TableOptions",
    # Errors
    "BatchError",
    "ConstraintViolation",
    "DatabaseConnectionError",
    "DatabaseError",
    "MigrationError",
    "RecordNotFoundError",
    "StatementError",
    "TransactionStateError",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_logger",
]
