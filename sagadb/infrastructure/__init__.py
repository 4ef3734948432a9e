"""
Infrastructure package for sagadb.

Centralizes engine-specific concerns: SQL dialects, DB-API drivers and the
factory that picks them from settings. Keep this layer focused on I/O and
rendering rules, decoupled from the builder and manager logic.
"""

from sagadb.infrastructure.db_factory import build_dsn, create_database, create_driver
from sagadb.infrastructure.dialects import (
    Dialect,
    MySQLDialect,
    PostgresDialect,
    SQLiteDialect,
    get_dialect,
)
from sagadb.infrastructure.drivers import Driver, PostgresDriver, SqliteDriver

__all__ = [
    "build_dsn",
    "create_database",
    "create_driver",
    "Dialect",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
    "get_dialect",
    "Driver",
    "PostgresDriver",
    "SqliteDriver",
]
