"""
Pytest configuration for sagadb.

Provides fixtures for:
- Settings tuned for fast, deterministic unit tests
- An in-memory SQLite facade (no server needed)
- Postgres settings and facade for integration tests
"""

from __future__ import annotations

import os
from typing import Generator

import psycopg
import pytest

from sagadb.config import Settings
from sagadb.domain.schema import ColumnDefinition, IndexDefinition, TableOptions
from sagadb.facade import DatabaseFacade
from sagadb.infrastructure.db_factory import build_dsn
from sagadb.infrastructure.drivers import PostgresDriver, SqliteDriver


def make_settings(**overrides) -> Settings:
    values = {
        "db_driver": "sqlite",
        "db_path": ":memory:",
        "reconnect_backoff": 0,
        "reconnect_attempts": 2,
        "query_log_enabled": True,
        "slow_query_ms": 10_000,
        "log_level": "DEBUG",
    }
    values.update(overrides)
    return Settings(**values)


USERS_COLUMNS = [
    ColumnDefinition.int("id").auto_increment().primary(),
    ColumnDefinition.varchar("email", 191).not_null(),
    ColumnDefinition.varchar("name", 100),
    ColumnDefinition.varchar("role", 20).not_null().with_default("member"),
    ColumnDefinition.int("score").not_null().with_default(0),
    ColumnDefinition.boolean("active").not_null().with_default(True),
]
USERS_OPTIONS = TableOptions(indexes=(IndexDefinition.unique("users_email_unique", "email"),))


@pytest.fixture()
def settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Reconnect backoff is disabled so retry paths never sleep.
    """
    return make_settings()


@pytest.fixture()
def db(settings: Settings) -> Generator[DatabaseFacade, None, None]:
    """A facade over a private in-memory SQLite database."""
    facade = DatabaseFacade(SqliteDriver(":memory:"), settings)
    try:
        yield facade
    finally:
        facade.close()


@pytest.fixture()
def users(db: DatabaseFacade) -> DatabaseFacade:
    """The ``db`` facade with an empty ``users`` table."""
    db.schema().create_table("users", USERS_COLUMNS, USERS_OPTIONS)
    db.connections.clear_query_log()
    return db


@pytest.fixture(scope="session")
def pg_settings() -> Settings:
    """
    Postgres settings for integration tests.

    Can be overridden via environment variables in CI or local testing.
    """
    return make_settings(
        db_driver="postgres",
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "sagadb"),
        table_prefix="it_",
    )


@pytest.fixture(scope="session")
def pg_available(pg_settings: Settings) -> bool:
    """
    Check if Postgres is reachable.

    Used to conditionally skip integration tests when the database is not available.
    """
    try:
        with psycopg.connect(build_dsn(pg_settings), connect_timeout=5) as conn:
            conn.execute("SELECT 1")
        return True
    except psycopg.Error:
        return False


@pytest.fixture()
def pg_db(pg_settings: Settings, pg_available: bool) -> Generator[DatabaseFacade, None, None]:
    """A facade connected to the integration Postgres; skips when it is unreachable."""
    if not pg_available:
        pytest.skip("Database not available for integration tests")
    facade = DatabaseFacade(PostgresDriver(build_dsn(pg_settings)), pg_settings)
    try:
        yield facade
    finally:
        facade.close()


@pytest.fixture()
def users_table():
    """Column definitions and options of the ``users`` test table."""
    return USERS_COLUMNS, USERS_OPTIONS


@pytest.fixture()
def make_db() -> Generator:
    """Factory for extra SQLite facades with custom settings; all are closed on teardown."""
    created = []

    def factory(database: str = ":memory:", **overrides) -> DatabaseFacade:
        facade = DatabaseFacade(SqliteDriver(database), make_settings(**overrides))
        created.append(facade)
        return facade

    yield factory
    for facade in created:
        facade.close()


@pytest.fixture()
def file_users(make_db, tmp_path) -> DatabaseFacade:
    """A facade over a SQLite file with a ``users`` table; survives reconnects."""
    facade = make_db(str(tmp_path / "users.db"))
    facade.schema().create_table("users", USERS_COLUMNS, USERS_OPTIONS)
    facade.connections.clear_query_log()
    return facade


@pytest.fixture()
def drop_connection():
    """Close a facade's primary raw connection behind its back and flag it for a health check."""

    def drop(facade: DatabaseFacade) -> None:
        with facade.connections.connection() as managed:
            managed.raw.close()
        facade.connections.connection_state().is_healthy = False

    return drop
