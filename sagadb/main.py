from __future__ import annotations

import importlib
import sys
from typing import List

import typer

from sagadb.config import get_settings
from sagadb.exceptions import DatabaseError
from sagadb.infrastructure.db_factory import create_database
from sagadb.migrations import Migration
from sagadb.reporter import (
    print_columns,
    print_connection_stats,
    print_migration_status,
    print_tables,
)
from sagadb.utils.logging import configure_logging

app = typer.Typer(help="sagadb database access layer CLI.")


def _setup_logging() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)


def _fail(exc: DatabaseError) -> None:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _load_migrations(module: str) -> List[Migration]:
    try:
        loaded = importlib.import_module(module)
    except ImportError as exc:
        typer.echo(f"Error: cannot import '{module}': {exc}", err=True)
        raise typer.Exit(code=2)
    migrations = getattr(loaded, "MIGRATIONS", None)
    if migrations is None:
        typer.echo(f"Error: '{module}' does not define MIGRATIONS", err=True)
        raise typer.Exit(code=2)
    return list(migrations)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    if settings.db_driver == "sqlite":
        target = f"sqlite:{settings.db_path}"
    else:
        target = f"{settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    typer.echo(
        f"DB={target} | prefix='{settings.table_prefix}' | "
        f"batch={settings.default_batch_size}/{settings.max_batch_size} "
        f"max_query_bytes={settings.max_query_bytes} | "
        f"max_connections={settings.max_connections} env={settings.app_env}"
    )


@app.command()
def ping() -> None:
    """
    Check that the database answers, then show connection statistics.
    """
    _setup_logging()
    try:
        with create_database() as db:
            healthy = db.connections.ping()
            print_connection_stats(db.connections.get_stats())
    except DatabaseError as exc:
        _fail(exc)
    if not healthy:
        typer.echo("Database did not answer the liveness probe.", err=True)
        raise typer.Exit(code=1)
    typer.echo("OK")


@app.command()
def tables() -> None:
    """
    List the tables of the configured database.
    """
    _setup_logging()
    try:
        with create_database() as db:
            print_tables(db.schema().get_tables())
    except DatabaseError as exc:
        _fail(exc)


@app.command()
def describe(table: str = typer.Argument(..., help="Table name, without the configured prefix.")) -> None:
    """
    Show the columns of one table.
    """
    _setup_logging()
    try:
        with create_database() as db:
            schema = db.schema()
            if not schema.table_exists(table):
                typer.echo(f"Table '{schema.get_table_name(table)}' does not exist.", err=True)
                raise typer.Exit(code=1)
            print_columns(schema.get_table_name(table), schema.get_columns(table))
    except DatabaseError as exc:
        _fail(exc)


@app.command("migrate-status")
def migrate_status(
    module: str = typer.Argument(..., help="Importable module defining a MIGRATIONS list."),
) -> None:
    """
    Show which migrations of MODULE are applied.
    """
    _setup_logging()
    migrations = _load_migrations(module)
    try:
        with create_database() as db:
            runner = db.migrations().register(*migrations)
            print_migration_status(runner.status())
    except DatabaseError as exc:
        _fail(exc)


@app.command()
def migrate(
    module: str = typer.Argument(..., help="Importable module defining a MIGRATIONS list."),
    pretend: bool = typer.Option(False, "--pretend", help="List pending migrations without running them."),
) -> None:
    """
    Apply the pending migrations of MODULE.
    """
    _setup_logging()
    migrations = _load_migrations(module)
    try:
        with create_database() as db:
            applied = db.migrations().register(*migrations).migrate(pretend=pretend)
    except DatabaseError as exc:
        _fail(exc)
    if not applied:
        typer.echo("Nothing to migrate.")
        return
    verb = "Would apply" if pretend else "Applied"
    for identifier in applied:
        typer.echo(f"{verb}: {identifier}")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
