"""
Demo data seeding script for sagadb.

Implements deterministic pseudo-random row generation and loads the rows
through ``BatchExecutor.bulk_insert`` while profiling throughput, memory and
CPU usage.
"""

from __future__ import annotations

import json
import random
import sys
from datetime import UTC, datetime

import typer

from sagadb.config import get_settings
from sagadb.domain.schema import ColumnDefinition, IndexDefinition, TableOptions
from sagadb.facade import DatabaseFacade
from sagadb.infrastructure.db_factory import create_database
from sagadb.reporter import print_batch_stats
from sagadb.utils.logging import configure_logging
from sagadb.utils.profiler import ProfileStats, profile_block

app = typer.Typer(help="Create a demo table and bulk-load generated rows.")

DEMO_COLUMNS = ["created_at", "category", "payload", "amount", "is_active", "source"]
CATEGORIES = ["alpha", "beta", "gamma", "delta"]


def _demo_columns() -> list[ColumnDefinition]:
    return [
        ColumnDefinition.bigint("id").auto_increment().primary(),
        ColumnDefinition.datetime("created_at").not_null(),
        ColumnDefinition.enum("category", CATEGORIES).not_null(),
        ColumnDefinition.json("payload"),
        ColumnDefinition.decimal("amount", 12, 2).not_null(),
        ColumnDefinition.boolean("is_active").not_null().with_default(True),
        ColumnDefinition.varchar("source", 32).not_null().with_default("generator"),
    ]


def _generate_rows(rows: int, seed: int) -> list[tuple]:
    rng = random.Random(seed)
    now = datetime.now(UTC).isoformat()
    generated = []
    for _ in range(rows):
        payload = {
            "user_id": rng.randint(1, 1_000_000),
            "action": rng.choice(["view", "click", "purchase", "impression"]),
            "meta": {"session": rng.randint(1, 1_000_000)},
        }
        generated.append(
            (
                now,
                rng.choice(CATEGORIES),
                json.dumps(payload),
                round(rng.uniform(1, 10_000), 2),
                rng.choice([True, False]),
                "generator",
            )
        )
    return generated


def seed(
    db: DatabaseFacade,
    table: str,
    rows: int,
    seed_value: int = 42,
    batch_size: int | None = None,
    recreate: bool = False,
) -> ProfileStats:
    """Create ``table`` if needed and bulk-insert ``rows`` generated rows into it."""
    schema = db.schema()
    if recreate:
        schema.drop_table_if_exists(table)
    if not schema.table_exists(table):
        schema.create_table(
            table,
            _demo_columns(),
            TableOptions(indexes=(IndexDefinition.index(f"{table}_category_idx", "category"),)),
        )

    data = _generate_rows(rows, seed_value)
    with profile_block(f"seed {db.get_table_name(table)}") as stats:
        stats.rows = db.batch().bulk_insert(table, DEMO_COLUMNS, data, batch_size=batch_size)
    return stats


@app.command()
def main(
    rows: int = typer.Option(
        10_000,
        "--rows",
        "-r",
        help="Number of rows to generate.",
    ),
    table: str = typer.Option(
        "demo_records",
        "--table",
        "-t",
        help="Target table (the configured prefix is applied).",
    ),
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        "-b",
        help="Rows per INSERT statement (defaults to BATCH_DEFAULT_SIZE).",
    ),
    seed_value: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    recreate: bool = typer.Option(
        False,
        "--recreate",
        help="Drop the table first if it exists.",
    ),
) -> None:
    """
    Generate synthetic rows and load them with chunked multi-row inserts.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)

    typer.echo(f"Seeding {rows:,} rows into '{table}' (batch={batch_size or settings.default_batch_size}, seed={seed_value})")
    with create_database(settings) as db:
        stats = seed(db, table, rows, seed_value, batch_size, recreate)
        print_batch_stats(db.batch().get_stats())

    peak_mb = (stats.peak_rss_bytes or 0) / (1024 * 1024)
    typer.echo(
        f"Load completed in {stats.duration_seconds:.2f}s "
        f"({stats.throughput_rows_per_sec:,.0f} rows/s, peak RSS {peak_mb:.1f} MB)."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
