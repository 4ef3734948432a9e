from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from rich import box
from rich.console import Console
from rich.table import Table


def _format_seconds(seconds: float) -> str:
    return f"{seconds:,.1f}"


def print_connection_stats(stats: Mapping[str, Any], console: Optional[Console] = None) -> None:
    """
    Render ``ConnectionManager.get_stats()`` as a rich table, one row per
    counter plus one row per named connection's health.
    """
    console = console or Console()
    table = Table(title="Connections", box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    table.add_row("Active connections", str(stats.get("active_connections", 0)))
    table.add_row("Total created", str(stats.get("total_created", 0)))
    table.add_row("Total closed", str(stats.get("total_closed", 0)))
    table.add_row("Queries executed", f"{stats.get('queries_executed', 0):,}")
    table.add_row("Reconnects", str(stats.get("reconnects", 0)))
    table.add_row("Uptime (s)", _format_seconds(stats.get("uptime_seconds", 0.0)))
    table.add_row("Idle (s)", _format_seconds(stats.get("idle_seconds", 0.0)))
    for connection_id, healthy in stats.get("connection_health", {}).items():
        status = "[green]healthy[/green]" if healthy else "[red]unhealthy[/red]"
        table.add_row(f"Health: {connection_id}", status)

    console.print(table)


def print_batch_stats(stats: Mapping[str, int], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Batch operations", box=box.ROUNDED)
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("Rows", justify="right", style="bold green")
    for kind in ("inserts", "upserts", "updates", "deletes"):
        table.add_row(kind.capitalize(), f"{stats.get(kind, 0):,}")
    table.add_row("[dim]Batches executed[/dim]", f"{stats.get('batches_executed', 0):,}")
    console.print(table)


def print_tables(tables: List[str], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not tables:
        console.print("[yellow]No tables found.[/yellow]")
        return
    table = Table(title="Tables", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Table", style="cyan")
    for position, name in enumerate(tables, start=1):
        table.add_row(str(position), name)
    console.print(table)


def print_columns(name: str, columns: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """Render a ``SchemaManager.get_columns()`` listing."""
    console = console or Console()
    if not columns:
        console.print(f"[yellow]Table '{name}' has no columns or does not exist.[/yellow]")
        return
    table = Table(title=f"Columns of {name}", box=box.ROUNDED)
    table.add_column("Column", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Nullable", justify="center")
    table.add_column("Default", style="yellow")
    table.add_column("Primary", justify="center", style="bold green")
    for column in columns:
        default = column.get("default")
        table.add_row(
            column["name"],
            str(column.get("type") or ""),
            "yes" if column.get("nullable") else "no",
            "" if default is None else str(default),
            "PK" if column.get("primary") else "",
        )
    console.print(table)


def print_migration_status(status: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not status:
        console.print("[yellow]No migrations registered.[/yellow]")
        return
    table = Table(title="Migrations", box=box.ROUNDED)
    table.add_column("Migration", style="cyan")
    table.add_column("Applied", justify="center")
    table.add_column("Batch", justify="right", style="blue")
    for entry in status:
        applied = "[green]yes[/green]" if entry.get("applied") else "[yellow]pending[/yellow]"
        batch = entry.get("batch")
        table.add_row(entry["migration"], applied, "" if batch is None else str(batch))
    console.print(table)


__all__ = [
    "print_batch_stats",
    "print_columns",
    "print_connection_stats",
    "print_migration_status",
    "print_tables",
]
