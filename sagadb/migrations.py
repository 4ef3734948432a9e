"""
Versioned schema migrations.

A ``Migration`` subclass declares a sortable ``version`` and implements
``up`` (and usually ``down``). ``MigrationRunner`` records applied
migrations in a bookkeeping table, one row per migration tagged with the
batch (one ``migrate()`` call) that applied it, so ``rollback()`` can undo
whole batches in reverse order.

Each migration runs inside ``atomic()``. On engines with transactional DDL
a failing migration leaves no trace; on MySQL the DDL it already ran stays
applied, as the engine commits DDL implicitly.
"""

from __future__ import annotations

import abc
import datetime as dt
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sagadb.domain.schema import ColumnDefinition, IndexDefinition, TableOptions
from sagadb.exceptions import MigrationError
from sagadb.utils.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from sagadb.facade import DatabaseFacade

log = get_logger(__name__)


class Migration(abc.ABC):
    """
    One schema change.

    Subclasses set ``version`` (compared as a string, so zero-pad numbers or
    use timestamps such as ``"2024_05_01_120000"``) and optionally ``name``,
    which defaults to the class name.
    """

    version: str = ""
    name: str = ""

    @property
    def identifier(self) -> str:
        return f"{self.version}_{self.name or type(self).__name__}"

    @abc.abstractmethod
    def up(self, db: "DatabaseFacade") -> None:
        raise NotImplementedError  # pragma: no cover - interface only

    def down(self, db: "DatabaseFacade") -> None:
        raise MigrationError(f"Migration {self.identifier} cannot be reverted", self.identifier)


class MigrationRunner:
    """
    Apply and revert registered migrations.

    Parameters
    ----------
    db : DatabaseFacade
        Facade used both by the migrations and for bookkeeping.
    table : str
        Bookkeeping table name (the facade's prefix is applied).
    """

    def __init__(self, db: "DatabaseFacade", table: str = "migrations") -> None:
        self._db = db
        self.table = table
        self._migrations: Dict[str, Migration] = {}
        self._table_ready = False

    # -- registry ---------------------------------------------------------------------

    def register(self, *migrations: Migration) -> "MigrationRunner":
        for migration in migrations:
            if not migration.version:
                raise MigrationError(f"{type(migration).__name__} has no version")
            existing = self._migrations.get(migration.identifier)
            if existing is not None and existing is not migration:
                raise MigrationError(
                    f"Migration {migration.identifier} is registered twice", migration.identifier
                )
            self._migrations[migration.identifier] = migration
        return self

    @property
    def migrations(self) -> List[Migration]:
        return sorted(self._migrations.values(), key=lambda m: (m.version, m.identifier))

    # -- bookkeeping ------------------------------------------------------------------

    def _ensure_table(self) -> None:
        if self._table_ready:
            return
        schema = self._db.schema()
        if not schema.table_exists(self.table):
            schema.create_table(
                self.table,
                [
                    ColumnDefinition.int("id").auto_increment().primary(),
                    ColumnDefinition.varchar("migration", 255).not_null(),
                    ColumnDefinition.int("batch").not_null(),
                    ColumnDefinition.datetime("applied_at"),
                ],
                TableOptions(
                    indexes=(IndexDefinition.unique(f"{self.table}_migration_unique", "migration"),),
                ),
            )
            log.info("[MIGRATE] bookkeeping table created", extra={"table": self.table})
        self._table_ready = True

    def _records(self) -> List[Dict[str, Any]]:
        self._ensure_table()
        return (
            self._db.table(self.table)
            .select("migration", "batch")
            .order_by("batch")
            .order_by("id")
            .execute()
            .to_list()
        )

    def _last_batch(self) -> int:
        self._ensure_table()
        return int(self._db.table(self.table).max("batch") or 0)

    def completed(self) -> List[str]:
        """Identifiers of applied migrations, in the order they were applied."""
        return [record["migration"] for record in self._records()]

    def pending(self) -> List[Migration]:
        applied = set(self.completed())
        return [migration for migration in self.migrations if migration.identifier not in applied]

    def status(self) -> List[Dict[str, Any]]:
        batches = {record["migration"]: record["batch"] for record in self._records()}
        return [
            {
                "migration": migration.identifier,
                "version": migration.version,
                "applied": migration.identifier in batches,
                "batch": batches.get(migration.identifier),
            }
            for migration in self.migrations
        ]

    def current_version(self) -> Optional[str]:
        applied = set(self.completed())
        versions = [m.version for m in self.migrations if m.identifier in applied]
        return max(versions) if versions else None

    def latest_version(self) -> Optional[str]:
        migrations = self.migrations
        return migrations[-1].version if migrations else None

    # -- running ----------------------------------------------------------------------

    def migrate(self, pretend: bool = False) -> List[str]:
        """
        Apply every pending migration as one new batch.

        With ``pretend=True`` nothing runs; the identifiers that would be
        applied are returned.
        """
        pending = self.pending()
        if not pending:
            log.info("[MIGRATE] nothing to migrate")
            return []
        if pretend:
            return [migration.identifier for migration in pending]

        batch = self._last_batch() + 1
        applied: List[str] = []
        transactions = self._db.transaction()
        for migration in pending:
            try:
                with transactions.atomic():
                    migration.up(self._db)
                    self._db.table(self.table).insert(
                        {
                            "migration": migration.identifier,
                            "batch": batch,
                            "applied_at": dt.datetime.now(dt.timezone.utc).isoformat(),
                        }
                    )
            except MigrationError:
                raise
            except Exception as exc:
                raise MigrationError(
                    f"Migration {migration.identifier} failed: {exc}", migration.identifier
                ) from exc
            applied.append(migration.identifier)
            log.info("[MIGRATE UP] migration applied", extra={"migration": migration.identifier, "batch": batch})
        return applied

    def rollback(self, steps: int = 1) -> List[str]:
        """Revert the last ``steps`` batches, newest migration first."""
        if steps < 1:
            return []
        self._ensure_table()
        batches = (
            self._db.table(self.table)
            .select("batch")
            .distinct()
            .order_by_desc("batch")
            .limit(steps)
            .pluck("batch")
        )
        if not batches:
            log.info("[MIGRATE] nothing to roll back")
            return []
        identifiers = (
            self._db.table(self.table)
            .where_in("batch", batches)
            .order_by_desc("batch")
            .order_by_desc("id")
            .pluck("migration")
        )
        reverted: List[str] = []
        transactions = self._db.transaction()
        for identifier in identifiers:
            migration = self._migrations.get(identifier)
            if migration is None:
                raise MigrationError(f"Migration {identifier} is applied but not registered", identifier)
            try:
                with transactions.atomic():
                    migration.down(self._db)
                    self._db.table(self.table).where("migration", identifier).delete()
            except MigrationError:
                raise
            except Exception as exc:
                raise MigrationError(f"Reverting {identifier} failed: {exc}", identifier) from exc
            reverted.append(identifier)
            log.info("[MIGRATE DOWN] migration reverted", extra={"migration": identifier})
        return reverted

    def reset(self) -> List[str]:
        """Revert every applied migration."""
        return self.rollback(steps=self._last_batch())

    def refresh(self) -> List[str]:
        """Revert everything, then apply everything again. Returns the applied identifiers."""
        self.reset()
        return self.migrate()


__all__ = ["Migration", "MigrationRunner"]
