"""
DDL operations: create, alter, drop and inspect tables.

Column definitions are validated when they are constructed (see
``sagadb.domain.schema``), so by the time a definition reaches this module it
is known to be legal; what is left here is rendering through the dialect,
applying the table prefix, and choosing how the statements run.

On engines with transactional DDL (Postgres, SQLite) a multi-statement
operation (CREATE TABLE followed by CREATE INDEX, or an alteration split over
several ALTER TABLE statements) runs inside one transaction, so it either
applies completely or not at all. MySQL commits DDL implicitly; there the
statements run one after the other.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from sagadb.connection_manager import PRIMARY, ConnectionManager
from sagadb.domain.schema import (
    AlterAction,
    AlterKind,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableOptions,
    validate_identifier,
)
from sagadb.infrastructure.dialects import Dialect
from sagadb.transaction_manager import TransactionManager
from sagadb.utils.logging import get_logger

log = get_logger(__name__)


class TableAlteration:
    """
    Mutable collector handed to ``SchemaManager.alter_table`` callbacks.

    Each method records one alteration and returns the collector, so calls
    can be chained. Nothing is validated against the live table; the dialect
    decides how the collected list is split into statements.
    """

    def __init__(self, table: str) -> None:
        self.table = table
        self._actions: List[AlterAction] = []

    @property
    def actions(self) -> Tuple[AlterAction, ...]:
        return tuple(self._actions)

    def is_empty(self) -> bool:
        return not self._actions

    def _add(self, action: AlterAction) -> "TableAlteration":
        self._actions.append(action)
        return self

    def add_column(self, column: ColumnDefinition) -> "TableAlteration":
        return self._add(AlterAction(AlterKind.ADD_COLUMN, column=column))

    def modify_column(self, column: ColumnDefinition) -> "TableAlteration":
        return self._add(AlterAction(AlterKind.MODIFY_COLUMN, column=column))

    def rename_column(self, old: str, new: str) -> "TableAlteration":
        validate_identifier(old, "Column name")
        validate_identifier(new, "Column name")
        return self._add(AlterAction(AlterKind.RENAME_COLUMN, name=old, new_name=new))

    def drop_column(self, name: str) -> "TableAlteration":
        validate_identifier(name, "Column name")
        return self._add(AlterAction(AlterKind.DROP_COLUMN, name=name))

    def drop_columns(self, *names: str) -> "TableAlteration":
        for name in names:
            self.drop_column(name)
        return self

    def add_index(
        self,
        index: Union[IndexDefinition, str],
        columns: Union[str, Sequence[str], None] = None,
    ) -> "TableAlteration":
        if not isinstance(index, IndexDefinition):
            index = IndexDefinition.index(index, columns or ())
        return self._add(AlterAction(AlterKind.ADD_INDEX, index=index, name=index.name))

    def add_unique_index(self, name: str, columns: Union[str, Sequence[str]]) -> "TableAlteration":
        return self.add_index(IndexDefinition.unique(name, columns))

    def drop_index(self, name: str) -> "TableAlteration":
        validate_identifier(name, "Index name")
        return self._add(AlterAction(AlterKind.DROP_INDEX, name=name))

    def add_foreign_key(self, foreign_key: ForeignKeyDefinition) -> "TableAlteration":
        return self._add(
            AlterAction(AlterKind.ADD_FOREIGN_KEY, foreign_key=foreign_key, name=foreign_key.name)
        )

    def drop_foreign_key(self, name: str) -> "TableAlteration":
        validate_identifier(name, "Foreign key name")
        return self._add(AlterAction(AlterKind.DROP_FOREIGN_KEY, name=name))

    def primary_key(self, *columns: str) -> "TableAlteration":
        for column in columns:
            validate_identifier(column, "Primary key column")
        return self._add(AlterAction(AlterKind.ADD_PRIMARY_KEY, columns=tuple(columns)))

    def drop_primary_key(self) -> "TableAlteration":
        return self._add(AlterAction(AlterKind.DROP_PRIMARY_KEY))

    def _option(self, name: str, value: str) -> "TableAlteration":
        return self._add(AlterAction(AlterKind.TABLE_OPTION, name=name, value=value))

    def engine(self, value: str) -> "TableAlteration":
        return self._option("engine", validate_identifier(value, "Table engine"))

    def charset(self, value: str) -> "TableAlteration":
        return self._option("charset", validate_identifier(value, "Table charset"))

    def collation(self, value: str) -> "TableAlteration":
        return self._option("collation", validate_identifier(value, "Table collation"))

    def comment(self, value: str) -> "TableAlteration":
        return self._option("comment", value)


class SchemaManager:
    """
    Table DDL and catalog inspection.

    Parameters
    ----------
    connections : ConnectionManager
        Executes the statements.
    dialect : Dialect, optional
        Defaults to the connection manager's dialect.
    transactions : TransactionManager, optional
        Used to make multi-statement DDL atomic where the engine allows it.
    table_prefix : str
        Prepended to every table name, foreign key targets included.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        dialect: Optional[Dialect] = None,
        transactions: Optional[TransactionManager] = None,
        table_prefix: str = "",
        connection_id: str = PRIMARY,
    ) -> None:
        self._connections = connections
        self._dialect = dialect or connections.dialect
        self._transactions = transactions
        self.table_prefix = table_prefix
        self.connection_id = connection_id

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def get_table_name(self, table: str) -> str:
        validate_identifier(table, "Table name")
        return f"{self.table_prefix}{table}"

    def _prefixed_foreign_key(self, foreign_key: ForeignKeyDefinition) -> ForeignKeyDefinition:
        if not self.table_prefix:
            return foreign_key
        return replace(foreign_key, reference_table=self.get_table_name(foreign_key.reference_table))

    def _run(self, statements: Sequence[str]) -> None:
        def run_all() -> None:
            for statement in statements:
                self._connections.execute(statement, (), self.connection_id)

        if len(statements) > 1 and self._dialect.transactional_ddl and self._transactions is not None:
            self._transactions.transactional(run_all)
        else:
            run_all()

    def _count(self, query: Tuple[str, Tuple[Any, ...]]) -> int:
        sql, bindings = query
        result = self._connections.execute(sql, bindings, self.connection_id)
        return int(result.value("aggregate") or 0)

    # -- create / alter ---------------------------------------------------------------

    def compile_create_table(
        self,
        table: str,
        columns: Sequence[ColumnDefinition],
        options: Optional[TableOptions] = None,
    ) -> List[str]:
        options = options or TableOptions()
        if self.table_prefix and options.foreign_keys:
            options = replace(
                options,
                foreign_keys=tuple(self._prefixed_foreign_key(fk) for fk in options.foreign_keys),
            )
        return self._dialect.create_table_sql(self.get_table_name(table), list(columns), options)

    def create_table(
        self,
        table: str,
        columns: Sequence[ColumnDefinition],
        options: Optional[TableOptions] = None,
    ) -> List[str]:
        """Create ``table`` and return the statements that were executed."""
        statements = self.compile_create_table(table, columns, options)
        self._run(statements)
        log.info(
            "[SCHEMA CREATE] table created",
            extra={"table": self.get_table_name(table), "statements": len(statements)},
        )
        return statements

    def compile_alter_table(self, table: str, fn: Callable[[TableAlteration], Any]) -> List[str]:
        alteration = TableAlteration(table)
        fn(alteration)
        actions = [
            replace(action, foreign_key=self._prefixed_foreign_key(action.foreign_key))
            if action.foreign_key is not None
            else action
            for action in alteration.actions
        ]
        return self._dialect.compile_alter(self.get_table_name(table), actions)

    def alter_table(self, table: str, fn: Callable[[TableAlteration], Any]) -> List[str]:
        """
        Collect alterations through ``fn`` and apply them.

        The whole list is compiled before anything runs, so an alteration the
        engine cannot express fails without touching the table. Returns the
        executed statements; an empty alteration executes nothing.
        """
        statements = self.compile_alter_table(table, fn)
        if statements:
            self._run(statements)
            log.info(
                "[SCHEMA ALTER] table altered",
                extra={"table": self.get_table_name(table), "statements": len(statements)},
            )
        return statements

    # -- passthroughs -----------------------------------------------------------------

    def drop_table(self, table: str) -> None:
        self._run([self._dialect.drop_table_sql(self.get_table_name(table))])
        log.info("[SCHEMA DROP] table dropped", extra={"table": self.get_table_name(table)})

    def drop_table_if_exists(self, table: str) -> None:
        self._run([self._dialect.drop_table_sql(self.get_table_name(table), if_exists=True)])

    def drop_tables(self, *tables: str, if_exists: bool = False) -> List[str]:
        """
        Drop several tables, in the order given, as one unit.

        Every name is validated before anything runs. Where DDL is
        transactional a failure part-way restores the tables already dropped.
        List referencing tables before the tables they reference.
        """
        statements = [
            self._dialect.drop_table_sql(self.get_table_name(table), if_exists=if_exists)
            for table in tables
        ]
        if statements:
            self._run(statements)
            log.info(
                "[SCHEMA DROP] tables dropped",
                extra={"tables": [self.get_table_name(table) for table in tables]},
            )
        return statements

    def rename_table(self, old: str, new: str) -> None:
        self._run([self._dialect.rename_table_sql(self.get_table_name(old), self.get_table_name(new))])
        log.info(
            "[SCHEMA RENAME] table renamed",
            extra={"table": self.get_table_name(old), "new_name": self.get_table_name(new)},
        )

    def truncate(self, table: str) -> None:
        self._run([self._dialect.truncate_sql(self.get_table_name(table))])

    # -- catalog ----------------------------------------------------------------------

    def table_exists(self, table: str) -> bool:
        return self._count(self._dialect.table_exists_query(self.get_table_name(table))) > 0

    def column_exists(self, table: str, column: str) -> bool:
        validate_identifier(column, "Column name")
        return self._count(self._dialect.column_exists_query(self.get_table_name(table), column)) > 0

    def index_exists(self, table: str, index: str) -> bool:
        validate_identifier(index, "Index name")
        return self._count(self._dialect.index_exists_query(self.get_table_name(table), index)) > 0

    def foreign_key_exists(self, table: str, name: str) -> bool:
        validate_identifier(name, "Foreign key name")
        query = self._dialect.foreign_key_exists_query(self.get_table_name(table), name)
        return self._count(query) > 0

    def get_indexes(self, table: str) -> List[Dict[str, Any]]:
        """
        Indexes of ``table`` with ``name``, ``columns`` (in key order),
        ``unique`` and ``primary`` keys, sorted by name.
        """
        sql, bindings = self._dialect.indexes_query(self.get_table_name(table))
        indexes: Dict[str, Dict[str, Any]] = {}
        for row in self._connections.execute(sql, bindings, self.connection_id):
            index = indexes.setdefault(
                row["name"],
                {
                    "name": row["name"],
                    "columns": [],
                    "unique": bool(row["is_unique"]),
                    "primary": bool(row["is_primary"]),
                },
            )
            index["columns"].append(row["column_name"])
        return list(indexes.values())

    def get_tables(self) -> List[str]:
        sql, bindings = self._dialect.tables_query()
        return self._connections.execute(sql, bindings, self.connection_id).pluck("name")

    def get_columns(self, table: str) -> List[Dict[str, Any]]:
        """Column listing with ``name``, ``type``, ``nullable``, ``default`` and ``primary`` keys."""
        sql, bindings = self._dialect.columns_query(self.get_table_name(table))
        rows = self._connections.execute(sql, bindings, self.connection_id)
        return [
            {
                "name": row["name"],
                "type": row["type"],
                "nullable": bool(row["nullable"]),
                "default": row["default"],
                "primary": bool(row["primary"]),
            }
            for row in rows
        ]


__all__ = ["SchemaManager", "TableAlteration"]
