"""
SQL dialects: the rendering rules specific to each target engine.

A dialect owns everything that differs between engines:

- identifier quoting and the positional placeholder style
- LIMIT/OFFSET and row-lock hints
- insert-or-update-on-conflict clauses
- transaction control and session characteristics
- DDL type names, column/table definitions and alteration grouping
- catalog (information_schema / sqlite_master) queries

Dialects hold no connection state and are safe to share.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Type

from sagadb.domain.isolation import IsolationLevel
from sagadb.domain.schema import (
    IDENTIFIER_PATTERN,
    AlterAction,
    AlterKind,
    ColumnDefinition,
    ColumnType,
    ForeignKeyDefinition,
    IndexDefinition,
    IndexType,
    TableOptions,
)
from sagadb.exceptions import StatementError, ValidationError

CatalogQuery = Tuple[str, Tuple[Any, ...]]


class AlterClause(NamedTuple):
    """
    Output of compiling one alteration.

    ``combinable`` clauses are fragments that can share a single
    ``ALTER TABLE t a, b, c`` statement; the others are complete statements.
    """

    sql: str
    combinable: bool = True


class Dialect:
    """Base dialect with ANSI-leaning defaults. Engine subclasses override the differences."""

    name = "ansi"
    placeholder = "?"
    quote_char = '"'
    transactional_ddl = True
    supports_returning = False
    inline_indexes = False
    nullable_keyword = ""
    no_limit_sql: Optional[str] = None
    ping_sql = "SELECT 1"
    # Bound parameters allowed in one statement.
    max_parameters = 999

    begin_sql = "BEGIN"
    commit_sql = "COMMIT"
    rollback_sql = "ROLLBACK"

    # -- identifiers and values -------------------------------------------------------

    def quote_identifier(self, identifier: str) -> str:
        """
        Quote a possibly dotted identifier (``table.column``, ``t.*``).

        Raises
        ------
        StatementError
            If any segment is not a plain identifier.
        """
        if not isinstance(identifier, str) or not identifier:
            raise StatementError(f"Invalid identifier: {identifier!r}")
        parts = identifier.split(".")
        quoted = []
        for position, part in enumerate(parts):
            if part == "*" and position == len(parts) - 1:
                quoted.append("*")
                continue
            if not IDENTIFIER_PATTERN.match(part):
                raise StatementError(f"Invalid identifier: {identifier!r}")
            quoted.append(f"{self.quote_char}{part}{self.quote_char}")
        return ".".join(quoted)

    def quote_list(self, identifiers: Sequence[str]) -> str:
        return ", ".join(self.quote_identifier(name) for name in identifiers)

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    def boolean_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def literal(self, value: Any) -> str:
        """
        Render a value as an SQL literal.

        Only for DDL defaults, enum value lists and ``to_raw_sql`` debugging
        output. Statements sent to the driver always use placeholders.
        """
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.boolean_literal(value)
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return "X'" + bytes(value).hex() + "'"
        if isinstance(value, (dt.date, dt.time)):
            return self.string_literal(value.isoformat(sep=" ") if isinstance(value, dt.datetime) else value.isoformat())
        if isinstance(value, str):
            return self.string_literal(value)
        raise StatementError(f"Cannot render {type(value).__name__} as an SQL literal")

    def string_literal(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"

    # -- query clauses ----------------------------------------------------------------

    def limit_clause(self, limit: Optional[int], offset: Optional[int]) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        bindings: List[Any] = []
        if limit is not None:
            parts.append(f"LIMIT {self.placeholder}")
            bindings.append(limit)
        elif offset is not None and self.no_limit_sql:
            parts.append(self.no_limit_sql)
        if offset is not None:
            parts.append(f"OFFSET {self.placeholder}")
            bindings.append(offset)
        return " ".join(parts), bindings

    def lock_clause(self, mode: Optional[str]) -> str:
        if mode == "update":
            return "FOR UPDATE"
        if mode == "shared":
            return "FOR SHARE"
        return ""

    def upsert_clause(
        self, update_columns: Sequence[str], conflict_columns: Sequence[str]
    ) -> str:
        if not conflict_columns:
            raise StatementError(f"{self.name} upserts need the conflict (unique key) columns")
        assignments = ", ".join(
            f"{self.quote_identifier(column)} = excluded.{self.quote_identifier(column)}"
            for column in update_columns
        )
        return f"ON CONFLICT ({self.quote_list(conflict_columns)}) DO UPDATE SET {assignments}"

    def returning_clause(self, column: str) -> str:
        if not self.supports_returning:
            return ""
        return f"RETURNING {self.quote_identifier(column)}"

    # -- transaction control ----------------------------------------------------------

    def savepoint_sql(self, name: str) -> str:
        return f"SAVEPOINT {name}"

    def release_savepoint_sql(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {name}"

    def rollback_to_savepoint_sql(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {name}"

    def isolation_statements(self, level: IsolationLevel) -> List[str]:
        return [f"SET TRANSACTION ISOLATION LEVEL {level.sql}"]

    def read_only_statements(self, read_only: bool) -> List[str]:
        return [f"SET TRANSACTION {'READ ONLY' if read_only else 'READ WRITE'}"]

    # -- DDL: columns -----------------------------------------------------------------

    def column_type_sql(self, column: ColumnDefinition) -> str:
        raise NotImplementedError  # pragma: no cover - interface only

    def default_sql(self, column: ColumnDefinition) -> str:
        default = column.default
        if default is None:
            return ""
        if default.raw:
            return f"DEFAULT {default.value}"
        return f"DEFAULT {self.literal(default.value)}"

    def check_constraints(self, column: ColumnDefinition) -> List[str]:
        """Emulate UNSIGNED and ENUM with CHECK constraints on engines without them."""
        name = self.quote_identifier(column.name)
        checks = []
        if column.is_unsigned:
            checks.append(f"CHECK ({name} >= 0)")
        if column.type is ColumnType.ENUM:
            values = ", ".join(self.string_literal(value) for value in column.enum_values)
            checks.append(f"CHECK ({name} IN ({values}))")
        return checks

    def column_sql(self, column: ColumnDefinition) -> str:
        parts = [self.quote_identifier(column.name), self.column_type_sql(column)]
        if column.collation:
            parts.append(f"COLLATE {self.quote_identifier(column.collation)}")
        if not column.is_nullable:
            parts.append("NOT NULL")
        elif self.nullable_keyword:
            parts.append(self.nullable_keyword)
        default = self.default_sql(column)
        if default:
            parts.append(default)
        parts.extend(self.check_constraints(column))
        return " ".join(parts)

    # -- DDL: tables ------------------------------------------------------------------

    def primary_key_sql(self, columns: Sequence[str]) -> str:
        return f"PRIMARY KEY ({self.quote_list(columns)})"

    def inline_index_sql(self, index: IndexDefinition) -> str:
        if index.kind is IndexType.PRIMARY:
            return self.primary_key_sql(index.columns)
        if index.kind is IndexType.UNIQUE:
            return f"CONSTRAINT {self.quote_identifier(index.name)} UNIQUE ({self.quote_list(index.columns)})"
        raise StatementError(f"{self.name} cannot declare a {index.kind.value} index inside CREATE TABLE")

    def create_index_sql(self, table: str, index: IndexDefinition, if_not_exists: bool = False) -> str:
        if index.kind is IndexType.FULLTEXT:
            raise StatementError(f"{self.name} does not support FULLTEXT indexes")
        if index.kind is IndexType.PRIMARY:
            raise StatementError("A primary key is not created with CREATE INDEX")
        unique = "UNIQUE " if index.kind is IndexType.UNIQUE else ""
        guard = "IF NOT EXISTS " if if_not_exists else ""
        return (
            f"CREATE {unique}INDEX {guard}{self.quote_identifier(index.name)} "
            f"ON {self.quote_identifier(table)} ({self.quote_list(index.columns)})"
        )

    def drop_index_sql(self, table: str, name: str) -> str:
        return f"DROP INDEX {self.quote_identifier(name)}"

    def foreign_key_sql(self, foreign_key: ForeignKeyDefinition) -> str:
        return (
            f"CONSTRAINT {self.quote_identifier(foreign_key.name)} "
            f"FOREIGN KEY ({self.quote_list(foreign_key.columns)}) "
            f"REFERENCES {self.quote_identifier(foreign_key.reference_table)} "
            f"({self.quote_list(foreign_key.reference_columns)}) "
            f"ON DELETE {foreign_key.delete_action.value} "
            f"ON UPDATE {foreign_key.update_action.value}"
        )

    def table_primary_key(
        self, columns: Sequence[ColumnDefinition], options: TableOptions
    ) -> Tuple[str, ...]:
        if options.primary_key:
            return options.primary_key
        return tuple(column.name for column in columns if column.is_primary)

    def table_options_sql(self, options: TableOptions) -> str:
        return ""

    def comment_statements(
        self, table: str, columns: Sequence[ColumnDefinition], options: TableOptions
    ) -> List[str]:
        return []

    def create_table_sql(
        self, table: str, columns: Sequence[ColumnDefinition], options: TableOptions
    ) -> List[str]:
        """
        Compile a CREATE TABLE statement, followed by any statements the engine
        cannot express inline (secondary indexes, comments).
        """
        if not columns:
            raise ValidationError(f"Table '{table}' needs at least one column")
        names = [column.name for column in columns]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValidationError(f"Table '{table}' declares duplicate columns: {duplicates}")
        primary_key = self.table_primary_key(columns, options)
        unknown = [name for name in primary_key if name not in names]
        if unknown:
            raise ValidationError(f"Primary key references unknown columns: {unknown}")

        definitions = [self.column_sql(column) for column in columns]
        if primary_key:
            definitions.append(self.primary_key_sql(primary_key))
        deferred: List[IndexDefinition] = []
        for index in options.indexes:
            if index.kind is IndexType.PRIMARY or self.inline_indexes:
                definitions.append(self.inline_index_sql(index))
            else:
                deferred.append(index)
        definitions.extend(self.foreign_key_sql(fk) for fk in options.foreign_keys)

        head = "CREATE TABLE IF NOT EXISTS" if options.if_not_exists else "CREATE TABLE"
        statement = f"{head} {self.quote_identifier(table)} ({', '.join(definitions)})"
        statement += self.table_options_sql(options)
        statements = [statement]
        statements.extend(
            self.create_index_sql(table, index, if_not_exists=options.if_not_exists)
            for index in deferred
        )
        statements.extend(self.comment_statements(table, columns, options))
        return statements

    def drop_table_sql(self, table: str, if_exists: bool = False) -> str:
        guard = "IF EXISTS " if if_exists else ""
        return f"DROP TABLE {guard}{self.quote_identifier(table)}"

    def rename_table_sql(self, old: str, new: str) -> str:
        return f"ALTER TABLE {self.quote_identifier(old)} RENAME TO {self.quote_identifier(new)}"

    def truncate_sql(self, table: str) -> str:
        return f"TRUNCATE TABLE {self.quote_identifier(table)}"

    # -- DDL: alterations -------------------------------------------------------------

    def alter_clauses(self, table: str, action: AlterAction) -> List[AlterClause]:
        raise NotImplementedError  # pragma: no cover - interface only

    def compile_alter(self, table: str, actions: Sequence[AlterAction]) -> List[str]:
        """
        Compile collected alterations into as few statements as the engine allows.

        Consecutive combinable clauses share one ALTER TABLE statement; order
        across statements follows the order the alterations were collected.
        """
        statements: List[str] = []
        pending: List[str] = []
        head = f"ALTER TABLE {self.quote_identifier(table)} "

        def flush() -> None:
            if pending:
                statements.append(head + ", ".join(pending))
                pending.clear()

        for action in actions:
            for clause in self.alter_clauses(table, action):
                if clause.combinable:
                    pending.append(clause.sql)
                else:
                    flush()
                    statements.append(clause.sql)
        flush()
        return statements

    def _unsupported(self, action: AlterAction) -> StatementError:
        detail = f" ({action.name})" if action.name else ""
        return StatementError(
            f"{self.name} cannot express the alteration {action.kind.value}{detail}"
        )

    # -- catalog ----------------------------------------------------------------------

    def tables_query(self) -> CatalogQuery:
        raise NotImplementedError  # pragma: no cover - interface only

    def table_exists_query(self, table: str) -> CatalogQuery:
        raise NotImplementedError  # pragma: no cover - interface only

    def column_exists_query(self, table: str, column: str) -> CatalogQuery:
        raise NotImplementedError  # pragma: no cover - interface only

    def index_exists_query(self, table: str, index: str) -> CatalogQuery:
        raise NotImplementedError  # pragma: no cover - interface only

    def columns_query(self, table: str) -> CatalogQuery:
        raise NotImplementedError  # pragma: no cover - interface only

    def indexes_query(self, table: str) -> CatalogQuery:
        """One row per indexed column: ``name``, ``column_name``, ``is_unique``, ``is_primary``."""
        raise NotImplementedError  # pragma: no cover - interface only

    def foreign_key_exists_query(self, table: str, name: str) -> CatalogQuery:
        raise NotImplementedError  # pragma: no cover - interface only


class MySQLDialect(Dialect):
    name = "mysql"
    placeholder = "%s"
    max_parameters = 65535
    quote_char = "`"
    transactional_ddl = False
    inline_indexes = True
    nullable_keyword = "NULL"
    no_limit_sql = "LIMIT 18446744073709551615"
    begin_sql = "START TRANSACTION"

    DEFAULT_ENGINE = "InnoDB"
    DEFAULT_CHARSET = "utf8mb4"
    DEFAULT_COLLATION = "utf8mb4_unicode_ci"

    _TYPE_NAMES = {
        ColumnType.TINYINT: "TINYINT",
        ColumnType.SMALLINT: "SMALLINT",
        ColumnType.INT: "INT",
        ColumnType.BIGINT: "BIGINT",
        ColumnType.FLOAT: "FLOAT",
        ColumnType.DOUBLE: "DOUBLE",
        ColumnType.DECIMAL: "DECIMAL",
        ColumnType.CHAR: "CHAR",
        ColumnType.VARCHAR: "VARCHAR",
        ColumnType.TEXT: "TEXT",
        ColumnType.MEDIUMTEXT: "MEDIUMTEXT",
        ColumnType.LONGTEXT: "LONGTEXT",
        ColumnType.BLOB: "BLOB",
        ColumnType.DATE: "DATE",
        ColumnType.DATETIME: "DATETIME",
        ColumnType.TIMESTAMP: "TIMESTAMP",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.ENUM: "ENUM",
        ColumnType.JSON: "JSON",
    }

    def string_literal(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"

    def lock_clause(self, mode: Optional[str]) -> str:
        if mode == "shared":
            return "LOCK IN SHARE MODE"
        return super().lock_clause(mode)

    def upsert_clause(
        self, update_columns: Sequence[str], conflict_columns: Sequence[str]
    ) -> str:
        assignments = ", ".join(
            f"{self.quote_identifier(column)} = VALUES({self.quote_identifier(column)})"
            for column in update_columns
        )
        return f"ON DUPLICATE KEY UPDATE {assignments}"

    def isolation_statements(self, level: IsolationLevel) -> List[str]:
        return [f"SET SESSION TRANSACTION ISOLATION LEVEL {level.sql}"]

    def read_only_statements(self, read_only: bool) -> List[str]:
        return [f"SET SESSION TRANSACTION {'READ ONLY' if read_only else 'READ WRITE'}"]

    def column_type_sql(self, column: ColumnDefinition) -> str:
        base = self._TYPE_NAMES[column.type]
        if column.type is ColumnType.ENUM:
            return base + "(" + ", ".join(self.string_literal(v) for v in column.enum_values) + ")"
        if column.length is not None:
            base += f"({column.length})"
        elif column.precision is not None:
            scale = column.scale if column.scale is not None else 0
            base += f"({column.precision}, {scale})"
        return base

    def check_constraints(self, column: ColumnDefinition) -> List[str]:
        return []

    def column_sql(self, column: ColumnDefinition) -> str:
        parts = [self.quote_identifier(column.name), self.column_type_sql(column)]
        if column.is_unsigned:
            parts.append("UNSIGNED")
        if column.charset:
            parts.append(f"CHARACTER SET {column.charset}")
        if column.collation:
            parts.append(f"COLLATE {column.collation}")
        parts.append("NOT NULL" if not column.is_nullable else self.nullable_keyword)
        if column.is_auto_increment:
            parts.append("AUTO_INCREMENT")
        default = self.default_sql(column)
        if default:
            parts.append(default)
        if column.comment:
            parts.append(f"COMMENT {self.string_literal(column.comment)}")
        if column.after:
            parts.append(f"AFTER {self.quote_identifier(column.after)}")
        return " ".join(parts)

    def inline_index_sql(self, index: IndexDefinition) -> str:
        columns = self.quote_list(index.columns)
        if index.kind is IndexType.PRIMARY:
            return self.primary_key_sql(index.columns)
        prefix = {IndexType.UNIQUE: "UNIQUE KEY", IndexType.FULLTEXT: "FULLTEXT KEY"}.get(
            index.kind, "KEY"
        )
        return f"{prefix} {self.quote_identifier(index.name)} ({columns})"

    def table_options_sql(self, options: TableOptions) -> str:
        sql = (
            f" ENGINE={options.engine or self.DEFAULT_ENGINE}"
            f" DEFAULT CHARSET={options.charset or self.DEFAULT_CHARSET}"
            f" COLLATE={options.collation or self.DEFAULT_COLLATION}"
        )
        if options.comment:
            sql += f" COMMENT={self.string_literal(options.comment)}"
        return sql

    def drop_index_sql(self, table: str, name: str) -> str:
        return f"DROP INDEX {self.quote_identifier(name)} ON {self.quote_identifier(table)}"

    def rename_table_sql(self, old: str, new: str) -> str:
        return f"RENAME TABLE {self.quote_identifier(old)} TO {self.quote_identifier(new)}"

    def alter_clauses(self, table: str, action: AlterAction) -> List[AlterClause]:
        kind = action.kind
        if kind is AlterKind.ADD_COLUMN:
            return [AlterClause(f"ADD COLUMN {self.column_sql(action.column)}")]
        if kind is AlterKind.MODIFY_COLUMN:
            return [AlterClause(f"MODIFY COLUMN {self.column_sql(action.column)}")]
        if kind is AlterKind.RENAME_COLUMN:
            return [
                AlterClause(
                    f"RENAME COLUMN {self.quote_identifier(action.name)} "
                    f"TO {self.quote_identifier(action.new_name)}"
                )
            ]
        if kind is AlterKind.DROP_COLUMN:
            return [AlterClause(f"DROP COLUMN {self.quote_identifier(action.name)}")]
        if kind is AlterKind.ADD_INDEX:
            return [AlterClause(f"ADD {self.inline_index_sql(action.index)}")]
        if kind is AlterKind.DROP_INDEX:
            return [AlterClause(f"DROP INDEX {self.quote_identifier(action.name)}")]
        if kind is AlterKind.ADD_FOREIGN_KEY:
            return [AlterClause(f"ADD {self.foreign_key_sql(action.foreign_key)}")]
        if kind is AlterKind.DROP_FOREIGN_KEY:
            return [AlterClause(f"DROP FOREIGN KEY {self.quote_identifier(action.name)}")]
        if kind is AlterKind.ADD_PRIMARY_KEY:
            return [AlterClause(f"ADD {self.primary_key_sql(action.columns)}")]
        if kind is AlterKind.DROP_PRIMARY_KEY:
            return [AlterClause("DROP PRIMARY KEY")]
        if kind is AlterKind.TABLE_OPTION:
            option = {
                "engine": f"ENGINE={action.value}",
                "charset": f"DEFAULT CHARSET={action.value}",
                "collation": f"COLLATE={action.value}",
                "comment": f"COMMENT={self.string_literal(action.value or '')}",
            }
            return [AlterClause(option[action.name])]
        raise self._unsupported(action)

    def tables_query(self) -> CatalogQuery:
        return (
            "SELECT TABLE_NAME AS name FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME",
            (),
        )

    def table_exists_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s",
            (table,),
        )

    def column_exists_query(self, table: str, column: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s AND COLUMN_NAME = %s",
            (table, column),
        )

    def index_exists_query(self, table: str, index: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s AND INDEX_NAME = %s",
            (table, index),
        )

    def columns_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT COLUMN_NAME AS name, COLUMN_TYPE AS type, "
            "IF(IS_NULLABLE = 'YES', 1, 0) AS nullable, COLUMN_DEFAULT AS `default`, "
            "IF(COLUMN_KEY = 'PRI', 1, 0) AS `primary` "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s ORDER BY ORDINAL_POSITION",
            (table,),
        )

    def indexes_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT INDEX_NAME AS name, COLUMN_NAME AS column_name, "
            "IF(NON_UNIQUE = 0, 1, 0) AS is_unique, IF(INDEX_NAME = 'PRIMARY', 1, 0) AS is_primary "
            "FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s ORDER BY INDEX_NAME, SEQ_IN_INDEX",
            (table,),
        )

    def foreign_key_exists_query(self, table: str, name: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.TABLE_CONSTRAINTS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s AND CONSTRAINT_NAME = %s "
            "AND CONSTRAINT_TYPE = 'FOREIGN KEY'",
            (table, name),
        )


class PostgresDialect(Dialect):
    name = "postgres"
    placeholder = "%s"
    max_parameters = 65535
    supports_returning = True

    _SERIAL = {
        ColumnType.TINYINT: "SMALLSERIAL",
        ColumnType.SMALLINT: "SMALLSERIAL",
        ColumnType.INT: "SERIAL",
        ColumnType.BIGINT: "BIGSERIAL",
    }
    _TYPE_NAMES = {
        ColumnType.TINYINT: "SMALLINT",
        ColumnType.SMALLINT: "SMALLINT",
        ColumnType.INT: "INTEGER",
        ColumnType.BIGINT: "BIGINT",
        ColumnType.FLOAT: "REAL",
        ColumnType.DOUBLE: "DOUBLE PRECISION",
        ColumnType.TEXT: "TEXT",
        ColumnType.MEDIUMTEXT: "TEXT",
        ColumnType.LONGTEXT: "TEXT",
        ColumnType.BLOB: "BYTEA",
        ColumnType.DATE: "DATE",
        ColumnType.DATETIME: "TIMESTAMP",
        ColumnType.TIMESTAMP: "TIMESTAMP WITH TIME ZONE",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.JSON: "JSONB",
    }

    def boolean_literal(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    def isolation_statements(self, level: IsolationLevel) -> List[str]:
        return [f"SET SESSION CHARACTERISTICS AS TRANSACTION ISOLATION LEVEL {level.sql}"]

    def read_only_statements(self, read_only: bool) -> List[str]:
        mode = "READ ONLY" if read_only else "READ WRITE"
        return [f"SET SESSION CHARACTERISTICS AS TRANSACTION {mode}"]

    def column_type_sql(self, column: ColumnDefinition) -> str:
        if column.is_auto_increment:
            return self._SERIAL[column.type]
        if column.type is ColumnType.DECIMAL:
            return f"NUMERIC({column.precision}, {column.scale or 0})"
        if column.type in (ColumnType.CHAR, ColumnType.VARCHAR):
            return f"{column.type.value.upper()}({column.length})"
        if column.type is ColumnType.ENUM:
            return f"VARCHAR({max(len(value) for value in column.enum_values)})"
        return self._TYPE_NAMES[column.type]

    def comment_statements(
        self, table: str, columns: Sequence[ColumnDefinition], options: TableOptions
    ) -> List[str]:
        statements = []
        quoted = self.quote_identifier(table)
        if options.comment:
            statements.append(f"COMMENT ON TABLE {quoted} IS {self.string_literal(options.comment)}")
        for column in columns:
            if column.comment:
                statements.append(
                    f"COMMENT ON COLUMN {quoted}.{self.quote_identifier(column.name)} "
                    f"IS {self.string_literal(column.comment)}"
                )
        return statements

    def _modify_clauses(self, column: ColumnDefinition) -> List[AlterClause]:
        if column.is_auto_increment:
            raise StatementError(
                f"postgres cannot turn '{column.name}' into a serial column with ALTER COLUMN"
            )
        name = self.quote_identifier(column.name)
        clauses = [
            AlterClause(f"ALTER COLUMN {name} TYPE {self.column_type_sql(column)}"),
            AlterClause(f"ALTER COLUMN {name} {'DROP' if column.is_nullable else 'SET'} NOT NULL"),
        ]
        default = self.default_sql(column)
        if default:
            clauses.append(AlterClause(f"ALTER COLUMN {name} SET {default}"))
        else:
            clauses.append(AlterClause(f"ALTER COLUMN {name} DROP DEFAULT"))
        return clauses

    def alter_clauses(self, table: str, action: AlterAction) -> List[AlterClause]:
        kind = action.kind
        quoted = self.quote_identifier(table)
        if kind is AlterKind.ADD_COLUMN:
            clauses = [AlterClause(f"ADD COLUMN {self.column_sql(action.column)}")]
            if action.column.comment:
                clauses.append(
                    AlterClause(
                        f"COMMENT ON COLUMN {quoted}.{self.quote_identifier(action.column.name)} "
                        f"IS {self.string_literal(action.column.comment)}",
                        combinable=False,
                    )
                )
            return clauses
        if kind is AlterKind.MODIFY_COLUMN:
            return self._modify_clauses(action.column)
        if kind is AlterKind.RENAME_COLUMN:
            return [
                AlterClause(
                    f"ALTER TABLE {quoted} RENAME COLUMN {self.quote_identifier(action.name)} "
                    f"TO {self.quote_identifier(action.new_name)}",
                    combinable=False,
                )
            ]
        if kind is AlterKind.DROP_COLUMN:
            return [AlterClause(f"DROP COLUMN {self.quote_identifier(action.name)}")]
        if kind is AlterKind.ADD_INDEX:
            if action.index.kind is IndexType.PRIMARY:
                return [AlterClause(f"ADD {self.primary_key_sql(action.index.columns)}")]
            return [AlterClause(self.create_index_sql(table, action.index), combinable=False)]
        if kind is AlterKind.DROP_INDEX:
            return [AlterClause(self.drop_index_sql(table, action.name), combinable=False)]
        if kind is AlterKind.ADD_FOREIGN_KEY:
            return [AlterClause(f"ADD {self.foreign_key_sql(action.foreign_key)}")]
        if kind is AlterKind.DROP_FOREIGN_KEY:
            return [AlterClause(f"DROP CONSTRAINT {self.quote_identifier(action.name)}")]
        if kind is AlterKind.ADD_PRIMARY_KEY:
            return [AlterClause(f"ADD {self.primary_key_sql(action.columns)}")]
        if kind is AlterKind.DROP_PRIMARY_KEY:
            return [AlterClause(f"DROP CONSTRAINT {self.quote_identifier(table + '_pkey')}")]
        if kind is AlterKind.TABLE_OPTION and action.name == "comment":
            return [
                AlterClause(
                    f"COMMENT ON TABLE {quoted} IS {self.string_literal(action.value or '')}",
                    combinable=False,
                )
            ]
        raise self._unsupported(action)

    def tables_query(self) -> CatalogQuery:
        return (
            "SELECT table_name AS name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' "
            "ORDER BY table_name",
            (),
        )

    def table_exists_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = %s",
            (table,),
        )

    def column_exists_query(self, table: str, column: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s AND column_name = %s",
            (table, column),
        )

    def index_exists_query(self, table: str, index: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM pg_indexes "
            "WHERE schemaname = current_schema() AND tablename = %s AND indexname = %s",
            (table, index),
        )

    def columns_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT c.column_name AS name, c.data_type AS type, "
            "CASE WHEN c.is_nullable = 'YES' THEN 1 ELSE 0 END AS nullable, "
            'c.column_default AS "default", '
            "CASE WHEN EXISTS ("
            "SELECT 1 FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage k "
            "ON k.constraint_name = tc.constraint_name AND k.table_schema = tc.table_schema "
            "AND k.table_name = tc.table_name "
            "WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = c.table_schema "
            "AND tc.table_name = c.table_name AND k.column_name = c.column_name"
            ') THEN 1 ELSE 0 END AS "primary" '
            "FROM information_schema.columns c "
            "WHERE c.table_schema = current_schema() AND c.table_name = %s "
            "ORDER BY c.ordinal_position",
            (table,),
        )

    def indexes_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT i.relname AS name, a.attname AS column_name, "
            "ix.indisunique AS is_unique, ix.indisprimary AS is_primary "
            "FROM pg_index ix "
            "JOIN pg_class t ON t.oid = ix.indrelid "
            "JOIN pg_class i ON i.oid = ix.indexrelid "
            "JOIN pg_namespace n ON n.oid = t.relnamespace "
            "CROSS JOIN LATERAL unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, position) "
            "JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum "
            "WHERE n.nspname = current_schema() AND t.relname = %s "
            "ORDER BY i.relname, k.position",
            (table,),
        )

    def foreign_key_exists_query(self, table: str, name: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM information_schema.table_constraints "
            "WHERE table_schema = current_schema() AND table_name = %s AND constraint_name = %s "
            "AND constraint_type = 'FOREIGN KEY'",
            (table, name),
        )


class SQLiteDialect(Dialect):
    name = "sqlite"
    placeholder = "?"
    # Double-quoted names that match no column silently become string literals.
    quote_char = "`"
    no_limit_sql = "LIMIT -1"
    # SQLITE_MAX_VARIABLE_NUMBER since 3.32.
    max_parameters = 32766

    _TYPE_NAMES = {
        ColumnType.FLOAT: "REAL",
        ColumnType.DOUBLE: "REAL",
        ColumnType.TEXT: "TEXT",
        ColumnType.MEDIUMTEXT: "TEXT",
        ColumnType.LONGTEXT: "TEXT",
        ColumnType.BLOB: "BLOB",
        ColumnType.DATE: "DATE",
        ColumnType.DATETIME: "DATETIME",
        ColumnType.TIMESTAMP: "TIMESTAMP",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.ENUM: "TEXT",
        ColumnType.JSON: "TEXT",
    }

    def lock_clause(self, mode: Optional[str]) -> str:
        # SQLite locks the whole database; row-level hints do not exist.
        return ""

    def isolation_statements(self, level: IsolationLevel) -> List[str]:
        enabled = 1 if level is IsolationLevel.READ_UNCOMMITTED else 0
        return [f"PRAGMA read_uncommitted = {enabled}"]

    def read_only_statements(self, read_only: bool) -> List[str]:
        return [f"PRAGMA query_only = {1 if read_only else 0}"]

    def column_type_sql(self, column: ColumnDefinition) -> str:
        if column.type.is_integer:
            return "INTEGER"
        if column.type is ColumnType.DECIMAL:
            return f"NUMERIC({column.precision}, {column.scale or 0})"
        if column.type in (ColumnType.CHAR, ColumnType.VARCHAR):
            return f"{column.type.value.upper()}({column.length})"
        return self._TYPE_NAMES[column.type]

    def column_sql(self, column: ColumnDefinition) -> str:
        if column.is_auto_increment:
            return f"{self.quote_identifier(column.name)} INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL"
        return super().column_sql(column)

    def table_primary_key(
        self, columns: Sequence[ColumnDefinition], options: TableOptions
    ) -> Tuple[str, ...]:
        primary_key = super().table_primary_key(columns, options)
        serial = [column.name for column in columns if column.is_auto_increment]
        if not serial:
            return primary_key
        if len(serial) > 1 or any(name != serial[0] for name in primary_key):
            raise StatementError(
                "sqlite only allows AUTOINCREMENT on a single-column INTEGER PRIMARY KEY"
            )
        # Declared inline on the column itself.
        return ()

    def truncate_sql(self, table: str) -> str:
        return f"DELETE FROM {self.quote_identifier(table)}"

    def alter_clauses(self, table: str, action: AlterAction) -> List[AlterClause]:
        kind = action.kind
        head = f"ALTER TABLE {self.quote_identifier(table)}"
        if kind is AlterKind.ADD_COLUMN:
            if action.column.is_auto_increment or action.column.is_primary:
                raise StatementError("sqlite cannot add a PRIMARY KEY column to an existing table")
            return [AlterClause(f"{head} ADD COLUMN {self.column_sql(action.column)}", False)]
        if kind is AlterKind.RENAME_COLUMN:
            return [
                AlterClause(
                    f"{head} RENAME COLUMN {self.quote_identifier(action.name)} "
                    f"TO {self.quote_identifier(action.new_name)}",
                    False,
                )
            ]
        if kind is AlterKind.DROP_COLUMN:
            return [AlterClause(f"{head} DROP COLUMN {self.quote_identifier(action.name)}", False)]
        if kind is AlterKind.ADD_INDEX and action.index.kind in (IndexType.INDEX, IndexType.UNIQUE):
            return [AlterClause(self.create_index_sql(table, action.index), False)]
        if kind is AlterKind.DROP_INDEX:
            return [AlterClause(self.drop_index_sql(table, action.name), False)]
        raise self._unsupported(action)

    def tables_query(self) -> CatalogQuery:
        return (
            "SELECT name AS name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name",
            (),
        )

    def table_exists_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )

    def column_exists_query(self, table: str, column: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM pragma_table_info(?) WHERE name = ?",
            (table, column),
        )

    def index_exists_query(self, table: str, index: str) -> CatalogQuery:
        return (
            "SELECT COUNT(*) AS aggregate FROM sqlite_master "
            "WHERE type = 'index' AND tbl_name = ? AND name = ?",
            (table, index),
        )

    def columns_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT name AS name, type AS type, CASE WHEN `notnull` = 1 THEN 0 ELSE 1 END AS nullable, "
            "dflt_value AS `default`, CASE WHEN pk > 0 THEN 1 ELSE 0 END AS `primary` "
            "FROM pragma_table_info(?) ORDER BY cid",
            (table,),
        )

    def indexes_query(self, table: str) -> CatalogQuery:
        return (
            "SELECT il.name AS name, ii.name AS column_name, il.`unique` AS is_unique, "
            "CASE WHEN il.origin = 'pk' THEN 1 ELSE 0 END AS is_primary "
            "FROM pragma_index_list(?) AS il JOIN pragma_index_info(il.name) AS ii "
            "ORDER BY il.name, ii.seqno",
            (table,),
        )

    def foreign_key_exists_query(self, table: str, name: str) -> CatalogQuery:
        # Constraint names survive only in the stored CREATE TABLE text.
        return (
            "SELECT COUNT(*) AS aggregate FROM sqlite_master "
            "WHERE type = 'table' AND name = ? AND instr(sql, ?) > 0",
            (table, f"CONSTRAINT {self.quote_identifier(name)} FOREIGN KEY"),
        )


_DIALECTS: Dict[str, Type[Dialect]] = {
    "mysql": MySQLDialect,
    "mariadb": MySQLDialect,
    "postgres": PostgresDialect,
    "postgresql": PostgresDialect,
    "pgsql": PostgresDialect,
    "sqlite": SQLiteDialect,
}


def get_dialect(name: str) -> Dialect:
    """Return a dialect instance for an engine name (``mysql``, ``postgres``, ``sqlite``)."""
    try:
        return _DIALECTS[name.lower()]()
    except KeyError as exc:
        supported = ", ".join(sorted(_DIALECTS))
        raise ValueError(f"Unknown SQL dialect '{name}'. Supported: {supported}") from exc


__all__ = [
    "AlterClause",
    "Dialect",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
    "get_dialect",
]
