"""
Schema value objects: column types, columns, indexes, foreign keys, table options.

All definitions are immutable. Factories and fluent modifiers return new
values, and every construction re-runs validation against the column type's
capability table, so an invalid schema is rejected with a
:class:`~sagadb.exceptions.ValidationError` before any SQL is generated.

Example
-------
    from sagadb.domain.schema import ColumnDefinition

    email = ColumnDefinition.varchar("email", 191).not_null().with_comment("login")
    price = ColumnDefinition.decimal("price", 10, 2).unsigned().with_default(0)
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, NamedTuple, Optional, Sequence, Tuple, Union

from sagadb.exceptions import ValidationError

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 64
MAX_DECIMAL_PRECISION = 65


def validate_identifier(name: Any, what: str = "identifier") -> str:
    """Return ``name`` unchanged if it is a plain SQL identifier, else raise."""
    if not isinstance(name, str) or not name:
        raise ValidationError(f"{what} must be a non-empty string")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(f"{what} '{name}' exceeds {MAX_IDENTIFIER_LENGTH} characters")
    if not IDENTIFIER_PATTERN.match(name):
        raise ValidationError(
            f"{what} '{name}' must start with a letter or underscore and contain "
            "only letters, digits and underscores"
        )
    return name


def _as_tuple(columns: Union[str, Iterable[str]]) -> Tuple[str, ...]:
    if isinstance(columns, str):
        return (columns,)
    return tuple(columns)


class ColumnCapabilities(NamedTuple):
    supports_length: bool = False
    requires_length: bool = False
    supports_precision: bool = False
    requires_precision: bool = False
    supports_unsigned: bool = False
    supports_auto_increment: bool = False
    requires_values: bool = False
    supports_charset: bool = False
    default_length: Optional[int] = None
    max_length: Optional[int] = None


class ColumnType(enum.Enum):
    """Closed DDL type vocabulary. Capabilities come from a lookup table, not string checks."""

    TINYINT = "tinyint"
    SMALLINT = "smallint"
    INT = "int"
    BIGINT = "bigint"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    CHAR = "char"
    VARCHAR = "varchar"
    TEXT = "text"
    MEDIUMTEXT = "mediumtext"
    LONGTEXT = "longtext"
    BLOB = "blob"
    DATE = "date"
    DATETIME = "datetime"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    ENUM = "enum"
    JSON = "json"

    @property
    def capabilities(self) -> ColumnCapabilities:
        return capabilities(self)

    @property
    def supports_length(self) -> bool:
        return capabilities(self).supports_length

    @property
    def requires_length(self) -> bool:
        return capabilities(self).requires_length

    @property
    def supports_precision(self) -> bool:
        return capabilities(self).supports_precision

    @property
    def requires_precision(self) -> bool:
        return capabilities(self).requires_precision

    @property
    def supports_unsigned(self) -> bool:
        return capabilities(self).supports_unsigned

    @property
    def supports_auto_increment(self) -> bool:
        return capabilities(self).supports_auto_increment

    @property
    def requires_values(self) -> bool:
        return capabilities(self).requires_values

    @property
    def default_length(self) -> Optional[int]:
        return capabilities(self).default_length

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_TYPES


_INTEGER_TYPES = frozenset(
    {ColumnType.TINYINT, ColumnType.SMALLINT, ColumnType.INT, ColumnType.BIGINT}
)

_INTEGER = ColumnCapabilities(
    supports_length=True, supports_unsigned=True, supports_auto_increment=True
)
_REAL = ColumnCapabilities(supports_precision=True, supports_unsigned=True)
_TEXT = ColumnCapabilities(supports_charset=True)
_PLAIN = ColumnCapabilities()

_CAPABILITIES = {
    ColumnType.TINYINT: _INTEGER,
    ColumnType.SMALLINT: _INTEGER,
    ColumnType.INT: _INTEGER,
    ColumnType.BIGINT: _INTEGER,
    ColumnType.FLOAT: _REAL,
    ColumnType.DOUBLE: _REAL,
    ColumnType.DECIMAL: ColumnCapabilities(
        supports_precision=True, requires_precision=True, supports_unsigned=True
    ),
    ColumnType.CHAR: ColumnCapabilities(
        supports_length=True,
        requires_length=True,
        supports_charset=True,
        default_length=1,
        max_length=255,
    ),
    ColumnType.VARCHAR: ColumnCapabilities(
        supports_length=True,
        requires_length=True,
        supports_charset=True,
        default_length=255,
        max_length=65535,
    ),
    ColumnType.TEXT: _TEXT,
    ColumnType.MEDIUMTEXT: _TEXT,
    ColumnType.LONGTEXT: _TEXT,
    ColumnType.BLOB: _PLAIN,
    ColumnType.DATE: _PLAIN,
    ColumnType.DATETIME: _PLAIN,
    ColumnType.TIMESTAMP: _PLAIN,
    ColumnType.BOOLEAN: _PLAIN,
    ColumnType.ENUM: ColumnCapabilities(requires_values=True, supports_charset=True),
    ColumnType.JSON: _PLAIN,
}


def capabilities(column_type: ColumnType) -> ColumnCapabilities:
    """Look up the legal-modifier table for a column type."""
    return _CAPABILITIES[column_type]


@dataclass(frozen=True)
class ColumnDefault:
    """A column default: a literal scalar, or a raw SQL expression such as CURRENT_TIMESTAMP."""

    value: Any
    raw: bool = False


_DEFAULT_SCALARS = (str, int, float, bool)


@dataclass(frozen=True)
class ColumnDefinition:
    """
    Immutable description of one table column.

    Build it with a typed factory (``varchar``, ``decimal``, ``enum``, ...) and
    refine it with modifiers. Each modifier returns a new, re-validated value.
    Boolean flags are exposed as ``is_*`` attributes; the verbs of the same
    name (``nullable()``, ``unsigned()``, ...) are the modifiers.
    """

    name: str
    type: ColumnType
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_nullable: bool = True
    is_unsigned: bool = False
    is_auto_increment: bool = False
    is_primary: bool = False
    default: Optional[ColumnDefault] = None
    comment: Optional[str] = None
    enum_values: Tuple[str, ...] = field(default_factory=tuple)
    after: Optional[str] = None
    collation: Optional[str] = None
    charset: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, ColumnType):
            raise ValidationError(f"Column '{self.name}' has unknown type {self.type!r}")
        if not isinstance(self.enum_values, tuple):
            object.__setattr__(self, "enum_values", tuple(self.enum_values))
        validate_identifier(self.name, "Column name")
        self._validate_length()
        self._validate_precision()
        self._validate_values()
        self._validate_flags()
        self._validate_default()
        if self.after is not None:
            validate_identifier(self.after, "AFTER column")
        if (self.collation or self.charset) and not capabilities(self.type).supports_charset:
            raise ValidationError(
                f"Column '{self.name}' of type {self.type.value} cannot carry a charset or collation"
            )

    def _validate_length(self) -> None:
        caps = capabilities(self.type)
        if self.length is None:
            if caps.requires_length:
                raise ValidationError(
                    f"Column '{self.name}' of type {self.type.value} requires a length"
                )
            return
        if not caps.supports_length:
            raise ValidationError(
                f"Column '{self.name}' of type {self.type.value} does not support a length"
            )
        if isinstance(self.length, bool) or not isinstance(self.length, int) or self.length < 1:
            raise ValidationError(f"Column '{self.name}' length must be a positive integer")
        if caps.max_length is not None and self.length > caps.max_length:
            raise ValidationError(
                f"Column '{self.name}' length {self.length} exceeds {caps.max_length} "
                f"for {self.type.value}"
            )

    def _validate_precision(self) -> None:
        caps = capabilities(self.type)
        if self.precision is None:
            if caps.requires_precision:
                raise ValidationError(
                    f"Column '{self.name}' of type {self.type.value} requires a precision"
                )
            if self.scale is not None:
                raise ValidationError(f"Column '{self.name}' has a scale but no precision")
            return
        if not caps.supports_precision:
            raise ValidationError(
                f"Column '{self.name}' of type {self.type.value} does not support precision"
            )
        if not 1 <= self.precision <= MAX_DECIMAL_PRECISION:
            raise ValidationError(
                f"Column '{self.name}' precision must be between 1 and {MAX_DECIMAL_PRECISION}"
            )
        if self.scale is not None and not 0 <= self.scale <= self.precision:
            raise ValidationError(
                f"Column '{self.name}' scale must be between 0 and the precision ({self.precision})"
            )

    def _validate_values(self) -> None:
        if capabilities(self.type).requires_values:
            if not self.enum_values:
                raise ValidationError(
                    f"Column '{self.name}' of type {self.type.value} requires a non-empty value list"
                )
            if any(not isinstance(value, str) or value == "" for value in self.enum_values):
                raise ValidationError(f"Column '{self.name}' enum values must be non-empty strings")
            if len(set(self.enum_values)) != len(self.enum_values):
                raise ValidationError(f"Column '{self.name}' enum values must be unique")
        elif self.enum_values:
            raise ValidationError(
                f"Column '{self.name}' of type {self.type.value} does not accept a value list"
            )

    def _validate_flags(self) -> None:
        caps = capabilities(self.type)
        if self.is_unsigned and not caps.supports_unsigned:
            raise ValidationError(
                f"Column '{self.name}' of type {self.type.value} does not support UNSIGNED"
            )
        if self.is_auto_increment:
            if not caps.supports_auto_increment:
                raise ValidationError(
                    f"Column '{self.name}' of type {self.type.value} does not support AUTO_INCREMENT"
                )
            if self.is_nullable:
                raise ValidationError(f"Auto-increment column '{self.name}' cannot be nullable")
            if self.default is not None:
                raise ValidationError(f"Auto-increment column '{self.name}' cannot have a default")
        if self.is_primary and self.is_nullable:
            raise ValidationError(f"Primary key column '{self.name}' cannot be nullable")

    def _validate_default(self) -> None:
        if self.default is None or self.default.raw:
            if self.default is not None and not str(self.default.value).strip():
                raise ValidationError(f"Column '{self.name}' raw default cannot be empty")
            return
        value = self.default.value
        if value is None:
            if not self.is_nullable:
                raise ValidationError(f"NOT NULL column '{self.name}' cannot default to NULL")
            return
        if not isinstance(value, _DEFAULT_SCALARS):
            raise ValidationError(
                f"Column '{self.name}' default must be a str, int, float or bool, "
                f"got {type(value).__name__}"
            )
        if self.type is ColumnType.ENUM and value not in self.enum_values:
            raise ValidationError(
                f"Column '{self.name}' default {value!r} is not one of {list(self.enum_values)}"
            )

    # -- typed factories -------------------------------------------------------------

    @classmethod
    def create(cls, name: str, column_type: Union[ColumnType, str]) -> "ColumnDefinition":
        """Generic factory; string type names are accepted and length-required types get their default length."""
        if isinstance(column_type, str):
            try:
                column_type = ColumnType(column_type.lower())
            except ValueError as exc:
                raise ValidationError(f"Unknown column type '{column_type}'") from exc
        return cls(name=name, type=column_type, length=capabilities(column_type).default_length)

    @classmethod
    def tinyint(cls, name: str, length: Optional[int] = None) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.TINYINT, length=length)

    @classmethod
    def smallint(cls, name: str, length: Optional[int] = None) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.SMALLINT, length=length)

    @classmethod
    def int(cls, name: str, length: Optional[int] = None) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.INT, length=length)

    @classmethod
    def bigint(cls, name: str, length: Optional[int] = None) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.BIGINT, length=length)

    @classmethod
    def float(cls, name: str, precision: Optional[int] = None, scale: Optional[int] = None) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.FLOAT, precision=precision, scale=scale)

    @classmethod
    def double(cls, name: str, precision: Optional[int] = None, scale: Optional[int] = None) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.DOUBLE, precision=precision, scale=scale)

    @classmethod
    def decimal(cls, name: str, precision: int = 10, scale: int = 2) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.DECIMAL, precision=precision, scale=scale)

    @classmethod
    def char(cls, name: str, length: int = 1) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.CHAR, length=length)

    @classmethod
    def varchar(cls, name: str, length: int = 255) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.VARCHAR, length=length)

    @classmethod
    def text(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.TEXT)

    @classmethod
    def mediumtext(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.MEDIUMTEXT)

    @classmethod
    def longtext(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.LONGTEXT)

    @classmethod
    def blob(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.BLOB)

    @classmethod
    def date(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.DATE)

    @classmethod
    def datetime(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.DATETIME)

    @classmethod
    def timestamp(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.TIMESTAMP)

    @classmethod
    def boolean(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.BOOLEAN)

    @classmethod
    def enum(cls, name: str, values: Sequence[str]) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.ENUM, enum_values=tuple(values))

    @classmethod
    def json(cls, name: str) -> "ColumnDefinition":
        return cls(name=name, type=ColumnType.JSON)

    # -- modifiers ---------------------------------------------------------------------

    def not_null(self) -> "ColumnDefinition":
        return replace(self, is_nullable=False)

    def nullable(self) -> "ColumnDefinition":
        return replace(self, is_nullable=True)

    def unsigned(self) -> "ColumnDefinition":
        return replace(self, is_unsigned=True)

    def auto_increment(self) -> "ColumnDefinition":
        return replace(self, is_auto_increment=True, is_nullable=False)

    def primary(self) -> "ColumnDefinition":
        return replace(self, is_primary=True, is_nullable=False)

    def with_length(self, length: int) -> "ColumnDefinition":
        return replace(self, length=length)

    def with_precision(self, precision: int, scale: Optional[int] = None) -> "ColumnDefinition":
        return replace(self, precision=precision, scale=scale)

    def with_default(self, value: Any) -> "ColumnDefinition":
        return replace(self, default=ColumnDefault(value))

    def with_default_raw(self, expression: str) -> "ColumnDefinition":
        return replace(self, default=ColumnDefault(expression, raw=True))

    def without_default(self) -> "ColumnDefinition":
        return replace(self, default=None)

    def with_comment(self, comment: str) -> "ColumnDefinition":
        return replace(self, comment=comment)

    def placed_after(self, column: str) -> "ColumnDefinition":
        return replace(self, after=column)

    def with_collation(self, collation: str) -> "ColumnDefinition":
        return replace(self, collation=collation)

    def with_charset(self, charset: str) -> "ColumnDefinition":
        return replace(self, charset=charset)


class IndexType(enum.Enum):
    INDEX = "INDEX"
    UNIQUE = "UNIQUE"
    PRIMARY = "PRIMARY"
    FULLTEXT = "FULLTEXT"


@dataclass(frozen=True)
class IndexDefinition:
    """A named index over one or more columns. Primary keys need no name."""

    name: Optional[str]
    columns: Tuple[str, ...]
    kind: IndexType = IndexType.INDEX

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", _as_tuple(self.columns))
        if not self.columns:
            raise ValidationError("An index needs at least one column")
        for column in self.columns:
            validate_identifier(column, "Index column")
        if len(set(self.columns)) != len(self.columns):
            raise ValidationError(f"Index columns must be unique: {list(self.columns)}")
        if self.kind is not IndexType.PRIMARY or self.name is not None:
            validate_identifier(self.name, "Index name")

    @classmethod
    def index(cls, name: str, columns: Union[str, Sequence[str]]) -> "IndexDefinition":
        return cls(name=name, columns=_as_tuple(columns))

    @classmethod
    def unique(cls, name: str, columns: Union[str, Sequence[str]]) -> "IndexDefinition":
        return cls(name=name, columns=_as_tuple(columns), kind=IndexType.UNIQUE)

    @classmethod
    def primary(cls, columns: Union[str, Sequence[str]]) -> "IndexDefinition":
        return cls(name=None, columns=_as_tuple(columns), kind=IndexType.PRIMARY)

    @classmethod
    def fulltext(cls, name: str, columns: Union[str, Sequence[str]]) -> "IndexDefinition":
        return cls(name=name, columns=_as_tuple(columns), kind=IndexType.FULLTEXT)

    @property
    def is_unique(self) -> bool:
        return self.kind in (IndexType.UNIQUE, IndexType.PRIMARY)


class ReferentialAction(enum.Enum):
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"
    SET_DEFAULT = "SET DEFAULT"

    @classmethod
    def coerce(cls, value: Union["ReferentialAction", str]) -> "ReferentialAction":
        if isinstance(value, cls):
            return value
        normalized = " ".join(str(value).replace("_", " ").upper().split())
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValidationError(f"Unknown referential action '{value}'") from exc


@dataclass(frozen=True)
class ForeignKeyDefinition:
    """A foreign key constraint; defaults to ON DELETE/ON UPDATE CASCADE."""

    name: str
    columns: Tuple[str, ...]
    reference_table: str
    reference_columns: Tuple[str, ...]
    delete_action: ReferentialAction = ReferentialAction.CASCADE
    update_action: ReferentialAction = ReferentialAction.CASCADE

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", _as_tuple(self.columns))
        object.__setattr__(self, "reference_columns", _as_tuple(self.reference_columns))
        object.__setattr__(self, "delete_action", ReferentialAction.coerce(self.delete_action))
        object.__setattr__(self, "update_action", ReferentialAction.coerce(self.update_action))
        validate_identifier(self.name, "Foreign key name")
        validate_identifier(self.reference_table, "Referenced table")
        if not self.columns:
            raise ValidationError(f"Foreign key '{self.name}' needs at least one column")
        for column in self.columns + self.reference_columns:
            validate_identifier(column, "Foreign key column")
        if len(self.columns) != len(self.reference_columns):
            raise ValidationError(
                f"Foreign key '{self.name}' maps {len(self.columns)} column(s) onto "
                f"{len(self.reference_columns)} referenced column(s)"
            )

    @classmethod
    def create(
        cls,
        name: str,
        columns: Union[str, Sequence[str]],
        reference_table: str,
        reference_columns: Union[str, Sequence[str]] = "id",
    ) -> "ForeignKeyDefinition":
        return cls(
            name=name,
            columns=_as_tuple(columns),
            reference_table=reference_table,
            reference_columns=_as_tuple(reference_columns),
        )

    @classmethod
    def for_column(
        cls,
        column: str,
        reference_table: str,
        reference_column: str = "id",
        name: Optional[str] = None,
    ) -> "ForeignKeyDefinition":
        return cls.create(
            name or f"fk_{column}_{reference_table}", column, reference_table, reference_column
        )

    def on_delete(self, action: Union[ReferentialAction, str]) -> "ForeignKeyDefinition":
        return replace(self, delete_action=ReferentialAction.coerce(action))

    def on_update(self, action: Union[ReferentialAction, str]) -> "ForeignKeyDefinition":
        return replace(self, update_action=ReferentialAction.coerce(action))


@dataclass(frozen=True)
class TableOptions:
    """Table-level parts of a CREATE TABLE statement."""

    primary_key: Tuple[str, ...] = ()
    indexes: Tuple[IndexDefinition, ...] = ()
    foreign_keys: Tuple[ForeignKeyDefinition, ...] = ()
    engine: Optional[str] = None
    charset: Optional[str] = None
    collation: Optional[str] = None
    comment: Optional[str] = None
    if_not_exists: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "primary_key", _as_tuple(self.primary_key))
        object.__setattr__(self, "indexes", tuple(self.indexes))
        object.__setattr__(self, "foreign_keys", tuple(self.foreign_keys))
        for column in self.primary_key:
            validate_identifier(column, "Primary key column")
        for option, value in (
            ("engine", self.engine),
            ("charset", self.charset),
            ("collation", self.collation),
        ):
            if value is not None:
                validate_identifier(value, f"Table {option}")


class AlterKind(enum.Enum):
    ADD_COLUMN = "add_column"
    MODIFY_COLUMN = "modify_column"
    RENAME_COLUMN = "rename_column"
    DROP_COLUMN = "drop_column"
    ADD_INDEX = "add_index"
    DROP_INDEX = "drop_index"
    ADD_FOREIGN_KEY = "add_foreign_key"
    DROP_FOREIGN_KEY = "drop_foreign_key"
    ADD_PRIMARY_KEY = "add_primary_key"
    DROP_PRIMARY_KEY = "drop_primary_key"
    TABLE_OPTION = "table_option"


@dataclass(frozen=True)
class AlterAction:
    """One collected table alteration, compiled later by a dialect."""

    kind: AlterKind
    column: Optional[ColumnDefinition] = None
    name: Optional[str] = None
    new_name: Optional[str] = None
    index: Optional[IndexDefinition] = None
    foreign_key: Optional[ForeignKeyDefinition] = None
    columns: Tuple[str, ...] = ()
    value: Optional[str] = None


__all__ = [
    "IDENTIFIER_PATTERN",
    "validate_identifier",
    "ColumnCapabilities",
    "ColumnType",
    "capabilities",
    "ColumnDefault",
    "ColumnDefinition",
    "IndexType",
    "IndexDefinition",
    "ReferentialAction",
    "ForeignKeyDefinition",
    "TableOptions",
    "AlterKind",
    "AlterAction",
]
