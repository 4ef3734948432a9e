from __future__ import annotations

import pytest

from sagadb.domain.schema import (
    ColumnDefinition,
    ColumnType,
    ForeignKeyDefinition,
    IndexDefinition,
    IndexType,
    ReferentialAction,
    TableOptions,
    validate_identifier,
)
from sagadb.exceptions import ValidationError


def test_factories_apply_type_defaults() -> None:
    assert ColumnDefinition.varchar("email").length == 255
    assert ColumnDefinition.char("code").length == 1
    price = ColumnDefinition.decimal("price")
    assert (price.precision, price.scale) == (10, 2)
    assert ColumnDefinition.create("title", "VARCHAR").length == 255
    assert ColumnDefinition.create("body", ColumnType.TEXT).length is None


def test_modifiers_return_new_values() -> None:
    base = ColumnDefinition.int("age")
    required = base.not_null().unsigned().with_default(0)

    assert base.is_nullable and not base.is_unsigned and base.default is None
    assert not required.is_nullable
    assert required.is_unsigned
    assert required.default.value == 0
    assert required.nullable().is_nullable


def test_auto_increment_and_primary_imply_not_null() -> None:
    column = ColumnDefinition.bigint("id").auto_increment().primary()
    assert column.is_auto_increment and column.is_primary
    assert not column.is_nullable
    with pytest.raises(ValidationError, match="cannot be nullable"):
        column.nullable()


@pytest.mark.parametrize(
    "build, message",
    [
        (lambda: ColumnDefinition.text("body").with_length(10), "does not support a length"),
        (lambda: ColumnDefinition.varchar("s", 0), "positive integer"),
        (lambda: ColumnDefinition.char("c", 300), "exceeds 255"),
        (lambda: ColumnDefinition.varchar("note").unsigned(), "UNSIGNED"),
        (lambda: ColumnDefinition.varchar("n").auto_increment(), "AUTO_INCREMENT"),
        (lambda: ColumnDefinition.decimal("p", 70, 2), "between 1 and 65"),
        (lambda: ColumnDefinition.decimal("p", 5, 6), "scale"),
        (lambda: ColumnDefinition.int("x").with_precision(5), "does not support precision"),
        (lambda: ColumnDefinition.enum("state", []), "non-empty value list"),
        (lambda: ColumnDefinition.enum("state", ["a", "a"]), "unique"),
        (lambda: ColumnDefinition.enum("state", ["a", "b"]).with_default("c"), "not one of"),
        (lambda: ColumnDefinition.int("n").not_null().with_default(None), "cannot default to NULL"),
        (lambda: ColumnDefinition.int("n").with_default([1]), "default must be"),
        (lambda: ColumnDefinition.int("n").with_charset("utf8mb4"), "charset or collation"),
        (lambda: ColumnDefinition.int("1bad"), "must start with a letter"),
    ],
)
def test_invalid_definitions_are_rejected(build, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        build()


def test_capability_table_drives_validation() -> None:
    assert ColumnType.VARCHAR.requires_length
    assert ColumnType.DECIMAL.requires_precision
    assert ColumnType.BIGINT.supports_auto_increment
    assert ColumnType.ENUM.requires_values
    assert not ColumnType.JSON.supports_length
    assert ColumnType.SMALLINT.is_integer and not ColumnType.DECIMAL.is_integer


def test_raw_default_is_kept_verbatim() -> None:
    column = ColumnDefinition.timestamp("created_at").with_default_raw("CURRENT_TIMESTAMP")
    assert column.default.raw
    with pytest.raises(ValidationError, match="raw default cannot be empty"):
        ColumnDefinition.timestamp("created_at").with_default_raw("  ")


def test_validate_identifier() -> None:
    assert validate_identifier("users_2024") == "users_2024"
    with pytest.raises(ValidationError):
        validate_identifier("users; DROP TABLE x")
    with pytest.raises(ValidationError, match="exceeds 64"):
        validate_identifier("a" * 65)
    with pytest.raises(ValidationError, match="non-empty"):
        validate_identifier("")


def test_index_definitions() -> None:
    index = IndexDefinition.unique("users_email_unique", "email")
    assert index.columns == ("email",)
    assert index.is_unique
    assert IndexDefinition.primary(["a", "b"]).kind is IndexType.PRIMARY
    with pytest.raises(ValidationError, match="at least one column"):
        IndexDefinition.index("idx", [])
    with pytest.raises(ValidationError, match="must be unique"):
        IndexDefinition.index("idx", ["a", "a"])


def test_foreign_key_defaults_to_cascade() -> None:
    fk = ForeignKeyDefinition.for_column("user_id", "users")
    assert fk.name == "fk_user_id_users"
    assert fk.reference_columns == ("id",)
    assert fk.delete_action is ReferentialAction.CASCADE
    assert fk.update_action is ReferentialAction.CASCADE

    restricted = fk.on_delete("set_null").on_update("RESTRICT")
    assert restricted.delete_action is ReferentialAction.SET_NULL
    assert restricted.update_action is ReferentialAction.RESTRICT

    with pytest.raises(ValidationError, match="Unknown referential action"):
        fk.on_delete("explode")
    with pytest.raises(ValidationError, match="maps 2 column"):
        ForeignKeyDefinition.create("fk", ["a", "b"], "t", "id")


def test_table_options_validate_names() -> None:
    options = TableOptions(primary_key="id", engine="InnoDB")
    assert options.primary_key == ("id",)
    with pytest.raises(ValidationError):
        TableOptions(charset="utf8; DROP")
