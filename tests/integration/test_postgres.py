"""
Integration tests against a real PostgreSQL instance.

These tests verify that:
1. DDL compiled for Postgres is accepted, prefix and foreign keys included
2. Writes use RETURNING and ON CONFLICT upserts
3. Nested transactions map onto real savepoints
4. Bulk operations and catalog inspection behave as on SQLite

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os

import pytest

from sagadb.domain.isolation import IsolationLevel
from sagadb.domain.schema import ColumnDefinition, ForeignKeyDefinition, TableOptions
from sagadb.exceptions import BatchError, ConstraintViolation

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)

BULK_ROWS = 1200
BULK_BATCH_SIZE = 500


@pytest.fixture()
def pg(pg_db, users_table):
    schema = pg_db.schema()
    schema.drop_tables("posts", "users", if_exists=True)
    schema.create_table("users", *users_table)
    schema.create_table(
        "posts",
        [
            ColumnDefinition.bigint("id").auto_increment().primary(),
            ColumnDefinition.int("user_id").not_null(),
            ColumnDefinition.varchar("title", 200).not_null(),
        ],
        TableOptions(foreign_keys=(ForeignKeyDefinition.for_column("user_id", "users"),)),
    )
    try:
        yield pg_db
    finally:
        schema.drop_tables("posts", "users", if_exists=True)


class TestSchema:
    def test_prefixed_tables_exist(self, pg) -> None:
        schema = pg.schema()
        assert schema.table_exists("users")
        assert {"it_users", "it_posts"} <= set(schema.get_tables())
        assert schema.index_exists("users", "users_email_unique")
        names = [column["name"] for column in schema.get_columns("users")]
        assert names == ["id", "email", "name", "role", "score", "active"]

    def test_indexes_and_foreign_keys(self, pg) -> None:
        schema = pg.schema()
        indexes = {index["name"]: index for index in schema.get_indexes("users")}
        assert indexes["users_email_unique"] == {
            "name": "users_email_unique",
            "columns": ["email"],
            "unique": True,
            "primary": False,
        }
        assert [index["columns"] for index in indexes.values() if index["primary"]] == [["id"]]
        assert schema.foreign_key_exists("posts", "fk_user_id_users")
        assert not schema.foreign_key_exists("users", "fk_user_id_users")

    def test_alter_table(self, pg) -> None:
        schema = pg.schema()
        schema.alter_table(
            "users",
            lambda table: table.add_column(ColumnDefinition.varchar("nickname", 50))
            .rename_column("name", "full_name")
            .add_index("users_role_idx", "role"),
        )
        assert schema.column_exists("users", "nickname")
        assert schema.column_exists("users", "full_name")
        assert schema.index_exists("users", "users_role_idx")


class TestWrites:
    def test_insert_returning_and_foreign_keys(self, pg) -> None:
        user_id = pg.table("users").insert({"email": "a@example.com"}, returning="id")
        assert user_id == 1
        pg.table("posts").insert({"user_id": user_id, "title": "hello"})

        with pytest.raises(ConstraintViolation) as excinfo:
            pg.table("posts").insert({"user_id": 999, "title": "orphan"})
        assert excinfo.value.is_foreign_key_violation
        assert excinfo.value.sqlstate == "23503"

        pg.table("users").where("id", user_id).delete()
        assert pg.table("posts").count() == 0

    def test_upsert(self, pg) -> None:
        users = pg.table("users")
        users.insert({"email": "a@example.com", "score": 1})
        users.upsert(
            [{"email": "a@example.com", "score": 5}, {"email": "b@example.com", "score": 7}],
            update_columns=["score"],
            conflict_columns=["email"],
        )
        assert pg.table("users").order_by("email").pluck("score") == [5, 7]

    def test_duplicate_key(self, pg) -> None:
        pg.table("users").insert({"email": "a@example.com"})
        with pytest.raises(ConstraintViolation) as excinfo:
            pg.table("users").insert({"email": "a@example.com"})
        assert excinfo.value.is_duplicate_key


class TestTransactions:
    def test_nested_rollback_keeps_outer_work(self, pg) -> None:
        tx = pg.transaction()
        with tx.atomic():
            pg.table("users").insert({"email": "a@example.com"})
            with pytest.raises(RuntimeError):
                with tx.atomic():
                    pg.table("users").insert({"email": "b@example.com"})
                    raise RuntimeError("inner")
        assert pg.table("users").pluck("email") == ["a@example.com"]

    def test_isolation_level(self, pg) -> None:
        tx = pg.transaction()
        tx.set_isolation_level(IsolationLevel.SERIALIZABLE)
        with tx.atomic():
            level = pg.select("SHOW transaction_isolation").value("transaction_isolation")
        assert level == "serializable"
        tx.set_isolation_level(IsolationLevel.READ_COMMITTED)


class TestBatches:
    def test_bulk_insert_and_stream(self, pg) -> None:
        rows = [(f"user{i}@example.com", i) for i in range(BULK_ROWS)]
        assert pg.batch().bulk_insert("users", ["email", "score"], rows, batch_size=BULK_BATCH_SIZE) == BULK_ROWS
        assert pg.table("users").count() == BULK_ROWS
        assert sum(1 for _ in pg.batch().stream_results("users", chunk_size=BULK_BATCH_SIZE)) == BULK_ROWS

    def test_failed_bulk_insert_rolls_back(self, pg) -> None:
        rows = [("a@example.com",), ("b@example.com",), ("a@example.com",)]
        with pytest.raises(BatchError):
            pg.batch().bulk_insert("users", ["email"], rows, batch_size=2)
        assert pg.table("users").count() == 0
