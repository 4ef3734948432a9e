from __future__ import annotations

import pytest

from sagadb.domain.schema import ColumnDefinition, ForeignKeyDefinition, IndexDefinition, TableOptions
from sagadb.exceptions import ConstraintViolation, StatementError, ValidationError

POSTS_COLUMNS = [
    ColumnDefinition.int("id").auto_increment().primary(),
    ColumnDefinition.int("user_id").not_null(),
    ColumnDefinition.varchar("title", 200).not_null(),
]
POSTS_OPTIONS = TableOptions(foreign_keys=(ForeignKeyDefinition.for_column("user_id", "users"),))


@pytest.fixture()
def prefixed(make_db, users_table):
    facade = make_db(table_prefix="app_")
    facade.schema().create_table("users", *users_table)
    facade.schema().create_table("posts", POSTS_COLUMNS, POSTS_OPTIONS)
    return facade


def _sql_log(db):
    return [entry["sql"] for entry in db.connections.get_query_log()]


class TestCreate:
    def test_create_table_and_inspect(self, db, users_table) -> None:
        schema = db.schema()
        statements = schema.create_table("users", *users_table)

        assert len(statements) == 2
        assert schema.table_exists("users")
        assert not schema.table_exists("missing")
        assert schema.get_tables() == ["users"]
        assert schema.column_exists("users", "email")
        assert not schema.column_exists("users", "nickname")
        assert schema.index_exists("users", "users_email_unique")
        assert not schema.index_exists("users", "users_name_idx")

    def test_get_columns(self, users) -> None:
        columns = {column["name"]: column for column in users.schema().get_columns("users")}

        assert list(columns) == ["id", "email", "name", "role", "score", "active"]
        assert columns["id"] == {
            "name": "id",
            "type": "INTEGER",
            "nullable": False,
            "default": None,
            "primary": True,
        }
        assert columns["email"]["type"] == "VARCHAR(191)"
        assert columns["name"]["nullable"] is True
        assert columns["role"]["default"] == "'member'"
        assert columns["score"]["default"] == "0"

    def test_multi_statement_create_runs_in_a_transaction(self, db, users_table) -> None:
        db.schema().create_table("users", *users_table)
        log = _sql_log(db)
        assert log[0] == "BEGIN"
        assert log[1].startswith('CREATE TABLE `users`')
        assert log[2].startswith('CREATE UNIQUE INDEX `users_email_unique`')
        assert log[3] == "COMMIT"

    def test_failed_create_leaves_nothing_behind(self, db) -> None:
        schema = db.schema()
        options = TableOptions(indexes=(IndexDefinition.index("broken_idx", "missing"),))
        with pytest.raises(StatementError, match="missing"):
            schema.create_table("broken", [ColumnDefinition.int("a")], options)
        assert not schema.table_exists("broken")
        assert db.transaction().level == 0

    def test_compile_create_table_does_not_execute(self, db, users_table) -> None:
        statements = db.schema().compile_create_table("users", *users_table)
        assert statements[0].startswith('CREATE TABLE `users`')
        assert db.connections.get_query_log() == []
        assert not db.schema().table_exists("users")

    def test_rejects_invalid_table_names(self, db, users_table) -> None:
        with pytest.raises(ValidationError):
            db.schema().create_table("users; DROP TABLE x", *users_table)


class TestAlter:
    def test_column_alterations(self, users) -> None:
        schema = users.schema()
        statements = schema.alter_table(
            "users",
            lambda table: table.add_column(ColumnDefinition.varchar("nickname", 50))
            .rename_column("name", "full_name")
            .drop_column("score"),
        )

        assert statements == [
            'ALTER TABLE `users` ADD COLUMN `nickname` VARCHAR(50)',
            'ALTER TABLE `users` RENAME COLUMN `name` TO `full_name`',
            'ALTER TABLE `users` DROP COLUMN `score`',
        ]
        names = [column["name"] for column in schema.get_columns("users")]
        assert names == ["id", "email", "full_name", "role", "active", "nickname"]

    def test_index_alterations(self, users) -> None:
        schema = users.schema()
        schema.alter_table("users", lambda table: table.add_index("users_role_idx", "role"))
        assert schema.index_exists("users", "users_role_idx")
        schema.alter_table("users", lambda table: table.drop_index("users_role_idx"))
        assert not schema.index_exists("users", "users_role_idx")

    def test_unsupported_alteration_fails_before_running_anything(self, users) -> None:
        schema = users.schema()
        with pytest.raises(StatementError, match="cannot express the alteration add_foreign_key"):
            schema.alter_table(
                "users",
                lambda table: table.add_column(ColumnDefinition.int("team_id")).add_foreign_key(
                    ForeignKeyDefinition.for_column("team_id", "teams")
                ),
            )
        assert users.connections.get_query_log() == []
        assert not schema.column_exists("users", "team_id")

    def test_empty_alteration_is_a_no_op(self, users) -> None:
        assert users.schema().alter_table("users", lambda table: None) == []
        assert users.connections.get_query_log() == []


class TestTableOperations:
    def test_rename_truncate_drop(self, users) -> None:
        schema = users.schema()
        users.table("users").insert({"email": "a@example.com"})

        schema.rename_table("users", "members")
        assert schema.get_tables() == ["members"]

        schema.truncate("members")
        assert users.table("members").count() == 0
        assert _sql_log(users)[-2] == 'DELETE FROM `members`'

        schema.drop_table("members")
        assert not schema.table_exists("members")
        schema.drop_table_if_exists("members")
        with pytest.raises(StatementError, match="no such table"):
            schema.drop_table("members")

    def test_drop_tables_runs_as_one_unit(self, prefixed) -> None:
        schema = prefixed.schema()
        prefixed.connections.clear_query_log()

        with pytest.raises(StatementError, match="no such table"):
            schema.drop_tables("posts", "missing")
        assert schema.get_tables() == ["app_posts", "app_users"]
        assert prefixed.transaction().level == 0

        with pytest.raises(ValidationError):
            schema.drop_tables("posts", "users; --")
        assert schema.table_exists("posts")

        prefixed.connections.clear_query_log()
        statements = schema.drop_tables("posts", "users", "missing", if_exists=True)
        assert statements == [
            "DROP TABLE IF EXISTS `app_posts`",
            "DROP TABLE IF EXISTS `app_users`",
            "DROP TABLE IF EXISTS `app_missing`",
        ]
        assert _sql_log(prefixed) == ["BEGIN", *statements, "COMMIT"]
        assert schema.get_tables() == []
        assert schema.drop_tables() == []


class TestCatalog:
    def test_get_indexes(self, users) -> None:
        schema = users.schema()
        schema.alter_table("users", lambda table: table.add_index("users_role_score_idx", ["role", "score"]))

        assert schema.get_indexes("users") == [
            {"name": "users_email_unique", "columns": ["email"], "unique": True, "primary": False},
            {"name": "users_role_score_idx", "columns": ["role", "score"], "unique": False, "primary": False},
        ]
        assert schema.get_indexes("missing") == []

    def test_composite_primary_key_is_reported(self, db) -> None:
        schema = db.schema()
        schema.create_table(
            "memberships",
            [ColumnDefinition.int("user_id"), ColumnDefinition.int("team_id")],
            TableOptions(primary_key=("user_id", "team_id")),
        )

        [index] = schema.get_indexes("memberships")
        assert (index["columns"], index["unique"], index["primary"]) == (["user_id", "team_id"], True, True)

    def test_foreign_key_exists(self, prefixed) -> None:
        schema = prefixed.schema()
        assert schema.foreign_key_exists("posts", "fk_user_id_users")
        assert not schema.foreign_key_exists("posts", "fk_team_id_teams")
        assert not schema.foreign_key_exists("users", "fk_user_id_users")
        with pytest.raises(ValidationError):
            schema.foreign_key_exists("posts", "fk; --")


class TestPrefix:
    def test_prefix_applies_to_tables_and_foreign_keys(self, prefixed) -> None:
        schema = prefixed.schema()
        statements = schema.compile_create_table("posts", POSTS_COLUMNS, POSTS_OPTIONS)

        assert statements[0].startswith('CREATE TABLE `app_posts`')
        assert 'REFERENCES `app_users` (`id`)' in statements[0]
        assert schema.get_tables() == ["app_posts", "app_users"]
        assert schema.table_exists("posts")
        assert prefixed.get_table_name("posts") == "app_posts"

    def test_foreign_keys_are_enforced_and_cascade(self, prefixed) -> None:
        user_id = prefixed.table("users").insert({"email": "a@example.com"})
        prefixed.table("posts").insert({"user_id": user_id, "title": "hello"})
        with pytest.raises(ConstraintViolation) as excinfo:
            prefixed.table("posts").insert({"user_id": 999, "title": "orphan"})
        assert excinfo.value.is_foreign_key_violation

        prefixed.table("users").where("id", user_id).delete()
        assert prefixed.table("posts").count() == 0
