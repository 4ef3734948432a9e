from __future__ import annotations

from typing import List

import pytest

from sagadb.connection_manager import PRIMARY
from sagadb.domain.isolation import IsolationLevel
from sagadb.exceptions import (
    ConstraintViolation,
    DatabaseConnectionError,
    StatementError,
    TransactionStateError,
    ValidationError,
)
from sagadb.transaction_manager import TransactionManager


def _sql_log(db) -> List[str]:
    return [entry["sql"] for entry in db.connections.get_query_log()]


def _control_log(db) -> List[str]:
    keywords = ("BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT", "RELEASE")
    return [sql for sql in _sql_log(db) if sql.startswith(keywords)]


def _emails(db) -> List[str]:
    return db.table("users").order_by("id").pluck("email")


class TestNesting:
    def test_nested_blocks_map_to_savepoints(self, users) -> None:
        tx = users.transaction()
        with tx.atomic():
            assert tx.level == 1
            with tx.atomic():
                assert tx.level == 2
                assert tx.state.savepoints == ["sp_1"]
        assert tx.level == 0
        assert _control_log(users) == ["BEGIN", "SAVEPOINT sp_1", "RELEASE SAVEPOINT sp_1", "COMMIT"]

    def test_commits_release_savepoints_in_reverse_order(self, users) -> None:
        tx = users.transaction()
        for _ in range(3):
            tx.begin_transaction()
        for _ in range(3):
            tx.commit()
        assert _control_log(users) == [
            "BEGIN",
            "SAVEPOINT sp_1",
            "SAVEPOINT sp_2",
            "RELEASE SAVEPOINT sp_2",
            "RELEASE SAVEPOINT sp_1",
            "COMMIT",
        ]

    def test_inner_failure_only_undoes_inner_work(self, users) -> None:
        tx = users.transaction()
        with tx.atomic():
            users.table("users").insert({"email": "a@example.com"})
            with pytest.raises(RuntimeError, match="inner"):
                with tx.atomic():
                    users.table("users").insert({"email": "b@example.com"})
                    raise RuntimeError("inner")
            assert tx.level == 1

        assert _emails(users) == ["a@example.com"]
        assert _control_log(users) == ["BEGIN", "SAVEPOINT sp_1", "ROLLBACK TO SAVEPOINT sp_1", "COMMIT"]

    def test_outer_failure_undoes_everything(self, users) -> None:
        tx = users.transaction()
        error = ValueError("outer")
        with pytest.raises(ValueError) as excinfo:
            with tx.atomic():
                users.table("users").insert({"email": "a@example.com"})
                with tx.atomic():
                    users.table("users").insert({"email": "b@example.com"})
                raise error
        assert excinfo.value is error
        assert tx.level == 0
        assert _emails(users) == []

    def test_failure_in_nested_block_propagating_out_unwinds_all_levels(self, users) -> None:
        tx = users.transaction()
        with pytest.raises(KeyError):
            with tx.atomic():
                users.table("users").insert({"email": "a@example.com"})
                with tx.atomic():
                    raise KeyError("boom")
        assert tx.level == 0
        assert _control_log(users)[-2:] == ["ROLLBACK TO SAVEPOINT sp_1", "ROLLBACK"]
        assert _emails(users) == []

    def test_transactional_returns_value(self, users) -> None:
        new_id = users.transactional(lambda: users.table("users").insert({"email": "a@example.com"}))
        assert new_id == 1
        assert users.transaction().level == 0

    def test_commit_and_rollback_require_a_transaction(self, users) -> None:
        tx = users.transaction()
        with pytest.raises(TransactionStateError, match="without an active transaction"):
            tx.commit()
        with pytest.raises(TransactionStateError, match="without an active transaction"):
            tx.rollback()

    def test_state_is_a_snapshot(self, users) -> None:
        tx = users.transaction()
        tx.begin_transaction()
        snapshot = tx.state
        snapshot.level = 99
        snapshot.savepoints.append("bogus")
        assert tx.level == 1
        assert tx.state.savepoints == []
        tx.rollback()


class TestNamedSavepoints:
    def test_rollback_to_and_release(self, users) -> None:
        tx = users.transaction()
        tx.begin_transaction()
        users.table("users").insert({"email": "a@example.com"})
        tx.savepoint("before_b")
        users.table("users").insert({"email": "b@example.com"})
        tx.rollback_to_savepoint("before_b")
        users.table("users").insert({"email": "c@example.com"})
        tx.release_savepoint("before_b")
        tx.commit()

        assert _emails(users) == ["a@example.com", "c@example.com"]
        assert "SAVEPOINT user_before_b" in _sql_log(users)
        assert "ROLLBACK TO SAVEPOINT user_before_b" in _sql_log(users)
        assert "RELEASE SAVEPOINT user_before_b" in _sql_log(users)

    def test_later_savepoints_are_forgotten(self, users) -> None:
        tx = users.transaction()
        tx.begin_transaction()
        tx.savepoint("first")
        tx.savepoint("second")
        tx.rollback_to_savepoint("first")
        assert tx.state.named_savepoints == {"first": 1}
        with pytest.raises(TransactionStateError, match="Unknown savepoint 'second'"):
            tx.release_savepoint("second")
        tx.release_savepoint("first")
        assert tx.state.named_savepoints == {}
        tx.rollback()

    def test_savepoints_are_bound_to_their_level(self, users) -> None:
        tx = users.transaction()
        tx.begin_transaction()
        tx.savepoint("outer")
        tx.begin_transaction()
        with pytest.raises(TransactionStateError, match="belongs to nesting level 1"):
            tx.rollback_to_savepoint("outer")
        tx.savepoint("inner")
        tx.commit()
        # Released together with the nested level that created it.
        assert tx.state.named_savepoints == {"outer": 1}
        tx.rollback()

    def test_savepoint_validation(self, users) -> None:
        tx = users.transaction()
        with pytest.raises(TransactionStateError, match="requires an active transaction"):
            tx.savepoint("x")
        tx.begin_transaction()
        with pytest.raises(ValidationError):
            tx.savepoint("bad name")
        tx.rollback()


class TestSessionCharacteristics:
    def test_isolation_level(self, users) -> None:
        tx = users.transaction()
        tx.set_isolation_level("read uncommitted")
        assert tx.state.isolation_level is IsolationLevel.READ_UNCOMMITTED
        assert "PRAGMA read_uncommitted = 1" in _sql_log(users)

        tx.begin_transaction()
        with pytest.raises(TransactionStateError, match="cannot change inside a transaction"):
            tx.set_isolation_level(IsolationLevel.SERIALIZABLE)
        tx.rollback()

    def test_read_only(self, users) -> None:
        tx = users.transaction()
        tx.set_read_only(True)
        assert tx.state.read_only
        with pytest.raises(StatementError, match="readonly"):
            users.table("users").insert({"email": "a@example.com"})
        tx.set_read_only(False)
        users.table("users").insert({"email": "a@example.com"})
        assert _emails(users) == ["a@example.com"]


class TestCallbacks:
    def test_after_commit(self, users) -> None:
        tx = users.transaction()
        events: List[str] = []

        tx.after_commit(lambda: events.append("immediate"))
        assert events == ["immediate"]

        with tx.atomic():
            tx.after_commit(lambda: events.append("outer"))
            with tx.atomic():
                tx.after_commit(lambda: events.append("kept"))
            with pytest.raises(RuntimeError):
                with tx.atomic():
                    tx.after_commit(lambda: events.append("dropped"))
                    raise RuntimeError("inner")
            assert events == ["immediate"]

        assert events == ["immediate", "outer", "kept"]

    def test_after_rollback(self, users) -> None:
        tx = users.transaction()
        events: List[str] = []
        with pytest.raises(TransactionStateError):
            tx.after_rollback(lambda: events.append("never"))

        with pytest.raises(RuntimeError):
            with tx.atomic():
                tx.after_rollback(lambda: events.append("rolled back"))
                tx.after_commit(lambda: events.append("committed"))
                raise RuntimeError("fail")
        assert events == ["rolled back"]


class TestFailures:
    def test_failed_commit_rolls_back_and_resets(self, db) -> None:
        db.statement("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
        db.statement(
            "CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER "
            "REFERENCES parent(id) DEFERRABLE INITIALLY DEFERRED)"
        )
        tx = db.transaction()
        events: List[str] = []

        tx.begin_transaction()
        tx.after_rollback(lambda: events.append("rolled back"))
        db.statement("INSERT INTO child (parent_id) VALUES (?)", [99])
        with pytest.raises(ConstraintViolation) as excinfo:
            tx.commit()

        assert excinfo.value.is_foreign_key_violation
        assert tx.level == 0
        assert _sql_log(db)[-1] == "ROLLBACK"
        assert events == ["rolled back"]
        assert db.select("SELECT COUNT(*) AS n FROM child").value("n") == 0

    def test_release_failure_unwinds_the_nested_level(self, users, monkeypatch) -> None:
        tx = users.transaction()
        execute = users.connections.execute

        def refuse_release(sql, bindings=(), connection_id=PRIMARY):
            if sql.startswith("RELEASE SAVEPOINT"):
                raise StatementError("cannot release savepoint")
            return execute(sql, bindings, connection_id)

        monkeypatch.setattr(users.connections, "execute", refuse_release)
        with tx.atomic():
            users.table("users").insert({"email": "a@example.com"})
            with pytest.raises(StatementError, match="cannot release"):
                with tx.atomic():
                    users.table("users").insert({"email": "b@example.com"})
            assert tx.level == 1
            assert tx.state.savepoints == []

        assert _emails(users) == ["a@example.com"]
        assert _control_log(users)[-2:] == ["ROLLBACK TO SAVEPOINT sp_1", "COMMIT"]


class TestLostConnection:
    def test_reconnect_blocks_statements_until_rollback(self, db) -> None:
        tx = db.transaction()
        events: List[str] = []
        tx.begin_transaction()
        tx.after_rollback(lambda: events.append("rolled back"))
        tx.begin_transaction()

        db.connections.reconnect()

        assert tx.level == 2
        assert tx.state.lost
        with pytest.raises(DatabaseConnectionError, match="replaced while a transaction was open"):
            db.select("SELECT 1 AS one")
        with pytest.raises(DatabaseConnectionError):
            tx.begin_transaction()

        tx.rollback()
        tx.rollback()

        assert tx.level == 0
        assert not tx.state.lost
        assert events == ["rolled back"]
        assert db.select("SELECT 1 AS one").value("one") == 1
        tx.begin_transaction()
        tx.commit()

    def test_commit_after_reconnect_fails_and_resets(self, db) -> None:
        tx = db.transaction()
        tx.begin_transaction()
        db.connections.reconnect()

        with pytest.raises(DatabaseConnectionError):
            tx.commit()

        assert tx.level == 0
        assert not db.connections.connection_state().transaction_lost

    def test_atomic_block_interrupted_by_reconnect_persists_nothing(self, file_users, drop_connection) -> None:
        tx = file_users.transaction()
        with pytest.raises(DatabaseConnectionError):
            with tx.atomic():
                file_users.table("users").insert({"email": "a@example.com"})
                drop_connection(file_users)
                file_users.table("users").insert({"email": "b@example.com"})

        assert tx.level == 0
        assert file_users.connections.get_stats()["reconnects"] == 1
        assert _emails(file_users) == []

    def test_reconnect_outside_a_transaction_is_transparent(self, file_users, drop_connection) -> None:
        file_users.table("users").insert({"email": "a@example.com"})
        drop_connection(file_users)
        file_users.table("users").insert({"email": "b@example.com"})

        assert _emails(file_users) == ["a@example.com", "b@example.com"]


class TestRunWithRetry:
    def test_retries_transient_conflicts(self, users) -> None:
        tx = TransactionManager(users.connections, retry_backoff=0)
        attempts: List[int] = []

        def work() -> str:
            attempts.append(tx.level)
            users.table("users").insert({"email": f"try{len(attempts)}@example.com"})
            if len(attempts) == 1:
                raise StatementError("database is locked", driver_code="SQLITE_BUSY")
            return "done"

        assert tx.run_with_retry(work, max_attempts=3) == "done"
        assert attempts == [1, 1]
        assert _emails(users) == ["try2@example.com"]

    def test_does_not_retry_other_errors(self, users) -> None:
        tx = TransactionManager(users.connections, retry_backoff=0)
        calls: List[int] = []

        def work() -> None:
            calls.append(1)
            raise StatementError("syntax error")

        with pytest.raises(StatementError, match="syntax error"):
            tx.run_with_retry(work)
        assert len(calls) == 1

    def test_gives_up_after_max_attempts(self, users) -> None:
        tx = TransactionManager(users.connections, retry_backoff=0)
        calls: List[int] = []

        def work() -> None:
            calls.append(1)
            raise StatementError("deadlock detected", sqlstate="40P01")

        with pytest.raises(StatementError) as excinfo:
            tx.run_with_retry(work, max_attempts=2)
        assert excinfo.value.is_deadlock
        assert len(calls) == 2

    def test_refuses_to_run_inside_a_transaction(self, users) -> None:
        tx = users.transaction()
        with tx.atomic():
            with pytest.raises(TransactionStateError, match="outside a transaction"):
                tx.run_with_retry(lambda: None)
