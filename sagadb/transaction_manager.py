"""
Nested transactions over a single connection.

One ``TransactionManager`` exists per named connection. It tracks a nesting
level and maps it onto real SQL:

- level 0 -> 1: ``BEGIN``
- level n -> n+1: ``SAVEPOINT sp_n``
- commit at level 1: ``COMMIT``; deeper: ``RELEASE SAVEPOINT`` of the top name
- rollback at level 1: ``ROLLBACK``; deeper: ``ROLLBACK TO SAVEPOINT`` of the top name

so ``atomic()`` blocks compose: an inner failure only undoes the inner
block's work. Explicit savepoints created with ``savepoint(name)`` are
rendered as ``user_<name>`` and can never collide with the automatic
``sp_<n>`` names.

Connections are opened in autocommit mode, which is what makes issuing the
control statements ourselves safe on every driver.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple, TypeVar, Union

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from sagadb.connection_manager import PRIMARY, ConnectionManager
from sagadb.domain.isolation import IsolationLevel
from sagadb.domain.schema import validate_identifier
from sagadb.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    StatementError,
    TransactionStateError,
)
from sagadb.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class TransactionState:
    level: int = 0
    isolation_level: Optional[IsolationLevel] = None
    read_only: bool = False
    # Automatic savepoints, innermost last.
    savepoints: List[str] = field(default_factory=list)
    # Explicit savepoint name -> nesting level it was created at, in creation order.
    named_savepoints: Dict[str, int] = field(default_factory=dict)
    # The connection was replaced under this transaction; only rollback is allowed.
    lost: bool = False


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, StatementError) and exc.is_retryable


class TransactionManager:
    """
    Transaction state machine for one connection.

    Parameters
    ----------
    connections : ConnectionManager
        Executes the control statements.
    connection_id : str
        The connection this manager drives.
    retry_backoff : float
        Multiplier for the exponential wait of ``run_with_retry``.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        connection_id: str = PRIMARY,
        retry_backoff: float = 0.05,
    ) -> None:
        self._connections = connections
        self.connection_id = connection_id
        self.retry_backoff = retry_backoff
        self._state = TransactionState()
        self._after_commit: List[Tuple[int, Callable[[], Any]]] = []
        self._after_rollback: List[Callable[[], Any]] = []
        connections.add_reconnect_listener(self._on_reconnect)

    # -- state ------------------------------------------------------------------------

    @property
    def level(self) -> int:
        return self._state.level

    @property
    def state(self) -> TransactionState:
        """A snapshot of the current state; mutating it has no effect."""
        return TransactionState(
            level=self._state.level,
            isolation_level=self._state.isolation_level,
            read_only=self._state.read_only,
            savepoints=list(self._state.savepoints),
            named_savepoints=dict(self._state.named_savepoints),
            lost=self._state.lost,
        )

    def in_transaction(self) -> bool:
        return self._state.level > 0

    def _run(self, sql: str) -> None:
        self._connections.execute(sql, (), self.connection_id)

    @property
    def _dialect(self):
        return self._connections.dialect

    def _reset(self) -> None:
        if self._state.lost:
            self._connections.mark_transaction_lost(self.connection_id, False)
            self._state.lost = False
        self._state.level = 0
        self._state.savepoints.clear()
        self._state.named_savepoints.clear()
        self._after_commit.clear()
        self._after_rollback.clear()

    def _forget_named(self, from_level: int) -> None:
        self._state.named_savepoints = {
            name: level
            for name, level in self._state.named_savepoints.items()
            if level < from_level
        }

    def _on_reconnect(self, connection_id: str) -> None:
        # The server discarded the transaction with the old connection. Keep the
        # nesting level so the caller's rollback or unwind still finds it, and
        # refuse every statement until then: in autocommit they would persist.
        if connection_id != self.connection_id or not self._state.level:
            return
        log.warning(
            "[TX LOST] connection was replaced; open transaction discarded",
            extra={"connection": connection_id, "level": self._state.level},
        )
        self._state.lost = True
        self._connections.mark_transaction_lost(connection_id)

    def _run_rollback(self, sql: str) -> None:
        if self._state.lost:
            return
        try:
            self._run(sql)
        except DatabaseConnectionError:
            # Replaced while rolling back: there is nothing left to roll back.
            if not self._state.lost:
                raise

    # -- begin / commit / rollback ----------------------------------------------------

    def begin_transaction(self) -> None:
        level = self._state.level
        if level == 0:
            self._run(self._dialect.begin_sql)
            log.debug("[TX BEGIN] transaction started", extra={"connection": self.connection_id})
        else:
            name = f"sp_{level}"
            self._run(self._dialect.savepoint_sql(name))
            self._state.savepoints.append(name)
            log.debug(
                "[TX SAVEPOINT] nested transaction started",
                extra={"connection": self.connection_id, "savepoint": name, "level": level + 1},
            )
        self._state.level = level + 1

    def commit(self) -> None:
        level = self._state.level
        if level == 0:
            raise TransactionStateError("commit() called without an active transaction")
        if level > 1:
            name = self._state.savepoints[-1]
            self._run(self._dialect.release_savepoint_sql(name))
            self._state.savepoints.pop()
            self._state.level = level - 1
            self._forget_named(level)
            # Work committed into the parent now lives or dies with the parent.
            self._after_commit = [(min(at, level - 1), fn) for at, fn in self._after_commit]
            log.debug(
                "[TX RELEASE] nested transaction committed",
                extra={"connection": self.connection_id, "savepoint": name, "level": level - 1},
            )
            return

        try:
            self._run(self._dialect.commit_sql)
        except DatabaseError:
            log.warning(
                "[TX COMMIT FAILED] rolling back",
                extra={"connection": self.connection_id},
            )
            self._abandon()
            raise
        callbacks = [fn for _, fn in self._after_commit]
        self._reset()
        log.debug("[TX COMMIT] transaction committed", extra={"connection": self.connection_id})
        for callback in callbacks:
            callback()

    def rollback(self) -> None:
        level = self._state.level
        if level == 0:
            raise TransactionStateError("rollback() called without an active transaction")
        if level > 1:
            name = self._state.savepoints[-1]
            self._run_rollback(self._dialect.rollback_to_savepoint_sql(name))
            self._state.savepoints.pop()
            self._state.level = level - 1
            self._forget_named(level)
            self._after_commit = [(at, fn) for at, fn in self._after_commit if at < level]
            log.debug(
                "[TX ROLLBACK TO] nested transaction rolled back",
                extra={"connection": self.connection_id, "savepoint": name, "level": level - 1},
            )
            return

        callbacks = list(self._after_rollback)
        try:
            self._run_rollback(self._dialect.rollback_sql)
        finally:
            self._reset()
        log.debug("[TX ROLLBACK] transaction rolled back", extra={"connection": self.connection_id})
        for callback in callbacks:
            callback()

    def _abandon(self) -> None:
        """Best-effort ROLLBACK of the outermost transaction, then forget all state."""
        callbacks = list(self._after_rollback)
        try:
            self._run_rollback(self._dialect.rollback_sql)
        except DatabaseError:
            log.exception(
                "[TX ABANDON] outermost rollback failed",
                extra={"connection": self.connection_id},
            )
            callbacks = []
        self._reset()
        for callback in callbacks:
            callback()

    def _unwind(self, target_level: int) -> None:
        """Roll back every level at or above ``target_level`` without masking the caller's error."""
        while self._state.level >= target_level and self._state.level > 0:
            try:
                self.rollback()
            except DatabaseError:
                log.exception(
                    "[TX ROLLBACK FAILED] rollback during error handling failed",
                    extra={"connection": self.connection_id, "level": self._state.level},
                )
                if self._state.level > 0:
                    self._abandon()
                return

    # -- scoped forms -----------------------------------------------------------------

    @contextlib.contextmanager
    def atomic(self) -> Generator["TransactionManager", None, None]:
        """
        Run the block in a (possibly nested) transaction.

        Commits when the block exits normally. On any exception the block's
        level is rolled back first and the original exception is re-raised
        unchanged.
        """
        self.begin_transaction()
        entered_level = self._state.level
        try:
            yield self
        except BaseException:
            self._unwind(entered_level)
            raise
        try:
            self.commit()
        except BaseException:
            # A failed outermost COMMIT has already rolled back; a failed
            # RELEASE SAVEPOINT leaves this block's level open.
            self._unwind(entered_level)
            raise

    def transactional(self, fn: Callable[[], T]) -> T:
        with self.atomic():
            return fn()

    def run_with_retry(self, fn: Callable[[], T], max_attempts: int = 3) -> T:
        """
        Run ``fn`` transactionally, retrying the whole transaction on deadlocks
        and lock timeouts.

        Only allowed outside a transaction: a retry inside an outer transaction
        could not undo the outer transaction's lost locks.
        """
        if self._state.level:
            raise TransactionStateError("run_with_retry() must be called outside a transaction")
        retrying = Retrying(
            stop=stop_after_attempt(max(1, max_attempts)),
            wait=wait_exponential(multiplier=self.retry_backoff, max=2),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        return retrying(self.transactional, fn)

    # -- explicit savepoints ----------------------------------------------------------

    def _require_active(self, operation: str) -> None:
        if not self._state.level:
            raise TransactionStateError(f"{operation}() requires an active transaction")

    def _require_named(self, name: str, operation: str) -> None:
        self._require_active(operation)
        created_at = self._state.named_savepoints.get(name)
        if created_at is None:
            raise TransactionStateError(f"Unknown savepoint '{name}'")
        if created_at != self._state.level:
            raise TransactionStateError(
                f"Savepoint '{name}' belongs to nesting level {created_at}, "
                f"current level is {self._state.level}"
            )

    def _drop_named_after(self, name: str, inclusive: bool) -> None:
        names = list(self._state.named_savepoints)
        cut = names.index(name) + (0 if inclusive else 1)
        for later in names[cut:]:
            del self._state.named_savepoints[later]

    def savepoint(self, name: str) -> None:
        self._require_active("savepoint")
        validate_identifier(name, "savepoint name")
        self._run(self._dialect.savepoint_sql(f"user_{name}"))
        self._state.named_savepoints.pop(name, None)
        self._state.named_savepoints[name] = self._state.level
        log.debug("[TX SAVEPOINT] named savepoint created", extra={"savepoint": name})

    def rollback_to_savepoint(self, name: str) -> None:
        """Undo work since ``savepoint(name)``; the savepoint itself stays usable."""
        self._require_named(name, "rollback_to_savepoint")
        self._run(self._dialect.rollback_to_savepoint_sql(f"user_{name}"))
        self._drop_named_after(name, inclusive=False)
        log.debug("[TX ROLLBACK TO] rolled back to named savepoint", extra={"savepoint": name})

    def release_savepoint(self, name: str) -> None:
        self._require_named(name, "release_savepoint")
        self._run(self._dialect.release_savepoint_sql(f"user_{name}"))
        self._drop_named_after(name, inclusive=True)
        log.debug("[TX RELEASE] named savepoint released", extra={"savepoint": name})

    # -- session characteristics ------------------------------------------------------

    def set_isolation_level(self, level: Union[IsolationLevel, str]) -> None:
        if self._state.level:
            raise TransactionStateError("Isolation level cannot change inside a transaction")
        if not isinstance(level, IsolationLevel):
            level = IsolationLevel.from_string(level)
        for statement in self._dialect.isolation_statements(level):
            self._run(statement)
        self._state.isolation_level = level
        log.debug("[TX ISOLATION] isolation level set", extra={"isolation": level.sql})

    def set_read_only(self, read_only: bool = True) -> None:
        if self._state.level:
            raise TransactionStateError("Read-only mode cannot change inside a transaction")
        for statement in self._dialect.read_only_statements(read_only):
            self._run(statement)
        self._state.read_only = read_only

    # -- callbacks --------------------------------------------------------------------

    def after_commit(self, callback: Callable[[], Any]) -> None:
        """
        Run ``callback`` once the outermost transaction commits.

        Outside a transaction it runs immediately. Callbacks registered inside
        a nested level that is rolled back are discarded.
        """
        if not self._state.level:
            callback()
            return
        self._after_commit.append((self._state.level, callback))

    def after_rollback(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` if the outermost transaction rolls back."""
        self._require_active("after_rollback")
        self._after_rollback.append(callback)


__all__ = ["TransactionManager", "TransactionState"]
