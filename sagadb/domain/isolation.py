"""
Transaction isolation levels, ordered by strictness.

Each level advertises which read anomalies it prevents so callers can reason
about the correctness/concurrency trade-off before calling
``TransactionManager.set_isolation_level``.
"""

from __future__ import annotations

import enum
import functools


@functools.total_ordering
class IsolationLevel(enum.Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"

    @property
    def sql(self) -> str:
        return self.value

    @property
    def strictness(self) -> int:
        """1 (most permissive) to 4 (strictest)."""
        return _STRICTNESS[self]

    @property
    def prevents_dirty_reads(self) -> bool:
        return self is not IsolationLevel.READ_UNCOMMITTED

    @property
    def prevents_non_repeatable_reads(self) -> bool:
        return self.strictness >= 3

    @property
    def prevents_phantom_reads(self) -> bool:
        return self is IsolationLevel.SERIALIZABLE

    def is_stricter_than(self, other: "IsolationLevel") -> bool:
        return self.strictness > other.strictness

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, IsolationLevel):
            return NotImplemented
        return self.strictness < other.strictness

    @classmethod
    def from_string(cls, value: str) -> "IsolationLevel":
        normalized = " ".join(value.replace("_", " ").upper().split())
        for level in cls:
            if level.value == normalized:
                return level
        raise ValueError(f"Unknown isolation level: {value!r}")


_STRICTNESS = {
    IsolationLevel.READ_UNCOMMITTED: 1,
    IsolationLevel.READ_COMMITTED: 2,
    IsolationLevel.REPEATABLE_READ: 3,
    IsolationLevel.SERIALIZABLE: 4,
}


__all__ = ["IsolationLevel"]
