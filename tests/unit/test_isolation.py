from __future__ import annotations

import pytest

from sagadb.domain.isolation import IsolationLevel


def test_levels_are_ordered_by_strictness() -> None:
    levels = sorted(IsolationLevel, reverse=True)
    assert levels[0] is IsolationLevel.SERIALIZABLE
    assert levels[-1] is IsolationLevel.READ_UNCOMMITTED
    assert IsolationLevel.REPEATABLE_READ.is_stricter_than(IsolationLevel.READ_COMMITTED)
    assert IsolationLevel.READ_COMMITTED < IsolationLevel.SERIALIZABLE


def test_anomaly_guarantees() -> None:
    assert not IsolationLevel.READ_UNCOMMITTED.prevents_dirty_reads
    assert IsolationLevel.READ_COMMITTED.prevents_dirty_reads
    assert not IsolationLevel.READ_COMMITTED.prevents_non_repeatable_reads
    assert IsolationLevel.REPEATABLE_READ.prevents_non_repeatable_reads
    assert not IsolationLevel.REPEATABLE_READ.prevents_phantom_reads
    assert IsolationLevel.SERIALIZABLE.prevents_phantom_reads


@pytest.mark.parametrize(
    "text, expected",
    [
        ("read committed", IsolationLevel.READ_COMMITTED),
        ("REPEATABLE_READ", IsolationLevel.REPEATABLE_READ),
        ("  serializable ", IsolationLevel.SERIALIZABLE),
    ],
)
def test_from_string(text: str, expected: IsolationLevel) -> None:
    assert IsolationLevel.from_string(text) is expected
    assert expected.sql == expected.value


def test_from_string_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="Unknown isolation level"):
        IsolationLevel.from_string("snapshot")
