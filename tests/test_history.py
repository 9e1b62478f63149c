from datetime import UTC, datetime

import pytest

from incoming_calls.schemas.calls import CallEvent
from incoming_calls.services.history import CallHistory


def _event(event_id: int) -> CallEvent:
    return CallEvent(
        id=event_id,
        phone=f"07{event_id:08d}",
        digits=f"07{event_id:08d}",
        received_at=datetime.now(UTC),
    )


def test_recent_returns_newest_first():
    history = CallHistory(capacity=10)
    for i in range(1, 6):
        history.push(_event(i))

    assert [e.id for e in history.recent(3)] == [5, 4, 3]


def test_capacity_is_enforced():
    history = CallHistory(capacity=5)
    for i in range(1, 5 + 7 + 1):
        history.push(_event(i))

    assert len(history) == 5
    assert [e.id for e in history.recent(100)] == [12, 11, 10, 9, 8]


def test_recent_with_limit_larger_than_length():
    history = CallHistory(capacity=5)
    history.push(_event(1))
    assert [e.id for e in history.recent(50)] == [1]


def test_recent_non_positive_limit_is_empty():
    history = CallHistory(capacity=5)
    history.push(_event(1))
    assert history.recent(0) == []


def test_empty_history():
    history = CallHistory()
    assert history.capacity == 500
    assert len(history) == 0
    assert history.recent(10) == []


def test_invalid_capacity():
    with pytest.raises(ValueError):
        CallHistory(capacity=0)
