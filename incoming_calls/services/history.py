import threading
from collections import deque

from incoming_calls.schemas.calls import CallEvent


class CallHistory:
    """Bounded in-memory history of recent calls, newest first."""

    def __init__(self, capacity: int = 500) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._events: deque[CallEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    def push(self, event: CallEvent) -> None:
        # appendleft on a full deque drops the oldest entry from the right.
        with self._lock:
            self._events.appendleft(event)

    def recent(self, limit: int) -> list[CallEvent]:
        if limit <= 0:
            return []
        with self._lock:
            return [event for _, event in zip(range(limit), self._events)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
