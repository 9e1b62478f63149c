"""
Fanout of call events to every connected stream subscriber.
"""

import threading
from typing import Protocol

import structlog

from incoming_calls.schemas.calls import CallEvent
from incoming_calls.services.sse import format_call_frame

logger = structlog.get_logger()


class Subscriber(Protocol):
    subscriber_id: str

    def deliver(self, frame: str) -> bool: ...

    def close(self, reason: str = ...) -> bool: ...


class BroadcastHub:
    """Live subscriber registry with per-subscriber failure isolation.

    ``publish`` never awaits network I/O: each subscriber only receives the
    rendered frame into its local write buffer. A subscriber whose delivery
    fails is torn down on its own; the remaining subscribers still receive
    the event.
    """

    def __init__(self) -> None:
        self._subscribers: set[Subscriber] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def register(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.add(subscriber)

    def unregister(self, subscriber: Subscriber) -> bool:
        with self._lock:
            if subscriber not in self._subscribers:
                return False
            self._subscribers.discard(subscriber)
            return True

    def publish(self, event: CallEvent) -> int:
        frame = format_call_frame(event)
        with self._lock:
            snapshot = list(self._subscribers)

        delivered = 0
        for subscriber in snapshot:
            try:
                ok = subscriber.deliver(frame)
            except Exception as exc:
                logger.error(
                    "sse_delivery_failed",
                    subscriber_id=subscriber.subscriber_id,
                    event_id=event.id,
                    error=str(exc),
                )
                self._close_quietly(subscriber, "delivery_failed")
                ok = False
            if ok:
                delivered += 1
            else:
                self.unregister(subscriber)
        return delivered

    def close_all(self, reason: str = "server_shutdown") -> int:
        with self._lock:
            snapshot = list(self._subscribers)
        for subscriber in snapshot:
            self._close_quietly(subscriber, reason)
        return len(snapshot)

    def _close_quietly(self, subscriber: Subscriber, reason: str) -> None:
        try:
            subscriber.close(reason)
        except Exception as exc:
            logger.error(
                "sse_subscriber_close_failed",
                subscriber_id=subscriber.subscriber_id,
                reason=reason,
                error=str(exc),
            )
        finally:
            self.unregister(subscriber)
