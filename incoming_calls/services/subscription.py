"""
One live SSE subscriber: registration, heartbeat and teardown.

A session moves ``opening -> live -> closed`` exactly once. Frames are
written into a bounded local buffer by the hub and the heartbeat task, and
drained by the HTTP response through ``frames()``. Teardown runs once no
matter how many triggers fire (client disconnect, delivery failure, server
shutdown) and after it nothing reaches the client, keep-alives included.
"""

import asyncio
import enum
import threading
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any

import structlog

from incoming_calls.schemas.calls import CallEvent
from incoming_calls.services.broadcast import BroadcastHub
from incoming_calls.services.sse import KEEPALIVE_FRAME, format_call_frame, format_retry_frame

logger = structlog.get_logger()

_CLOSED = object()


class SessionState(str, enum.Enum):
    OPENING = "opening"
    LIVE = "live"
    CLOSED = "closed"


class Subscription:
    def __init__(
        self,
        hub: BroadcastHub,
        *,
        heartbeat_interval: float = 25.0,
        retry_ms: int = 4000,
        max_pending: int = 256,
        last_event_id: str | None = None,
    ) -> None:
        self.subscriber_id = str(uuid.uuid4())
        self.hub = hub
        self.heartbeat_interval = heartbeat_interval
        self.retry_ms = retry_ms
        self.max_pending = max_pending
        self.last_event_id = last_event_id
        self.state = SessionState.OPENING
        self.close_reason: str | None = None

        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._heartbeat: asyncio.Task | None = None
        self._lock = threading.Lock()
        # Frames accepted but not yet taken by ``frames()``. Counted at
        # delivery time because off-loop puts only land on the queue later.
        self._pending = 0

    @property
    def pending_frames(self) -> int:
        with self._lock:
            return self._pending

    @property
    def heartbeat_task(self) -> asyncio.Task | None:
        return self._heartbeat

    def open(self, last_call: CallEvent | None) -> None:
        """Register with the hub, queue the catch-up frames, start the heartbeat.

        Must be called from the event loop that will drain ``frames()``.
        """
        if self.state is not SessionState.OPENING:
            raise RuntimeError(f"subscription {self.subscriber_id} already {self.state.value}")

        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._queue.put_nowait(format_retry_frame(self.retry_ms))
            self._pending += 1
        self.hub.register(self)
        if last_call is not None:
            with self._lock:
                self._queue.put_nowait(format_call_frame(last_call))
                self._pending += 1

        with self._lock:
            if self.state is SessionState.CLOSED:
                return
            self._heartbeat = self._loop.create_task(self._send_heartbeat())
            self.state = SessionState.LIVE

        logger.info(
            "sse_subscriber_connected",
            subscriber_id=self.subscriber_id,
            last_event_id=self.last_event_id,
            replayed_call_id=last_call.id if last_call else None,
        )

    def deliver(self, frame: str) -> bool:
        with self._lock:
            if self.state is SessionState.CLOSED:
                return False
            overflow = self._pending >= self.max_pending
            if not overflow:
                self._on_loop(self._queue.put_nowait, frame)
                self._pending += 1
        if overflow:
            logger.warning(
                "sse_subscriber_overflow",
                subscriber_id=self.subscriber_id,
                max_pending=self.max_pending,
            )
            self.close("buffer_full")
            return False
        return True

    def close(self, reason: str = "closed") -> bool:
        with self._lock:
            if self.state is SessionState.CLOSED:
                return False
            self.state = SessionState.CLOSED
            self.close_reason = reason
            heartbeat, self._heartbeat = self._heartbeat, None

        self.hub.unregister(self)
        if heartbeat is not None:
            self._on_open_loop(heartbeat.cancel)
        self._on_open_loop(self._queue.put_nowait, _CLOSED)
        logger.info("sse_subscriber_closed", subscriber_id=self.subscriber_id, reason=reason)
        return True

    async def frames(self) -> AsyncIterator[str]:
        reason = "stream_ended"
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED or self.state is SessionState.CLOSED:
                    return
                with self._lock:
                    self._pending -= 1
                yield item
        except asyncio.CancelledError:
            reason = "client_disconnected"
            raise
        finally:
            self.close(reason)

    async def _send_heartbeat(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                if not self.deliver(KEEPALIVE_FRAME):
                    return
        except asyncio.CancelledError:
            return

    def _on_open_loop(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            self._on_loop(callback, *args)
        except RuntimeError:
            # Event loop already closed: no heartbeat or reader is left on it.
            logger.debug("sse_loop_closed", subscriber_id=self.subscriber_id)

    def _on_loop(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None:
            callback(*args)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)
