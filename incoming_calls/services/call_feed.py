"""
Call feed service: the single owner of ingestion, history, fanout and
``last_call`` for one application instance.
"""

import re
import threading
from collections.abc import Mapping
from typing import Any

import structlog

from incoming_calls.config import Settings
from incoming_calls.schemas.calls import CallEvent, DirectoryEntry
from incoming_calls.services.broadcast import BroadcastHub
from incoming_calls.services.directory import DirectoryLookup, NullDirectoryLookup
from incoming_calls.services.history import CallHistory
from incoming_calls.services.normalizer import CallNormalizer
from incoming_calls.services.subscription import Subscription

logger = structlog.get_logger()

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def clamp_limit(raw: Any, default: int, maximum: int) -> int:
    """Lenient ``limit`` parsing: the leading integer is used (``"3abc"`` is 3,
    ``"2.5"`` is 2); garbage and zero fall back to ``default``."""
    matched = _LEADING_INT.match(str(raw)) if raw is not None else None
    value = int(matched.group(1)) if matched else 0
    if value == 0:
        value = default
    return max(1, min(value, maximum))


class CallFeedService:
    def __init__(
        self,
        settings: Settings,
        directory: DirectoryLookup | None = None,
        normalizer: CallNormalizer | None = None,
    ) -> None:
        self.settings = settings
        self.directory = directory or NullDirectoryLookup()
        self.normalizer = normalizer or CallNormalizer()
        self.history = CallHistory(settings.max_history)
        self.hub = BroadcastHub()
        self._last_call: CallEvent | None = None
        # Serializes id allocation through publish so publish order == id order.
        self._ingest_lock = threading.Lock()

    @property
    def last_call(self) -> CallEvent | None:
        with self._ingest_lock:
            return self._last_call

    def ingest(self, payload: Mapping[str, Any]) -> CallEvent:
        with self._ingest_lock:
            event = self.normalizer.normalize(payload)
            self.history.push(event)
            self._last_call = event
            delivered = self.hub.publish(event)

        logger.info(
            "incoming_call_received",
            call_id=event.id,
            status=event.status,
            source=event.source,
            extension=event.extension,
            delivered=delivered,
        )
        return event

    async def call_log(self, limit: int) -> list[CallEvent]:
        entries = self.history.recent(limit)
        phones = {entry.digits for entry in entries if entry.digits}

        people: dict[str, DirectoryEntry] = {}
        if phones:
            try:
                people = await self.directory.lookup_names(phones)
            except Exception as exc:
                logger.error("directory_lookup_failed", phones=len(phones), error=str(exc))
                people = {}

        return [self._enrich(entry, people.get(entry.digits)) for entry in entries]

    @staticmethod
    def _enrich(entry: CallEvent, person: DirectoryEntry | None) -> CallEvent:
        if person is None:
            return entry
        return entry.model_copy(
            update={
                "caller_name": entry.caller_name or person.name,
                "person_id": entry.person_id or person.id,
            }
        )

    def open_subscription(self, last_event_id: str | None = None) -> Subscription:
        subscription = Subscription(
            self.hub,
            heartbeat_interval=self.settings.heartbeat_interval_seconds,
            retry_ms=self.settings.stream_retry_ms,
            max_pending=self.settings.subscriber_buffer_size,
            last_event_id=last_event_id,
        )
        # Held so no event is published between registration and the replay.
        with self._ingest_lock:
            subscription.open(self._last_call)
        return subscription

    def shutdown(self) -> int:
        closed = self.hub.close_all("server_shutdown")
        logger.info("call_feed_shutdown", closed_subscribers=closed)
        return closed
