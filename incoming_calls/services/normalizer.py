"""
Canonicalization of raw PBX webhook payloads into call events.

Parsing is deliberately lenient: upstream PBX payloads are not under our
control, so unknown statuses default to ``ringing`` instead of being
rejected. Only a payload without any usable phone number is refused.
"""

import re
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from incoming_calls.schemas.calls import CallEvent, CallStatus

MAX_PHONE_DIGITS = 20
PHONE_FIELDS = ("phone", "caller", "number")

CALL_STATUSES: frozenset[str] = frozenset({"ringing", "answered", "missed", "rejected"})
_MISSED_ALIASES = frozenset({"no_answer", "noanswer"})
_NON_DIGITS = re.compile(r"\D")


class PhoneMissingError(ValueError):
    """Raised when no phone number can be derived from a webhook payload."""


def sanitize_phone(raw: Any) -> tuple[str, str]:
    """Return ``(display, digits)`` for a caller-supplied phone value."""
    if raw is None:
        return "", ""
    value = str(raw).strip()
    if not value:
        return "", ""

    digits = _NON_DIGITS.sub("", value)[:MAX_PHONE_DIGITS]
    if not digits:
        return "", ""

    display = f"+{digits}" if value.startswith("+") else digits
    return display, digits


def normalize_status(raw: Any) -> CallStatus:
    if not raw:
        return "ringing"
    status = str(raw).strip().lower()
    if status in CALL_STATUSES:
        return status  # type: ignore[return-value]
    if status in _MISSED_ALIASES:
        return "missed"
    return "ringing"


def clean_text(raw: Any) -> str | None:
    if raw is None or isinstance(raw, (Mapping, list, tuple, set)):
        return None
    value = str(raw).strip()
    return value or None


def _first_present(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


class SequenceCounter:
    """Monotonic id allocator shared by every ingestion path."""

    def __init__(self, start: int = 1) -> None:
        self._next = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            current = self._next
            self._next += 1
            return current

    @property
    def last_issued(self) -> int:
        with self._lock:
            return self._next - 1


class CallNormalizer:
    def __init__(self, counter: SequenceCounter | None = None) -> None:
        self.counter = counter or SequenceCounter()

    def normalize(self, payload: Mapping[str, Any]) -> CallEvent:
        display, digits = sanitize_phone(_first_present(payload, PHONE_FIELDS))
        if not display and not digits:
            raise PhoneMissingError("phone missing")

        # Allocated last so rejected payloads never consume an id.
        return CallEvent(
            id=self.counter.next(),
            phone=display or digits,
            digits=digits,
            extension=clean_text(payload.get("extension")),
            source=clean_text(payload.get("source")),
            received_at=datetime.now(UTC),
            status=normalize_status(payload.get("status")),
            note=clean_text(payload.get("note")),
            caller_name=clean_text(payload.get("name")),
            person_id=clean_text(payload.get("person_id")),
        )
