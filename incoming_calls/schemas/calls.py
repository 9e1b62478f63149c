from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

CallStatus = Literal["ringing", "answered", "missed", "rejected"]


class CallEvent(BaseModel):
    """One normalized inbound call occurrence. Never mutated once stored."""

    model_config = ConfigDict(frozen=True)

    id: int
    phone: str
    digits: str
    extension: str | None = None
    source: str | None = None
    received_at: datetime
    status: CallStatus = "ringing"
    note: str | None = None
    caller_name: str | None = None
    person_id: str | None = None


class DirectoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None


class WebhookAck(BaseModel):
    success: bool = True


class LastCallResponse(BaseModel):
    call: CallEvent | None = None


class CallLogResponse(BaseModel):
    entries: list[CallEvent]
