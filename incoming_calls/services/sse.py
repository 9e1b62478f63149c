from incoming_calls.schemas.calls import CallEvent

CALL_EVENT_TYPE = "call"
KEEPALIVE_FRAME = ": keep-alive\n\n"


def format_call_frame(event: CallEvent) -> str:
    return f"id: {event.id}\nevent: {CALL_EVENT_TYPE}\ndata: {event.model_dump_json()}\n\n"


def format_retry_frame(retry_ms: int) -> str:
    return f"retry: {retry_ms}\n\n"
