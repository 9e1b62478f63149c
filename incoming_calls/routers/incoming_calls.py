import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.datastructures import UploadFile

from incoming_calls.auth import WebhookAuthenticator, require_user
from incoming_calls.dependencies import get_call_feed, get_webhook_authenticator
from incoming_calls.schemas.calls import CallLogResponse, LastCallResponse, WebhookAck
from incoming_calls.services.call_feed import CallFeedService, clamp_limit
from incoming_calls.services.normalizer import PhoneMissingError

router = APIRouter(prefix="/incoming-calls", tags=["incoming-calls"])
logger = structlog.get_logger()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _read_payload(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        # Uploaded files carry no call data.
        return {k: v for k, v in form.items() if not isinstance(v, UploadFile)}

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        logger.warning("pbx_webhook_invalid_json", size=len(raw))
        return {}
    return body if isinstance(body, dict) else {}


@router.post("", response_model=WebhookAck)
async def receive_call(
    request: Request,
    feed: CallFeedService = Depends(get_call_feed),
    authenticator: WebhookAuthenticator = Depends(get_webhook_authenticator),
):
    payload = await _read_payload(request)

    if not authenticator.verify(authenticator.provided_secret(request, payload)):
        logger.warning("pbx_webhook_rejected", reason="invalid_secret")
        raise HTTPException(status_code=401, detail="invalid secret")

    try:
        feed.ingest(payload)
    except PhoneMissingError as exc:
        logger.info("pbx_webhook_rejected", reason="phone_missing")
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return WebhookAck()


@router.get("/stream", dependencies=[Depends(require_user)])
async def stream_calls(request: Request, feed: CallFeedService = Depends(get_call_feed)):
    subscription = feed.open_subscription(last_event_id=request.headers.get("Last-Event-ID"))
    return StreamingResponse(
        subscription.frames(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/last", response_model=LastCallResponse, dependencies=[Depends(require_user)])
async def last_call(feed: CallFeedService = Depends(get_call_feed)):
    return LastCallResponse(call=feed.last_call)


@router.get("/log", response_model=CallLogResponse, dependencies=[Depends(require_user)])
async def call_log(limit: str | None = None, feed: CallFeedService = Depends(get_call_feed)):
    settings = feed.settings
    bounded = clamp_limit(limit, settings.default_log_limit, settings.max_history)
    return CallLogResponse(entries=await feed.call_log(bounded))
