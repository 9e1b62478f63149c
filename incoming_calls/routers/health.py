from fastapi import APIRouter, Depends

from incoming_calls.dependencies import get_call_feed
from incoming_calls.services.call_feed import CallFeedService

router = APIRouter()

_DIRECTORY_STATES = {True: "connected", False: "disconnected", None: "disabled"}


@router.get("/health")
async def health(feed: CallFeedService = Depends(get_call_feed)):
    directory_ok = await feed.directory.ping()
    return {
        "status": "degraded" if directory_ok is False else "ok",
        "directory": _DIRECTORY_STATES[directory_ok],
        "subscribers": feed.hub.subscriber_count,
        "history": len(feed.history),
    }
