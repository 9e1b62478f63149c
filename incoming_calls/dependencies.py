from fastapi import Request

from incoming_calls.auth import WebhookAuthenticator
from incoming_calls.services.call_feed import CallFeedService


def get_call_feed(request: Request) -> CallFeedService:
    return request.app.state.call_feed


def get_webhook_authenticator(request: Request) -> WebhookAuthenticator:
    return request.app.state.webhook_authenticator
