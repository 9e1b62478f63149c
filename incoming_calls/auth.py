import hmac
import threading
from collections.abc import Mapping
from typing import Any

import structlog
from fastapi import HTTPException, Request, status

logger = structlog.get_logger()

WEBHOOK_SECRET_HEADER = "X-PBX-Secret"


def _constant_time_equals(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


class WebhookAuthenticator:
    """Shared-secret check for PBX webhooks.

    With no secret configured every webhook is accepted; that open mode is
    reported with a single warning per authenticator.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret
        self._warned = False
        self._lock = threading.Lock()

    @staticmethod
    def provided_secret(request: Request, body: Mapping[str, Any]) -> str | None:
        for candidate in (
            request.headers.get(WEBHOOK_SECRET_HEADER),
            body.get("secret"),
            request.query_params.get("secret"),
        ):
            if candidate:
                return str(candidate)
        return None

    def verify(self, provided: str | None) -> bool:
        if not self.secret:
            self._warn_open_mode()
            return True
        if not provided:
            return False
        return _constant_time_equals(provided, self.secret)

    def _warn_open_mode(self) -> None:
        with self._lock:
            if self._warned:
                return
            self._warned = True
        logger.warning(
            "pbx_webhook_secret_missing",
            detail="PBX_WEBHOOK_SECRET is not set; webhooks are accepted without authentication",
        )


def is_authorized(request: Request) -> bool:
    if getattr(request.state, "user", None) is not None:
        return True

    api_token = request.app.state.settings.api_token
    if not api_token:
        return False
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return _constant_time_equals(token.strip(), api_token)


async def require_user(request: Request) -> Any:
    if not is_authorized(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="auth required")
    return getattr(request.state, "user", None)
