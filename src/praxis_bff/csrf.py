# src/praxis_bff/csrf.py

"""
CSRF double-submit protection for mutating API routes.

A CSRF token is a short-lived signed payload bound to the subject of the
session that requested it. Mutating requests must echo it back in the
`x-csrf-token` header. Tokens are not single-use: a captured token stays
valid for the subject until its freshness window closes. Reading it already
requires script access to the page, which is outside what plain cross-site
request forgery can do.
"""

import logging
import secrets
import time
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from starlette.requests import Request

from .exceptions import AuthenticationError, AuthorizationError, InvalidTokenError
from .session_codec import SessionCodec
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

CSRF_HEADER_NAME = "x-csrf-token"
CSRF_TOKEN_PURPOSE = "csrf"
CSRF_TOKEN_LIFETIME = timedelta(hours=1)
CSRF_FRESHNESS_WINDOW = timedelta(hours=1)
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class CSRFProtection:
    def __init__(
        self,
        codec: SessionCodec,
        sessions: SessionManager,
        clock: Callable[[], float] = time.time,
    ):
        self._codec = codec
        self._sessions = sessions
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def issue(self) -> str:
        view = await self._sessions.validated()
        if not view.is_authenticated:
            raise AuthenticationError()
        return self._codec.encode(
            {
                "purpose": CSRF_TOKEN_PURPOSE,
                "subject_id": view.user.id,
                "issued_at": self._now_ms(),
                "nonce": secrets.token_urlsafe(16),
            },
            CSRF_TOKEN_LIFETIME,
        )

    async def verify(self, token: Optional[str]) -> bool:
        if not token:
            return False
        view = await self._sessions.validated()
        if not view.is_authenticated:
            return False

        try:
            payload = self._codec.decode(token)
        except InvalidTokenError as e:
            logger.warning(f"CSRF token rejected: {e}")
            return False

        if payload.get("purpose") != CSRF_TOKEN_PURPOSE:
            return False
        if payload.get("subject_id") != view.user.id:
            logger.warning(f"CSRF token subject mismatch for session of {view.user.id}")
            return False
        issued_at = payload.get("issued_at")
        if not isinstance(issued_at, int):
            return False
        age_ms = self._now_ms() - issued_at
        if age_ms > CSRF_FRESHNESS_WINDOW.total_seconds() * 1000:
            logger.info(f"CSRF token for {view.user.id} is stale ({age_ms // 1000}s old)")
            return False
        return True

    async def check(self, request: Request) -> None:
        """Raise AuthorizationError unless a mutating request carries a valid token."""
        if request.method.upper() not in MUTATING_METHODS:
            return
        token = request.headers.get(CSRF_HEADER_NAME)
        if not token:
            raise AuthorizationError("CSRF token required")
        if not await self.verify(token):
            raise AuthorizationError("Invalid CSRF token")

    async def guard(self, request: Request, handler: Callable[[Request], Awaitable]):
        await self.check(request)
        return await handler(request)
