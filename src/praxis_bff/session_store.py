# src/praxis_bff/session_store.py

import logging
from datetime import timedelta
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from .config import settings

logger = logging.getLogger(__name__)

REMEMBER_ME_MAX_AGE = timedelta(days=30)
DEFAULT_MAX_AGE = timedelta(days=7)

_UNCHANGED = "unchanged"
_WRITE = "write"
_CLEAR = "clear"


def cookie_max_age(remember_me: bool) -> int:
    return int((REMEMBER_ME_MAX_AGE if remember_me else DEFAULT_MAX_AGE).total_seconds())


class CookieSessionStore:
    """
    Carries the signed session token between the request cookie and the
    response Set-Cookie header. Holds no business logic.
    """

    def __init__(
        self,
        incoming_token: Optional[str],
        cookie_name: str = settings.SESSION_COOKIE_NAME,
        secure: bool = settings.IS_PRODUCTION,
        samesite: str = settings.SESSION_COOKIE_SAMESITE,
    ):
        self.cookie_name = cookie_name
        self.secure = secure
        self.samesite = samesite
        self._token = incoming_token or None
        self._remember_me = False
        self._action = _UNCHANGED

    def read(self) -> Optional[str]:
        return self._token

    def write(self, token: str, remember_me: bool = False) -> None:
        self._token = token
        self._remember_me = remember_me
        self._action = _WRITE

    def clear(self) -> None:
        self._token = None
        self._action = _CLEAR

    @property
    def pending_action(self) -> str:
        return self._action

    def apply(self, response: StarletteResponse) -> None:
        if self._action == _WRITE:
            response.set_cookie(
                self.cookie_name,
                self._token,
                max_age=cookie_max_age(self._remember_me),
                path="/",
                httponly=True,
                secure=self.secure,
                samesite=self.samesite,
            )
        elif self._action == _CLEAR:
            response.delete_cookie(
                self.cookie_name,
                path="/",
                httponly=True,
                secure=self.secure,
                samesite=self.samesite,
            )


class SessionCookieMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        store = CookieSessionStore(request.cookies.get(settings.SESSION_COOKIE_NAME))
        request.state.session_store = store
        response: StarletteResponse = await call_next(request)
        store.apply(response)
        return response


def get_session_store(request: Request) -> CookieSessionStore:
    store = getattr(request.state, "session_store", None)
    if store is None:
        # Routes mounted without the middleware still get a read-only view.
        store = CookieSessionStore(request.cookies.get(settings.SESSION_COOKIE_NAME))
        request.state.session_store = store
    return store
