# src/praxis_bff/csrf_client.py

"""
Client side of the CSRF double-submit protocol, for Python callers of the
BFF API (admin scripts, integration tests, service-to-BFF calls).
"""

import logging
import time
from datetime import timedelta
from typing import Any, Callable, Optional

import httpx

from .csrf import CSRF_HEADER_NAME, MUTATING_METHODS

logger = logging.getLogger(__name__)

CSRF_TOKEN_PATH = "/api/auth/csrf-token"
# Shorter than the server-side lifetime so a cached token never goes stale mid-flight.
CSRF_CACHE_TTL = timedelta(minutes=50)


class CSRFTokenCache:
    def __init__(self, ttl: timedelta = CSRF_CACHE_TTL, clock: Callable[[], float] = time.time):
        self._ttl = ttl.total_seconds()
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def get(self) -> Optional[str]:
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def set(self, token: str) -> None:
        self._token = token
        self._expires_at = self._clock() + self._ttl

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0


def _is_csrf_rejection(response: httpx.Response) -> bool:
    if response.status_code != 403:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    return isinstance(error, str) and "csrf" in error.lower()


class CSRFClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: Optional[CSRFTokenCache] = None,
        token_path: str = CSRF_TOKEN_PATH,
    ):
        self._http = http_client
        self.cache = cache or CSRFTokenCache()
        self._token_path = token_path

    async def get_token(self) -> Optional[str]:
        cached = self.cache.get()
        if cached:
            return cached
        try:
            response = await self._http.get(self._token_path)
            response.raise_for_status()
            token = response.json()["csrf_token"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Failed to fetch CSRF token: {e}")
            self.cache.clear()
            return None
        self.cache.set(token)
        return token

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        method = method.upper()
        if method not in MUTATING_METHODS:
            return await self._http.request(method, url, **kwargs)

        headers = dict(kwargs.pop("headers", None) or {})
        token = await self.get_token()
        if token:
            headers[CSRF_HEADER_NAME] = token
        response = await self._http.request(method, url, headers=headers, **kwargs)

        if _is_csrf_rejection(response):
            # One silent retry with a fresh token before surfacing the 403.
            self.cache.clear()
            fresh = await self.get_token()
            if fresh:
                headers[CSRF_HEADER_NAME] = fresh
                response = await self._http.request(method, url, headers=headers, **kwargs)
        return response

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
