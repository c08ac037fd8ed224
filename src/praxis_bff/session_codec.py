# src/praxis_bff/session_codec.py

"""
Compact signed-token codec shared by sessions and CSRF tokens.

Tokens are HS256 JWTs signed with the process-wide SESSION_SECRET_KEY.
Rotating the secret invalidates every outstanding session and CSRF token.
"""

import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError

from .config import MIN_SECRET_LENGTH
from .exceptions import ConfigurationError, InvalidTokenError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
REGISTERED_CLAIMS = ("iat", "exp")


class SessionCodec:
    def __init__(
        self,
        secret: Optional[str],
        algorithm: str = JWT_ALGORITHM,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    def ensure_configured(self) -> None:
        if not self._secret:
            raise ConfigurationError("SESSION_SECRET_KEY is required")
        if len(self._secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"SESSION_SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters"
            )

    def encode(self, payload: Dict[str, Any], ttl: timedelta) -> str:
        """Sign `payload` with an `exp` claim `ttl` from now."""
        self.ensure_configured()
        now = self._clock()
        claims = dict(payload)
        claims["iat"] = int(now)
        claims["exp"] = int(now + ttl.total_seconds())
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify `token` and return its payload without the registered claims.

        Raises:
            ConfigurationError: if the secret is missing or too short
            InvalidTokenError: on signature mismatch, malformed structure or expiry
        """
        self.ensure_configured()
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as e:
            raise InvalidTokenError("Token has expired") from e
        except JOSEError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e
        if not isinstance(claims, dict):
            raise InvalidTokenError("Invalid token payload")
        return {k: v for k, v in claims.items() if k not in REGISTERED_CLAIMS}
