# src/praxis_bff/exceptions.py

from typing import Any, Dict, Optional


class PraxisError(Exception):
    """Base class for errors raised by the BFF."""


class ConfigurationError(PraxisError):
    """A required secret or credential is missing or malformed."""


class InvalidTokenError(PraxisError):
    """A signed token failed signature, structure or expiry checks."""


class AuthenticationError(PraxisError):
    """No valid session where one is required."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AuthorizationError(PraxisError):
    """A valid session failed a CSRF or membership check."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class DirectoryServiceError(PraxisError):
    def __init__(self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.message = message
        # Raw error body, for callers that branch on upstream error codes.
        self.details = details or {}
        super().__init__(f"Directory service error {status_code}: {message}")


class DirectoryNotFoundError(DirectoryServiceError):
    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(404, message, details)


class DirectoryConflictError(DirectoryServiceError):
    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(409, message, details)
