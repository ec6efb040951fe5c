from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for errors raised by credential, revocation and challenge stores."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class UserAlreadyExists(StoreError):
    """Raised when the email is already registered."""


class UserNotFound(StoreError):
    """Raised when no user record exists for the email."""


class InvalidCredentials(StoreError):
    """Raised when the password does not match the stored hash."""


class TokenAlreadyBanned(StoreError):
    """Raised when banning a token that is already on the deny-list."""


class TokenNotFound(StoreError):
    """Raised when unbanning a token that is not on the deny-list."""


class ChallengeNotFound(StoreError):
    """Raised when no live challenge matches the email, attempt id and code."""


class BackendUnavailable(StoreError):
    """Raised for network, serialization, hashing or database failures.

    ``detail`` may carry the underlying error for logs; it never reaches a client.
    """


__all__ = [
    "StoreError",
    "UserAlreadyExists",
    "UserNotFound",
    "InvalidCredentials",
    "TokenAlreadyBanned",
    "TokenNotFound",
    "ChallengeNotFound",
    "BackendUnavailable",
]
