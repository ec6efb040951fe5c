from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes an HTTP ``status_code`` and a stable ``error_code``:
    - malformed_input (422)
    - invalid_credentials (400)
    - incorrect_credentials (401)
    - user_already_exists (409)
    - missing_token (400)
    - invalid_token (401)
    - unexpected_error (500)
    """

    status_code: int = 400
    error_code: str = "invalid_credentials"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class MalformedInputError(ServiceError):
    """Request body is structurally unusable (422).

    FastAPI's RequestValidationError handler answers with this class's status and code.
    """
    status_code = 422
    error_code = "malformed_input"


class InvalidCredentialsError(ServiceError):
    """Email, password, attempt id or code failed validation (400)."""
    status_code = 400
    error_code = "invalid_credentials"


class IncorrectCredentialsError(ServiceError):
    """Well-formed credentials that do not match (401)."""
    status_code = 401
    error_code = "incorrect_credentials"


class UserAlreadyExistsError(ServiceError):
    status_code = 409
    error_code = "user_already_exists"


class MissingTokenError(ServiceError):
    status_code = 400
    error_code = "missing_token"


class InvalidTokenError(ServiceError):
    """Token is malformed, badly signed, expired or banned (401)."""
    status_code = 401
    error_code = "invalid_token"


class UnexpectedError(ServiceError):
    """Backend or internal failure; details stay in the logs (500)."""
    status_code = 500
    error_code = "unexpected_error"


__all__ = [
    "ServiceError",
    "MalformedInputError",
    "InvalidCredentialsError",
    "IncorrectCredentialsError",
    "UserAlreadyExistsError",
    "MissingTokenError",
    "InvalidTokenError",
    "UnexpectedError",
]
