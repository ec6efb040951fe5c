from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from authservice.logging import get_correlation_id

_VALID_ERROR_CODES = {
    "malformed_input",
    "invalid_credentials",
    "incorrect_credentials",
    "user_already_exists",
    "missing_token",
    "invalid_token",
    "unexpected_error",
}


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


# Request bodies keep their wire names; only type checks happen here.
# Email, password, attempt id and code rules live in the domain types.


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    requires_2fa: bool = Field(..., alias="requires2FA")


class LoginRequest(BaseModel):
    email: str
    password: str


class Verify2FARequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    login_attempt_id: str = Field(..., alias="loginAttemptId")
    two_fa_code: str = Field(..., alias="2FACode")


class VerifyTokenRequest(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class TwoFactorAuthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    login_attempt_id: str = Field(..., alias="loginAttemptId")


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, str]
