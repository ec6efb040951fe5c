from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from authservice.api.schemas import (
    LoginRequest,
    MessageResponse,
    SignupRequest,
    TwoFactorAuthResponse,
    Verify2FARequest,
    VerifyTokenRequest,
)
from authservice.config import Settings
from authservice.service.runtime import get_runtime

router = APIRouter()


def _set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.jwt_cookie_name,
        token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.token_ttl_seconds,
        path="/",
    )


@router.post(
    "/signup",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["auth"],
)
async def signup(body: SignupRequest):
    runtime = get_runtime()
    await runtime.auth.signup(body.email, body.password, body.requires_2fa)
    return MessageResponse(message="User created successfully!")


@router.post(
    "/login",
    response_model=MessageResponse,
    responses={206: {"model": TwoFactorAuthResponse}},
    tags=["auth"],
)
async def login(body: LoginRequest, response: Response):
    runtime = get_runtime()
    result = await runtime.auth.login(body.email, body.password)
    if result.requires_2fa:
        challenge = TwoFactorAuthResponse(
            message="2FA required", login_attempt_id=result.login_attempt_id.value
        )
        return JSONResponse(
            status_code=status.HTTP_206_PARTIAL_CONTENT,
            content=challenge.model_dump(by_alias=True),
        )
    _set_session_cookie(response, result.token, runtime.settings)
    return MessageResponse(message="Login successful")


@router.post("/verify-2fa", response_model=MessageResponse, tags=["auth"])
async def verify_2fa(body: Verify2FARequest, response: Response):
    runtime = get_runtime()
    token = await runtime.auth.verify_2fa(
        body.email, body.login_attempt_id, body.two_fa_code
    )
    _set_session_cookie(response, token, runtime.settings)
    return MessageResponse(message="2FA verified")


@router.post("/logout", response_model=MessageResponse, tags=["auth"])
async def logout(request: Request, response: Response):
    runtime = get_runtime()
    cookie_name = runtime.settings.jwt_cookie_name
    await runtime.auth.logout(request.cookies.get(cookie_name))
    response.delete_cookie(
        cookie_name,
        path="/",
        secure=runtime.settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return MessageResponse(message="Logged out")


@router.post("/verify-token", response_model=MessageResponse, tags=["auth"])
async def verify_token(body: VerifyTokenRequest):
    runtime = get_runtime()
    await runtime.auth.verify_token(body.token)
    return MessageResponse(message="Token is valid")
