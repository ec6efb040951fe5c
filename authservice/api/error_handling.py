from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from authservice.api.schemas import Envelope, ErrorBody
from authservice.logging import get_logger
from authservice.service.errors import MalformedInputError, ServiceError
from authservice.storage.errors import StoreError

logger = get_logger(__name__)


def _error_response(
    status_code: int,
    message: str,
    code: str,
    details: dict | list | None = None,
) -> JSONResponse:
    error_body = ErrorBody(code=code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def _validation_details(exc: RequestValidationError) -> list[dict]:
    # Submitted values are left out so passwords never echo back
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error envelope for validation, domain and storage errors."""

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = _validation_details(exc)
        logger.warning(
            "malformed_input",
            path=request.url.path,
            method=request.method,
            errors=details,
        )
        malformed = MalformedInputError("malformed input")
        return _error_response(
            malformed.status_code, malformed.message, malformed.error_code, details
        )

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        # Server-side failures never carry internal detail to the client
        details = (exc.detail or None) if exc.status_code < 500 else None
        return _error_response(exc.status_code, exc.message, exc.error_code, details)

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        logger.error(
            "store_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            message=exc.message,
        )
        return _error_response(500, "unexpected error", "unexpected_error")

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "unexpected error", "unexpected_error")
