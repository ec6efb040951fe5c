from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from authservice.api.error_handling import register_exception_handlers
from authservice.api.routes import router
from authservice.api.schemas import HealthResponse
from authservice.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and close its pools on shutdown."""
    from authservice.service.runtime import get_runtime

    runtime = get_runtime()
    yield
    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


async def _run_bounded(label: str, func: Callable[[], None]) -> bool:
    try:
        await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
        return True
    except asyncio.TimeoutError:
        logger.error(
            "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
        )
    except Exception as exc:
        logger.error("health_check_failed", component=label, error=str(exc))
    return False


def create_app() -> FastAPI:
    app = FastAPI(title="Auth Service", version=__version__, lifespan=lifespan)

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Take X-Request-ID from the client or mint one, and echo it back."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/healthz", response_model=HealthResponse)
    async def health():
        from authservice.service.runtime import get_runtime

        runtime = get_runtime()
        checks: Dict[str, str] = {}
        if runtime.postgres is not None:
            ok = await _run_bounded("database", runtime.postgres.verify_connection)
            checks["database"] = "healthy" if ok else "unhealthy"
        else:
            checks["database"] = "memory"
        if runtime.cache is not None:
            ok = await _run_bounded("redis", runtime.cache.verify_connection)
            checks["redis"] = "healthy" if ok else "unhealthy"
        else:
            checks["redis"] = "memory"

        healthy = "unhealthy" not in checks.values()
        body = HealthResponse(status="healthy" if healthy else "unhealthy", checks=checks)
        return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())

    return app


app = create_app()
