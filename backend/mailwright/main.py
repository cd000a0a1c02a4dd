from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from mailwright.api.response import exception_envelope
from mailwright.api.v1.router import build_api_router
from mailwright.core.config import get_settings
from mailwright.core.logging_config import configure_logging
from mailwright.core.metrics import render_metrics
from mailwright.core.middleware import (
    MetricsMiddleware,
    RequestLoggingMiddleware,
    RequestSizeLimitMiddleware,
)
from mailwright.db.redis_client import get_redis_client
from mailwright.providers.errors import AddonError, ErrorType

settings = get_settings()
configure_logging(log_level=settings.log_level, app_env=settings.app_env)
logger = logging.getLogger("mailwright.api")

_ADDON_ERROR_STATUS = {
    ErrorType.VALIDATION: 400,
    ErrorType.PERMISSION: 401,
    ErrorType.CONFIGURATION: 503,
    ErrorType.NETWORK: 502,
    ErrorType.API: 502,
    ErrorType.CIRCUIT_OPEN: 503,
}

_RETRYABLE_ERROR_TYPES = frozenset({ErrorType.NETWORK, ErrorType.API, ErrorType.CIRCUIT_OPEN})


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if settings.app_env.lower() != "test":
        # Fail startup loudly when the property store is unreachable.
        get_redis_client()
    logger.info("Mailwright add-on backend started", extra={"reason": settings.property_store_backend})
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestSizeLimitMiddleware, max_request_body_bytes=settings.max_request_body_bytes)
app.add_middleware(MetricsMiddleware)
app.include_router(build_api_router(settings.app_env), prefix=settings.api_v1_prefix)

if settings.metrics_enabled:
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        expected_token = os.getenv("METRICS_TOKEN", "").strip()
        if expected_token and request.headers.get("X-Metrics-Token", "") != expected_token:
            return JSONResponse(
                status_code=403,
                content={"message": "Forbidden", "reason_code": "metrics_forbidden"},
            )
        payload, content_type = render_metrics()
        return Response(content=payload, media_type=content_type)


@app.exception_handler(AddonError)
async def addon_exception_handler(request: Request, exc: AddonError) -> JSONResponse:
    status_code = _ADDON_ERROR_STATUS.get(exc.error_type, 500)
    payload = exception_envelope(
        request=request,
        status_code=status_code,
        message=exc.message,
        code=exc.reason_code,
        retryable=exc.error_type in _RETRYABLE_ERROR_TYPES,
    )
    return JSONResponse(status_code=status_code, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    details: dict[str, object] = exc.detail if isinstance(exc.detail, dict) else {}
    payload = exception_envelope(
        request=request,
        status_code=exc.status_code,
        message=message,
        code=f"http_{exc.status_code}",
        details=details,
    )
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = exception_envelope(
        request=request,
        status_code=422,
        message="Validation failed",
        code="validation_error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(status_code=422, content=payload)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", exc_info=exc)
    payload = exception_envelope(
        request=request,
        status_code=500,
        message="Internal server error",
        code="internal_server_error",
    )
    return JSONResponse(status_code=500, content=payload)
