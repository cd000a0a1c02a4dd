from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger("mailwright.api")


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects add-on events whose declared body exceeds the configured ceiling."""

    def __init__(self, app, *, max_request_body_bytes: int) -> None:
        super().__init__(app)
        self._max_request_body_bytes = max_request_body_bytes

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length")
        if declared is None:
            return await call_next(request)
        try:
            body_bytes = int(declared)
        except ValueError:
            return await call_next(request)
        if body_bytes > self._max_request_body_bytes:
            logger.warning(
                "http.request_rejected",
                extra={"path": request.url.path, "reason": "event_too_large"},
            )
            return JSONResponse(
                status_code=413,
                content={"message": "Add-on event too large", "reason_code": "event_too_large"},
            )
        return await call_next(request)
