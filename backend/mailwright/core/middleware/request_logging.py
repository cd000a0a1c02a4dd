from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger("mailwright.api")

_ADDON_SEGMENT = "/addon/"


def addon_action_from_path(path: str) -> str | None:
    """Add-on action name for add-on callback paths, e.g. ``compose/quick``."""
    _, marker, action = path.partition(_ADDON_SEGMENT)
    if not marker or not action:
        return None
    return action.strip("/") or None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        action = addon_action_from_path(request.url.path)
        request.state.addon_action = action
        started_at = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - started_at) * 1000)
        response.headers.setdefault("X-Request-ID", request_id)
        # Identity failures surface as 4xx envelopes; only server faults warn.
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "addon.action" if action else "http.request",
            extra={
                "request_id": request_id,
                "user_key": getattr(request.state, "user_key", None),
                "addon_action": action,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
