from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from mailwright.core.metrics import (
    addon_action_duration_seconds,
    addon_actions_total,
    http_request_duration_seconds,
    http_requests_total,
)
from mailwright.core.middleware.request_logging import addon_action_from_path


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started_at = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - started_at
        route = request.scope.get("route")
        # Route templates only, never raw paths.
        route_path = getattr(route, "path", None)
        status = str(response.status_code)
        http_requests_total.labels(method=request.method, path=route_path or "unmatched", status=status).inc()
        http_request_duration_seconds.labels(method=request.method, path=route_path or "unmatched").observe(duration)

        # Latency buckets sized for Gemini round trips.
        action = addon_action_from_path(route_path) if route_path else None
        if action is not None:
            addon_actions_total.labels(action=action, status=status).inc()
            addon_action_duration_seconds.labels(action=action).observe(duration)
        return response
