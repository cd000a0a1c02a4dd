from mailwright.core.middleware.metrics import MetricsMiddleware
from mailwright.core.middleware.request_logging import RequestLoggingMiddleware
from mailwright.core.middleware.request_size_limit import RequestSizeLimitMiddleware

__all__ = [
    "MetricsMiddleware",
    "RequestLoggingMiddleware",
    "RequestSizeLimitMiddleware",
]
