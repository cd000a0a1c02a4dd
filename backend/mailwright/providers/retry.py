from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC
from email.utils import parsedate_to_datetime
import logging
import math
import random
import time

import httpx

from mailwright.core.metrics import outbound_retries_total
from mailwright.providers.errors import AddonNetworkError
from mailwright.providers.execution_types import RetryContext


logger = logging.getLogger("mailwright.retry")

JITTER_RATIO = 0.3
_MAX_EXPONENT = 62

SleepFn = Callable[[float, "asyncio.Event | None"], Awaitable[None]]


class RetryCancelledError(AddonNetworkError):
    def __init__(self, message: str = "Request cancelled while waiting to retry.") -> None:
        super().__init__(message, reason_code="retry_cancelled")


def compute_backoff(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    *,
    random_fn: Callable[[float, float], float] = random.uniform,
) -> int:
    delay = min(base_delay_ms * (2 ** min(attempt, _MAX_EXPONENT)), max_delay_ms)
    jitter = random_fn(0.0, JITTER_RATIO * delay)
    total = delay + max(0.0, jitter)
    if not math.isfinite(total) or total < 0:
        return int(max_delay_ms)
    return int(math.floor(total))


def is_retryable_status(status_code: int) -> bool:
    return status_code in {408, 429} or 500 <= status_code < 600


def retry_after_ms(headers: httpx.Headers, *, now: float) -> int | None:
    """Wait requested by a ``Retry-After`` header: delta seconds or an HTTP date."""
    raw = headers.get("Retry-After")
    if raw is None or not raw.strip():
        return None
    value = raw.strip()
    try:
        return max(0, int(value) * 1000)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max(0, int((retry_at.timestamp() - now) * 1000))


async def cancellable_sleep(seconds: float, cancel_event: asyncio.Event | None) -> None:
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except TimeoutError:
        return
    raise RetryCancelledError()


class RetryPolicy:
    def __init__(
        self,
        *,
        retry_attempts: int = 1,
        base_delay_ms: int = 400,
        max_delay_ms: int = 8_000,
        max_total_wait_ms: int = 10_000,
        sleep_fn: SleepFn = cancellable_sleep,
        random_fn: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retry_attempts = retry_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_total_wait_ms = max_total_wait_ms
        self.sleep_fn = sleep_fn
        self.random_fn = random_fn
        self.clock = clock

    @property
    def max_attempts(self) -> int:
        return self.retry_attempts + 1

    def backoff_ms(self, attempt: int) -> int:
        return compute_backoff(attempt, self.base_delay_ms, self.max_delay_ms, random_fn=self.random_fn)

    def wait_for_response(self, response: httpx.Response, attempt: int) -> int:
        header_wait = retry_after_ms(response.headers, now=self.clock())
        if header_wait is not None:
            return header_wait
        return self.backoff_ms(attempt)

    async def fetch_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        cancel_event: asyncio.Event | None = None,
        **request_kwargs,
    ) -> httpx.Response:
        """Issues the request until it gets a terminal response.

        HTTP error statuses come back as ordinary responses. Only a transport
        error with no attempts (or wait budget) left is raised.
        """
        context = RetryContext(max_attempts=self.max_attempts, max_total_wait_ms=self.max_total_wait_ms)
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RetryCancelledError()
            try:
                response = await client.request(method, url, **request_kwargs)
            except httpx.TransportError as exc:
                if not context.has_attempts_left():
                    raise
                wait_ms = self.backoff_ms(context.attempt)
                if not context.fits_budget(wait_ms):
                    raise
                reason = "transport_error"
                logger.warning(
                    "retry.transport_error",
                    extra={"attempt": context.attempt, "wait_ms": wait_ms, "reason": type(exc).__name__},
                )
            else:
                if not is_retryable_status(response.status_code) or not context.has_attempts_left():
                    return response
                wait_ms = self.wait_for_response(response, context.attempt)
                if not context.fits_budget(wait_ms):
                    logger.warning(
                        "retry.budget_exhausted",
                        extra={"attempt": context.attempt, "wait_ms": wait_ms, "status_code": response.status_code},
                    )
                    return response
                reason = f"http_{response.status_code}"
                logger.info(
                    "retry.scheduled",
                    extra={"attempt": context.attempt, "wait_ms": wait_ms, "status_code": response.status_code},
                )
            outbound_retries_total.labels(reason=reason).inc()
            await self.sleep_fn(wait_ms / 1000.0, cancel_event)
            context.total_wait_ms += wait_ms
            context.attempt += 1
