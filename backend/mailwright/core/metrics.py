from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests.",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds.",
    ["method", "path"],
)

gemini_calls_total = Counter(
    "gemini_calls_total",
    "Gemini generateContent calls by final HTTP status.",
    ["status"],
)

outbound_retries_total = Counter(
    "outbound_retries_total",
    "Retries issued by the outbound HTTP retry wrapper.",
    ["reason"],
)

circuit_transitions_total = Counter(
    "circuit_transitions_total",
    "Circuit breaker state transitions.",
    ["from_state", "to_state"],
)

addon_actions_total = Counter(
    "addon_actions_total",
    "Add-on callback invocations by action and HTTP status.",
    ["action", "status"],
)

addon_action_duration_seconds = Histogram(
    "addon_action_duration_seconds",
    "Add-on callback latency in seconds.",
    ["action"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0),
)

generation_outcomes_total = Counter(
    "generation_outcomes_total",
    "Reply generation outcomes.",
    ["outcome"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
