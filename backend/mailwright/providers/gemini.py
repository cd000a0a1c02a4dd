from __future__ import annotations

import asyncio
import json
import logging
import math
import re
import time
from typing import Any

import httpx
from starlette.concurrency import run_in_threadpool

from mailwright.core.config import Settings
from mailwright.core.metrics import gemini_calls_total
from mailwright.providers.circuit_breaker import PersistentCircuitBreaker
from mailwright.providers.errors import CircuitOpenError
from mailwright.providers.execution_types import (
    EMAIL_MODES,
    CallResult,
    EmailMode,
    GenerationOutcome,
    ParsedResponse,
)
from mailwright.providers.retry import RetryPolicy


logger = logging.getLogger("mailwright.gemini")

REQUIRED_FIELDS: tuple[str, ...] = ("body", "subject", "mode", "safeToSend")

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "body": {"type": "string"},
        "subject": {"type": "string"},
        "mode": {"type": "string", "enum": list(EMAIL_MODES)},
        "safeToSend": {"type": "boolean"},
    },
    "required": list(REQUIRED_FIELDS),
}

PING_PROMPT = 'Return {"ping":true} as JSON only.'

_CODE_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def build_request_payload(
    prompt_text: str,
    *,
    response_mime_type: str | None = "application/json",
    response_schema: dict[str, Any] | None = RESPONSE_SCHEMA,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"contents": [{"parts": [{"text": prompt_text}]}]}
    generation_config: dict[str, Any] = {}
    if response_mime_type:
        generation_config["response_mime_type"] = response_mime_type
    if response_schema is not None:
        generation_config["response_schema"] = response_schema
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


def extract_payload(raw_body: str) -> str:
    """Text of ``candidates[0].content.parts[0]``; empty when any step is missing."""
    envelope = _load_json(raw_body)
    if not isinstance(envelope, dict):
        return ""
    candidates = envelope.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    return text if isinstance(text, str) else ""


def strip_code_fences(text: str) -> str:
    match = _CODE_FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def parse_response(raw_body: str) -> Any | None:
    """Decoded JSON answer inside the envelope, or None when it is not valid JSON."""
    text = extract_payload(raw_body)
    if not text:
        return None
    try:
        return json.loads(strip_code_fences(text))
    except ValueError:
        logger.warning("gemini.parse_failed", extra={"reason": "invalid_json"})
        return None


def validate_response(obj: Any) -> str | None:
    if not isinstance(obj, dict):
        return "Response root is not an object"
    for field in REQUIRED_FIELDS:
        if field not in obj:
            return f"Missing required field: {field}"
    body = obj["body"]
    if not isinstance(body, str) or not body.strip():
        return "Body field is invalid or empty"
    if not isinstance(obj["subject"], str):
        return "Subject field is not a string"
    if not isinstance(obj["mode"], str) or obj["mode"] not in EMAIL_MODES:
        return "Mode field is invalid"
    if not isinstance(obj["safeToSend"], bool):
        return "SafeToSend field is not a boolean"
    return None


def to_parsed_response(obj: dict[str, Any]) -> ParsedResponse:
    return ParsedResponse(
        body=obj["body"],
        subject=obj["subject"],
        mode=EmailMode(obj["mode"]),
        safe_to_send=obj["safeToSend"],
    )


def extract_error(raw_body: str) -> str:
    envelope = _load_json(raw_body)
    if not isinstance(envelope, dict) or not envelope.get("error"):
        return ""
    error = envelope["error"]
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return json.dumps(error)


def extract_safety_info(raw_body: str) -> Any:
    envelope = _load_json(raw_body)
    if not isinstance(envelope, dict):
        return None
    if envelope.get("promptFeedback"):
        return envelope["promptFeedback"]
    candidates = envelope.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0].get("safetyRatings") or None
    return None


def interpret_call_result(call_result: CallResult) -> GenerationOutcome:
    raw_body = call_result.raw_body
    safety_info = extract_safety_info(raw_body)
    if call_result.status_code != 200:
        api_error = extract_error(raw_body)
        error = f"HTTP {call_result.status_code}: {api_error}" if api_error else f"HTTP {call_result.status_code}"
        return GenerationOutcome(success=False, call_result=call_result, error=error, safety_info=safety_info)

    parsed = parse_response(raw_body)
    if parsed is None:
        return GenerationOutcome(
            success=False,
            call_result=call_result,
            error="Failed to parse Gemini response",
            safety_info=safety_info,
        )

    validation_error = validate_response(parsed)
    if validation_error:
        return GenerationOutcome(
            success=False,
            call_result=call_result,
            error=f"Response validation failed: {validation_error}",
            safety_info=safety_info,
        )
    return GenerationOutcome(
        success=True,
        call_result=call_result,
        response=to_parsed_response(parsed),
        safety_info=safety_info,
    )


class GeminiProvider:
    def __init__(
        self,
        *,
        model_url: str,
        timeout_seconds: float = 30.0,
        response_mime_type: str = "application/json",
        retry_policy: RetryPolicy | None = None,
        circuit_breaker: PersistentCircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model_url = model_url
        self.timeout_seconds = timeout_seconds
        self.response_mime_type = response_mime_type
        self._retry_policy = retry_policy or RetryPolicy()
        self._circuit_breaker = circuit_breaker
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        circuit_breaker: PersistentCircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GeminiProvider:
        return cls(
            model_url=settings.gemini_model_url,
            timeout_seconds=settings.gemini_http_timeout_seconds,
            response_mime_type=settings.gemini_response_mime_type,
            retry_policy=retry_policy
            or RetryPolicy(
                retry_attempts=settings.gemini_retry_attempts,
                base_delay_ms=settings.gemini_retry_base_delay_ms,
                max_delay_ms=settings.gemini_retry_max_delay_ms,
                max_total_wait_ms=settings.gemini_retry_max_total_wait_ms,
            ),
            circuit_breaker=circuit_breaker,
            transport=transport,
        )

    async def call_generate_content(
        self,
        api_key: str,
        prompt_text: str,
        *,
        payload: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CallResult:
        request_payload = payload or build_request_payload(
            prompt_text,
            response_mime_type=self.response_mime_type,
        )
        request_bytes = json.dumps(request_payload).encode("utf-8")
        started_at = time.perf_counter()
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await self._retry_policy.fetch_with_retry(
                client,
                "POST",
                self.model_url,
                cancel_event=cancel_event,
                params={"key": api_key},
                content=request_bytes,
                headers={"Content-Type": "application/json"},
            )
        duration_ms = int((time.perf_counter() - started_at) * 1000)
        gemini_calls_total.labels(status=str(response.status_code)).inc()
        logger.info(
            "gemini.call_completed",
            extra={"status_code": response.status_code, "duration_ms": duration_ms},
        )
        return CallResult(
            status_code=response.status_code,
            raw_body=response.text,
            duration_ms=duration_ms,
            request_byte_len=len(request_bytes),
            response_byte_len=len(response.content),
            request_payload=request_payload,
        )

    async def generate_reply(
        self,
        api_key: str,
        prompt_text: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationOutcome:
        rejection = await run_in_threadpool(self._circuit_rejection)
        if rejection is not None:
            message, _ = rejection
            logger.warning("gemini.circuit_open", extra={"reason": message})
            return GenerationOutcome(success=False, call_result=None, error=message)

        call_result = await self._guarded_call(api_key, prompt_text, cancel_event=cancel_event)
        return interpret_call_result(call_result)

    async def generate_plain_text(self, api_key: str, prompt_text: str) -> CallResult:
        """Free-form generation with no JSON schema; the open circuit raises."""
        rejection = await run_in_threadpool(self._circuit_rejection)
        if rejection is not None:
            message, retry_ms = rejection
            raise CircuitOpenError(message, retry_in_seconds=math.ceil(retry_ms / 1000))
        payload = build_request_payload(prompt_text, response_mime_type=None, response_schema=None)
        return await self._guarded_call(api_key, prompt_text, payload=payload)

    async def ping(self, api_key: str) -> tuple[bool, CallResult]:
        payload = build_request_payload(
            PING_PROMPT,
            response_mime_type=self.response_mime_type,
            response_schema=None,
        )
        call_result = await self.call_generate_content(api_key, PING_PROMPT, payload=payload)
        parsed = parse_response(call_result.raw_body)
        success = call_result.status_code == 200 and isinstance(parsed, dict) and "ping" in parsed
        return success, call_result

    def _circuit_rejection(self) -> tuple[str, int] | None:
        """Breaker message and remaining wait when the call must not go out."""
        breaker = self._circuit_breaker
        if breaker is None or breaker.can_execute():
            return None
        return breaker.open_error_message(), breaker.get_time_until_retry_ms()

    async def _guarded_call(
        self,
        api_key: str,
        prompt_text: str,
        *,
        payload: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CallResult:
        breaker = self._circuit_breaker
        try:
            call_result = await self.call_generate_content(
                api_key,
                prompt_text,
                payload=payload,
                cancel_event=cancel_event,
            )
        except httpx.TransportError as exc:
            if breaker is not None:
                await run_in_threadpool(breaker.record_failure, type(exc).__name__)
            raise
        if breaker is not None:
            if call_result.status_code == 200:
                await run_in_threadpool(breaker.record_success)
            else:
                await run_in_threadpool(breaker.record_failure, f"http_{call_result.status_code}")
        return call_result
