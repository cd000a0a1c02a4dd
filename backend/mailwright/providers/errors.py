from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx


class ErrorType(str, Enum):
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    PERMISSION = "PERMISSION"
    CONFIGURATION = "CONFIGURATION"
    API = "API"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorClassification:
    error_type: ErrorType
    reason_code: str
    message: str


class AddonError(Exception):
    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType,
        reason_code: str,
        upstream_payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.reason_code = reason_code
        self.upstream_payload = upstream_payload


class AddonValidationError(AddonError):
    def __init__(self, message: str = "Invalid add-on input.", *, reason_code: str = "validation_failed") -> None:
        super().__init__(message, error_type=ErrorType.VALIDATION, reason_code=reason_code)


class AddonConfigurationError(AddonError):
    def __init__(self, message: str = "Add-on configuration is missing.", *, reason_code: str = "configuration_missing") -> None:
        super().__init__(message, error_type=ErrorType.CONFIGURATION, reason_code=reason_code)


class AddonNetworkError(AddonError):
    def __init__(self, message: str = "Network request failed.", *, reason_code: str = "network_error") -> None:
        super().__init__(message, error_type=ErrorType.NETWORK, reason_code=reason_code)


class AddonPermissionError(AddonError):
    def __init__(
        self,
        message: str = "Permission denied.",
        *,
        reason_code: str = "permission_denied",
        upstream_payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.PERMISSION,
            reason_code=reason_code,
            upstream_payload=upstream_payload,
        )


class GeminiApiError(AddonError):
    def __init__(
        self,
        message: str = "Gemini API call failed.",
        *,
        reason_code: str = "api_error",
        upstream_payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.API,
            reason_code=reason_code,
            upstream_payload=upstream_payload,
        )


class CircuitOpenError(AddonError):
    def __init__(self, message: str, *, retry_in_seconds: int) -> None:
        super().__init__(message, error_type=ErrorType.CIRCUIT_OPEN, reason_code="circuit_open")
        self.retry_in_seconds = retry_in_seconds


# Keyword lists are checked in order; the first list with a hit wins.
_KEYWORD_RULES: tuple[tuple[ErrorType, tuple[str, ...]], ...] = (
    (ErrorType.VALIDATION, ("invalid", "required")),
    (ErrorType.NETWORK, ("fetch", "network", "timed out", "timeout", "connection")),
    (ErrorType.PERMISSION, ("permission", "unauthorized", "forbidden")),
    (ErrorType.CONFIGURATION, ("config", "missing")),
)


def classification_from_exception(exc: BaseException) -> ErrorClassification:
    if isinstance(exc, AddonError):
        return ErrorClassification(exc.error_type, exc.reason_code, exc.message)
    if isinstance(exc, TimeoutError | httpx.TimeoutException):
        return ErrorClassification(ErrorType.NETWORK, "timeout", str(exc) or "Request timed out.")
    if isinstance(exc, ConnectionError | httpx.TransportError):
        return ErrorClassification(ErrorType.NETWORK, "connection_error", str(exc) or "Connection failed.")
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        if status_code in {401, 403}:
            return ErrorClassification(ErrorType.PERMISSION, "permission_denied", str(exc))
        return ErrorClassification(ErrorType.API, f"http_{status_code}", str(exc))
    message = str(exc)
    lowered = message.lower()
    for error_type, keywords in _KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return ErrorClassification(error_type, error_type.value.lower(), message)
    return ErrorClassification(ErrorType.UNKNOWN, "unknown", message or "An unexpected error occurred")


def classify_error(exc: BaseException) -> AddonError:
    if isinstance(exc, AddonError):
        return exc
    classification = classification_from_exception(exc)
    return AddonError(
        classification.message,
        error_type=classification.error_type,
        reason_code=classification.reason_code,
    )


def user_message(error: AddonError) -> str:
    """Single notification line shown to the add-on user."""
    if error.error_type is ErrorType.VALIDATION:
        return f"Validation error: {error.message}"
    if error.error_type is ErrorType.CONFIGURATION:
        # Configuration messages already tell the user where to go.
        return error.message or "Configuration error. Please check your settings."
    if error.error_type is ErrorType.NETWORK:
        return "Network error. Please check your connection and try again."
    if error.error_type is ErrorType.PERMISSION:
        return "Permission denied. Please check your access rights."
    if error.error_type in {ErrorType.API, ErrorType.CIRCUIT_OPEN}:
        return error.message
    return "An error occurred. Please try again later."
