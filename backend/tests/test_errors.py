import httpx
import pytest

from mailwright.providers.errors import (
    AddonConfigurationError,
    AddonError,
    CircuitOpenError,
    ErrorType,
    GeminiApiError,
    classify_error,
    user_message,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ValueError("Invalid mode supplied"), ErrorType.VALIDATION),
        (RuntimeError("field is required"), ErrorType.VALIDATION),
        (RuntimeError("fetch failed"), ErrorType.NETWORK),
        (RuntimeError("connection reset by peer"), ErrorType.NETWORK),
        (RuntimeError("Forbidden by policy"), ErrorType.PERMISSION),
        (RuntimeError("config value missing"), ErrorType.CONFIGURATION),
        (RuntimeError("something odd"), ErrorType.UNKNOWN),
        (httpx.ReadTimeout("slow"), ErrorType.NETWORK),
        (httpx.ConnectError("down"), ErrorType.NETWORK),
        (TimeoutError(), ErrorType.NETWORK),
    ],
)
def test_classify_error_maps_exceptions(exc: Exception, expected: ErrorType) -> None:
    assert classify_error(exc).error_type is expected


def test_classify_error_keeps_typed_errors() -> None:
    error = GeminiApiError("HTTP 500", reason_code="http_500")
    assert classify_error(error) is error


def test_validation_keywords_win_over_later_lists() -> None:
    # "Invalid" and "missing" both match; the validation list is checked first.
    assert classify_error(RuntimeError("Invalid config: key missing")).error_type is ErrorType.VALIDATION


def test_classify_http_status_error() -> None:
    request = httpx.Request("GET", "https://gmail.test")
    denied = httpx.HTTPStatusError("denied", request=request, response=httpx.Response(403, request=request))
    failed = httpx.HTTPStatusError("failed", request=request, response=httpx.Response(500, request=request))

    assert classify_error(denied).error_type is ErrorType.PERMISSION
    assert classify_error(failed).reason_code == "http_500"


def test_user_messages() -> None:
    assert user_message(classify_error(ValueError("Invalid input"))) == "Validation error: Invalid input"
    assert user_message(AddonConfigurationError("API key missing. Open Settings.")) == "API key missing. Open Settings."
    assert user_message(classify_error(httpx.ConnectError("down"))) == (
        "Network error. Please check your connection and try again."
    )
    assert user_message(classify_error(RuntimeError("Unauthorized"))) == (
        "Permission denied. Please check your access rights."
    )
    assert user_message(CircuitOpenError("API temporarily unavailable.", retry_in_seconds=5)) == (
        "API temporarily unavailable."
    )
    assert user_message(AddonError("x", error_type=ErrorType.UNKNOWN, reason_code="unknown")) == (
        "An error occurred. Please try again later."
    )
