from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EmailMode(str, Enum):
    REPLY = "Reply"
    REPLY_ALL = "ReplyAll"
    FORWARD = "Forward"


class EmailTone(str, Enum):
    PROFESSIONAL = "Professional"
    FRIENDLY = "Friendly"
    CASUAL = "Casual"
    FORMAL = "Formal"
    HUMOROUS = "Humorous"


EMAIL_MODES: tuple[str, ...] = tuple(mode.value for mode in EmailMode)
EMAIL_TONES: tuple[str, ...] = tuple(tone.value for tone in EmailTone)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CallResult:
    status_code: int
    raw_body: str
    duration_ms: int
    request_byte_len: int
    response_byte_len: int
    request_payload: dict[str, Any]


@dataclass(frozen=True)
class ParsedResponse:
    body: str
    subject: str
    mode: EmailMode
    safe_to_send: bool


@dataclass
class RetryContext:
    max_attempts: int
    max_total_wait_ms: int
    attempt: int = 0
    total_wait_ms: int = 0

    def has_attempts_left(self) -> bool:
        return self.attempt < self.max_attempts - 1

    def fits_budget(self, wait_ms: int) -> bool:
        return self.total_wait_ms + wait_ms <= self.max_total_wait_ms


@dataclass(frozen=True)
class CircuitSnapshot:
    state: CircuitState
    failure_count: int
    time_until_retry_ms: int
    last_failure_epoch_ms: int | None
    last_success_epoch_ms: int | None


@dataclass(frozen=True)
class GenerationOutcome:
    success: bool
    call_result: CallResult | None
    response: ParsedResponse | None = None
    error: str | None = None
    safety_info: Any = None
