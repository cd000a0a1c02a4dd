from __future__ import annotations

from collections.abc import Callable
import logging
import math
import time

from mailwright.core.metrics import circuit_transitions_total
from mailwright.providers.execution_types import CircuitSnapshot, CircuitState
from mailwright.services.property_store import PropertyStore


logger = logging.getLogger("mailwright.circuit")

KEY_FAILURE_COUNT = "cb:failure_count"
KEY_STATE = "cb:state"
KEY_LAST_FAILURE = "cb:last_failure"
KEY_LAST_SUCCESS = "cb:last_success"
KEY_PROBE = "cb:probe"

_ALLOWED_TRANSITIONS = frozenset(
    {
        (CircuitState.CLOSED, CircuitState.OPEN),
        (CircuitState.OPEN, CircuitState.HALF_OPEN),
        (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        (CircuitState.HALF_OPEN, CircuitState.OPEN),
    }
)


class InvalidCircuitTransition(RuntimeError):
    def __init__(self, from_state: CircuitState, to_state: CircuitState) -> None:
        super().__init__(f"Invalid circuit transition {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


class PersistentCircuitBreaker:
    """Circuit breaker whose state lives in the property store.

    Each add-on invocation builds a fresh instance, so nothing is kept on the
    object itself. Counter updates are read-modify-write and may lose
    increments under concurrent invocations. The half-open trial slot is the
    exception: it is claimed atomically with ``set_if_absent``.
    """

    def __init__(
        self,
        store: PropertyStore,
        *,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60_000,
        probe_ttl_ms: int = 30_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.probe_ttl_ms = probe_ttl_ms
        self.clock = clock

    def get_state(self) -> CircuitState:
        raw = self.store.get(KEY_STATE, CircuitState.CLOSED.value)
        try:
            return CircuitState(raw)
        except ValueError:
            logger.warning("circuit.unknown_state", extra={"reason": raw})
            return CircuitState.CLOSED

    def failure_count(self) -> int:
        return self._read_int(KEY_FAILURE_COUNT) or 0

    def can_execute(self) -> bool:
        state = self.get_state()
        if state is CircuitState.CLOSED:
            return True
        if state is CircuitState.OPEN:
            if self.get_time_until_retry_ms() > 0:
                return False
            self._transition(state, CircuitState.HALF_OPEN)
        return self.store.set_if_absent(KEY_PROBE, str(self._now_ms()), ttl_ms=self.probe_ttl_ms)

    def record_success(self) -> None:
        state = self.get_state()
        self.store.set(KEY_LAST_SUCCESS, str(self._now_ms()))
        if state is CircuitState.HALF_OPEN:
            self._transition(state, CircuitState.CLOSED)
            self.store.delete(KEY_PROBE)
            self.store.set(KEY_FAILURE_COUNT, "0")
        elif state is CircuitState.CLOSED:
            self.store.set(KEY_FAILURE_COUNT, "0")

    def record_failure(self, reason: str = "") -> None:
        state = self.get_state()
        count = self.failure_count() + 1
        self.store.set(KEY_FAILURE_COUNT, str(count))
        self.store.set(KEY_LAST_FAILURE, str(self._now_ms()))
        logger.warning(
            "circuit.failure_recorded",
            extra={"circuit_state": state.value, "failure_count": count, "reason": reason},
        )
        if state is CircuitState.HALF_OPEN:
            self._transition(state, CircuitState.OPEN)
            self.store.delete(KEY_PROBE)
        elif state is CircuitState.CLOSED and count >= self.failure_threshold:
            self._transition(state, CircuitState.OPEN)

    def get_time_until_retry_ms(self) -> int:
        if self.get_state() is not CircuitState.OPEN:
            return 0
        last_failure = self._read_int(KEY_LAST_FAILURE)
        if last_failure is None:
            return 0
        return max(0, self.reset_timeout_ms - (self._now_ms() - last_failure))

    def open_error_message(self) -> str:
        seconds = math.ceil(self.get_time_until_retry_ms() / 1000)
        if seconds <= 0:
            return "API temporarily unavailable. Retrying now..."
        return f"API temporarily unavailable due to repeated failures. Please try again in {seconds} seconds."

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            state=self.get_state(),
            failure_count=self.failure_count(),
            time_until_retry_ms=self.get_time_until_retry_ms(),
            last_failure_epoch_ms=self._read_int(KEY_LAST_FAILURE),
            last_success_epoch_ms=self._read_int(KEY_LAST_SUCCESS),
        )

    def reset(self) -> None:
        previous = self.get_state()
        for key in (KEY_FAILURE_COUNT, KEY_STATE, KEY_LAST_FAILURE, KEY_LAST_SUCCESS, KEY_PROBE):
            self.store.delete(key)
        logger.info("circuit.reset", extra={"circuit_state": previous.value})

    def _transition(self, from_state: CircuitState, to_state: CircuitState) -> None:
        if (from_state, to_state) not in _ALLOWED_TRANSITIONS:
            raise InvalidCircuitTransition(from_state, to_state)
        self.store.set(KEY_STATE, to_state.value)
        circuit_transitions_total.labels(from_state=from_state.value, to_state=to_state.value).inc()
        logger.info("circuit.transition", extra={"from_state": from_state.value, "to_state": to_state.value})

    def _read_int(self, key: str) -> int | None:
        raw = self.store.get(key, "")
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)
