from __future__ import annotations

import pytest

from mailwright.api.deps import build_user_services
from mailwright.core.config import get_settings
from mailwright.providers.circuit_breaker import (
    KEY_PROBE,
    KEY_STATE,
    InvalidCircuitTransition,
    PersistentCircuitBreaker,
)
from mailwright.providers.execution_types import CircuitState
from mailwright.services.property_store import InMemoryPropertyStore, ScopedPropertyStore


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def store(clock: _Clock) -> ScopedPropertyStore:
    return ScopedPropertyStore(InMemoryPropertyStore(clock=clock), "user-a")


def _breaker(store, clock, **kwargs) -> PersistentCircuitBreaker:
    kwargs.setdefault("failure_threshold", 3)
    kwargs.setdefault("reset_timeout_ms", 60_000)
    return PersistentCircuitBreaker(store, clock=clock, **kwargs)


def _trip(breaker: PersistentCircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        breaker.record_failure("http_503")


def test_fresh_breaker_is_closed_and_allows_calls(store, clock) -> None:
    breaker = _breaker(store, clock)
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.can_execute() is True
    assert breaker.get_time_until_retry_ms() == 0


def test_breaker_opens_at_threshold(store, clock) -> None:
    breaker = _breaker(store, clock)
    breaker.record_failure("http_500")
    breaker.record_failure("http_500")
    assert breaker.get_state() is CircuitState.CLOSED

    breaker.record_failure("http_500")

    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.can_execute() is False
    assert breaker.get_time_until_retry_ms() == 60_000


def test_success_while_closed_resets_failure_count(store, clock) -> None:
    breaker = _breaker(store, clock)
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    assert breaker.failure_count() == 0
    breaker.record_failure()
    assert breaker.get_state() is CircuitState.CLOSED


def test_state_survives_new_instances(store, clock) -> None:
    _trip(_breaker(store, clock))
    assert _breaker(store, clock).get_state() is CircuitState.OPEN


def test_open_breaker_moves_to_half_open_after_timeout_with_single_probe(store, clock) -> None:
    breaker = _breaker(store, clock)
    _trip(breaker)
    clock.advance(59)
    assert breaker.can_execute() is False

    clock.advance(1)
    assert breaker.can_execute() is True
    assert breaker.get_state() is CircuitState.HALF_OPEN
    assert _breaker(store, clock).can_execute() is False


def test_half_open_success_closes_breaker(store, clock) -> None:
    breaker = _breaker(store, clock)
    _trip(breaker)
    clock.advance(61)
    assert breaker.can_execute() is True

    breaker.record_success()

    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.failure_count() == 0
    assert store.get(KEY_PROBE) == ""
    assert breaker.can_execute() is True


def test_half_open_failure_reopens_breaker(store, clock) -> None:
    breaker = _breaker(store, clock)
    _trip(breaker)
    clock.advance(61)
    assert breaker.can_execute() is True

    breaker.record_failure("timeout")

    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.get_time_until_retry_ms() == 60_000
    assert breaker.can_execute() is False


def test_abandoned_probe_expires_after_ttl(store, clock) -> None:
    breaker = _breaker(store, clock, probe_ttl_ms=5_000)
    _trip(breaker)
    clock.advance(61)
    assert breaker.can_execute() is True
    assert breaker.can_execute() is False

    clock.advance(5)

    assert breaker.can_execute() is True


def test_open_error_message_rounds_seconds_up(store, clock) -> None:
    breaker = _breaker(store, clock)
    _trip(breaker)
    clock.advance(30.5)
    assert breaker.open_error_message() == (
        "API temporarily unavailable due to repeated failures. Please try again in 30 seconds."
    )
    clock.advance(29.6)
    assert breaker.open_error_message() == "API temporarily unavailable. Retrying now..."


def test_unknown_stored_state_is_treated_as_closed(store, clock) -> None:
    store.set(KEY_STATE, "melted")
    assert _breaker(store, clock).get_state() is CircuitState.CLOSED


def test_snapshot_and_reset(store, clock) -> None:
    breaker = _breaker(store, clock)
    breaker.record_success()
    _trip(breaker)

    snapshot = breaker.snapshot()
    assert snapshot.state is CircuitState.OPEN
    assert snapshot.failure_count == 3
    assert snapshot.last_failure_epoch_ms == 1_000_000
    assert snapshot.last_success_epoch_ms == 1_000_000

    breaker.reset()

    snapshot = breaker.snapshot()
    assert snapshot.state is CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.last_failure_epoch_ms is None


def test_breakers_are_isolated_per_user(clock) -> None:
    shared = InMemoryPropertyStore(clock=clock)
    _trip(_breaker(ScopedPropertyStore(shared, "user-a"), clock))
    assert _breaker(ScopedPropertyStore(shared, "user-b"), clock).can_execute() is True


def test_invalid_transition_is_rejected(store, clock) -> None:
    breaker = _breaker(store, clock)
    with pytest.raises(InvalidCircuitTransition):
        breaker._transition(CircuitState.CLOSED, CircuitState.HALF_OPEN)


def test_default_breaker_opens_on_fifth_consecutive_failure(store, clock) -> None:
    breaker = PersistentCircuitBreaker(store, clock=clock)
    for _ in range(4):
        breaker.record_failure("http_503")
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.can_execute() is True

    breaker.record_failure("http_503")

    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.get_time_until_retry_ms() == 60_000
    assert breaker.can_execute() is False


def test_configured_user_breaker_uses_threshold_of_five(memory_store) -> None:
    _, breaker, _ = build_user_services(ScopedPropertyStore(memory_store, "user-a"), get_settings())

    assert breaker.failure_threshold == 5
    assert breaker.reset_timeout_ms == 60_000
    for _ in range(4):
        breaker.record_failure("http_500")
    assert breaker.get_state() is CircuitState.CLOSED
    breaker.record_failure("http_500")
    assert breaker.get_state() is CircuitState.OPEN
