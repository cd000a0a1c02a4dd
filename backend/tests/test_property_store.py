from __future__ import annotations

from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mailwright.core.config import Settings
from mailwright.db import redis_client
from mailwright.services.property_store import (
    InMemoryPropertyStore,
    RedisPropertyStore,
    ScopedPropertyStore,
    best_effort_lock,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class _FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False, px: int | None = None):
        self.calls.append(("set", (key, value), {"ex": ex, "nx": nx, "px": px}))
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
        return removed

    def scan_iter(self, match: str, count: int):
        prefix = match.rstrip("*")
        return [key for key in list(self.values) if key.startswith(prefix)]


class _UnavailableStore(InMemoryPropertyStore):
    def set_if_absent(self, key: str, value: str, *, ttl_ms: int) -> bool:
        raise RedisConnectionError("redis down")


def test_in_memory_store_get_set_delete_and_ttl() -> None:
    clock = _Clock()
    store = InMemoryPropertyStore(clock=clock)
    store.set("plain", "value")
    store.set("short", "lived", ttl_seconds=10)

    assert store.get("plain") == "value"
    assert store.get("missing", "fallback") == "fallback"
    clock.now += 10
    assert store.get("short") == ""

    store.delete("plain")
    assert store.get("plain") == ""


def test_in_memory_set_if_absent_is_exclusive_until_expiry() -> None:
    clock = _Clock()
    store = InMemoryPropertyStore(clock=clock)

    assert store.set_if_absent("probe", "1", ttl_ms=500) is True
    assert store.set_if_absent("probe", "2", ttl_ms=500) is False
    clock.now += 0.5
    assert store.set_if_absent("probe", "3", ttl_ms=500) is True


def test_scoped_store_isolates_namespaces_and_clears_only_its_keys() -> None:
    shared = InMemoryPropertyStore()
    alice = ScopedPropertyStore(shared, "alice")
    bob = ScopedPropertyStore(shared, "bob")
    alice.set("api_key", "a")
    alice.set("default_tone", "Casual")
    bob.set("api_key", "b")

    assert alice.get("api_key") == "a"
    assert bob.get("api_key") == "b"

    alice.clear()

    assert alice.get("api_key") == ""
    assert alice.get("default_tone") == ""
    assert bob.get("api_key") == "b"


def test_redis_store_prefixes_keys_and_uses_atomic_set() -> None:
    client = _FakeRedis()
    store = RedisPropertyStore(client, prefix="mailwright")

    store.set("user:api_key", "secret", ttl_seconds=60)
    assert client.values == {"mailwright:user:api_key": "secret"}
    assert client.calls[0][2]["ex"] == 60
    assert store.get("user:api_key") == "secret"

    assert store.set_if_absent("user:cb:probe", "1", ttl_ms=30_000) is True
    assert store.set_if_absent("user:cb:probe", "1", ttl_ms=30_000) is False
    assert client.calls[-1][2] == {"ex": None, "nx": True, "px": 30_000}

    store.set("other:api_key", "keep")
    store.delete_prefix("user:")
    assert list(client.values) == ["mailwright:other:api_key"]


def test_best_effort_lock_acquires_and_releases() -> None:
    store = InMemoryPropertyStore()
    with best_effort_lock(store, "audit_sheet", wait_ms=100) as acquired:
        assert acquired is True
        assert store.get("lock:audit_sheet") == "1"
    assert store.get("lock:audit_sheet") == ""


def test_best_effort_lock_runs_body_after_wait_expires() -> None:
    store = InMemoryPropertyStore()
    store.set_if_absent("lock:audit_sheet", "held", ttl_ms=60_000)
    ticks = iter([0.0, 0.05, 0.1, 0.2])
    sleeps: list[float] = []

    with best_effort_lock(
        store,
        "audit_sheet",
        wait_ms=100,
        sleep_fn=sleeps.append,
        clock=lambda: next(ticks),
    ) as acquired:
        assert acquired is False

    assert sleeps == [0.05]
    assert store.get("lock:audit_sheet") == "held"


def test_best_effort_lock_tolerates_store_errors() -> None:
    with best_effort_lock(_UnavailableStore(), "audit_sheet", wait_ms=100) as acquired:
        assert acquired is False


class _PingClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def ping(self) -> bool:
        if self.error is not None:
            raise self.error
        return True


def _redis_settings() -> Settings:
    return Settings(
        app_env="test",
        property_store_backend="redis",
        redis_url="redis://cache.internal:6379/2",
        redis_socket_timeout_seconds=1.5,
    )


def test_redis_client_uses_configured_timeouts(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    def _from_url(url: str, **kwargs: Any) -> _PingClient:
        captured.update(kwargs, url=url)
        return _PingClient()

    monkeypatch.setattr(redis_client, "get_settings", _redis_settings)
    monkeypatch.setattr(redis_client.redis.Redis, "from_url", _from_url)

    assert isinstance(redis_client.get_redis_client(), _PingClient)
    assert captured["url"] == "redis://cache.internal:6379/2"
    assert captured["decode_responses"] is True
    assert captured["socket_timeout"] == 1.5
    assert captured["socket_connect_timeout"] == 1.5


def test_redis_client_reports_unreachable_server(monkeypatch) -> None:
    monkeypatch.setattr(redis_client, "get_settings", _redis_settings)
    monkeypatch.setattr(
        redis_client.redis.Redis,
        "from_url",
        lambda url, **kwargs: _PingClient(RedisConnectionError("refused")),
    )

    with pytest.raises(RuntimeError, match="cache.internal"):
        redis_client.get_redis_client()


def test_memory_backend_needs_no_redis_client() -> None:
    assert redis_client.get_redis_client() is None
