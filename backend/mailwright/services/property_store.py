"""String key-value storage for per-user add-on state.

Every add-on invocation is stateless, so settings, circuit breaker counters and
cached identifiers live here. Read-modify-write sequences are not
transactional; concurrent invocations may lose counter updates. The only
atomic primitive is ``set_if_absent``, which backs the half-open probe slot and
the audit log creation lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

import redis
from redis.exceptions import RedisError


logger = logging.getLogger("mailwright.store")

_LOCK_POLL_SECONDS = 0.05


class PropertyStore(Protocol):
    def get(self, key: str, default: str = "") -> str: ...

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def set_if_absent(self, key: str, value: str, *, ttl_ms: int) -> bool: ...

    def delete_prefix(self, prefix: str) -> None: ...


class InMemoryPropertyStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: str = "") -> str:
        with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry is not None else default

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._values[key] = (str(value), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def set_if_absent(self, key: str, value: str, *, ttl_ms: int) -> bool:
        with self._lock:
            if self._live_entry(key) is not None:
                return False
            self._values[key] = (str(value), self._clock() + ttl_ms / 1000.0)
            return True

    def delete_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [key for key in self._values if key.startswith(prefix)]:
                del self._values[key]

    def _live_entry(self, key: str) -> tuple[str, float | None] | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return entry


class RedisPropertyStore:
    def __init__(self, client: redis.Redis, *, prefix: str) -> None:
        self._client = client
        self._prefix = prefix

    def get(self, key: str, default: str = "") -> str:
        value = self._client.get(self._key(key))
        if value is None:
            return default
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._client.set(self._key(key), str(value), ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def set_if_absent(self, key: str, value: str, *, ttl_ms: int) -> bool:
        return bool(self._client.set(self._key(key), str(value), nx=True, px=max(1, int(ttl_ms))))

    def delete_prefix(self, prefix: str) -> None:
        batch: list[str] = []
        for key in self._client.scan_iter(match=f"{self._key(prefix)}*", count=200):
            batch.append(key)
            if len(batch) >= 200:
                self._client.delete(*batch)
                batch = []
        if batch:
            self._client.delete(*batch)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"


class ScopedPropertyStore:
    """Namespaces every key of an underlying store, e.g. per add-on user."""

    def __init__(self, store: PropertyStore, namespace: str) -> None:
        self._store = store
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def get(self, key: str, default: str = "") -> str:
        return self._store.get(self._key(key), default)

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._store.set(self._key(key), value, ttl_seconds=ttl_seconds)

    def delete(self, key: str) -> None:
        self._store.delete(self._key(key))

    def set_if_absent(self, key: str, value: str, *, ttl_ms: int) -> bool:
        return self._store.set_if_absent(self._key(key), value, ttl_ms=ttl_ms)

    def delete_prefix(self, prefix: str) -> None:
        self._store.delete_prefix(self._key(prefix))

    def clear(self) -> None:
        self._store.delete_prefix(f"{self._namespace}:")

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"


@contextmanager
def best_effort_lock(
    store: PropertyStore,
    name: str,
    *,
    wait_ms: int,
    ttl_ms: int = 30_000,
    sleep_fn: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[bool]:
    """Waits up to ``wait_ms`` for ``name``; yields whether the lock is held.

    A lock that cannot be acquired is logged and the body still runs.
    """
    lock_key = f"lock:{name}"
    deadline = clock() + wait_ms / 1000.0
    acquired = False
    try:
        while True:
            acquired = store.set_if_absent(lock_key, "1", ttl_ms=ttl_ms)
            if acquired or clock() >= deadline:
                break
            sleep_fn(_LOCK_POLL_SECONDS)
    except RedisError:
        logger.warning("lock.acquire_failed", extra={"reason": "store_unavailable"})
    if not acquired:
        logger.warning("lock.not_acquired", extra={"reason": name})
    try:
        yield acquired
    finally:
        if acquired:
            try:
                store.delete(lock_key)
            except RedisError:
                logger.warning("lock.release_failed", extra={"reason": name})
