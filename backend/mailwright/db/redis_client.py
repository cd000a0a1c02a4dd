from __future__ import annotations

import logging

import redis
from redis.exceptions import RedisError

from mailwright.core.config import get_settings


logger = logging.getLogger("mailwright.store")


def get_redis_client() -> redis.Redis | None:
    """Redis client backing the per-user property store, or None for the memory backend."""
    settings = get_settings()
    if settings.property_store_backend != "redis":
        return None
    client = redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
        health_check_interval=settings.redis_health_check_interval_seconds,
    )
    try:
        client.ping()
    except RedisError as exc:
        logger.error("store.redis_unavailable", extra={"reason": type(exc).__name__})
        raise RuntimeError(f"Redis unavailable at {settings.redis_url}") from exc
    return client
