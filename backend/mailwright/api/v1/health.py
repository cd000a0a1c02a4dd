from fastapi import APIRouter, Depends, Query, Request
from redis.exceptions import RedisError

from mailwright.api.deps import build_user_services, get_property_store
from mailwright.api.response import envelope
from mailwright.core.config import get_settings
from mailwright.db.redis_client import get_redis_client
from mailwright.services.property_store import PropertyStore, ScopedPropertyStore

router = APIRouter(tags=['ops'])
circuit_router = APIRouter(prefix='/circuit', tags=['ops'])


def _redis_connected() -> bool:
    try:
        return get_redis_client() is not None
    except (RuntimeError, RedisError):
        return False


@router.get('/health')
def health(request: Request) -> dict:
    settings = get_settings()
    payload: dict[str, str] = {'status': 'ok', 'property_store': settings.property_store_backend}
    if settings.property_store_backend == 'redis':
        payload['redis_status'] = 'ok' if _redis_connected() else 'unavailable'
    return envelope(request, payload)


def _snapshot_payload(store: PropertyStore, user_key: str) -> dict:
    _, breaker, _ = build_user_services(ScopedPropertyStore(store, user_key), get_settings())
    snapshot = breaker.snapshot()
    return {
        'user_key': user_key,
        'state': snapshot.state.value,
        'failure_count': snapshot.failure_count,
        'time_until_retry_ms': snapshot.time_until_retry_ms,
        'last_failure_epoch_ms': snapshot.last_failure_epoch_ms,
        'last_success_epoch_ms': snapshot.last_success_epoch_ms,
    }


@circuit_router.get('')
def circuit_status(
    request: Request,
    user_key: str = Query(min_length=1),
    store: PropertyStore = Depends(get_property_store),
) -> dict:
    return envelope(request, _snapshot_payload(store, user_key))


@circuit_router.post('/reset')
def circuit_reset(
    request: Request,
    user_key: str = Query(min_length=1),
    store: PropertyStore = Depends(get_property_store),
) -> dict:
    _, breaker, _ = build_user_services(ScopedPropertyStore(store, user_key), get_settings())
    breaker.reset()
    return envelope(request, _snapshot_payload(store, user_key))
