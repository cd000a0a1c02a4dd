from fastapi import APIRouter

from mailwright.api.v1 import addon, health


def build_api_router(app_env: str) -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(addon.router)
    if app_env.lower() != 'production':
        api_router.include_router(health.circuit_router)
    return api_router
