from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import hashlib
import logging

from fastapi import Depends, Request
import httpx
import jwt

from mailwright.core.config import Settings, get_settings
from mailwright.db.redis_client import get_redis_client
from mailwright.providers.circuit_breaker import PersistentCircuitBreaker
from mailwright.providers.errors import AddonPermissionError
from mailwright.providers.gemini import GeminiProvider
from mailwright.providers.gmail import GmailClient
from mailwright.providers.retry import RetryPolicy
from mailwright.schemas.addon import AddOnEvent
from mailwright.services.audit_log_service import AuditLog
from mailwright.services.generation_service import GenerationService
from mailwright.services.prompt_documents import LogsFolder, PromptDocumentStore
from mailwright.services.property_store import (
    InMemoryPropertyStore,
    PropertyStore,
    RedisPropertyStore,
    ScopedPropertyStore,
)
from mailwright.services.settings_service import SettingsService


logger = logging.getLogger("mailwright.api")

_GOOGLE_ISSUERS = ["https://accounts.google.com", "accounts.google.com"]
_ANONYMOUS_USER = "local-user"


@lru_cache
def get_property_store() -> PropertyStore:
    settings = get_settings()
    client = get_redis_client()
    if client is None:
        return InMemoryPropertyStore()
    return RedisPropertyStore(client, prefix=settings.property_namespace_prefix)


def get_gemini_transport() -> httpx.AsyncBaseTransport | None:
    return None


def get_gmail_transport() -> httpx.AsyncBaseTransport | None:
    return None


def get_retry_policy() -> RetryPolicy | None:
    return None


@lru_cache
def _jwks_client(certs_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(certs_url)


def resolve_user_key(event: AddOnEvent, settings: Settings) -> str:
    """Stable per-user namespace derived from the add-on ID token subject."""
    token = event.authorization.user_id_token
    if not settings.id_token_verification_enabled:
        if not token:
            return _ANONYMOUS_USER
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as exc:
            raise AddonPermissionError("Add-on identity token is invalid.", reason_code="invalid_id_token") from exc
    else:
        if not token:
            raise AddonPermissionError("Add-on identity token is missing.", reason_code="missing_id_token")
        try:
            signing_key = _jwks_client(settings.google_certs_url).get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=settings.id_token_audience,
                issuer=_GOOGLE_ISSUERS,
            )
        except jwt.PyJWTError as exc:
            raise AddonPermissionError("Add-on identity token is invalid.", reason_code="invalid_id_token") from exc

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AddonPermissionError("Add-on identity token has no subject.", reason_code="invalid_id_token")
    return hashlib.sha256(subject.encode("utf-8")).hexdigest()[:32]


@dataclass
class AddonContext:
    event: AddOnEvent
    settings: Settings
    user_key: str
    store: ScopedPropertyStore
    settings_service: SettingsService
    circuit_breaker: PersistentCircuitBreaker
    generation: GenerationService

    @property
    def action_base_url(self) -> str:
        return f"{self.settings.addon_base_url.rstrip('/')}{self.settings.api_v1_prefix}/addon"


def build_user_services(
    store: ScopedPropertyStore,
    settings: Settings,
) -> tuple[SettingsService, PersistentCircuitBreaker, AuditLog]:
    documents = PromptDocumentStore(store, root=settings.prompt_documents_root)
    logs_folder = LogsFolder(store, root=settings.audit_logs_root)
    settings_service = SettingsService(
        store,
        documents=documents,
        logs_folder=logs_folder,
        master_key_b64=settings.platform_master_key,
        last_body_ttl_seconds=settings.last_body_ttl_seconds,
    )
    circuit_breaker = PersistentCircuitBreaker(
        store,
        failure_threshold=settings.circuit_failure_threshold,
        reset_timeout_ms=settings.circuit_reset_timeout_ms,
        probe_ttl_ms=settings.circuit_probe_ttl_ms,
    )
    audit_log = AuditLog(store, logs_folder, lock_wait_ms=settings.audit_lock_wait_ms)
    return settings_service, circuit_breaker, audit_log


def get_addon_context(
    event: AddOnEvent,
    request: Request,
    store: PropertyStore = Depends(get_property_store),
    gemini_transport: httpx.AsyncBaseTransport | None = Depends(get_gemini_transport),
    gmail_transport: httpx.AsyncBaseTransport | None = Depends(get_gmail_transport),
    retry_policy: RetryPolicy | None = Depends(get_retry_policy),
) -> AddonContext:
    settings = get_settings()
    user_key = resolve_user_key(event, settings)
    request.state.user_key = user_key
    scoped = ScopedPropertyStore(store, user_key)
    settings_service, circuit_breaker, audit_log = build_user_services(scoped, settings)

    gmail: GmailClient | None = None
    if event.gmail is not None and event.authorization.user_oauth_token:
        gmail = GmailClient.from_settings(
            settings,
            oauth_token=event.authorization.user_oauth_token,
            message_access_token=event.gmail.access_token,
            transport=gmail_transport,
        )
    gemini = GeminiProvider.from_settings(
        settings,
        circuit_breaker=circuit_breaker,
        retry_policy=retry_policy,
        transport=gemini_transport,
    )
    generation = GenerationService(
        settings_service=settings_service,
        gemini=gemini,
        audit_log=audit_log,
        gmail=gmail,
        thread_max_chars=settings.thread_max_chars,
        prompt_max_chars=settings.prompt_max_chars,
    )
    return AddonContext(
        event=event,
        settings=settings,
        user_key=user_key,
        store=scoped,
        settings_service=settings_service,
        circuit_breaker=circuit_breaker,
        generation=generation,
    )
