import base64
import binascii
import os
import sys
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_TEST_MASTER_KEY = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Mailwright"
    app_env: str = "local"
    api_v1_prefix: str = "/api/v1"
    addon_base_url: str = "http://localhost:8000"

    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 2.0
    redis_health_check_interval_seconds: int = 30
    property_store_backend: str = "redis"
    property_namespace_prefix: str = "mailwright"

    platform_master_key: str = ""

    gemini_model_url: str = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    gemini_response_mime_type: str = "application/json"
    gemini_retry_attempts: int = 1
    gemini_retry_base_delay_ms: int = 400
    gemini_retry_max_delay_ms: int = 8_000
    gemini_retry_max_total_wait_ms: int = 10_000
    gemini_http_timeout_seconds: float = 30.0

    circuit_failure_threshold: int = 5
    circuit_reset_timeout_ms: int = 60_000
    circuit_probe_ttl_ms: int = 30_000

    gmail_api_base_url: str = "https://gmail.googleapis.com/gmail/v1"
    gmail_http_timeout_seconds: float = 15.0

    thread_max_chars: int = 120_000
    prompt_max_chars: int = 120_000
    preview_chars: int = 1_200
    last_body_ttl_seconds: int = 600

    prompt_documents_root: str = "./var/prompts"
    audit_logs_root: str = "./var/logs"
    audit_lock_wait_ms: int = 5_000

    id_token_verification_enabled: bool = True
    id_token_audience: str = ""
    google_certs_url: str = "https://www.googleapis.com/oauth2/v3/certs"

    log_level: str = "INFO"
    metrics_enabled: bool = False
    max_request_body_bytes: int = 2_000_000

    @model_validator(mode="after")
    def validate_production_guardrails(self) -> "Settings":
        if self.property_store_backend not in {"redis", "memory"}:
            raise ValueError("PROPERTY_STORE_BACKEND must be 'redis' or 'memory'.")
        if self.gemini_retry_attempts < 0:
            raise ValueError("GEMINI_RETRY_ATTEMPTS must not be negative.")
        if self.gemini_retry_base_delay_ms <= 0 or self.gemini_retry_max_delay_ms <= 0:
            raise ValueError("Gemini retry delays must be positive.")
        if self.redis_socket_timeout_seconds <= 0:
            raise ValueError("REDIS_SOCKET_TIMEOUT_SECONDS must be positive.")

        if self.app_env.lower() != "production":
            return self

        if self.platform_master_key in {"", _TEST_MASTER_KEY, "replace-me"}:
            raise ValueError("Production requires PLATFORM_MASTER_KEY and forbids weak default values.")
        try:
            decoded_master_key = base64.b64decode(self.platform_master_key)
        except (ValueError, binascii.Error) as exc:
            raise ValueError("Production requires PLATFORM_MASTER_KEY to be valid base64.") from exc
        if len(decoded_master_key) != 32:
            raise ValueError("Production requires PLATFORM_MASTER_KEY to decode to exactly 32 bytes.")
        if not self.id_token_verification_enabled:
            raise ValueError("Production forbids disabling ID token verification.")
        if not self.id_token_audience.strip():
            raise ValueError("Production requires ID_TOKEN_AUDIENCE (the add-on endpoint URL).")
        if not self.addon_base_url.startswith("https://"):
            raise ValueError("Production requires ADDON_BASE_URL to use https.")
        if self.property_store_backend != "redis":
            raise ValueError("Production requires the redis property store backend.")
        return self


@lru_cache
def get_settings() -> Settings:
    app_env = os.getenv("APP_ENV", "").lower()
    is_pytest_runtime = "pytest" in sys.modules
    if app_env == "test" or (not app_env and is_pytest_runtime):
        def _env_or_default(name: str, default: str) -> str:
            value = os.getenv(name)
            if value is None:
                return default
            stripped = value.strip()
            return stripped if stripped else default

        return Settings(
            app_env="test",
            property_store_backend="memory",
            platform_master_key=_env_or_default("PLATFORM_MASTER_KEY", _TEST_MASTER_KEY),
            id_token_verification_enabled=False,
            prompt_documents_root=_env_or_default("PROMPT_DOCUMENTS_ROOT", "./var/test-prompts"),
            audit_logs_root=_env_or_default("AUDIT_LOGS_ROOT", "./var/test-logs"),
        )
    return Settings()
