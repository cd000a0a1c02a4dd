from __future__ import annotations

from dataclasses import dataclass
import logging

from mailwright.core.crypto import SecretCryptoError, decrypt_secret, encrypt_secret
from mailwright.providers.errors import AddonConfigurationError
from mailwright.providers.execution_types import EMAIL_MODES, EMAIL_TONES, EmailMode, EmailTone
from mailwright.services.prompt_documents import LogsFolder, PromptDocumentStore
from mailwright.services.property_store import ScopedPropertyStore


logger = logging.getLogger("mailwright.settings")

KEY_API_KEY = "api_key"
KEY_DEFAULT_MODE = "default_mode"
KEY_DEFAULT_TONE = "default_tone"
KEY_LOGGING_ENABLED = "logging_enabled"
KEY_LAST_BODY = "last_body"

DEFAULT_MODE = EmailMode.REPLY
DEFAULT_TONE = EmailTone.PROFESSIONAL


@dataclass(frozen=True)
class UserSettings:
    api_key: str
    default_mode: EmailMode
    default_tone: EmailTone
    has_prompt_doc: bool
    has_logs_folder: bool
    logging_enabled: bool

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


def validate_email_mode(value: str | None) -> EmailMode:
    if value in EMAIL_MODES:
        return EmailMode(value)
    return DEFAULT_MODE


def validate_email_tone(value: str | None) -> EmailTone:
    if value in EMAIL_TONES:
        return EmailTone(value)
    return DEFAULT_TONE


class SettingsService:
    def __init__(
        self,
        store: ScopedPropertyStore,
        *,
        documents: PromptDocumentStore,
        logs_folder: LogsFolder,
        master_key_b64: str,
        last_body_ttl_seconds: int = 600,
    ) -> None:
        self.store = store
        self.documents = documents
        self.logs_folder = logs_folder
        self._master_key_b64 = master_key_b64
        self._last_body_ttl_seconds = last_body_ttl_seconds

    def save_settings(
        self,
        *,
        api_key: str | None = None,
        default_mode: str | None = None,
        default_tone: str | None = None,
        logging_enabled: bool | None = None,
    ) -> None:
        if api_key is not None:
            api_key = api_key.strip()
            if api_key:
                self.store.set(KEY_API_KEY, encrypt_secret(api_key, master_key_b64=self._master_key_b64))
            else:
                self.store.delete(KEY_API_KEY)
        if default_mode is not None:
            self.store.set(KEY_DEFAULT_MODE, default_mode)
        if default_tone is not None:
            self.store.set(KEY_DEFAULT_TONE, default_tone)
        if logging_enabled is not None:
            self.store.set(KEY_LOGGING_ENABLED, "true" if logging_enabled else "false")
        logger.info("settings.saved", extra={"user_key": self.store.namespace})

    def get_api_key(self) -> str:
        blob = self.store.get(KEY_API_KEY)
        if not blob:
            return ""
        try:
            return decrypt_secret(blob, master_key_b64=self._master_key_b64)
        except SecretCryptoError as exc:
            raise AddonConfigurationError(
                "Stored API key cannot be read. Enter it again in Settings.",
                reason_code=exc.reason_code,
            ) from exc

    def get_settings(self) -> UserSettings:
        return UserSettings(
            api_key=self.get_api_key(),
            default_mode=validate_email_mode(self.store.get(KEY_DEFAULT_MODE, DEFAULT_MODE.value)),
            default_tone=validate_email_tone(self.store.get(KEY_DEFAULT_TONE, DEFAULT_TONE.value)),
            has_prompt_doc=self.documents.prompt_doc_exists(),
            has_logs_folder=self.logs_folder.logs_folder_exists(),
            logging_enabled=self.logging_enabled(),
        )

    def logging_enabled(self) -> bool:
        return self.store.get(KEY_LOGGING_ENABLED, "true") == "true"

    def missing_requirements(self) -> list[str]:
        missing: list[str] = []
        if not self.store.get(KEY_API_KEY):
            missing.append("API key")
        if not self.documents.prompt_doc_exists():
            missing.append("Prompt document")
        if not self.logs_folder.logs_folder_exists():
            missing.append("Logs folder")
        return missing

    def is_fully_configured(self) -> bool:
        return not self.missing_requirements()

    def ensure_api_key(self) -> str:
        api_key = self.get_api_key()
        if not api_key:
            raise AddonConfigurationError("API key missing. Open Settings.", reason_code="api_key_missing")
        return api_key

    def ensure_prompt_doc(self) -> None:
        self.documents.ensure_prompt_doc()

    def ensure_logs_folder(self) -> None:
        self.logs_folder.ensure_logs_folder()

    def ensure_all_requirements(self) -> str:
        api_key = self.ensure_api_key()
        self.ensure_prompt_doc()
        self.ensure_logs_folder()
        return api_key

    def resolve_mode(self, form_value: str | None = None) -> EmailMode:
        stored = self.store.get(KEY_DEFAULT_MODE, DEFAULT_MODE.value)
        return validate_email_mode(form_value or stored)

    def resolve_tone(self, form_value: str | None = None, *, override: str | None = None) -> EmailTone:
        if override:
            return validate_email_tone(override)
        stored = self.store.get(KEY_DEFAULT_TONE, DEFAULT_TONE.value)
        return validate_email_tone(form_value or stored)

    def set_default_mode(self, value: str | None) -> EmailMode:
        mode = validate_email_mode(value)
        self.store.set(KEY_DEFAULT_MODE, mode.value)
        return mode

    def set_default_tone(self, value: str | None) -> EmailTone:
        tone = validate_email_tone(value)
        self.store.set(KEY_DEFAULT_TONE, tone.value)
        return tone

    def remember_last_body(self, body: str) -> None:
        self.store.set(KEY_LAST_BODY, body, ttl_seconds=self._last_body_ttl_seconds)

    def last_body(self) -> str:
        return self.store.get(KEY_LAST_BODY)

    def factory_reset(self) -> None:
        self.store.clear()
        logger.info("settings.factory_reset", extra={"user_key": self.store.namespace})
