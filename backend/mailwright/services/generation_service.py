from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging

from starlette.concurrency import run_in_threadpool

from mailwright.core.metrics import generation_outcomes_total
from mailwright.providers.errors import AddonConfigurationError, AddonValidationError, GeminiApiError
from mailwright.providers.execution_types import EmailMode, EmailTone, GenerationOutcome
from mailwright.providers.gemini import GeminiProvider, extract_payload, extract_safety_info
from mailwright.providers.gmail import GmailClient, GmailMessage, GmailThread, build_draft_mime
from mailwright.schemas.addon import AddOnEvent, GmailEventObject
from mailwright.services.audit_log_service import CELL_MAX_CHARS, AuditEntry, AuditLog
from mailwright.services.email_service import (
    Recipients,
    UserAddressBook,
    compute_recipients,
    format_subject_for_mode,
    normalize_reply_subject,
    split_subject_line,
    thread_plain_text,
    to_html,
    truncate_text,
)
from mailwright.services.settings_service import SettingsService, validate_email_mode
from mailwright.services.template_service import (
    build_compose_prompt,
    build_prompt_variables,
    build_quick_compose_prompt,
    replace_variables,
)


logger = logging.getLogger("mailwright.generation")


@dataclass(frozen=True)
class GenerationContext:
    message: GmailMessage
    thread: GmailThread
    mode: EmailMode
    tone: EmailTone
    recipients: Recipients
    thread_text: str
    truncated: bool

    @property
    def base_subject(self) -> str:
        return self.thread.last_subject or self.thread.first_subject


@dataclass(frozen=True)
class PreviewData:
    mode: EmailMode
    tone: EmailTone
    intent: str
    subject: str
    to: list[str]
    cc: list[str]
    body: str
    safe_to_send: bool
    truncated: bool


@dataclass(frozen=True)
class GenerationResult:
    context: GenerationContext
    intent: str
    outcome: GenerationOutcome
    preview: PreviewData | None = None


@dataclass(frozen=True)
class ComposeDraft:
    subject: str
    body: str
    to: tuple[str, ...] = ()
    cc: tuple[str, ...] = ()


def is_valid_gmail_context(event: AddOnEvent) -> bool:
    gmail = event.gmail
    if gmail is None or not gmail.message_id or not gmail.access_token:
        return False
    return 5 <= len(gmail.message_id) <= 100 and len(gmail.access_token) >= 10


def validate_gmail_event(event: AddOnEvent) -> GmailEventObject:
    gmail = event.gmail
    if gmail is None or not gmail.message_id or not gmail.access_token:
        raise AddonValidationError("Open an email thread via the add-on.", reason_code="gmail_context_missing")
    return gmail


def build_preview_data(context: GenerationContext, intent: str, outcome: GenerationOutcome) -> PreviewData:
    response = outcome.response
    if response is None:
        raise ValueError("Preview requires a successful generation outcome.")
    return PreviewData(
        mode=context.mode,
        tone=context.tone,
        intent=intent,
        subject=format_subject_for_mode(context.base_subject, context.mode),
        to=list(context.recipients.to),
        cc=list(context.recipients.cc),
        body=response.body,
        safe_to_send=response.safe_to_send,
        truncated=context.truncated,
    )


def compose_update_from_parameters(parameters: dict[str, str]) -> ComposeDraft:
    """Draft fields for applying a previewed reply inside a compose window."""
    mode = validate_email_mode(parameters.get("mode") or EmailMode.REPLY.value)
    subject = parameters.get("subject", "")
    if mode is not EmailMode.FORWARD:
        subject = normalize_reply_subject(subject)
    to = tuple(item.strip() for item in parameters.get("to", "").split(",") if item.strip())
    cc = tuple(item.strip() for item in parameters.get("cc", "").split(",") if item.strip())
    return ComposeDraft(subject=subject, body=parameters.get("body", ""), to=to, cc=cc)


class GenerationService:
    def __init__(
        self,
        *,
        settings_service: SettingsService,
        gemini: GeminiProvider,
        audit_log: AuditLog,
        gmail: GmailClient | None = None,
        address_book: UserAddressBook | None = None,
        thread_max_chars: int = 120_000,
        prompt_max_chars: int = 120_000,
    ) -> None:
        self.settings_service = settings_service
        self.gemini = gemini
        self.audit_log = audit_log
        self.gmail = gmail
        self.address_book = address_book or (UserAddressBook(gmail) if gmail is not None else None)
        self.thread_max_chars = thread_max_chars
        self.prompt_max_chars = prompt_max_chars

    def _require_gmail(self) -> GmailClient:
        if self.gmail is None:
            raise AddonValidationError("Open an email thread via the add-on.", reason_code="gmail_context_missing")
        return self.gmail

    async def extract_context(self, event: AddOnEvent, *, tone_override: str | None = None) -> GenerationContext:
        gmail_event = validate_gmail_event(event)
        gmail = self._require_gmail()
        message = await gmail.get_message(gmail_event.message_id)
        thread = await gmail.get_thread(message.thread_id or gmail_event.thread_id)
        mode, tone = await run_in_threadpool(self._resolve_mode_and_tone, event, tone_override)
        user_addresses = await self.address_book.addresses() if self.address_book is not None else set()
        recipients = compute_recipients(thread, mode, user_addresses)
        thread_text, truncated = truncate_text(thread_plain_text(thread), self.thread_max_chars)
        return GenerationContext(
            message=message,
            thread=thread,
            mode=mode,
            tone=tone,
            recipients=recipients,
            thread_text=thread_text,
            truncated=truncated,
        )

    def _resolve_mode_and_tone(self, event: AddOnEvent, tone_override: str | None) -> tuple[EmailMode, EmailTone]:
        settings_service = self.settings_service
        return (
            settings_service.resolve_mode(event.form_value("mode")),
            settings_service.resolve_tone(event.form_value("tone"), override=tone_override),
        )

    def build_prompt_text(self, context: GenerationContext, intent: str) -> tuple[str, bool]:
        template = self.settings_service.documents.read_prompt_text()
        variables = build_prompt_variables(
            mode=context.mode.value,
            tone=context.tone.value,
            intent=intent,
            subject=context.base_subject,
            sender=context.message.sender,
            to=context.recipients.to,
            cc=context.recipients.cc,
            thread_text=context.thread_text,
        )
        prompt, truncated = truncate_text(replace_variables(template, variables), self.prompt_max_chars)
        if truncated:
            logger.warning("generation.prompt_truncated", extra={"reason": str(self.prompt_max_chars)})
        return prompt, truncated

    async def generate(
        self,
        event: AddOnEvent,
        *,
        intent: str = "",
        tone_override: str | None = None,
    ) -> GenerationResult:
        api_key = await run_in_threadpool(self.settings_service.ensure_all_requirements)
        context = await self.extract_context(event, tone_override=tone_override)
        prompt, prompt_truncated = await run_in_threadpool(self.build_prompt_text, context, intent)

        outcome = await self.gemini.generate_reply(api_key, prompt)
        truncated = context.truncated or prompt_truncated
        await self.log_generation(context, intent, outcome, truncated=truncated, prompt_chars=len(prompt))
        generation_outcomes_total.labels(outcome="success" if outcome.success else "failure").inc()

        if not outcome.success or outcome.response is None:
            logger.info("generation.failed", extra={"reason": outcome.error or ""})
            return GenerationResult(context=context, intent=intent, outcome=outcome)

        await run_in_threadpool(self.settings_service.remember_last_body, outcome.response.body)
        preview = build_preview_data(replace(context, truncated=truncated), intent, outcome)
        return GenerationResult(context=context, intent=intent, outcome=outcome, preview=preview)

    async def create_reply_draft(self, context: GenerationContext, body: str) -> str:
        gmail = self._require_gmail()
        if context.mode is EmailMode.FORWARD:
            subject = f"Fwd: {context.message.subject}"
        else:
            subject = format_subject_for_mode(context.message.subject, context.mode)
        raw_mime = build_draft_mime(
            to=context.recipients.to,
            cc=context.recipients.cc,
            subject=subject,
            body=body,
            html_body=to_html(body),
            in_reply_to=None if context.mode is EmailMode.FORWARD else context.message,
        )
        return await gmail.create_draft(thread_id=context.thread.id, raw_mime=raw_mime)

    async def test_api_key(self) -> tuple[bool, int]:
        api_key = await run_in_threadpool(self.settings_service.ensure_api_key)
        success, call_result = await self.gemini.ping(api_key)
        safety_info = extract_safety_info(call_result.raw_body)
        entry = AuditEntry(
            action="TestApiKey",
            success=success,
            error="" if success else f"HTTP {call_result.status_code}",
            duration_ms=call_result.duration_ms,
            prompt_chars=len(call_result.request_payload["contents"][0]["parts"][0]["text"]),
            resp_bytes=call_result.response_byte_len,
            notes=json.dumps(safety_info) if safety_info else "",
            request_body=json.dumps(call_result.request_payload),
            response_body=call_result.raw_body,
        )
        await run_in_threadpool(self._write_audit_entry, entry)
        return success, call_result.status_code

    async def generate_for_compose(self, content: str) -> ComposeDraft:
        if not content.strip():
            raise AddonValidationError("Please describe what you would like to say.", reason_code="compose_content_required")
        settings = await run_in_threadpool(self.settings_service.get_settings)
        prompt = build_compose_prompt(
            mode=settings.default_mode.value,
            tone=settings.default_tone.value,
            content=content,
        )
        return await self._generate_plain_draft(settings.api_key, prompt)

    async def quick_compose(self, intent: str) -> ComposeDraft:
        api_key = await run_in_threadpool(self.settings_service.get_api_key)
        return await self._generate_plain_draft(api_key, build_quick_compose_prompt(intent))

    async def _generate_plain_draft(self, api_key: str, prompt: str) -> ComposeDraft:
        if not api_key:
            raise AddonConfigurationError(
                "Please configure your Gemini API key in settings.",
                reason_code="api_key_missing",
            )
        call_result = await self.gemini.generate_plain_text(api_key, prompt)
        text = extract_payload(call_result.raw_body) if call_result.status_code == 200 else ""
        if not text:
            raise GeminiApiError(
                f"Error: Failed to generate email ({call_result.status_code})",
                reason_code=f"http_{call_result.status_code}",
            )
        subject, body = split_subject_line(text)
        return ComposeDraft(subject=subject, body=body)

    async def log_generation(
        self,
        context: GenerationContext,
        intent: str,
        outcome: GenerationOutcome,
        *,
        truncated: bool,
        prompt_chars: int,
    ) -> None:
        await run_in_threadpool(
            self._record_generation,
            context,
            intent,
            outcome,
            truncated=truncated,
            prompt_chars=prompt_chars,
        )

    def _write_audit_entry(self, entry: AuditEntry) -> None:
        if self.settings_service.logging_enabled():
            self.audit_log.write_entry(entry)

    def _record_generation(
        self,
        context: GenerationContext,
        intent: str,
        outcome: GenerationOutcome,
        *,
        truncated: bool,
        prompt_chars: int,
    ) -> None:
        if not self.settings_service.logging_enabled():
            return
        call_result = outcome.call_result
        request_body = json.dumps(call_result.request_payload) if call_result is not None else ""
        response_body = call_result.raw_body if call_result is not None else ""
        logs_folder = self.settings_service.logs_folder
        req_file_url = ""
        resp_file_url = ""
        if len(request_body) > CELL_MAX_CHARS and call_result is not None:
            req_file_url = logs_folder.create_json_file("request", call_result.request_payload)
        if len(response_body) > CELL_MAX_CHARS:
            resp_file_url = logs_folder.create_json_file("response", {"raw": response_body})
        entry = AuditEntry(
            action="Generate",
            mode=context.mode.value,
            tone=context.tone.value,
            intent=intent,
            subject=context.thread.first_subject,
            to=list(context.recipients.to),
            cc=list(context.recipients.cc),
            success=outcome.success,
            error=outcome.error or "",
            duration_ms=call_result.duration_ms if call_result is not None else None,
            prompt_chars=prompt_chars,
            truncated=truncated,
            resp_bytes=call_result.response_byte_len if call_result is not None else None,
            thread_id=context.thread.id,
            message_id=context.message.id,
            notes=json.dumps(outcome.safety_info) if outcome.safety_info else "",
            request_body=request_body,
            response_body=response_body,
            req_file_url=req_file_url,
            resp_file_url=resp_file_url,
        )
        self.audit_log.write_entry(entry)
