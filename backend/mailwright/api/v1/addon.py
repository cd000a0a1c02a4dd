from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from mailwright.api import cards
from mailwright.api.deps import AddonContext, get_addon_context
from mailwright.providers.errors import ErrorType, classify_error, user_message
from mailwright.services.generation_service import (
    ComposeDraft,
    compose_update_from_parameters,
    is_valid_gmail_context,
)


logger = logging.getLogger("mailwright.addon")

router = APIRouter(prefix="/addon", tags=["addon"])

GMAIL_CONTEXT_ERROR = "❌ Please open an email thread to use this feature"


def _error_response(ctx: AddonContext, handler: str, exc: Exception) -> dict[str, Any]:
    error = classify_error(exc)
    logger.warning(
        "addon.handler_failed",
        extra={"path": handler, "reason": error.reason_code, "user_key": ctx.user_key},
        exc_info=error.error_type is ErrorType.UNKNOWN,
    )
    return cards.notification(user_message(error))


def _settings_card(ctx: AddonContext, banner: str | None = None) -> dict[str, Any]:
    return cards.settings_card(ctx.action_base_url, ctx.settings_service.get_settings(), banner)


def _prompt_card(ctx: AddonContext, text: str) -> dict[str, Any]:
    return cards.card(
        "Prompt document",
        [
            cards.section(
                [
                    cards.text_input("promptText", "Prompt template", text),
                    cards.button_list([cards.button("Save prompt", cards.action_url(ctx.action_base_url, "settings/prompt"))]),
                ]
            )
        ],
    )


@router.post("/homepage")
def homepage(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        missing = ctx.settings_service.missing_requirements()
        banner = f"Setup required: {', '.join(missing)}" if missing else None
        return cards.render_action(navigations=[cards.push_card(_settings_card(ctx, banner))])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "homepage", exc)


@router.post("/message")
def message_opened(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        missing = ctx.settings_service.missing_requirements()
        if missing:
            payload = _settings_card(ctx, f"Setup required: {', '.join(missing)}")
        else:
            payload = cards.quick_reply_card(ctx.action_base_url, ctx.settings_service.get_settings())
        return cards.render_action(navigations=[cards.push_card(payload)])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "message", exc)


@router.post("/settings/open")
def open_settings(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        return cards.render_action(
            notification="Opening Settings…",
            navigations=[cards.update_card(_settings_card(ctx))],
        )
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "settings/open", exc)


@router.post("/settings/save")
def save_settings(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        event = ctx.event
        logging_enabled = event.form_value("loggingEnabled")
        ctx.settings_service.save_settings(
            api_key=event.form_value("apiKey"),
            default_mode=event.form_value("defaultMode"),
            default_tone=event.form_value("defaultTone"),
            logging_enabled=None if logging_enabled is None else logging_enabled == "true",
        )
        return cards.render_action(
            notification="Settings saved",
            navigations=[cards.update_card(_settings_card(ctx))],
        )
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "settings/save", exc)


@router.post("/settings/test-key")
async def test_api_key(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        success, status_code = await ctx.generation.test_api_key()
        text = "✅ API key is valid" if success else f"❌ API key test failed: HTTP {status_code}"
        return cards.notification(text)
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "settings/test-key", exc)


@router.post("/settings/prompt")
def open_prompt_document(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        documents = ctx.settings_service.documents
        new_text = ctx.event.form_value("promptText")
        if new_text is not None:
            documents.write_prompt_text(new_text)
            notice = "Prompt saved"
        else:
            documents.get_or_create_prompt_doc()
            notice = "Prompt document ready"
        text = documents.read_prompt_text()
        return cards.render_action(notification=notice, navigations=[cards.push_card(_prompt_card(ctx, text))])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "settings/prompt", exc)


@router.post("/settings/logs")
def open_logs_folder(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        ctx.settings_service.logs_folder.get_or_create_logs_folder()
        sheet = ctx.generation.audit_log.get_today_sheet()
        return cards.render_action(
            notification=f"Today's log: {sheet.name}",
            navigations=[cards.update_card(_settings_card(ctx))],
        )
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "settings/logs", exc)


@router.post("/settings/reset")
def factory_reset(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        ctx.settings_service.factory_reset()
        return cards.render_action(
            notification="All settings cleared",
            navigations=[cards.update_card(_settings_card(ctx, "Factory reset complete"))],
        )
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "settings/reset", exc)


@router.post("/generate")
async def generate_reply(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    if not is_valid_gmail_context(ctx.event):
        return cards.notification(GMAIL_CONTEXT_ERROR)
    try:
        result = await ctx.generation.generate(ctx.event, intent=ctx.event.parameter("intent"))
        if result.preview is None:
            return cards.notification(result.outcome.error or "Failed to generate reply")
        preview = cards.preview_card(ctx.action_base_url, result.preview, preview_chars=ctx.settings.preview_chars)
        return cards.render_action(notification="Reply generated", navigations=[cards.push_card(preview)])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "generate", exc)


@router.post("/quick-reply")
async def quick_reply(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    """Generates a reply and opens it as a Gmail draft in the thread."""
    try:
        intent = ctx.event.parameter("intent") or ctx.event.form_value("customIntent") or ""
        result = await ctx.generation.generate(ctx.event, intent=intent)
        if result.preview is None:
            return cards.notification(result.outcome.error or "Failed to generate reply")
        draft_id = await ctx.generation.create_reply_draft(result.context, result.preview.body)
        return cards.open_created_draft(draft_id, result.context.thread.id)
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "quick-reply", exc)


@router.post("/mode")
def set_mode(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        mode = ctx.settings_service.set_default_mode(ctx.event.parameter("mode", "Reply"))
        is_compose = ctx.event.parameter("compose") == "true"
        payload = cards.quick_reply_card(ctx.action_base_url, ctx.settings_service.get_settings(), is_compose=is_compose)
        return cards.render_action(notification=f"Mode: {mode.value}", navigations=[cards.update_card(payload)])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "mode", exc)


@router.post("/tone")
def set_tone(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        tone = ctx.settings_service.set_default_tone(ctx.event.parameter("tone", "Professional"))
        is_compose = ctx.event.parameter("compose") == "true"
        payload = cards.quick_reply_card(ctx.action_base_url, ctx.settings_service.get_settings(), is_compose=is_compose)
        return cards.render_action(notification=f"Tone: {tone.value}", navigations=[cards.update_card(payload)])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "tone", exc)


@router.post("/compose")
def compose_opened(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        payload = cards.quick_reply_card(ctx.action_base_url, ctx.settings_service.get_settings(), is_compose=True)
        return cards.render_action(navigations=[cards.push_card(payload)])
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "compose", exc)


@router.post("/compose/generate")
async def compose_generate(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        draft = await ctx.generation.generate_for_compose(ctx.event.form_value("customIntent") or "")
        return cards.update_draft(draft)
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "compose/generate", exc)


@router.post("/compose/quick")
async def compose_quick(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        draft = await ctx.generation.quick_compose(ctx.event.parameter("intent"))
        return cards.update_draft(draft)
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "compose/quick", exc)


@router.post("/compose/insert-last")
def compose_insert_last(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        return cards.update_draft(ComposeDraft(subject="", body=ctx.settings_service.last_body()))
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "compose/insert-last", exc)


@router.post("/compose/apply")
def compose_apply(ctx: AddonContext = Depends(get_addon_context)) -> dict[str, Any]:
    try:
        return cards.update_draft(compose_update_from_parameters(ctx.event.common.parameters))
    except Exception as exc:  # noqa: BLE001
        return _error_response(ctx, "compose/apply", exc)
