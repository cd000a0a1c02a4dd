"""Add-on response markup for the Google Workspace HTTP runtime.

Only the handful of widgets the add-on renders are covered; the JSON shapes
follow the ``RenderActions`` / ``hostAppAction`` formats the host expects.
"""

from __future__ import annotations

from typing import Any

from mailwright.providers.execution_types import EMAIL_MODES, EMAIL_TONES
from mailwright.services.email_service import to_html
from mailwright.services.generation_service import ComposeDraft, PreviewData
from mailwright.services.settings_service import UserSettings
from mailwright.services.template_service import QUICK_INTENTS


def action_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def text_paragraph(text: str) -> dict[str, Any]:
    return {"textParagraph": {"text": text}}


def button(text: str, url: str, parameters: dict[str, str] | None = None) -> dict[str, Any]:
    action: dict[str, Any] = {"function": url}
    if parameters:
        action["parameters"] = [{"key": key, "value": value} for key, value in parameters.items()]
    return {"text": text, "onClick": {"action": action}}


def button_list(buttons: list[dict[str, Any]]) -> dict[str, Any]:
    return {"buttonList": {"buttons": buttons}}


def text_input(name: str, label: str, value: str = "") -> dict[str, Any]:
    widget: dict[str, Any] = {"name": name, "label": label}
    if value:
        widget["value"] = value
    return {"textInput": widget}


def dropdown(name: str, label: str, options: tuple[str, ...], selected: str) -> dict[str, Any]:
    return {
        "selectionInput": {
            "name": name,
            "label": label,
            "type": "DROPDOWN",
            "items": [{"text": option, "value": option, "selected": option == selected} for option in options],
        }
    }


def switch(name: str, label: str, selected: bool) -> dict[str, Any]:
    return {
        "decoratedText": {
            "text": label,
            "switchControl": {"name": name, "value": "true", "selected": selected},
        }
    }


def card(title: str, sections: list[dict[str, Any]]) -> dict[str, Any]:
    return {"header": {"title": title}, "sections": sections}


def section(widgets: list[dict[str, Any]], header: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"widgets": widgets}
    if header:
        payload["header"] = header
    return payload


def render_action(
    *,
    notification: str | None = None,
    navigations: list[dict[str, Any]] | None = None,
    link: str | None = None,
) -> dict[str, Any]:
    action: dict[str, Any] = {}
    if notification is not None:
        action["notification"] = {"text": notification}
    if navigations:
        action["navigations"] = navigations
    if link:
        action["link"] = {"url": link}
    return {"renderActions": {"action": action}}


def notification(text: str) -> dict[str, Any]:
    return render_action(notification=text)


def push_card(payload: dict[str, Any]) -> dict[str, Any]:
    return {"pushCard": payload}


def update_card(payload: dict[str, Any]) -> dict[str, Any]:
    return {"updateCard": payload}


def pop_card() -> dict[str, Any]:
    return {"popCard": True}


def update_draft(draft: ComposeDraft) -> dict[str, Any]:
    markup: dict[str, Any] = {}
    if draft.body:
        markup["updateBody"] = {
            "insertContents": [{"content": to_html(draft.body), "contentType": "MUTABLE_HTML"}],
            "type": "IN_PLACE_INSERT",
        }
    if draft.subject:
        markup["updateSubject"] = {"subject": draft.subject}
    if draft.to:
        markup["updateToRecipients"] = {"toRecipients": list(draft.to)}
    if draft.cc:
        markup["updateCcRecipients"] = {"ccRecipients": list(draft.cc)}
    return {"renderActions": {"hostAppAction": {"gmailAction": {"updateDraftActionMarkup": markup}}}}


def open_created_draft(draft_id: str, thread_id: str) -> dict[str, Any]:
    return {
        "renderActions": {
            "hostAppAction": {
                "gmailAction": {
                    "openCreatedDraftActionMarkup": {"draftId": draft_id, "draftThreadId": thread_id},
                }
            }
        }
    }


def settings_card(base_url: str, settings: UserSettings, banner: str | None = None) -> dict[str, Any]:
    sections: list[dict[str, Any]] = []
    if banner:
        sections.append(section([text_paragraph(f"<b>{banner}</b>")]))
    sections.append(
        section(
            [
                text_input("apiKey", "Gemini API key", ""),
                text_paragraph("API key saved." if settings.has_api_key else "No API key saved."),
                button_list([button("Test API key", action_url(base_url, "settings/test-key"))]),
            ],
            header="Gemini",
        )
    )
    sections.append(
        section(
            [
                dropdown("defaultMode", "Default mode", EMAIL_MODES, settings.default_mode.value),
                dropdown("defaultTone", "Default tone", EMAIL_TONES, settings.default_tone.value),
                switch("loggingEnabled", "Enable Logging", settings.logging_enabled),
                button_list([button("Save", action_url(base_url, "settings/save"))]),
            ],
            header="Defaults",
        )
    )
    sections.append(
        section(
            [
                text_paragraph("Prompt document ready." if settings.has_prompt_doc else "No prompt document yet."),
                button_list([button("Open prompt document", action_url(base_url, "settings/prompt"))]),
                text_paragraph("Logs folder ready." if settings.has_logs_folder else "No logs folder yet."),
                button_list([button("Open logs folder", action_url(base_url, "settings/logs"))]),
            ],
            header="Documents",
        )
    )
    sections.append(
        section(
            [button_list([button("Factory reset", action_url(base_url, "settings/reset"))])],
            header="Danger zone",
        )
    )
    return card("Settings", sections)


def quick_reply_card(base_url: str, settings: UserSettings, *, is_compose: bool = False) -> dict[str, Any]:
    intent_path = "compose/quick" if is_compose else "quick-reply"
    mode_buttons = [
        button(mode, action_url(base_url, "mode"), {"mode": mode, "compose": str(is_compose).lower()})
        for mode in EMAIL_MODES
    ]
    tone_buttons = [
        button(tone, action_url(base_url, "tone"), {"tone": tone, "compose": str(is_compose).lower()})
        for tone in EMAIL_TONES
    ]
    intent_buttons = [
        button(label, action_url(base_url, intent_path), {"intent": intent}) for label, intent in QUICK_INTENTS
    ]
    custom_path = "compose/generate" if is_compose else "generate"
    widgets = [
        text_paragraph(f"Mode: {settings.default_mode.value} • Tone: {settings.default_tone.value}"),
        button_list(mode_buttons),
        button_list(tone_buttons),
    ]
    sections = [
        section(widgets, header="Reply settings"),
        section([button_list(intent_buttons)], header="Quick actions"),
        section(
            [
                text_input("customIntent", "What would you like to say?"),
                button_list([button("Generate", action_url(base_url, custom_path))]),
            ],
            header="Custom",
        ),
    ]
    if is_compose:
        sections.append(
            section([button_list([button("Insert last suggestion", action_url(base_url, "compose/insert-last"))])])
        )
    return card("Compose" if is_compose else "Quick reply", sections)


def preview_card(base_url: str, preview: PreviewData, *, preview_chars: int = 1_200) -> dict[str, Any]:
    chips = f"Mode: {preview.mode.value} • Tone: {preview.tone.value}"
    if preview.intent:
        chips += f" • Intent: {preview.intent}"
    if preview.truncated:
        chips += " • Thread truncated"
    body_preview = preview.body[:preview_chars]
    if len(preview.body) > preview_chars:
        body_preview += "…"
    widgets = [
        text_paragraph(chips),
        text_paragraph(f"<b>Subject:</b> {preview.subject}"),
        text_paragraph(f"<b>To:</b> {', '.join(preview.to)}"),
    ]
    if preview.cc:
        widgets.append(text_paragraph(f"<b>Cc:</b> {', '.join(preview.cc)}"))
    if not preview.safe_to_send:
        widgets.append(text_paragraph("<b>Review carefully before sending.</b>"))
    widgets.append(text_paragraph(to_html(body_preview)))
    apply_parameters = {
        "mode": preview.mode.value,
        "subject": preview.subject,
        "body": preview.body,
        "to": ",".join(preview.to),
        "cc": ",".join(preview.cc),
    }
    widgets.append(button_list([button("Use in compose", action_url(base_url, "compose/apply"), apply_parameters)]))
    return card("Preview", [section(widgets)])
