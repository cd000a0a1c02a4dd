from __future__ import annotations

import base64
from dataclasses import dataclass
from email.message import EmailMessage
import logging
import re
from typing import Any

import httpx

from mailwright.core.config import Settings
from mailwright.providers.errors import (
    AddonError,
    AddonNetworkError,
    AddonPermissionError,
    AddonValidationError,
    ErrorType,
)


logger = logging.getLogger("mailwright.gmail")

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class GmailMessage:
    id: str
    thread_id: str
    subject: str
    sender: str
    to: str
    cc: str
    date: str
    body: str
    rfc822_message_id: str = ""
    references: str = ""


@dataclass(frozen=True)
class GmailThread:
    id: str
    messages: tuple[GmailMessage, ...]

    @property
    def first_subject(self) -> str:
        return self.messages[0].subject if self.messages else ""

    @property
    def last_subject(self) -> str:
        return self.messages[-1].subject if self.messages else ""

    @property
    def last_message(self) -> GmailMessage | None:
        return self.messages[-1] if self.messages else None


def _decode_body_data(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_plain_body(payload: dict[str, Any]) -> str:
    """Plain text of a Gmail message payload, falling back to tag-stripped HTML."""
    plain = _find_part(payload, "text/plain")
    if plain:
        return plain
    html = _find_part(payload, "text/html")
    if html:
        return _TAG_RE.sub("", html)
    data = (payload.get("body") or {}).get("data")
    return _decode_body_data(data) if data else ""


def _find_part(payload: dict[str, Any], mime_type: str) -> str:
    if payload.get("mimeType") == mime_type:
        data = (payload.get("body") or {}).get("data")
        if data:
            return _decode_body_data(data)
    for part in payload.get("parts") or []:
        if not isinstance(part, dict):
            continue
        found = _find_part(part, mime_type)
        if found:
            return found
    return ""


def message_from_resource(resource: dict[str, Any]) -> GmailMessage:
    payload = resource.get("payload") or {}
    headers = {
        str(item.get("name", "")).lower(): str(item.get("value", ""))
        for item in payload.get("headers") or []
        if isinstance(item, dict)
    }
    return GmailMessage(
        id=str(resource.get("id", "")),
        thread_id=str(resource.get("threadId", "")),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        to=headers.get("to", ""),
        cc=headers.get("cc", ""),
        date=headers.get("date", ""),
        body=extract_plain_body(payload),
        rfc822_message_id=headers.get("message-id", ""),
        references=headers.get("references", ""),
    )


def build_draft_mime(
    *,
    to: list[str],
    cc: list[str],
    subject: str,
    body: str,
    html_body: str,
    in_reply_to: GmailMessage | None = None,
) -> str:
    message = EmailMessage()
    if to:
        message["To"] = ", ".join(to)
    if cc:
        message["Cc"] = ", ".join(cc)
    message["Subject"] = subject
    if in_reply_to is not None and in_reply_to.rfc822_message_id:
        message["In-Reply-To"] = in_reply_to.rfc822_message_id
        references = f"{in_reply_to.references} {in_reply_to.rfc822_message_id}".strip()
        message["References"] = references
    message.set_content(body)
    message.add_alternative(html_body, subtype="html")
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


class GmailClient:
    """Gmail REST calls made on behalf of the add-on user.

    The user OAuth token authorizes the call and the per-message access token
    from the add-on event scopes it to the open message.
    """

    def __init__(
        self,
        *,
        oauth_token: str,
        message_access_token: str = "",
        base_url: str = "https://gmail.googleapis.com/gmail/v1",
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._oauth_token = oauth_token
        self._message_access_token = message_access_token
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        oauth_token: str,
        message_access_token: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GmailClient:
        return cls(
            oauth_token=oauth_token,
            message_access_token=message_access_token,
            base_url=settings.gmail_api_base_url,
            timeout_seconds=settings.gmail_http_timeout_seconds,
            transport=transport,
        )

    async def get_message(self, message_id: str) -> GmailMessage:
        resource = await self._request("GET", f"/users/me/messages/{message_id}", params={"format": "full"})
        return message_from_resource(resource)

    async def get_thread(self, thread_id: str) -> GmailThread:
        resource = await self._request("GET", f"/users/me/threads/{thread_id}", params={"format": "full"})
        messages = tuple(
            message_from_resource(item) for item in resource.get("messages") or [] if isinstance(item, dict)
        )
        return GmailThread(id=str(resource.get("id", thread_id)), messages=messages)

    async def get_profile_email(self) -> str:
        resource = await self._request("GET", "/users/me/profile")
        return str(resource.get("emailAddress", ""))

    async def list_send_as_emails(self) -> list[str]:
        resource = await self._request("GET", "/users/me/settings/sendAs")
        return [
            str(item["sendAsEmail"])
            for item in resource.get("sendAs") or []
            if isinstance(item, dict) and item.get("sendAsEmail")
        ]

    async def create_draft(self, *, thread_id: str, raw_mime: str) -> str:
        resource = await self._request(
            "POST",
            "/users/me/drafts",
            json={"message": {"raw": raw_mime, "threadId": thread_id}},
        )
        draft_id = str(resource.get("id", ""))
        logger.info("gmail.draft_created", extra={"reason": draft_id})
        return draft_id

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._oauth_token}"}
        if self._message_access_token:
            headers["X-Goog-Gmail-Access-Token"] = self._message_access_token
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = await client.request(method, f"{self._base_url}{path}", headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise AddonNetworkError("Gmail request timed out.", reason_code="timeout") from exc
        except httpx.HTTPError as exc:
            raise AddonNetworkError("Gmail connection failed.", reason_code="connection_error") from exc

        if response.status_code >= 400:
            _raise_for_gmail_error(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise AddonError(
                "Gmail response is not valid JSON.",
                error_type=ErrorType.API,
                reason_code="invalid_response",
            ) from exc
        if not isinstance(body, dict):
            raise AddonError(
                "Gmail response must be a JSON object.",
                error_type=ErrorType.API,
                reason_code="invalid_response",
            )
        return body


def _raise_for_gmail_error(response: httpx.Response) -> None:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    upstream = payload if isinstance(payload, dict) else None
    status_code = response.status_code
    if status_code in {401, 403}:
        raise AddonPermissionError(
            "Gmail permission denied.",
            reason_code="gmail_permission_denied",
            upstream_payload=upstream,
        )
    if status_code == 404:
        raise AddonValidationError("Open an email thread via the add-on.", reason_code="message_not_found")
    raise AddonError(
        f"Gmail request failed with HTTP {status_code}.",
        error_type=ErrorType.API,
        reason_code=f"http_{status_code}",
        upstream_payload=upstream,
    )
