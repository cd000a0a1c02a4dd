from __future__ import annotations

import asyncio
import base64
from email import message_from_bytes, policy

import httpx
import pytest

from conftest import ACCESS_TOKEN, MESSAGE_ID, THREAD_ID, FakeGmail, gmail_message_resource
from mailwright.providers.errors import AddonError, AddonNetworkError, AddonPermissionError, AddonValidationError
from mailwright.providers.gmail import GmailClient, build_draft_mime, extract_plain_body, message_from_resource


def _client(transport: httpx.AsyncBaseTransport) -> GmailClient:
    return GmailClient(oauth_token="user-oauth-token", message_access_token=ACCESS_TOKEN, transport=transport)


def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def test_extract_plain_body_prefers_plain_text_and_falls_back_to_html() -> None:
    html_only = {"mimeType": "text/html", "body": {"data": _b64url("<p>Hello <b>there</b></p>")}}
    nested = {
        "mimeType": "multipart/mixed",
        "parts": [{"mimeType": "multipart/alternative", "parts": [{"mimeType": "text/plain", "body": {"data": _b64url("Plain")}}]}],
    }

    assert extract_plain_body(nested) == "Plain"
    assert extract_plain_body(html_only) == "Hello there"
    assert extract_plain_body({"mimeType": "multipart/mixed", "parts": []}) == ""


def test_message_from_resource_reads_headers_case_insensitively() -> None:
    message = message_from_resource(gmail_message_resource())

    assert message.id == MESSAGE_ID
    assert message.thread_id == THREAD_ID
    assert message.subject == "Quarterly plan"
    assert message.sender == "Alice <alice@example.com>"
    assert message.body == "Can you review the plan by Friday?"
    assert message.rfc822_message_id == f"<{MESSAGE_ID}@mail.example.com>"


def test_build_draft_mime_sets_threading_headers() -> None:
    original = message_from_resource(gmail_message_resource())
    raw = build_draft_mime(
        to=["alice@example.com"],
        cc=["carol@example.com"],
        subject="Re: Quarterly plan",
        body="Sounds good.",
        html_body="Sounds good.",
        in_reply_to=original,
    )

    parsed = message_from_bytes(base64.urlsafe_b64decode(raw), policy=policy.default)
    assert parsed["To"] == "alice@example.com"
    assert parsed["Cc"] == "carol@example.com"
    assert parsed["In-Reply-To"] == original.rfc822_message_id
    assert parsed["References"] == original.rfc822_message_id
    assert parsed.get_body(preferencelist=("plain",)).get_content().strip() == "Sounds good."


def test_client_sends_both_tokens_and_builds_thread(fake_gmail: FakeGmail) -> None:
    fake_gmail.messages = [
        gmail_message_resource(message_id="msg-00001", subject="Quarterly plan"),
        gmail_message_resource(subject="Re: Quarterly plan"),
    ]
    client = _client(fake_gmail.transport)

    async def run():
        return await client.get_message(MESSAGE_ID), await client.get_thread(THREAD_ID)

    message, thread = asyncio.run(run())

    request = fake_gmail.requests[0]
    assert request.headers["Authorization"] == "Bearer user-oauth-token"
    assert request.headers["X-Goog-Gmail-Access-Token"] == ACCESS_TOKEN
    assert request.url.params["format"] == "full"
    assert message.subject == "Re: Quarterly plan"
    assert thread.first_subject == "Quarterly plan"
    assert thread.last_subject == "Re: Quarterly plan"


def test_client_profile_aliases_and_drafts(fake_gmail: FakeGmail) -> None:
    client = _client(fake_gmail.transport)

    async def run():
        return (
            await client.get_profile_email(),
            await client.list_send_as_emails(),
            await client.create_draft(thread_id=THREAD_ID, raw_mime="cmF3"),
        )

    email, aliases, draft_id = asyncio.run(run())

    assert email == "me@example.com"
    assert aliases == ["me@example.com", "me.alias@example.com"]
    assert draft_id == "draft-1"
    assert fake_gmail.drafts == [{"message": {"raw": "cmF3", "threadId": THREAD_ID}}]


@pytest.mark.parametrize(
    ("status_code", "error_type"),
    [(401, AddonPermissionError), (403, AddonPermissionError), (404, AddonValidationError), (500, AddonError)],
)
def test_client_maps_error_statuses(status_code: int, error_type: type[AddonError]) -> None:
    transport = httpx.MockTransport(lambda _request: httpx.Response(status_code, json={"error": {"code": status_code}}))

    with pytest.raises(error_type) as exc_info:
        asyncio.run(_client(transport).get_message(MESSAGE_ID))
    if status_code == 500:
        assert exc_info.value.reason_code == "http_500"


def test_client_maps_transport_failures() -> None:
    def timeout(_request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow")

    def refused(_request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused")

    with pytest.raises(AddonNetworkError) as timed_out:
        asyncio.run(_client(httpx.MockTransport(timeout)).get_profile_email())
    with pytest.raises(AddonNetworkError) as failed:
        asyncio.run(_client(httpx.MockTransport(refused)).get_profile_email())

    assert timed_out.value.reason_code == "timeout"
    assert failed.value.reason_code == "connection_error"
