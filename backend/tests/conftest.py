import os
os.environ["APP_ENV"] = "test"

# THEN import anything else
import base64
import json
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from mailwright.api import deps
from mailwright.core.config import get_settings
from mailwright.providers.retry import RetryPolicy
from mailwright.services.property_store import InMemoryPropertyStore, ScopedPropertyStore


MASTER_KEY_B64 = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode("ascii")
MESSAGE_ID = "msg-12345"
THREAD_ID = "thread-1"
ACCESS_TOKEN = "message-access-token"


def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message_resource(
    *,
    message_id: str = MESSAGE_ID,
    thread_id: str = THREAD_ID,
    subject: str = "Quarterly plan",
    sender: str = "Alice <alice@example.com>",
    to: str = "me@example.com, bob@example.com",
    cc: str = "carol@example.com",
    body: str = "Can you review the plan by Friday?",
) -> dict[str, Any]:
    return {
        "id": message_id,
        "threadId": thread_id,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
                {"name": "To", "value": to},
                {"name": "Cc", "value": cc},
                {"name": "Date", "value": "Mon, 5 Oct 2026 10:00:00 +0000"},
                {"name": "Message-ID", "value": f"<{message_id}@mail.example.com>"},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64url(body)}},
                {"mimeType": "text/html", "body": {"data": _b64url(f"<p>{body}</p>")}},
            ],
        },
    }


def gemini_envelope(payload: Any, *, as_text: bool = False) -> dict[str, Any]:
    text = payload if as_text else json.dumps(payload)
    return {
        "candidates": [
            {
                "content": {"parts": [{"text": text}]},
                "safetyRatings": [{"category": "HARM_CATEGORY_HARASSMENT", "probability": "NEGLIGIBLE"}],
            }
        ]
    }


def reply_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "body": "Hi Alice,\n\nI will review it by Friday.\n\nBest",
        "subject": "Re: Quarterly plan",
        "mode": "Reply",
        "safeToSend": True,
    }
    payload.update(overrides)
    return payload


async def no_sleep(_seconds: float, _cancel_event) -> None:
    return None


class FakeGemini:
    """Scripted generateContent endpoint; records every request it receives."""

    def __init__(self) -> None:
        self.responses: list[httpx.Response | Exception] = []
        self.requests: list[httpx.Request] = []

    def queue(self, status_code: int = 200, payload: Any = None, headers: dict[str, str] | None = None) -> None:
        self.responses.append(httpx.Response(status_code, json=payload if payload is not None else {}, headers=headers))

    def queue_reply(self, **overrides: Any) -> None:
        self.queue(200, gemini_envelope(reply_payload(**overrides)))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        action = self.responses.pop(0)
        if isinstance(action, Exception):
            raise action
        return action

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sent_json(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


class FakeGmail:
    def __init__(self) -> None:
        self.messages = [gmail_message_resource()]
        self.profile_email = "me@example.com"
        self.send_as = ["me@example.com", "me.alias@example.com"]
        self.drafts: list[dict[str, Any]] = []
        self.fail_status: int | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": {"code": self.fail_status}})
        path = request.url.path
        if path.endswith(f"/messages/{MESSAGE_ID}"):
            return httpx.Response(200, json=self.messages[-1])
        if "/threads/" in path:
            return httpx.Response(200, json={"id": THREAD_ID, "messages": self.messages})
        if path.endswith("/profile"):
            return httpx.Response(200, json={"emailAddress": self.profile_email})
        if path.endswith("/settings/sendAs"):
            return httpx.Response(200, json={"sendAs": [{"sendAsEmail": email} for email in self.send_as]})
        if path.endswith("/drafts") and request.method == "POST":
            self.drafts.append(json.loads(request.content))
            return httpx.Response(200, json={"id": f"draft-{len(self.drafts)}"})
        return httpx.Response(404, json={"error": {"message": "not found"}})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch) -> Generator[Path, None, None]:
    monkeypatch.setenv("PLATFORM_MASTER_KEY", MASTER_KEY_B64)
    monkeypatch.setenv("PROMPT_DOCUMENTS_ROOT", str(tmp_path / "prompts"))
    monkeypatch.setenv("AUDIT_LOGS_ROOT", str(tmp_path / "logs"))
    get_settings.cache_clear()
    deps.get_property_store.cache_clear()
    yield tmp_path
    get_settings.cache_clear()
    deps.get_property_store.cache_clear()


@pytest.fixture()
def memory_store() -> InMemoryPropertyStore:
    return InMemoryPropertyStore()


@pytest.fixture()
def user_store(memory_store: InMemoryPropertyStore) -> ScopedPropertyStore:
    return ScopedPropertyStore(memory_store, "user-a")


@pytest.fixture()
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture()
def fake_gmail() -> FakeGmail:
    return FakeGmail()


@pytest.fixture()
def make_event() -> Callable[..., dict[str, Any]]:
    def _make_event(
        *,
        form: dict[str, str] | None = None,
        parameters: dict[str, str] | None = None,
        gmail: bool = True,
        id_token: str = "",
        message_id: str = MESSAGE_ID,
    ) -> dict[str, Any]:
        event: dict[str, Any] = {
            "commonEventObject": {
                "hostApp": "GMAIL",
                "platform": "WEB",
                "formInputs": {key: {"stringInputs": {"value": [value]}} for key, value in (form or {}).items()},
                "parameters": parameters or {},
            },
            "authorizationEventObject": {"userOAuthToken": "user-oauth-token", "userIdToken": id_token},
        }
        if gmail:
            event["gmail"] = {"messageId": message_id, "threadId": THREAD_ID, "accessToken": ACCESS_TOKEN}
        return event

    return _make_event


@pytest.fixture()
def client(fake_gemini: FakeGemini, fake_gmail: FakeGmail) -> Generator[TestClient, None, None]:
    from mailwright.main import app

    app.dependency_overrides[deps.get_gemini_transport] = lambda: fake_gemini.transport
    app.dependency_overrides[deps.get_gmail_transport] = lambda: fake_gmail.transport
    app.dependency_overrides[deps.get_retry_policy] = lambda: RetryPolicy(retry_attempts=1, sleep_fn=no_sleep)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def local_user_services():
    """Settings, circuit breaker and audit log of the unauthenticated test user."""
    store = ScopedPropertyStore(deps.get_property_store(), "local-user")
    return deps.build_user_services(store, get_settings())


@pytest.fixture()
def configured_user(local_user_services):
    settings_service, _, _ = local_user_services
    settings_service.save_settings(api_key="gemini-test-key")
    settings_service.documents.get_or_create_prompt_doc()
    settings_service.logs_folder.get_or_create_logs_folder()
    return settings_service
