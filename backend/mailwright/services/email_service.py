from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import html
import logging
import re

from mailwright.providers.errors import AddonError
from mailwright.providers.execution_types import EmailMode
from mailwright.providers.gmail import GmailClient, GmailThread


logger = logging.getLogger("mailwright.email")

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_LIST_SPLIT_RE = re.compile(r"[;,]")
_REPLY_PREFIX_RE = re.compile(r"^(?:Re|Fwd):\s*", re.IGNORECASE)


@dataclass(frozen=True)
class Recipients:
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)


def extract_email_addresses(value: str | None) -> list[str]:
    if not value:
        return []
    emails: list[str] = []
    for part in _LIST_SPLIT_RE.split(value):
        emails.extend(_EMAIL_RE.findall(part))
    return emails


def unique_emails(emails: Iterable[str]) -> list[str]:
    """Drops case-insensitive duplicates, keeping the first spelling and order."""
    seen: set[str] = set()
    result: list[str] = []
    for email in emails:
        lowered = email.lower()
        if lowered not in seen:
            seen.add(lowered)
            result.append(email)
    return result


def filter_out_user_emails(emails: Iterable[str], user_addresses: set[str]) -> list[str]:
    return [email for email in emails if email.lower() not in user_addresses]


def compute_recipients(thread: GmailThread, mode: EmailMode, user_addresses: set[str]) -> Recipients:
    last_message = thread.last_message
    if last_message is None or mode is EmailMode.FORWARD:
        return Recipients()

    sender = extract_email_addresses(last_message.sender)
    if mode is EmailMode.REPLY:
        return Recipients(to=filter_out_user_emails(sender, user_addresses))

    to = extract_email_addresses(last_message.to)
    cc = extract_email_addresses(last_message.cc)
    return Recipients(
        to=unique_emails(filter_out_user_emails([*sender, *to], user_addresses)),
        cc=unique_emails(filter_out_user_emails(cc, user_addresses)),
    )


def format_subject_for_mode(subject: str | None, mode: EmailMode) -> str:
    subject = subject or ""
    if mode is EmailMode.FORWARD:
        return subject if subject.startswith("Fwd:") else f"Fwd: {subject}"
    return subject if subject.startswith("Re:") else f"Re: {subject}"


def normalize_reply_subject(subject: str) -> str:
    return f"Re: {_REPLY_PREFIX_RE.sub('', subject)}"


def thread_plain_text(thread: GmailThread) -> str:
    parts: list[str] = []
    for index, message in enumerate(thread.messages):
        header = [f"From: {message.sender}", f"Date: {message.date}", f"To: {message.to}"]
        if message.cc:
            header.append(f"Cc: {message.cc}")
        parts.append("\n".join(header))
        parts.append("")
        parts.append(message.body)
        if index < len(thread.messages) - 1:
            parts.extend(["", "---", ""])
    return "\n".join(parts)


def truncate_text(text: str, max_chars: int) -> tuple[str, bool]:
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars], True


def to_html(text: str) -> str:
    return html.escape(text).replace("\n", "<br>")


def split_subject_line(text: str) -> tuple[str, str]:
    """Splits a leading ``Subject:`` line and the blank line after it."""
    lines = text.split("\n")
    if lines and lines[0].startswith("Subject:"):
        return lines[0][len("Subject:"):].strip(), "\n".join(lines[2:])
    return "", text


class UserAddressBook:
    """Primary address and send-as aliases of the add-on user.

    Loaded at most once per instance; build one per request.
    """

    def __init__(self, gmail: GmailClient) -> None:
        self._gmail = gmail
        self._addresses: set[str] | None = None

    async def addresses(self) -> set[str]:
        if self._addresses is not None:
            return self._addresses
        addresses: set[str] = set()
        primary = await self._gmail.get_profile_email()
        if primary:
            addresses.add(primary.lower())
        try:
            aliases = await self._gmail.list_send_as_emails()
        except AddonError as exc:
            logger.info("address_book.aliases_unavailable", extra={"reason": exc.reason_code})
            aliases = []
        addresses.update(alias.lower() for alias in aliases if alias)
        self._addresses = addresses
        return addresses

    def invalidate(self) -> None:
        self._addresses = None
