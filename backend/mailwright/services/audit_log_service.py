from __future__ import annotations

from collections.abc import Callable
import csv
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from pathlib import Path
import time

from mailwright.services.prompt_documents import LogsFolder
from mailwright.services.property_store import PropertyStore, best_effort_lock


logger = logging.getLogger("mailwright.audit")

KEY_TODAY_SHEET_ID = "today_sheet_id"
KEY_TODAY_DATE = "today_date"

SHEET_PREFIX = "Mailwright - "
CELL_MAX_CHARS = 49_000
LOG_HEADERS: tuple[str, ...] = (
    "Timestamp",
    "Action",
    "Mode",
    "Tone",
    "Intent",
    "Subject",
    "To",
    "Cc",
    "Success",
    "Error",
    "DurationMs",
    "PromptChars",
    "Truncated",
    "RespBytes",
    "ThreadId",
    "MessageId",
    "Notes",
    "RequestBody",
    "ResponseBody",
    "ReqFileUrl",
    "RespFileUrl",
)


def cap_string(value: str | None, max_chars: int = CELL_MAX_CHARS) -> str:
    if not value:
        return ""
    return value[:max_chars]


@dataclass(frozen=True)
class AuditEntry:
    action: str
    mode: str = ""
    tone: str = ""
    intent: str = ""
    subject: str = ""
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    success: bool | None = None
    error: str = ""
    duration_ms: int | None = None
    prompt_chars: int | None = None
    truncated: bool = False
    resp_bytes: int | None = None
    thread_id: str = ""
    message_id: str = ""
    notes: str = ""
    request_body: str = ""
    response_body: str = ""
    req_file_url: str = ""
    resp_file_url: str = ""


class AuditLog:
    """Daily CSV log of generation attempts kept in the user's logs folder."""

    def __init__(
        self,
        store: PropertyStore,
        logs_folder: LogsFolder,
        *,
        lock_wait_ms: int = 5_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._logs_folder = logs_folder
        self._lock_wait_ms = lock_wait_ms
        self._clock = clock
        self._cached_date: str | None = None
        self._cached_path: Path | None = None

    def today(self) -> str:
        return datetime.fromtimestamp(self._clock(), UTC).strftime("%Y-%m-%d")

    def get_today_sheet(self) -> Path:
        today = self.today()
        if self._cached_date == today and self._cached_path is not None and self._cached_path.is_file():
            return self._cached_path
        self._cached_date = None
        self._cached_path = None

        folder = self._logs_folder.ensure_logs_folder()
        cached_date = self._store.get(KEY_TODAY_DATE)
        cached_id = self._store.get(KEY_TODAY_SHEET_ID)
        if cached_date == today and cached_id and (folder / cached_id).is_file():
            return self._remember(today, folder / cached_id)

        with best_effort_lock(self._store, "audit_sheet", wait_ms=self._lock_wait_ms):
            path = folder / f"{SHEET_PREFIX}{today}.csv"
            if not path.is_file():
                with path.open("w", newline="", encoding="utf-8") as handle:
                    csv.writer(handle).writerow(LOG_HEADERS)
                logger.info("audit.sheet_created", extra={"reason": path.name})
            self._store.set(KEY_TODAY_SHEET_ID, path.name)
            self._store.set(KEY_TODAY_DATE, today)
        return self._remember(today, path)

    def write_entry(self, entry: AuditEntry) -> None:
        """Appends one row; failures are logged and never raised."""
        try:
            path = self.get_today_sheet()
            with path.open("a", newline="", encoding="utf-8") as handle:
                csv.writer(handle).writerow(self._row(entry))
        except Exception:  # noqa: BLE001
            logger.warning("audit.write_failed", extra={"reason": entry.action}, exc_info=True)

    def _row(self, entry: AuditEntry) -> list[object]:
        timestamp = datetime.fromtimestamp(self._clock(), UTC).strftime("%Y-%m-%d %H:%M:%S")
        return [
            timestamp,
            entry.action,
            entry.mode,
            entry.tone,
            entry.intent,
            entry.subject,
            ", ".join(entry.to),
            ", ".join(entry.cc),
            "" if entry.success is None else str(entry.success).upper(),
            entry.error,
            "" if entry.duration_ms is None else entry.duration_ms,
            "" if entry.prompt_chars is None else entry.prompt_chars,
            "TRUE" if entry.truncated else "",
            "" if entry.resp_bytes is None else entry.resp_bytes,
            entry.thread_id,
            entry.message_id,
            entry.notes,
            cap_string(entry.request_body),
            cap_string(entry.response_body),
            entry.req_file_url,
            entry.resp_file_url,
        ]

    def _remember(self, today: str, path: Path) -> Path:
        self._cached_date = today
        self._cached_path = path
        return path
