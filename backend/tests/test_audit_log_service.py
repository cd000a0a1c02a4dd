from __future__ import annotations

import csv
from datetime import UTC, datetime
from pathlib import Path

import pytest

from mailwright.services.audit_log_service import (
    CELL_MAX_CHARS,
    KEY_TODAY_DATE,
    LOG_HEADERS,
    AuditEntry,
    AuditLog,
    cap_string,
)
from mailwright.services.prompt_documents import LogsFolder


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 18, 23, 59, 0, tzinfo=UTC).timestamp()

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def logs_folder(user_store, tmp_path: Path) -> LogsFolder:
    return LogsFolder(user_store, root=tmp_path / "logs")


def _rows(path: Path) -> list[list[str]]:
    with path.open(newline="", encoding="utf-8") as handle:
        return list(csv.reader(handle))


def test_cap_string() -> None:
    assert cap_string(None) == ""
    assert cap_string("x" * (CELL_MAX_CHARS + 10)) == "x" * CELL_MAX_CHARS


def test_today_sheet_is_created_once_per_day(user_store, logs_folder: LogsFolder, clock: _Clock) -> None:
    logs_folder.get_or_create_logs_folder()
    audit = AuditLog(user_store, logs_folder, clock=clock)

    sheet = audit.get_today_sheet()

    assert sheet.name == "Mailwright - 2026-10-18.csv"
    assert _rows(sheet) == [list(LOG_HEADERS)]
    assert AuditLog(user_store, logs_folder, clock=clock).get_today_sheet() == sheet

    clock.now += 120
    next_day = audit.get_today_sheet()
    assert next_day.name == "Mailwright - 2026-10-19.csv"
    assert user_store.get(KEY_TODAY_DATE) == "2026-10-19"


def test_write_entry_appends_formatted_row(user_store, logs_folder: LogsFolder, clock: _Clock) -> None:
    logs_folder.get_or_create_logs_folder()
    audit = AuditLog(user_store, logs_folder, clock=clock)

    audit.write_entry(
        AuditEntry(
            action="Generate",
            mode="Reply",
            tone="Friendly",
            subject="Budget",
            to=["a@example.com", "b@example.com"],
            success=True,
            duration_ms=321,
            prompt_chars=1000,
            truncated=True,
            request_body="r" * (CELL_MAX_CHARS + 5),
        )
    )

    header, row = _rows(audit.get_today_sheet())
    record = dict(zip(header, row))
    assert record["Timestamp"] == "2026-10-18 23:59:00"
    assert record["To"] == "a@example.com, b@example.com"
    assert record["Success"] == "TRUE"
    assert record["DurationMs"] == "321"
    assert record["Truncated"] == "TRUE"
    assert record["RespBytes"] == ""
    assert len(record["RequestBody"]) == CELL_MAX_CHARS


def test_write_entry_never_raises(user_store, logs_folder: LogsFolder, clock: _Clock) -> None:
    audit = AuditLog(user_store, logs_folder, clock=clock)
    audit.write_entry(AuditEntry(action="Generate"))
