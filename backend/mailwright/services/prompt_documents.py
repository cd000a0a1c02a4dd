"""Prompt documents and the logs folder, stored as files under configured roots.

The store only keeps opaque identifiers; a document or folder whose file has
been removed from disk counts as missing, the same way a trashed document
would.
"""

from __future__ import annotations

from collections.abc import Callable
import json
import logging
from pathlib import Path
import time
from typing import Any
import uuid

from mailwright.providers.errors import AddonConfigurationError
from mailwright.services.property_store import PropertyStore
from mailwright.services.template_service import DEFAULT_PROMPT_TEMPLATE


logger = logging.getLogger("mailwright.documents")

KEY_PROMPT_DOC_ID = "prompt_doc_id"
KEY_LOGS_FOLDER_ID = "logs_folder_id"


def _new_identifier() -> str:
    return uuid.uuid4().hex


class PromptDocumentStore:
    def __init__(self, store: PropertyStore, *, root: str | Path) -> None:
        self._store = store
        self._root = Path(root)

    def document_id(self) -> str:
        return self._store.get(KEY_PROMPT_DOC_ID)

    def document_path(self, doc_id: str | None = None) -> Path:
        return self._root / f"{doc_id or self.document_id()}.md"

    def prompt_doc_exists(self) -> bool:
        doc_id = self.document_id()
        return bool(doc_id) and self.document_path(doc_id).is_file()

    def get_or_create_prompt_doc(self) -> Path:
        doc_id = self.document_id()
        if doc_id and self.document_path(doc_id).is_file():
            return self.document_path(doc_id)

        doc_id = _new_identifier()
        path = self.document_path(doc_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DEFAULT_PROMPT_TEMPLATE, encoding="utf-8")
        self._store.set(KEY_PROMPT_DOC_ID, doc_id)
        logger.info("prompt_doc.created", extra={"reason": doc_id})
        return path

    def ensure_prompt_doc(self) -> Path:
        doc_id = self.document_id()
        if not doc_id:
            raise AddonConfigurationError("Prompt Doc missing. Open Settings.", reason_code="prompt_doc_missing")
        path = self.document_path(doc_id)
        if not path.is_file():
            raise AddonConfigurationError(
                "Cannot open Prompt Doc (moved/trashed?). Fix in Settings.",
                reason_code="prompt_doc_unavailable",
            )
        return path

    def read_prompt_text(self) -> str:
        return self.ensure_prompt_doc().read_text(encoding="utf-8")

    def write_prompt_text(self, text: str) -> Path:
        path = self.get_or_create_prompt_doc()
        path.write_text(text, encoding="utf-8")
        return path


class LogsFolder:
    def __init__(
        self,
        store: PropertyStore,
        *,
        root: str | Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._root = Path(root)
        self._clock = clock

    def folder_id(self) -> str:
        return self._store.get(KEY_LOGS_FOLDER_ID)

    def folder_path(self, folder_id: str | None = None) -> Path:
        return self._root / (folder_id or self.folder_id())

    def logs_folder_exists(self) -> bool:
        folder_id = self.folder_id()
        return bool(folder_id) and self.folder_path(folder_id).is_dir()

    def get_or_create_logs_folder(self) -> Path:
        folder_id = self.folder_id()
        if folder_id and self.folder_path(folder_id).is_dir():
            return self.folder_path(folder_id)

        folder_id = _new_identifier()
        path = self.folder_path(folder_id)
        path.mkdir(parents=True, exist_ok=True)
        self._store.set(KEY_LOGS_FOLDER_ID, folder_id)
        logger.info("logs_folder.created", extra={"reason": folder_id})
        return path

    def ensure_logs_folder(self) -> Path:
        folder_id = self.folder_id()
        if not folder_id:
            raise AddonConfigurationError("Logs Folder missing. Open Settings.", reason_code="logs_folder_missing")
        path = self.folder_path(folder_id)
        if not path.is_dir():
            raise AddonConfigurationError(
                "Cannot open Logs Folder (moved/trashed?). Fix in Settings.",
                reason_code="logs_folder_unavailable",
            )
        return path

    def create_json_file(self, prefix: str, data: Any) -> str:
        """Writes ``data`` next to the daily logs; returns the path or ``""``."""
        try:
            folder = self.ensure_logs_folder()
            path = folder / f"{prefix}-{int(self._clock() * 1000)}.json"
            path.write_text(json.dumps(data, default=str), encoding="utf-8")
        except (AddonConfigurationError, OSError, TypeError, ValueError):
            logger.warning("logs_folder.json_write_failed", extra={"reason": prefix})
            return ""
        return str(path)
