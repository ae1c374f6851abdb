"""Stored graph documents and the repository interface used to reach them.

The engine never talks to a backing store directly. Callers inject a
`GraphRepository`; `JsonGraphRepository` is the local-first implementation
that keeps every document in one JSON file.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class GraphDocument(BaseModel):
    """A stored rule carrying an embedded workflow graph.

    `workflow_object` is kept exactly as stored: a `{nodes, edges}` mapping, a
    legacy bare node list, or either of those serialised as a JSON string.
    Unknown document fields are preserved on save.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str = Field(default="")
    workflow_object: Any = Field(default=None, alias="workflowObject")
    created_at: int | None = Field(default=None, alias="createdAt")
    updated_at: int | None = Field(default=None, alias="updatedAt")


class GraphRepository(Protocol):
    def list(self) -> list[GraphDocument]: ...

    def load(self, document_id: str) -> GraphDocument | None: ...

    def save(self, document: GraphDocument) -> None: ...

    def delete(self, document_id: str) -> bool: ...


class JsonGraphRepository:
    """JSON-file backed store for graph documents."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_unlocked(self) -> list[Any]:
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Graph document file is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        if raw is None:
            return []

        if not isinstance(raw, list):
            logger.warning(
                "Graph document file has unexpected shape; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        return raw

    def _entries_unlocked(self) -> list[GraphDocument | Any]:
        # Entries that fail validation stay as raw values so a rewrite keeps them.
        entries: list[GraphDocument | Any] = []
        for idx, item in enumerate(self._read_unlocked()):
            try:
                entries.append(GraphDocument.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid graph document",
                    extra={"path": str(self._path), "index": idx, "error": str(e)},
                )
                entries.append(item)
        return entries

    def _load_unlocked(self) -> list[GraphDocument]:
        return [e for e in self._entries_unlocked() if isinstance(e, GraphDocument)]

    def _save_unlocked(self, entries: list[GraphDocument | Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [
            e.model_dump(mode="json", by_alias=True) if isinstance(e, GraphDocument) else e
            for e in entries
        ]
        self._path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list(self) -> list[GraphDocument]:
        with self._lock:
            return self._load_unlocked()

    def load(self, document_id: str) -> GraphDocument | None:
        with self._lock:
            for doc in self._load_unlocked():
                if doc.id == document_id:
                    return doc
            return None

    def save(self, document: GraphDocument) -> None:
        with self._lock:
            documents = self._entries_unlocked()
            for idx, existing in enumerate(documents):
                if isinstance(existing, GraphDocument) and existing.id == document.id:
                    documents[idx] = document
                    break
            else:
                documents.append(document)
            self._save_unlocked(documents)

    def delete(self, document_id: str) -> bool:
        with self._lock:
            documents = self._entries_unlocked()
            remaining = [
                e for e in documents if not (isinstance(e, GraphDocument) and e.id == document_id)
            ]
            if len(remaining) == len(documents):
                return False
            self._save_unlocked(remaining)
            return True
