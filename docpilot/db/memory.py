"""In-memory document store.

Used for tests, for the ``edit-file`` CLI command, and anywhere a
process-local store is enough.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Iterable, Optional

from docpilot.core.models import Document
from docpilot.db.store import DocumentStore


class MemoryDocumentStore(DocumentStore):
    def __init__(self, documents: Optional[Iterable[Document]] = None):
        self._docs: dict[str, Document] = {}
        self.read_count = 0
        self.write_count = 0
        for doc in documents or []:
            self._docs[doc.id] = doc.model_copy()

    def list_all(self) -> list[Document]:
        self.read_count += 1
        docs = [d.model_copy() for d in self._docs.values()]
        return sorted(docs, key=lambda d: d.updated_at, reverse=True)

    def get_by_id(self, doc_id: str) -> Optional[Document]:
        self.read_count += 1
        doc = self._docs.get(doc_id)
        return doc.model_copy() if doc is not None else None

    def save(self, doc: Document) -> Document:
        self.write_count += 1
        stored = doc.model_copy(update={"updated_at": datetime.now(UTC)})
        self._docs[stored.id] = stored
        return stored.model_copy()

    def create(self, title: str, content: str = "", doc_id: Optional[str] = None) -> Document:
        doc = Document(title=title.strip(), content=content)
        if doc_id:
            doc = doc.model_copy(update={"id": doc_id})
        return self.save(doc)

    def content_of(self, doc_id: str) -> Optional[str]:
        """Content without counting as a read (test and CLI convenience)."""
        doc = self._docs.get(doc_id)
        return doc.content if doc is not None else None
