"""Per-task read cache: document id → last fetched snapshot."""

from __future__ import annotations

from typing import Optional

from docpilot.core.models import Document


class ReadCache:
    """Created at task start and discarded at task end; never shared."""

    def __init__(self) -> None:
        self._docs: dict[str, Document] = {}

    def get(self, doc_id: str) -> Optional[Document]:
        return self._docs.get(doc_id)

    def put(self, doc: Document) -> None:
        self._docs[doc.id] = doc

    def refresh(self, doc: Document) -> None:
        """Replace an existing snapshot after a mutation; no-op if never read."""
        if doc.id in self._docs:
            self._docs[doc.id] = doc

    def ids(self) -> list[str]:
        return list(self._docs)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    def __len__(self) -> int:
        return len(self._docs)
