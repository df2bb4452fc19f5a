"""PostgreSQL-backed document store.

All SQL for documents lives here. Callers never write raw SQL; they go
through the DocumentStore interface, which returns Pydantic models.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Callable, Optional

from docpilot.core.exceptions import NotFoundError
from docpilot.core.models import Document
from docpilot.db.engine import DatabaseEngine
from docpilot.db.store import DocumentStore


class PostgresDocumentStore(DocumentStore):
    """Document store wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    def list_all(self) -> list[Document]:
        rows = self.engine.fetch_all("SELECT * FROM documents ORDER BY updated_at DESC")
        return [_row_to_document(r) for r in rows]

    def get_by_id(self, doc_id: str) -> Optional[Document]:
        row = self.engine.fetch_one("SELECT * FROM documents WHERE id = %s", [doc_id])
        if row is None:
            return None
        return _row_to_document(row)

    def save(self, doc: Document) -> Document:
        updated = doc.model_copy(update={"updated_at": datetime.now(UTC)})
        self.engine.execute(
            """INSERT INTO documents (id, title, content, created_at, updated_at)
               VALUES (%s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE
               SET title = EXCLUDED.title,
                   content = EXCLUDED.content,
                   updated_at = EXCLUDED.updated_at""",
            [updated.id, updated.title, updated.content, updated.created_at, updated.updated_at],
        )
        return updated

    def create(self, title: str, content: str = "", doc_id: Optional[str] = None) -> Document:
        doc = Document(title=title.strip(), content=content)
        if doc_id:
            doc = doc.model_copy(update={"id": doc_id})
        return self.save(doc)

    def rewrite(self, doc_id: str, transform: Callable[[str], str]) -> tuple[Document, str]:
        """Lock the row, transform its content and update it in one transaction."""
        with self.engine.transaction() as cur:
            cur.execute("SELECT content FROM documents WHERE id = %s FOR UPDATE", [doc_id])
            row = cur.fetchone()
            if row is None:
                raise NotFoundError(f"document not found: {doc_id}")
            original = row["content"] or ""
            cur.execute(
                "UPDATE documents SET content = %s, updated_at = now() WHERE id = %s RETURNING *",
                [transform(original), doc_id],
            )
            updated = cur.fetchone()
        return _row_to_document(updated), original


def _row_to_document(row: dict[str, Any]) -> Document:
    return Document(
        id=row["id"],
        title=row.get("title") or "",
        content=row.get("content") or "",
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
