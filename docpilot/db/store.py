"""Document Store capability for docpilot.

Backends implement the four storage primitives (list, get, save, create).
The line-editing operations are implemented once here on top of them, so
every backend shares the same range validation and splice semantics.

Lines are 1-based and ranges are inclusive. Content is split on ``\\r?\\n``;
empty content has zero lines. Edited content is re-joined with ``\\n``.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from docpilot.core.exceptions import NotFoundError, ParameterError, RangeError
from docpilot.core.models import Document

logger = logging.getLogger("docpilot.db.store")

_LINE_SPLIT = re.compile(r"\r?\n")


def split_lines(content: Optional[str]) -> list[str]:
    if not content:
        return []
    return _LINE_SPLIT.split(content)


def parse_line_number(value: Any, label: str) -> int:
    """Coerce an int or numeric string (whitespace tolerated) to a line number."""
    if isinstance(value, bool):
        raise RangeError(f"invalid line number for {label}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"[+-]?\d+", text):
            return int(text)
    raise RangeError(f"invalid line number for {label}: {value!r}")


def check_range(start: int, end: int, line_count: int) -> None:
    """Raise RangeError unless 1 <= start <= end <= line_count."""
    if start < 1 or start > end:
        raise RangeError(f"invalid line range: start={start}, end={end}")
    if end > line_count:
        raise RangeError(
            f"line out of range: end={end} exceeds document length of {line_count} lines"
        )


def splice_lines(content: str, start: int, end: int, replacement: Optional[str]) -> str:
    """Replace the inclusive 1-based line range with the lines of ``replacement``."""
    lines = split_lines(content)
    check_range(start, end, len(lines))
    new_lines = split_lines(replacement)
    return "\n".join(lines[: start - 1] + new_lines + lines[end:])


def append_text(content: str, text: str) -> str:
    """Append text, inserting one separator only if content lacks a trailing one."""
    if not content:
        return text
    if content.endswith("\n"):
        return content + text
    return content + "\n" + text


class DocumentStore(ABC):
    """Abstract document store.

    Mutating primitives return ``(updated_doc, original_content)`` and raise
    ``OperationError`` subclasses on bad input.
    """

    # -------------------------------------------------------------------
    # Backend primitives
    # -------------------------------------------------------------------

    @abstractmethod
    def list_all(self) -> list[Document]:
        """Return every document, most recently updated first."""

    @abstractmethod
    def get_by_id(self, doc_id: str) -> Optional[Document]:
        """Return the document or None."""

    @abstractmethod
    def save(self, doc: Document) -> Document:
        """Persist the document, stamping ``updated_at``."""

    @abstractmethod
    def create(self, title: str, content: str = "", doc_id: Optional[str] = None) -> Document:
        """Create and persist a new document."""

    # -------------------------------------------------------------------
    # Line-editing primitives
    # -------------------------------------------------------------------

    def require(self, doc_id: str) -> Document:
        doc = self.get_by_id(doc_id)
        if doc is None:
            raise NotFoundError(f"document not found: {doc_id}")
        return doc

    def rewrite(self, doc_id: str, transform: Callable[[str], str]) -> tuple[Document, str]:
        """Read the document, apply ``transform`` to its content and persist it.

        Backends that can lock a row override this so the read and the
        write happen in one transaction. Nothing is written if ``transform``
        raises.
        """
        doc = self.require(doc_id)
        original = doc.content
        saved = self.save(doc.model_copy(update={"content": transform(original)}))
        return saved, original

    def delete_by_range(self, doc_id: str, start_line: Any, end_line: Any) -> tuple[Document, str]:
        return self.delete_and_replace(doc_id, start_line, end_line, None)

    def delete_and_replace(
        self,
        doc_id: str,
        start_line: Any,
        end_line: Any,
        replacement: Optional[str],
    ) -> tuple[Document, str]:
        start = parse_line_number(start_line, "start")
        end = parse_line_number(end_line, "end")
        if replacement is not None:
            _require_text(replacement, "replacement text")
        saved, original = self.rewrite(doc_id, lambda c: splice_lines(c, start, end, replacement))
        logger.debug("Spliced lines %d-%d of %s", start, end, doc_id)
        return saved, original

    def append_to_end(self, doc_id: str, text: str) -> tuple[Document, str]:
        _require_text(text, "text to append")
        return self.rewrite(doc_id, lambda c: append_text(c, text))

    def replace_whole_content(self, doc_id: str, new_content: str) -> tuple[Document, str]:
        _require_text(new_content, "new content")
        return self.rewrite(doc_id, lambda _: new_content)

    def restore_content(self, doc_id: str, content: str) -> Document:
        """Overwrite content unconditionally (used by ledger rollback)."""
        _require_text(content, "restored content")
        saved, _ = self.rewrite(doc_id, lambda _: content)
        return saved


def _require_text(value: Any, label: str) -> None:
    if value is None:
        raise ParameterError(f"{label} is required")
    if not isinstance(value, str):
        raise ParameterError(f"{label} must be a string, got {type(value).__name__}")
