"""Transaction ledger for docpilot.

One ledger per active task. Every successful mutation appends the content
the document had before it; rollback replays the records in reverse so each
touched document ends at its pre-task snapshot, commit discards them.
"""

from __future__ import annotations

import logging
from typing import Optional

from docpilot.core.exceptions import LedgerError
from docpilot.core.models import UndoRecord
from docpilot.db.store import DocumentStore

logger = logging.getLogger("docpilot.orchestrator.ledger")


class TransactionLedger:
    def __init__(self) -> None:
        self._records: Optional[list[UndoRecord]] = None

    @property
    def active(self) -> bool:
        return self._records is not None

    @property
    def records(self) -> list[UndoRecord]:
        return list(self._records or [])

    def begin(self) -> None:
        if self._records is not None:
            raise LedgerError("A transaction is already active; nesting is not allowed")
        self._records = []
        logger.debug("Ledger opened")

    def record(self, document_id: str, content_before: str) -> None:
        if self._records is None:
            raise LedgerError("No active transaction to record into")
        self._records.append(UndoRecord(document_id=document_id, content_before=content_before))

    def rollback(self, store: DocumentStore) -> int:
        """Restore every touched document and close the ledger.

        Returns:
            Number of undo records replayed (0 if no ledger was active).
        """
        if self._records is None:
            return 0
        records = self._records
        for rec in reversed(records):
            store.restore_content(rec.document_id, rec.content_before)
        # Stays open until every restore succeeded.
        self._records = None
        logger.info("Rolled back %d mutation(s) across %d document(s)",
                    len(records), len({r.document_id for r in records}))
        return len(records)

    def commit(self) -> int:
        if self._records is None:
            return 0
        count = len(self._records)
        self._records = None
        logger.info("Committed %d mutation(s)", count)
        return count
