"""Tests for docpilot/db/engine.py and docpilot/db/repository.py against real PostgreSQL."""

import uuid

import pytest

from docpilot.core.exceptions import DatabaseError, NotFoundError, ParameterError, RangeError
from docpilot.db.repository import PostgresDocumentStore
from tests.conftest import requires_postgres


def _doc_id() -> str:
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def pg_store(db_engine):
    store = PostgresDocumentStore(db_engine)
    created: list[str] = []
    yield store, created
    for doc_id in created:
        db_engine.execute("DELETE FROM documents WHERE id = %s", [doc_id])


@requires_postgres
class TestDatabaseEngine:
    def test_schema_idempotent(self, db_engine):
        db_engine.initialize_schema()
        row = db_engine.fetch_one("SELECT to_regclass('documents')::text AS t")
        assert row["t"] == "documents"

    def test_execute_returns_rowcount(self, db_engine):
        assert db_engine.execute("DELETE FROM documents WHERE id = %s", [f"missing-{uuid.uuid4().hex}"]) == 0

    def test_bad_query_is_database_error(self, db_engine):
        with pytest.raises(DatabaseError, match="Query failed"):
            db_engine.fetch_one("SELECT * FROM no_such_table")

    def test_transaction_rolls_back_on_error(self, pg_store, db_engine):
        store, created = pg_store
        doc = store.create("Tx", "before", doc_id=_doc_id())
        created.append(doc.id)

        with pytest.raises(RuntimeError):
            with db_engine.transaction() as cur:
                cur.execute("UPDATE documents SET content = 'after' WHERE id = %s", [doc.id])
                raise RuntimeError("abort")
        assert store.get_by_id(doc.id).content == "before"

    def test_transaction_commits(self, pg_store, db_engine):
        store, created = pg_store
        doc = store.create("Tx", "before", doc_id=_doc_id())
        created.append(doc.id)

        with db_engine.transaction() as cur:
            cur.execute("UPDATE documents SET content = 'after' WHERE id = %s", [doc.id])
        assert store.get_by_id(doc.id).content == "after"


@requires_postgres
class TestPostgresDocumentStore:
    def test_create_get_list(self, pg_store):
        store, created = pg_store
        doc = store.create("Notes", "a\nb", doc_id=_doc_id())
        created.append(doc.id)

        fetched = store.get_by_id(doc.id)
        assert fetched.title == "Notes"
        assert fetched.content == "a\nb"
        assert doc.id in [d.id for d in store.list_all()]

    def test_get_missing(self, pg_store):
        store, _ = pg_store
        assert store.get_by_id(f"missing-{uuid.uuid4().hex}") is None

    def test_line_primitives(self, pg_store):
        store, created = pg_store
        doc = store.create("Lines", "a\nb\nc", doc_id=_doc_id())
        created.append(doc.id)

        updated, original = store.delete_and_replace(doc.id, 2, 2, "B")
        assert original == "a\nb\nc"
        assert updated.content == "a\nB\nc"
        assert store.get_by_id(doc.id).content == "a\nB\nc"

        store.append_to_end(doc.id, "d")
        assert store.get_by_id(doc.id).content == "a\nB\nc\nd"

        with pytest.raises(RangeError):
            store.delete_by_range(doc.id, 3, 9)
        assert store.get_by_id(doc.id).content == "a\nB\nc\nd"

        store.restore_content(doc.id, original)
        assert store.get_by_id(doc.id).content == "a\nb\nc"

    def test_edit_missing_document(self, pg_store):
        store, _ = pg_store
        with pytest.raises(NotFoundError):
            store.append_to_end(f"missing-{uuid.uuid4().hex}", "x")

    def test_non_string_content_rejected(self, pg_store):
        store, created = pg_store
        doc = store.create("Typed", "keep", doc_id=_doc_id())
        created.append(doc.id)

        with pytest.raises(ParameterError):
            store.replace_whole_content(doc.id, ["x"])
        assert store.get_by_id(doc.id).content == "keep"
