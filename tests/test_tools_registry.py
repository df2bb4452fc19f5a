"""Tests for docpilot/tools/registry.py: parameter contracts and execution."""

from typing import Optional

import pytest

from docpilot.core.exceptions import DatabaseError, ErrorKind, ParameterError
from docpilot.core.models import Document, DocumentMeta, OperationDescriptor, StepCategory
from docpilot.db.memory import MemoryDocumentStore
from docpilot.orchestrator.read_cache import ReadCache
from docpilot.tools.registry import (
    APPEND_TO_END,
    DELETE_AND_REPLACE,
    DELETE_BY_RANGE,
    GET_DOCUMENT_BY_ID,
    LIST_ALL_DOCUMENTS,
    REPLACE_WHOLE_CONTENT,
    OperationRegistry,
)


def op(name: str, *args) -> OperationDescriptor:
    return OperationDescriptor(name=name, args=list(args))


class BrokenStore(MemoryDocumentStore):
    def get_by_id(self, doc_id: str) -> Optional[Document]:
        raise DatabaseError("connection reset")


@pytest.fixture
def registry(store) -> OperationRegistry:
    return OperationRegistry(store)


class TestCatalog:
    def test_names(self, registry):
        assert registry.names() == [
            LIST_ALL_DOCUMENTS, GET_DOCUMENT_BY_ID, DELETE_BY_RANGE,
            DELETE_AND_REPLACE, APPEND_TO_END, REPLACE_WHOLE_CONTENT,
        ]

    def test_categories(self, registry):
        assert registry.category_of(GET_DOCUMENT_BY_ID) is StepCategory.READ
        assert registry.category_of(DELETE_BY_RANGE) is StepCategory.EDIT
        assert registry.category_of(APPEND_TO_END) is StepCategory.WRITE
        assert registry.category_of("nope") is None
        assert registry.is_mutating(REPLACE_WHOLE_CONTENT)
        assert not registry.is_mutating(LIST_ALL_DOCUMENTS)

    def test_describe(self, registry):
        docs = registry.describe()
        assert docs.startswith("# Document operations")
        for name in registry.names():
            assert f"## {name}" in docs
        assert "| replacementText | string | no |" in docs


class TestBindArgs:
    def test_too_few(self, registry):
        with pytest.raises(ParameterError, match="expects 3 argument"):
            registry.bind_args(registry.get(DELETE_BY_RANGE), ["doc-1", 1])

    def test_empty_required(self, registry):
        with pytest.raises(ParameterError, match="docId"):
            registry.bind_args(registry.get(APPEND_TO_END), ["  ", "text"])

    def test_none_required(self, registry):
        with pytest.raises(ParameterError):
            registry.bind_args(registry.get(APPEND_TO_END), ["doc-1", None])

    def test_dict_args(self, registry):
        bound = registry.bind_args(registry.get(APPEND_TO_END), {"docId": "doc-1", "text": "t"})
        assert bound == ["doc-1", "t"]

    def test_scalar_and_none(self, registry):
        assert registry.bind_args(registry.get(GET_DOCUMENT_BY_ID), "doc-1") == ["doc-1"]
        assert registry.bind_args(registry.get(LIST_ALL_DOCUMENTS), None) == []

    def test_extra_args_dropped(self, registry):
        assert registry.bind_args(registry.get(GET_DOCUMENT_BY_ID), ["doc-1", "extra"]) == ["doc-1"]

    def test_numeric_id_coerced(self, registry):
        assert registry.bind_args(registry.get(GET_DOCUMENT_BY_ID), [42]) == ["42"]

    def test_optional_replacement(self, registry):
        assert registry.bind_args(registry.get(DELETE_AND_REPLACE), ["doc-1", 1, 1]) == ["doc-1", 1, 1, None]


class TestExecute:
    def test_list_has_no_content(self, registry):
        result = registry.execute(op(LIST_ALL_DOCUMENTS))
        assert result.success
        assert all(isinstance(m, DocumentMeta) for m in result.data)
        assert {m.id for m in result.data} == {"doc-1", "doc-2", "doc-3"}

    def test_get(self, registry):
        result = registry.execute(op(GET_DOCUMENT_BY_ID, "doc-1"))
        assert result.success
        assert result.data.content == "a\nb\nc"
        assert result.data.id == "doc-1"

    def test_cache_idempotence(self, registry, store):
        cache = ReadCache()
        first = registry.execute(op(GET_DOCUMENT_BY_ID, "doc-1"), cache=cache)
        cache.put(first.data)
        reads = store.read_count

        second = registry.execute(op(GET_DOCUMENT_BY_ID, "doc-1"), cache=cache)
        assert second.success
        assert second.skipped is True
        assert second.data == first.data
        assert store.read_count == reads

    def test_mutation_result(self, registry, store):
        result = registry.execute(op(DELETE_AND_REPLACE, "doc-1", 2, 2, "B"))
        assert result.success
        assert result.original_content == "a\nb\nc"
        assert result.new_content == "a\nB\nc"
        assert result.doc.id == "doc-1"
        assert store.content_of("doc-1") == "a\nB\nc"

    def test_delete_and_replace_without_text(self, registry, store):
        assert registry.execute(op(DELETE_AND_REPLACE, "doc-1", "1", "2")).new_content == "c"

    def test_range_error(self, registry, store):
        result = registry.execute(op(DELETE_BY_RANGE, "doc-1", 2, 9))
        assert not result.success
        assert result.error_kind is ErrorKind.RANGE
        assert "line out of range" in result.error
        assert store.content_of("doc-1") == "a\nb\nc"

    def test_parameter_error(self, registry, store):
        writes = store.write_count
        result = registry.execute(op(APPEND_TO_END, "doc-1", ""))
        assert not result.success
        assert result.error_kind is ErrorKind.PARAMETER
        assert store.write_count == writes

    def test_unknown_operation(self, registry):
        result = registry.execute(op("insertEnd", "doc-1", "x"))
        assert not result.success
        assert result.error_kind is ErrorKind.NOT_FOUND
        assert "unknown operation" in result.error

    def test_missing_document(self, registry):
        result = registry.execute(op(GET_DOCUMENT_BY_ID, "ghost"))
        assert result.error_kind is ErrorKind.NOT_FOUND

    def test_no_operation(self, registry):
        result = registry.execute(None)
        assert not result.success
        assert result.error_kind is ErrorKind.PARAMETER

    def test_store_failure_is_store_kind(self):
        registry = OperationRegistry(BrokenStore())
        result = registry.execute(op(GET_DOCUMENT_BY_ID, "doc-1"))
        assert not result.success
        assert result.error_kind is ErrorKind.STORE


class TestArgumentTypes:
    @pytest.mark.parametrize("name,args", [
        (GET_DOCUMENT_BY_ID, [["doc-1"]]),
        (GET_DOCUMENT_BY_ID, [{"id": "doc-1"}]),
        (DELETE_BY_RANGE, ["doc-1", [1], 2]),
        (DELETE_BY_RANGE, ["doc-1", 1, True]),
        (DELETE_BY_RANGE, [{"id": "doc-1"}, 1, 2]),
        (DELETE_AND_REPLACE, ["doc-1", 1, 1, {"t": 1}]),
        (DELETE_AND_REPLACE, ["doc-1", 1.5, 2, "x"]),
        (APPEND_TO_END, ["doc-1", ["x"]]),
        (APPEND_TO_END, [["doc-1"], "x"]),
        (REPLACE_WHOLE_CONTENT, ["doc-1", ["x"]]),
        (REPLACE_WHOLE_CONTENT, ["doc-1", {"content": "x"}]),
    ])
    def test_wrong_type_rejected_before_store(self, registry, store, name, args):
        writes = store.write_count
        result = registry.execute(OperationDescriptor(name=name, args=args))
        assert not result.success
        assert result.error_kind is ErrorKind.PARAMETER
        assert "must be" in result.error
        assert store.write_count == writes
        assert store.content_of("doc-1") == "a\nb\nc"

    def test_bind_args_names_parameter(self, registry):
        with pytest.raises(ParameterError, match="'newContent' must be string, got list"):
            registry.bind_args(registry.get(REPLACE_WHOLE_CONTENT), ["doc-1", ["x"]])

    def test_numeric_string_line_numbers_pass(self, registry):
        bound = registry.bind_args(registry.get(DELETE_BY_RANGE), ["doc-1", "1", 2])
        assert bound == ["doc-1", "1", 2]

    def test_non_numeric_line_is_range_error(self, registry, store):
        result = registry.execute(op(DELETE_BY_RANGE, "doc-1", "first", 2))
        assert result.error_kind is ErrorKind.RANGE
        assert store.content_of("doc-1") == "a\nb\nc"
