"""Operation Registry for docpilot.

Declares the closed set of document operations the model may call, each
with a typed parameter contract, and executes them against a DocumentStore.
Arguments are validated before any handler runs; store errors are turned
into failed ExecutionResults rather than raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from docpilot.core.exceptions import (
    ErrorKind,
    NotFoundError,
    OperationError,
    ParameterError,
    TransportError,
)
from docpilot.core.models import ExecutionResult, OperationDescriptor, StepCategory
from docpilot.db.store import DocumentStore

if TYPE_CHECKING:
    from docpilot.orchestrator.read_cache import ReadCache

logger = logging.getLogger("docpilot.tools.registry")

LIST_ALL_DOCUMENTS = "listAllDocuments"
GET_DOCUMENT_BY_ID = "getDocumentById"
DELETE_BY_RANGE = "deleteByRange"
DELETE_AND_REPLACE = "deleteAndReplace"
APPEND_TO_END = "appendToEnd"
REPLACE_WHOLE_CONTENT = "replaceWholeContent"


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    type: str
    description: str
    required: bool = True


@dataclass(frozen=True)
class OperationSpec:
    name: str
    description: str
    parameters: tuple[ParameterSpec, ...]
    category: StepCategory
    handler: Callable[..., ExecutionResult]

    @property
    def mutating(self) -> bool:
        return self.category is not StepCategory.READ

    @property
    def required_count(self) -> int:
        return sum(1 for p in self.parameters if p.required)


_DOC_ID = ParameterSpec("docId", "string", "Document ID")


class OperationRegistry:
    """Name → handler + schema registry bound to one DocumentStore."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._specs: dict[str, OperationSpec] = {}
        for spec in self._build_specs():
            self._specs[spec.name] = spec

    def _build_specs(self) -> list[OperationSpec]:
        return [
            OperationSpec(
                name=LIST_ALL_DOCUMENTS,
                description="List metadata (id, title, createdAt, updatedAt) of every document. No content.",
                parameters=(),
                category=StepCategory.READ,
                handler=self._list_all_documents,
            ),
            OperationSpec(
                name=GET_DOCUMENT_BY_ID,
                description="Fetch the full Markdown content of one document.",
                parameters=(ParameterSpec("id", "string", "Document ID"),),
                category=StepCategory.READ,
                handler=self._get_document_by_id,
            ),
            OperationSpec(
                name=DELETE_BY_RANGE,
                description="Delete lines startLine..endLine (inclusive, 1-based) from a document.",
                parameters=(
                    _DOC_ID,
                    ParameterSpec("startLine", "integer", "First line to delete (1-based)"),
                    ParameterSpec("endLine", "integer", "Last line to delete (inclusive)"),
                ),
                category=StepCategory.EDIT,
                handler=self._delete_by_range,
            ),
            OperationSpec(
                name=DELETE_AND_REPLACE,
                description="Delete lines startLine..endLine (inclusive, 1-based) and insert replacementText in their place.",
                parameters=(
                    _DOC_ID,
                    ParameterSpec("startLine", "integer", "First line to replace (1-based)"),
                    ParameterSpec("endLine", "integer", "Last line to replace (inclusive)"),
                    ParameterSpec("replacementText", "string", "Markdown to insert; may be empty", required=False),
                ),
                category=StepCategory.EDIT,
                handler=self._delete_and_replace,
            ),
            OperationSpec(
                name=APPEND_TO_END,
                description="Append Markdown text to the end of a document.",
                parameters=(_DOC_ID, ParameterSpec("text", "string", "Markdown to append")),
                category=StepCategory.WRITE,
                handler=self._append_to_end,
            ),
            OperationSpec(
                name=REPLACE_WHOLE_CONTENT,
                description="Overwrite the full content of a document (summaries, rewrites).",
                parameters=(_DOC_ID, ParameterSpec("newContent", "string", "New full Markdown content")),
                category=StepCategory.WRITE,
                handler=self._replace_whole_content,
            ),
        ]

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def names(self) -> list[str]:
        return list(self._specs)

    def get(self, name: str) -> OperationSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise NotFoundError(f"unknown operation: {name}")
        return spec

    def is_mutating(self, name: Optional[str]) -> bool:
        spec = self._specs.get(name or "")
        return spec is not None and spec.mutating

    def category_of(self, name: Optional[str]) -> Optional[StepCategory]:
        spec = self._specs.get(name or "")
        return spec.category if spec is not None else None

    def describe(self) -> str:
        """Render Markdown documentation for every operation."""
        md = "# Document operations\n\n"
        for spec in self._specs.values():
            md += f"## {spec.name}\n\n{spec.description}\n\n"
            if spec.parameters:
                md += "| Parameter | Type | Required | Description |\n"
                md += "|-----------|------|----------|-------------|\n"
                for p in spec.parameters:
                    required = "yes" if p.required else "no"
                    md += f"| {p.name} | {p.type} | {required} | {p.description} |\n"
                md += "\n"
            md += "---\n\n"
        return md

    # -------------------------------------------------------------------
    # Validation + execution
    # -------------------------------------------------------------------

    def bind_args(self, spec: OperationSpec, args: Any) -> list[Any]:
        """Map raw model args onto the spec's parameters.

        Raises:
            ParameterError: If required arguments are missing or empty.
        """
        if args is None:
            raw: list[Any] = []
        elif isinstance(args, dict):
            raw = [args.get(p.name) for p in spec.parameters]
            while raw and raw[-1] is None:
                raw.pop()
        elif isinstance(args, (list, tuple)):
            raw = list(args)
        else:
            raw = [args]

        if len(raw) < spec.required_count:
            expected = ", ".join(p.name for p in spec.parameters if p.required)
            raise ParameterError(
                f"{spec.name} expects {spec.required_count} argument(s) ({expected}), got {len(raw)}"
            )
        if len(raw) > len(spec.parameters):
            logger.debug("Dropping %d extra argument(s) for %s", len(raw) - len(spec.parameters), spec.name)
            raw = raw[: len(spec.parameters)]

        bound: list[Any] = []
        for i, param in enumerate(spec.parameters):
            value = raw[i] if i < len(raw) else None
            if param.required and (value is None or (isinstance(value, str) and not value.strip())):
                raise ParameterError(f"{spec.name}: missing required argument '{param.name}'")
            if value is not None:
                value = _check_type(spec.name, param, value)
            bound.append(value)
        return bound

    def execute(
        self,
        descriptor: Optional[OperationDescriptor],
        cache: Optional[ReadCache] = None,
    ) -> ExecutionResult:
        """Validate and run one operation. Never raises for operation errors."""
        if descriptor is None:
            return _failure("", ParameterError("no operation provided"))

        try:
            spec = self.get(descriptor.name)
            args = self.bind_args(spec, descriptor.args)
        except OperationError as e:
            logger.info("Rejected %s: %s", descriptor.name, e)
            return _failure(descriptor.name, e)

        if spec.name == GET_DOCUMENT_BY_ID and cache is not None:
            cached = cache.get(args[0])
            if cached is not None:
                logger.info("Serving %s from read cache", args[0])
                return ExecutionResult(operation=spec.name, success=True, data=cached, skipped=True)

        try:
            return spec.handler(*args)
        except OperationError as e:
            logger.info("%s failed: %s", spec.name, e)
            return _failure(spec.name, e)
        except TransportError as e:
            logger.error("%s store call failed: %s", spec.name, e)
            return ExecutionResult(
                operation=spec.name, success=False, error=str(e), error_kind=ErrorKind.STORE,
            )

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------

    def _list_all_documents(self) -> ExecutionResult:
        metas = [doc.meta() for doc in self.store.list_all()]
        return ExecutionResult(operation=LIST_ALL_DOCUMENTS, success=True, data=metas)

    def _get_document_by_id(self, doc_id: str) -> ExecutionResult:
        doc = self.store.require(doc_id)
        return ExecutionResult(operation=GET_DOCUMENT_BY_ID, success=True, data=doc)

    def _delete_by_range(self, doc_id: str, start: Any, end: Any) -> ExecutionResult:
        doc, original = self.store.delete_by_range(doc_id, start, end)
        return _mutation(DELETE_BY_RANGE, doc, original)

    def _delete_and_replace(self, doc_id: str, start: Any, end: Any, text: Optional[str]) -> ExecutionResult:
        doc, original = self.store.delete_and_replace(doc_id, start, end, text)
        return _mutation(DELETE_AND_REPLACE, doc, original)

    def _append_to_end(self, doc_id: str, text: str) -> ExecutionResult:
        doc, original = self.store.append_to_end(doc_id, text)
        return _mutation(APPEND_TO_END, doc, original)

    def _replace_whole_content(self, doc_id: str, new_content: str) -> ExecutionResult:
        doc, original = self.store.replace_whole_content(doc_id, new_content)
        return _mutation(REPLACE_WHOLE_CONTENT, doc, original)


def _check_type(operation: str, param: ParameterSpec, value: Any) -> Any:
    """Coerce scalars to the declared type; reject lists, dicts and booleans.

    Line numbers may be ints or strings; a non-numeric string is left for the
    store, which reports it as an invalid line number.
    """
    is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
    if param.type == "string":
        if is_number:
            return str(value)
        if isinstance(value, str):
            return value
    elif param.type == "integer":
        if isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool)):
            return value
    raise ParameterError(
        f"{operation}: argument '{param.name}' must be {param.type}, got {type(value).__name__}"
    )


def _mutation(name: str, doc: Any, original: str) -> ExecutionResult:
    return ExecutionResult(
        operation=name,
        success=True,
        doc=doc,
        original_content=original,
        new_content=doc.content,
    )


def _failure(name: str, error: OperationError) -> ExecutionResult:
    return ExecutionResult(operation=name, success=False, error=str(error), error_kind=error.kind)
