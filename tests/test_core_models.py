"""Tests for docpilot/core/models.py."""

from docpilot.core.exceptions import ErrorKind
from docpilot.core.models import (
    Document,
    ExecutionResult,
    OperationDescriptor,
    PlannedStep,
    TaskPlan,
    WorkflowState,
)


class TestDocument:
    def test_meta_has_no_content(self):
        doc = Document(title="Notes", content="secret body")
        meta = doc.meta()
        assert meta.id == doc.id
        assert "content" not in meta.model_dump()

    def test_ids_are_unique(self):
        assert Document().id != Document().id


class TestOperationDescriptor:
    def test_wire_form(self):
        op = OperationDescriptor(name="appendToEnd", args=["doc-1", "x"])
        assert op.to_wire() == {"option": "appendToEnd", "args": ["doc-1", "x"]}

    def test_default_args(self):
        assert OperationDescriptor(name="listAllDocuments").args == []


class TestExecutionResult:
    def test_error_kind_serializes(self):
        result = ExecutionResult(success=False, error="x", error_kind=ErrorKind.RANGE)
        assert result.model_dump(mode="json")["error_kind"] == "range"


class TestTaskPlan:
    def test_empty_plan_is_not_complete(self):
        assert not TaskPlan().is_complete

    def test_complete_when_all_steps_done(self):
        plan = TaskPlan(steps=[PlannedStep(id="1", is_complete=True)])
        assert plan.is_complete


def test_workflow_state_values():
    assert WorkflowState.PENDING_CONFIRMATION.value == "pending_confirmation"
    assert len(WorkflowState) == 8
