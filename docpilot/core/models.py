"""All Pydantic data models for docpilot.

Defines the data contracts shared by the store, the operation registry,
the response interpreter and the orchestrator.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from docpilot.core.exceptions import ErrorKind


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class WorkflowState(str, enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    ERROR = "error"
    PENDING_CONFIRMATION = "pending_confirmation"


class StepCategory(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    EDIT = "edit"


class DecisionKind(str, enum.Enum):
    ACTION = "action"
    COMPLETE = "complete"
    RETRY = "retry"
    OPERATION_FAILED = "operation_failed"
    EARLY_TERMINATION = "early_termination"
    VALIDATION_CONTINUE = "validation_continue"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class Document(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str = ""
    content: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def meta(self) -> DocumentMeta:
        return DocumentMeta(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class DocumentMeta(BaseModel):
    """Document listing entry. Never carries content."""
    id: str
    title: str
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Task run
# ---------------------------------------------------------------------------

class Task(BaseModel):
    user_request: str
    target_document_id: str
    start_time: datetime = Field(default_factory=_now)
    iteration_count: int = 0


class OperationDescriptor(BaseModel):
    """One operation call as requested by the model: name plus arguments.

    ``args`` is normally a positional list; an object keyed by parameter
    name is accepted as well.
    """
    name: str
    args: Any = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return {"option": self.name, "args": self.args}


class ExecutionResult(BaseModel):
    operation: str = ""
    success: bool
    data: Any = None
    doc: Optional[Document] = None
    original_content: Optional[str] = None
    new_content: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    skipped: bool = False
    rejected: bool = False


class DecisionRecord(BaseModel):
    iteration: int
    kind: DecisionKind
    payload: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Interpreted model output
# ---------------------------------------------------------------------------

class AnalysisDecision(BaseModel):
    """Per-step decision returned by the model."""
    message: str = ""
    needs_action: bool = False
    is_complete: bool = False
    operation: Optional[OperationDescriptor] = None
    via_fallback: bool = False


class ValidationVerdict(BaseModel):
    needs_more_work: bool = False
    reason: str = ""
    via_fallback: bool = False


class PlannedStep(BaseModel):
    id: str
    description: str = ""
    category: StepCategory = StepCategory.EDIT
    is_complete: bool = False


class TaskPlan(BaseModel):
    task_message: str = ""
    steps: list[PlannedStep] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return bool(self.steps) and all(s.is_complete for s in self.steps)


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------

class UndoRecord(BaseModel):
    document_id: str
    content_before: str


class ProgressState(BaseModel):
    score: float = 0.0
    consecutive_read_count: int = 0
    retry_count: int = 0
    validation_round_count: int = 0
    last_operation: Optional[str] = None


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    level: str
    message: str
    data: Any = None


class PendingPreview(BaseModel):
    document_id: str
    original_content: str
    modified_content: str


class TaskSummary(BaseModel):
    task: Task
    duration_seconds: float = 0.0
    iterations: int = 0
    operations: list[ExecutionResult] = Field(default_factory=list)
    decisions: list[DecisionRecord] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
    success: bool = True
