"""Main task loop for docpilot.

Drives one editing request through the model-in-the-loop cycle:
  check termination → ask model → interpret → execute → update ledger/progress

then summarizes and either commits right away (no content changed) or parks
in PENDING_CONFIRMATION until the caller confirms or rejects. Every mutation
made during a run is undone by rollback unless it is explicitly committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from docpilot.core.config import AppConfig
from docpilot.core.exceptions import (
    RANGE_ERROR_MARKERS,
    ErrorKind,
    ParameterError,
    TerminalWorkflowError,
    TransportError,
    WorkflowStateError,
)
from docpilot.core.models import (
    AnalysisDecision,
    DecisionKind,
    DecisionRecord,
    Document,
    ExecutionResult,
    LogEntry,
    OperationDescriptor,
    PendingPreview,
    ProgressState,
    StepCategory,
    Task,
    TaskPlan,
    TaskSummary,
    ValidationVerdict,
    WorkflowState,
)
from docpilot.db.store import DocumentStore
from docpilot.llm.prompts import PromptBuilder
from docpilot.llm.response_parser import parse_decision, parse_plan, parse_validation
from docpilot.orchestrator.events import EventSink, FanoutEventSink
from docpilot.orchestrator.ledger import TransactionLedger
from docpilot.orchestrator.progress import ProgressTracker
from docpilot.orchestrator.read_cache import ReadCache
from docpilot.orchestrator.state_machine import WorkflowStateMachine
from docpilot.orchestrator.summary import build_task_summary, request_ai_summary
from docpilot.orchestrator.task_plan import TaskPlanTracker
from docpilot.tools.registry import GET_DOCUMENT_BY_ID, LIST_ALL_DOCUMENTS, OperationRegistry

logger = logging.getLogger("docpilot.orchestrator.loop")

S = WorkflowState

CompletionFn = Callable[[str], str]

_RETRYABLE_KINDS = frozenset({ErrorKind.PARAMETER, ErrorKind.RANGE})

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class WorkflowLog:
    """Per-task log kept in memory, mirrored to the module logger and the sink."""

    def __init__(self, on_entry: Optional[Callable[[LogEntry], None]] = None):
        self._entries: list[LogEntry] = []
        self._on_entry = on_entry

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def log(self, level: str, message: str, data: Any = None) -> LogEntry:
        entry = LogEntry(level=level, message=message, data=data)
        self._entries.append(entry)
        if data is None:
            logger.log(_LEVELS.get(level, logging.INFO), message)
        else:
            logger.log(_LEVELS.get(level, logging.INFO), "%s %s", message, data)
        if self._on_entry is not None:
            self._on_entry(entry)
        return entry

    def info(self, message: str, data: Any = None) -> LogEntry:
        return self.log("info", message, data)

    def warning(self, message: str, data: Any = None) -> LogEntry:
        return self.log("warning", message, data)

    def error(self, message: str, data: Any = None) -> LogEntry:
        return self.log("error", message, data)

    def clear(self) -> None:
        self._entries.clear()


@dataclass
class TaskRun:
    """Everything owned by one start_task call. Discarded when the next run starts."""

    task: Task
    original_content: Optional[str]
    progress: ProgressTracker
    cache: ReadCache = field(default_factory=ReadCache)
    plan: TaskPlanTracker = field(default_factory=TaskPlanTracker)
    operations: list[ExecutionResult] = field(default_factory=list)
    decisions: list[DecisionRecord] = field(default_factory=list)
    current_content: Optional[str] = None
    # Content before the first mutation, and after the latest, per touched document.
    snapshots: dict[str, str] = field(default_factory=dict)
    latest: dict[str, str] = field(default_factory=dict)
    analysis_calls: int = 0
    listed_documents: bool = False
    write_prompt_sent: bool = False
    preview: Optional[PendingPreview] = None
    summary: Optional[TaskSummary] = None
    ai_summary: Optional[str] = None


class Orchestrator:
    """State machine driving one model-in-the-loop editing task at a time.

    Injected dependencies:
        store: Document store the operations run against.
        complete: Completion capability, ``prompt -> text``. Raises
            TransportError when the model cannot be reached.
        config: Application configuration (workflow and progress sections).
        events: Push-only observability sink. A sink that raises is
            logged and skipped.
        prompts: Prompt builder (defaults honor config/prompts/ overrides).
        registry: Operation registry (defaults to one bound to ``store``).
    """

    def __init__(
        self,
        store: DocumentStore,
        complete: CompletionFn,
        config: Optional[AppConfig] = None,
        events: Optional[EventSink] = None,
        prompts: Optional[PromptBuilder] = None,
        registry: Optional[OperationRegistry] = None,
    ):
        self.store = store
        self.complete = complete
        self.config = config or AppConfig()
        if events is not None and not isinstance(events, FanoutEventSink):
            events = FanoutEventSink([events])
        self.events = events or EventSink()
        self.prompts = prompts or PromptBuilder()
        self.registry = registry or OperationRegistry(store)
        self._machine = WorkflowStateMachine(on_change=self.events.state_changed)
        self._log = WorkflowLog(on_entry=self.events.log)
        self._ledger = TransactionLedger()
        self._run: Optional[TaskRun] = None
        self._function_docs = self.registry.describe()

    # -------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._machine.state

    @property
    def function_docs(self) -> str:
        return self._function_docs

    @property
    def logs(self) -> list[LogEntry]:
        return self._log.entries

    @property
    def current_task(self) -> Optional[Task]:
        return self._run.task if self._run else None

    @property
    def operation_history(self) -> list[ExecutionResult]:
        return list(self._run.operations) if self._run else []

    @property
    def decisions(self) -> list[DecisionRecord]:
        return list(self._run.decisions) if self._run else []

    @property
    def task_plan(self) -> Optional[TaskPlan]:
        return self._run.plan.plan if self._run else None

    @property
    def pending_preview(self) -> Optional[PendingPreview]:
        if self._run is None or self.state is not S.PENDING_CONFIRMATION:
            return None
        return self._run.preview

    @property
    def progress(self) -> Optional[ProgressState]:
        return self._run.progress.state if self._run else None

    @property
    def last_summary(self) -> Optional[TaskSummary]:
        return self._run.summary if self._run else None

    @property
    def ai_summary(self) -> Optional[str]:
        return self._run.ai_summary if self._run else None

    # -------------------------------------------------------------------
    # Inbound interface
    # -------------------------------------------------------------------

    def initialize(self) -> str:
        """Render the operation documentation given to the model."""
        self._machine.transition(S.INITIALIZING, "initialize")
        self._log.info("Function documentation generated", {"length": len(self._function_docs)})
        self._machine.transition(S.IDLE, "initialized")
        return self._function_docs

    def start_task(
        self,
        user_request: str,
        document_id: str,
        original_content: Optional[str] = None,
    ) -> TaskSummary:
        """Run one request against one document until it stops.

        Returns the task summary. When the run changed content, the
        orchestrator is left in PENDING_CONFIRMATION and the caller must
        call confirm_changes() or reject_changes().

        Raises:
            WorkflowStateError: If a task is already in flight.
            ParameterError: If the request or document id is empty.
            TransportError: If the model is unreachable during analysis.
                The run is rolled back and ends in ERROR first.
        """
        if not self._machine.is_resting:
            raise WorkflowStateError(
                f"A task is already in progress (state: {self.state.value})"
            )
        if not user_request or not user_request.strip():
            raise ParameterError("user_request must not be empty")
        if not document_id or not str(document_id).strip():
            raise ParameterError("document_id must not be empty")

        if self._ledger.active:
            self._log.warning("Retrying rollback left over from the previous task")
            self._ledger.rollback(self.store)

        self._log.clear()
        run = TaskRun(
            task=Task(user_request=user_request, target_document_id=str(document_id)),
            original_content=original_content,
            progress=ProgressTracker(self.config.progress),
        )
        self._run = run

        self._machine.transition(S.INITIALIZING, "task started")
        self._log.info("Starting new task", {"request": user_request, "document_id": run.task.target_document_id})
        self._ledger.begin()

        try:
            self._generate_plan(run)
            self._run_loop(run)
        except TerminalWorkflowError as e:
            self._log.error("Retry budget exhausted", {"error": str(e)})
            self._abort(str(e))
            return self._emit_summary(run, success=False)
        except Exception as e:
            self._log.error("Workflow error", {"error": str(e), "type": type(e).__name__})
            self._abort(str(e))
            self._emit_summary(run, success=False)
            raise

        return self._finish(run)

    def confirm_changes(self) -> None:
        """Commit the pending run. The model writes a short recap first."""
        run = self._require_pending()
        self._machine.transition(S.SUMMARIZING, "changes confirmed")
        try:
            text = request_ai_summary(self.complete, self._summary_prompt(run))
        except Exception as e:
            self._log.warning("AI summary failed; committing without it", {
                "error": str(e),
                "type": type(e).__name__,
            })
            text = None
        if text:
            run.ai_summary = text
            self.events.ai_summary_ready(text)
        count = self._ledger.commit()
        self._log.info("Changes committed", {"mutations": count})
        self._machine.transition(S.COMPLETED, "changes committed")

    def reject_changes(self) -> None:
        """Roll back every mutation of the pending run and return to IDLE."""
        run = self._require_pending()
        restored = self._ledger.rollback(self.store)
        result = ExecutionResult(
            operation="rejectChanges",
            success=True,
            rejected=True,
            data={"restored": restored},
        )
        run.operations.append(result)
        self.events.operation_completed(result)
        self._log.info("Changes rejected and rolled back", {"restored": restored})
        self._machine.transition(S.IDLE, "changes rejected")

    def has_content_changes(self) -> bool:
        return self._run is not None and _content_changed(self._run)

    # -------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------

    def _run_loop(self, run: TaskRun) -> None:
        wf = self.config.workflow
        task = run.task

        while task.iteration_count < wf.max_iterations and run.analysis_calls < wf.max_iterations:
            task.iteration_count += 1
            self._log.info(f"Iteration {task.iteration_count}/{wf.max_iterations}")

            reason = run.progress.termination_reason(run.current_content is not None)
            if reason is not None:
                if self._validation_round(run, reason):
                    continue
                break

            self._machine.transition(S.ANALYZING)
            decision = self._analyze(run)
            self._record_decision(run, _decision_kind(decision), _decision_payload(decision))

            if not decision.needs_action:
                if not self._needs_forced_write(run):
                    break
                decision = self._request_write(run)
                if not decision.needs_action:
                    break

            self._machine.transition(S.EXECUTING)
            result = self._execute(run, decision.operation)

            if not result.success:
                if _is_retryable(result):
                    self._handle_retry(run, result)
                    continue
                self._log.error("Operation failed", {"operation": result.operation, "error": result.error})
                break

            if decision.is_complete:
                break
        else:
            self._log.info("Iteration limit reached", {"analysis_calls": run.analysis_calls})

    def _analyze(self, run: TaskRun) -> AnalysisDecision:
        run.analysis_calls += 1
        prompt = self.prompts.analysis(
            self._function_docs,
            run.task,
            run.current_content,
            run.cache.ids(),
            self.config.workflow.max_iterations,
            run.plan.status_lines(),
        )
        self._log.info("Sending analysis prompt", {"prompt_length": len(prompt)})
        decision = parse_decision(self.complete(prompt))
        if decision.via_fallback:
            self._log.warning("Model response was not valid JSON; used fallback parsing")
        self._log.info("Analysis complete", {
            "needs_action": decision.needs_action,
            "is_complete": decision.is_complete,
            "operation": decision.operation.name if decision.operation else None,
        })
        return decision

    def _execute(self, run: TaskRun, operation: Optional[OperationDescriptor]) -> ExecutionResult:
        result = self.registry.execute(operation, cache=run.cache)
        run.operations.append(result)

        category = self.registry.category_of(result.operation)
        run.progress.update(result.operation or None, category, result.success)

        if result.success:
            self._apply_success(run, result, category)
            run.progress.reset_retries()
            step = run.plan.mark_operation(category)
            if step is not None:
                self.events.task_plan_updated(run.plan.plan)
                if run.plan.plan.is_complete:
                    self._log.info("All planned steps done", {"steps": len(run.plan.plan.steps)})

        self.events.operation_completed(result)
        self._log.info("Operation executed", {
            "operation": result.operation,
            "success": result.success,
            "skipped": result.skipped,
            "error": result.error,
        })
        return result

    def _apply_success(
        self,
        run: TaskRun,
        result: ExecutionResult,
        category: Optional[StepCategory],
    ) -> None:
        if category is StepCategory.READ:
            if result.operation == LIST_ALL_DOCUMENTS:
                run.listed_documents = True
            elif result.operation == GET_DOCUMENT_BY_ID and isinstance(result.data, Document):
                if not result.skipped:
                    run.cache.put(result.data)
                run.current_content = result.data.content
            return

        doc = result.doc
        if doc is None or result.original_content is None:
            return
        self._ledger.record(doc.id, result.original_content)
        run.snapshots.setdefault(doc.id, result.original_content)
        run.latest[doc.id] = doc.content
        run.cache.refresh(doc)
        run.current_content = doc.content

    def _handle_retry(self, run: TaskRun, result: ExecutionResult) -> None:
        """Replay the iteration, or escalate once the retry budget is spent.

        Raises:
            TerminalWorkflowError: When retries reach max_retries.
        """
        max_retries = self.config.workflow.max_retries
        count = run.progress.record_retry()
        self._log.warning("Retryable operation error", {
            "operation": result.operation,
            "error": result.error,
            "retry_count": count,
            "max_retries": max_retries,
        })
        if count < max_retries:
            self._record_decision(run, DecisionKind.RETRY, {
                "reason": f"retrying after {_kind_label(result)} error ({count}/{max_retries})",
                "error": result.error,
                "retryCount": count,
            })
            run.task.iteration_count -= 1
            return

        self._record_decision(run, DecisionKind.OPERATION_FAILED, {
            "reason": f"operation failed {count} times; rolling back",
            "error": result.error,
            "retryCount": count,
        })
        raise TerminalWorkflowError(result.operation, count, result.error or "")

    # -------------------------------------------------------------------
    # Validation sub-protocol
    # -------------------------------------------------------------------

    def _validation_round(self, run: TaskRun, reason: str) -> bool:
        """Ask whether the request is satisfied. True means keep looping."""
        progress = run.progress
        max_rounds = self.config.workflow.max_validation_rounds
        self._log.info("Termination check fired", {
            "reason": reason,
            "validation_count": progress.state.validation_round_count,
        })

        if not progress.can_validate(max_rounds):
            self._record_decision(run, DecisionKind.EARLY_TERMINATION, {
                "reason": f"maximum validation rounds ({max_rounds}) reached",
                "progressScore": progress.state.score,
                "consecutiveReads": progress.state.consecutive_read_count,
                "validationCount": progress.state.validation_round_count,
            })
            return False

        verdict = self._validate(run)
        consecutive_reads = progress.state.consecutive_read_count
        reduction = progress.record_validation(verdict.needs_more_work)

        if verdict.needs_more_work:
            self._log.info("Validation: needs more work", {
                "reduction": reduction,
                "score": progress.state.score,
            })
            self._record_decision(run, DecisionKind.VALIDATION_CONTINUE, {
                "reason": verdict.reason,
                "progressScore": progress.state.score,
                "validationCount": progress.state.validation_round_count,
            })
            return True

        self._log.info("Validation: request satisfied")
        self._record_decision(run, DecisionKind.EARLY_TERMINATION, {
            "reason": verdict.reason or reason,
            "progressScore": progress.state.score,
            "consecutiveReads": consecutive_reads,
            "validationCount": progress.state.validation_round_count,
        })
        return False

    def _validate(self, run: TaskRun) -> ValidationVerdict:
        if run.current_content is None:
            return ValidationVerdict(
                needs_more_work=True,
                reason="document content has not been fetched yet",
            )
        self._machine.transition(S.ANALYZING, "validation")
        prompt = self.prompts.validation(run.task.user_request, run.current_content)
        try:
            text = self.complete(prompt)
        except TransportError as e:
            self._log.warning("Validation call failed; treating request as satisfied", {"error": str(e)})
            return ValidationVerdict(needs_more_work=False, reason="validation call failed")
        return parse_validation(text)

    # -------------------------------------------------------------------
    # Multi-document summarize guard
    # -------------------------------------------------------------------

    def _is_summarize_request(self, request: str) -> bool:
        lowered = request.lower()
        return any(k.lower() in lowered for k in self.config.workflow.summarize_keywords)

    def _needs_forced_write(self, run: TaskRun) -> bool:
        if run.write_prompt_sent or run.snapshots:
            return False
        if run.analysis_calls >= self.config.workflow.max_iterations:
            return False
        if run.current_content is None:
            return False
        if not (len(run.cache) >= 2 or run.listed_documents):
            return False
        return self._is_summarize_request(run.task.user_request)

    def _request_write(self, run: TaskRun) -> AnalysisDecision:
        run.write_prompt_sent = True
        run.analysis_calls += 1
        self._log.warning("Summarize request stopped without writing; asking for the write")
        read_documents = {}
        for doc_id in run.cache.ids():
            doc = run.cache.get(doc_id)
            if doc is not None:
                read_documents[doc_id] = doc.content
        decision = parse_decision(self.complete(self.prompts.write_required(run.task, read_documents)))
        payload = _decision_payload(decision)
        payload["forced"] = True
        self._record_decision(run, _decision_kind(decision), payload)
        return decision

    # -------------------------------------------------------------------
    # Plan, summary, teardown
    # -------------------------------------------------------------------

    def _generate_plan(self, run: TaskRun) -> None:
        prompt = self.prompts.plan(run.task.user_request, run.task.target_document_id)
        try:
            text = self.complete(prompt)
        except TransportError as e:
            self._log.warning("Planning call failed; continuing without a plan", {"error": str(e)})
            return
        plan = parse_plan(text)
        if plan is None:
            self._log.info("No task plan produced")
            return
        run.plan = TaskPlanTracker(plan)
        self._log.info("Task plan ready", {"steps": len(plan.steps)})
        self.events.task_plan_ready(plan)

    def _finish(self, run: TaskRun) -> TaskSummary:
        self._machine.transition(S.SUMMARIZING, "loop finished")
        summary = self._emit_summary(run, success=True)

        if _content_changed(run):
            run.preview = _build_preview(run)
            self._machine.transition(S.PENDING_CONFIRMATION, "awaiting confirmation")
            self.events.pending_confirmation(run.preview.original_content, run.preview.modified_content)
        else:
            self._ledger.commit()
            self._machine.transition(S.COMPLETED, "no content changes")
        return summary

    def _emit_summary(self, run: TaskRun, success: bool) -> TaskSummary:
        summary = build_task_summary(
            run.task, run.operations, run.decisions, self._log.entries, success,
        )
        run.summary = summary
        self._log.info("Summary generated", {
            "iterations": summary.iterations,
            "operations": len(summary.operations),
            "success": success,
        })
        self.events.summary_ready(summary)
        return summary

    def _summary_prompt(self, run: TaskRun) -> str:
        target = run.task.target_document_id
        original = run.snapshots.get(target, run.original_content or "")
        current = run.latest.get(target, original)
        return self.prompts.summary(
            run.task, run.operations, len(original), len(current), _content_changed(run),
        )

    def _abort(self, reason: str) -> None:
        try:
            restored = self._ledger.rollback(self.store)
            self._log.info("Rolled back", {"restored": restored})
        finally:
            self._machine.fail(reason)

    def _require_pending(self) -> TaskRun:
        if self.state is not S.PENDING_CONFIRMATION or self._run is None:
            raise WorkflowStateError(
                f"No changes are pending confirmation (state: {self.state.value})"
            )
        return self._run

    def _record_decision(self, run: TaskRun, kind: DecisionKind, payload: dict[str, Any]) -> None:
        record = DecisionRecord(iteration=run.task.iteration_count, kind=kind, payload=payload)
        run.decisions.append(record)
        self.events.decision_recorded(record)


def _decision_kind(decision: AnalysisDecision) -> DecisionKind:
    return DecisionKind.ACTION if decision.needs_action else DecisionKind.COMPLETE


def _decision_payload(decision: AnalysisDecision) -> dict[str, Any]:
    return {
        "message": decision.message,
        "operation": decision.operation.to_wire() if decision.operation else None,
        "isComplete": decision.is_complete,
    }


def _is_retryable(result: ExecutionResult) -> bool:
    if result.error_kind is not None:
        return result.error_kind in _RETRYABLE_KINDS
    error = (result.error or "").lower()
    return any(marker in error for marker in RANGE_ERROR_MARKERS)


def _kind_label(result: ExecutionResult) -> str:
    return result.error_kind.value if result.error_kind else "line"


def _content_changed(run: TaskRun) -> bool:
    return any(run.latest.get(doc_id) != before for doc_id, before in run.snapshots.items())


def _build_preview(run: TaskRun) -> PendingPreview:
    target = run.task.target_document_id
    changed = [d for d, before in run.snapshots.items() if run.latest.get(d) != before]
    doc_id = target if target in changed else changed[0]
    original = run.snapshots[doc_id]
    if doc_id == target and run.original_content is not None:
        original = run.original_content
    return PendingPreview(
        document_id=doc_id,
        original_content=original,
        modified_content=run.latest[doc_id],
    )
