"""Push-only observability channel for the orchestrator.

Nothing an EventSink does feeds back into control flow. Subclass EventSink
and override the channels you care about; the defaults are no-ops.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from docpilot.core.models import (
    DecisionRecord,
    ExecutionResult,
    LogEntry,
    TaskPlan,
    TaskSummary,
    WorkflowState,
)

logger = logging.getLogger("docpilot.orchestrator.events")


class EventSink:
    def state_changed(self, state: WorkflowState) -> None:
        pass

    def log(self, entry: LogEntry) -> None:
        pass

    def operation_completed(self, result: ExecutionResult) -> None:
        pass

    def decision_recorded(self, decision: DecisionRecord) -> None:
        pass

    def task_plan_ready(self, plan: TaskPlan) -> None:
        pass

    def task_plan_updated(self, plan: TaskPlan) -> None:
        pass

    def pending_confirmation(self, original_content: str, modified_content: str) -> None:
        pass

    def summary_ready(self, summary: TaskSummary) -> None:
        pass

    def ai_summary_ready(self, text: str) -> None:
        pass


class FanoutEventSink(EventSink):
    """Forwards every event to each wrapped sink.

    A sink that raises is logged and skipped.
    """

    def __init__(self, sinks: Iterable[EventSink]):
        self.sinks = list(sinks)

    def _each(self, method: str, *args: Any) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, method)(*args)
            except Exception as e:
                logger.warning("Event sink %s.%s failed: %s", type(sink).__name__, method, e)

    def state_changed(self, state: WorkflowState) -> None:
        self._each("state_changed", state)

    def log(self, entry: LogEntry) -> None:
        self._each("log", entry)

    def operation_completed(self, result: ExecutionResult) -> None:
        self._each("operation_completed", result)

    def decision_recorded(self, decision: DecisionRecord) -> None:
        self._each("decision_recorded", decision)

    def task_plan_ready(self, plan: TaskPlan) -> None:
        self._each("task_plan_ready", plan)

    def task_plan_updated(self, plan: TaskPlan) -> None:
        self._each("task_plan_updated", plan)

    def pending_confirmation(self, original_content: str, modified_content: str) -> None:
        self._each("pending_confirmation", original_content, modified_content)

    def summary_ready(self, summary: TaskSummary) -> None:
        self._each("summary_ready", summary)

    def ai_summary_ready(self, text: str) -> None:
        self._each("ai_summary_ready", text)


@dataclass
class JsonlEventSink(EventSink):
    """Writes JSONL events and aggregate counters."""

    jsonl_path: Path
    metrics_path: Optional[Path] = None
    counters: dict[str, int] = field(default_factory=dict)

    def emit_event(self, event_type: str, payload: dict) -> None:
        self.counters[event_type] = self.counters.get(event_type, 0) + 1
        record = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event_type": event_type,
            "payload": payload,
        }
        self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        with self.jsonl_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=True, default=str) + "\n")

    def flush_metrics(self) -> None:
        if self.metrics_path is None:
            return
        self.metrics_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = {
            "timestamp": datetime.now(UTC).isoformat(),
            "counters": dict(sorted(self.counters.items())),
        }
        self.metrics_path.write_text(
            json.dumps(snapshot, indent=2, ensure_ascii=True),
            encoding="utf-8",
        )

    def state_changed(self, state: WorkflowState) -> None:
        self.emit_event("state_changed", {"state": state.value})

    def log(self, entry: LogEntry) -> None:
        self.emit_event("log", entry.model_dump(mode="json"))

    def operation_completed(self, result: ExecutionResult) -> None:
        self.emit_event("operation_completed", result.model_dump(mode="json"))

    def decision_recorded(self, decision: DecisionRecord) -> None:
        self.emit_event("decision_recorded", decision.model_dump(mode="json"))

    def task_plan_ready(self, plan: TaskPlan) -> None:
        self.emit_event("task_plan_ready", plan.model_dump(mode="json"))

    def task_plan_updated(self, plan: TaskPlan) -> None:
        self.emit_event("task_plan_updated", plan.model_dump(mode="json"))

    def pending_confirmation(self, original_content: str, modified_content: str) -> None:
        self.emit_event(
            "pending_confirmation",
            {"original_content": original_content, "modified_content": modified_content},
        )

    def summary_ready(self, summary: TaskSummary) -> None:
        self.emit_event("summary_ready", summary.model_dump(mode="json"))
        self.flush_metrics()

    def ai_summary_ready(self, text: str) -> None:
        self.emit_event("ai_summary_ready", {"text": text})
