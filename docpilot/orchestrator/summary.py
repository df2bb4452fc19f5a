"""Run summaries: the structured TaskSummary and the model-written recap."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Callable, Optional

from docpilot.core.exceptions import TransportError
from docpilot.core.models import DecisionRecord, ExecutionResult, LogEntry, Task, TaskSummary

logger = logging.getLogger("docpilot.orchestrator.summary")


def build_task_summary(
    task: Task,
    operations: list[ExecutionResult],
    decisions: list[DecisionRecord],
    logs: list[LogEntry],
    success: bool,
) -> TaskSummary:
    duration = (datetime.now(UTC) - task.start_time).total_seconds()
    return TaskSummary(
        task=task.model_copy(),
        duration_seconds=round(duration, 3),
        iterations=task.iteration_count,
        operations=list(operations),
        decisions=list(decisions),
        logs=list(logs),
        success=success,
    )


def request_ai_summary(complete: Callable[[str], str], prompt: str) -> Optional[str]:
    """Ask the model for a short recap of the run.

    Returns None when the call fails or the model answers with nothing.
    """
    try:
        text = complete(prompt)
    except TransportError as e:
        logger.warning("AI summary call failed: %s", e)
        return None
    text = (text or "").strip()
    return text or None
