"""Tests for docpilot/orchestrator/events.py."""

import json
from pathlib import Path

from docpilot.core.models import ExecutionResult, LogEntry, Task, TaskSummary, WorkflowState
from docpilot.orchestrator.events import EventSink, FanoutEventSink, JsonlEventSink


class RecordingSink(EventSink):
    def __init__(self):
        self.states = []
        self.texts = []

    def state_changed(self, state):
        self.states.append(state)

    def ai_summary_ready(self, text):
        self.texts.append(text)


class ExplodingSink(EventSink):
    def state_changed(self, state):
        raise RuntimeError("sink down")


class TestFanoutEventSink:
    def test_raising_sink_is_skipped(self):
        recorder = RecordingSink()
        fanout = FanoutEventSink([ExplodingSink(), recorder])
        fanout.state_changed(WorkflowState.ANALYZING)
        fanout.ai_summary_ready("done")
        assert recorder.states == [WorkflowState.ANALYZING]
        assert recorder.texts == ["done"]

    def test_base_sink_is_noop(self):
        sink = EventSink()
        sink.log(LogEntry(level="info", message="m"))
        sink.pending_confirmation("a", "b")


class TestJsonlEventSink:
    def test_writes_events_and_metrics(self, tmp_path: Path):
        events = tmp_path / "out" / "events.jsonl"
        metrics = tmp_path / "out" / "metrics.json"
        sink = JsonlEventSink(jsonl_path=events, metrics_path=metrics)

        sink.state_changed(WorkflowState.ANALYZING)
        sink.operation_completed(ExecutionResult(operation="appendToEnd", success=True))
        sink.summary_ready(TaskSummary(task=Task(user_request="r", target_document_id="d")))

        lines = [json.loads(line) for line in events.read_text().splitlines()]
        assert [r["event_type"] for r in lines] == ["state_changed", "operation_completed", "summary_ready"]
        assert lines[0]["payload"] == {"state": "analyzing"}
        assert lines[1]["payload"]["operation"] == "appendToEnd"

        snapshot = json.loads(metrics.read_text())
        assert snapshot["counters"] == {"operation_completed": 1, "state_changed": 1, "summary_ready": 1}

    def test_no_metrics_path(self, tmp_path: Path):
        sink = JsonlEventSink(jsonl_path=tmp_path / "e.jsonl")
        sink.flush_metrics()
        sink.pending_confirmation("old", "new")
        record = json.loads((tmp_path / "e.jsonl").read_text())
        assert record["payload"] == {"original_content": "old", "modified_content": "new"}
