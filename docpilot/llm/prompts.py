"""Prompt builders for the orchestration loop.

Each prompt has a built-in default that can be overridden by a file in
config/prompts/. Placeholders use ``{name}`` and are filled with
str.replace so the JSON examples in the templates need no escaping.
"""

from __future__ import annotations

from typing import Iterable, Optional

from docpilot.core.config import PromptLoader
from docpilot.core.models import ExecutionResult, Task


_DEFAULT_ANALYSIS_PROMPT = """\
You are an efficient document editing assistant. Decide the single next
operation needed to satisfy the user's request.

Available operations:
{function_docs}

User request: {user_request}
Target document ID: {document_id}
{document_section}
Documents already fetched this task: {cached_ids}
Iteration: {iteration}/{max_iterations}
{plan_section}
Rules:
1. If the document content is shown above, edit directly; do not fetch it again.
2. If a single operation finishes the task, set "isComplete": true with it.
3. After an edit that satisfies the request, mark the task complete.
4. Avoid redundant operations.
5. Line numbers start at 1 and ranges are inclusive.

Respond with one JSON object and nothing else.

When an operation is needed:
{
  "message": "short analysis",
  "needsAction": true,
  "isComplete": false,
  "operation": {"option": "operationName", "args": ["arg1", "arg2"]}
}

When the task is done:
{
  "message": "why the task is complete",
  "needsAction": false,
  "isComplete": true
}"""

_DEFAULT_VALIDATION_PROMPT = """\
Check whether the current document content satisfies the user's request.

User request: {user_request}

Current document content:
```
{document_content}
```

Answer with one JSON object and nothing else:
{
  "needsMoreWork": true or false,
  "reason": "short explanation",
  "suggestion": "what is still missing, if anything"
}

Set needsMoreWork to false only if the request is fully satisfied."""

_DEFAULT_PLAN_PROMPT = """\
Break the user's document request into a short ordered list of steps.

User request: {user_request}
Target document ID: {document_id}

Each step has a type: "read" (fetch or list documents), "write" (append or
replace content) or "edit" (delete or replace a line range).

Answer with one JSON object and nothing else:
{
  "taskMessage": "one-line restatement of the task",
  "tasks": [
    {"id": "1", "description": "step description", "type": "read"}
  ]
}"""

_DEFAULT_WRITE_REQUIRED_PROMPT = """\
The request asks for a summary of several documents. Their content has been
read, but nothing has been written yet, so the task is not complete.

User request: {user_request}
Target document ID: {document_id}

Documents read:
{read_documents}

Write the result into the target document now with replaceWholeContent or
appendToEnd. Respond with one JSON object and nothing else:
{
  "message": "short analysis",
  "needsAction": true,
  "isComplete": true,
  "operation": {"option": "replaceWholeContent", "args": ["{document_id}", "new content"]}
}"""

_DEFAULT_SUMMARY_PROMPT = """\
Write a concise summary of the following automated editing run.

User request: {user_request}
Iterations: {iterations}
Operations executed: {operation_count}

Operation log:
{operation_lines}
{content_delta}

Summarize in 2-3 sentences what was done and whether the request was met.
Output only the summary text."""

_CONTENT_PREVIEW_CHARS = 2000


class PromptBuilder:
    """Renders the prompts sent to the model during one task run."""

    def __init__(self, prompt_loader: Optional[PromptLoader] = None):
        self._prompt_loader = prompt_loader or PromptLoader()

    def _template(self, name: str, default: str) -> str:
        return self._prompt_loader.load(name, default=default)

    def analysis(
        self,
        function_docs: str,
        task: Task,
        document_content: Optional[str],
        cached_ids: Iterable[str],
        max_iterations: int,
        plan_lines: Optional[list[str]] = None,
    ) -> str:
        if document_content is not None:
            document_section = f"\nCurrent document content:\n```\n{document_content}\n```\n"
        else:
            document_section = (
                "\nCurrent document content: not fetched yet; "
                "call getDocumentById first.\n"
            )
        cached = ", ".join(cached_ids) or "(none)"
        plan_section = ""
        if plan_lines:
            plan_section = "\nPlan progress:\n" + "\n".join(plan_lines) + "\n"
        return (
            self._template("analysis.txt", _DEFAULT_ANALYSIS_PROMPT)
            .replace("{function_docs}", function_docs)
            .replace("{user_request}", task.user_request)
            .replace("{document_id}", task.target_document_id)
            .replace("{document_section}", document_section)
            .replace("{cached_ids}", cached)
            .replace("{iteration}", str(task.iteration_count))
            .replace("{max_iterations}", str(max_iterations))
            .replace("{plan_section}", plan_section)
        )

    def validation(self, user_request: str, document_content: str) -> str:
        return (
            self._template("validation.txt", _DEFAULT_VALIDATION_PROMPT)
            .replace("{user_request}", user_request)
            .replace("{document_content}", document_content)
        )

    def plan(self, user_request: str, document_id: str) -> str:
        return (
            self._template("plan.txt", _DEFAULT_PLAN_PROMPT)
            .replace("{user_request}", user_request)
            .replace("{document_id}", document_id)
        )

    def write_required(self, task: Task, read_documents: dict[str, str]) -> str:
        """Corrective prompt for a summarize request that read but never wrote."""
        sections = []
        for doc_id, content in read_documents.items():
            preview = content[:_CONTENT_PREVIEW_CHARS]
            sections.append(f"### {doc_id}\n{preview}")
        return (
            self._template("write_required.txt", _DEFAULT_WRITE_REQUIRED_PROMPT)
            .replace("{user_request}", task.user_request)
            .replace("{document_id}", task.target_document_id)
            .replace("{read_documents}", "\n\n".join(sections) or "(none)")
        )

    def summary(
        self,
        task: Task,
        operations: list[ExecutionResult],
        original_length: int,
        current_length: int,
        changed: bool,
    ) -> str:
        lines = []
        for i, op in enumerate(operations, 1):
            if not op.success or op.rejected:
                continue
            if op.new_content is not None:
                lines.append(f"{i}. {op.operation}: content modified")
            else:
                lines.append(f"{i}. {op.operation}: ok")
        if changed:
            content_delta = (
                f"\nOriginal length: {original_length} characters\n"
                f"Modified length: {current_length} characters"
            )
        else:
            content_delta = "\nContent unchanged"
        return (
            self._template("summary.txt", _DEFAULT_SUMMARY_PROMPT)
            .replace("{user_request}", task.user_request)
            .replace("{iterations}", str(task.iteration_count))
            .replace("{operation_count}", str(len(operations)))
            .replace("{operation_lines}", "\n".join(lines) or "(no operations)")
            .replace("{content_delta}", content_delta)
        )
