"""Response parsing for model output.

Pulls one JSON object (decision, validation verdict or plan) out of free-form
model text, repairing the usual damage: trailing or doubled commas, raw
newlines inside strings, ``...`` truncation markers, unterminated strings and
unclosed brackets. Parsing degrades through three tiers and never raises:

1. repaired span from the first ``{`` to the last ``}``
2. first non-greedy ``{...}`` match in the raw text
3. keyword heuristics over the lowercased text
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from docpilot.core.exceptions import ParseError
from docpilot.core.models import (
    AnalysisDecision,
    OperationDescriptor,
    PlannedStep,
    StepCategory,
    TaskPlan,
    ValidationVerdict,
)

logger = logging.getLogger("docpilot.llm.response_parser")

_FIRST_OBJECT = re.compile(r"\{[\s\S]*?\}")
_OPTION_FIELD = re.compile(r'"option"\s*:\s*"([^"]+)"')
_ARGS_FIELD = re.compile(r'"args"\s*:\s*(\[[^\]]*\])')
_NEEDS_ACTION_TRUE = re.compile(r'"?needsaction"?\s*:\s*true')
_NEEDS_ACTION_FALSE = re.compile(r'"?needsaction"?\s*:\s*false')
_IS_COMPLETE_TRUE = re.compile(r'"?iscomplete"?\s*:\s*true')
_NEEDS_MORE_WORK_TRUE = re.compile(r'"?needsmorework"?\s*:\s*true')
_NEEDS_MORE_WORK_FALSE = re.compile(r'"?needsmorework"?\s*:\s*false')
_DANGLING_KEY = re.compile(r'"(?:[^"\\]|\\.)*"\s*:$')
_TRAILING_KEY = re.compile(r'(?<=[{,])"(?:[^"\\]|\\.)*"$')

COMPLETE_PHRASES: tuple[str, ...] = (
    "task complete",
    "task is complete",
    "task has been completed",
    "request is satisfied",
    "requirements are met",
    "no further action",
)

MORE_WORK_PHRASES: tuple[str, ...] = (
    "needs more work",
    "more work is needed",
    "not yet satisfied",
    "not satisfied",
    "still needs",
    "still need to",
)


# ---------------------------------------------------------------------------
# JSON repair
# ---------------------------------------------------------------------------

def locate_json_span(text: str) -> Optional[str]:
    """Text from the first ``{`` to the last ``}``.

    Output truncated before any closing brace yields the rest of the text,
    which repair_json then closes.
    """
    first = text.find("{")
    if first == -1:
        return None
    last = text.rfind("}")
    if last <= first:
        return text[first:]
    return text[first:last + 1]


def repair_json(span: str) -> str:
    """Relax a near-JSON object into strict JSON text.

    Outside strings: whitespace and ``...`` are dropped, a comma directly
    after ``{``, ``[`` or another comma is dropped, and a dangling comma is
    removed before a closing bracket. Inside strings raw newlines and tabs
    are escaped. At the end any open string and brackets are closed.
    """
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escape_next = False
    last_sig = ""
    i = 0
    n = len(span)

    while i < n:
        ch = span[i]

        if in_string:
            if escape_next:
                out.append(ch)
                escape_next = False
            elif ch == "\\":
                out.append(ch)
                escape_next = True
            elif ch == '"':
                out.append(ch)
                in_string = False
                last_sig = ch
            elif ch == "\n":
                out.append("\\n")
            elif ch == "\t":
                out.append("\\t")
            elif ch != "\r":
                out.append(ch)
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            last_sig = ch
        elif ch in "{[":
            stack.append(ch)
            out.append(ch)
            last_sig = ch
        elif ch in "}]":
            if last_sig == ",":
                out.pop()
            if stack:
                stack.pop()
            out.append(ch)
            last_sig = ch
        elif ch == ",":
            if last_sig not in ("{", "[", ","):
                out.append(ch)
                last_sig = ch
        elif span.startswith("...", i):
            i += 3
            continue
        elif ch == "…" or ch.isspace():
            pass
        else:
            out.append(ch)
            last_sig = ch
        i += 1

    if in_string:
        if escape_next:
            out.pop()
        out.append('"')

    result = "".join(out)
    result = _trim_dangling_tail(result, stack)
    for bracket in reversed(stack):
        result += "}" if bracket == "{" else "]"
    return result


def _trim_dangling_tail(result: str, stack: list[str]) -> str:
    """Drop a trailing comma, or a key that never received its value."""
    result = result.rstrip(",")
    if result.endswith(":"):
        result = _DANGLING_KEY.sub("", result).rstrip(",")
    elif stack and stack[-1] == "{" and _TRAILING_KEY.search(result):
        result = _TRAILING_KEY.sub("", result).rstrip(",")
    return result


def _strict_parse(text: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ParseError(f"expected a JSON object, got {type(value).__name__}")
    return value


def extract_json_object(text: Optional[str]) -> Optional[dict[str, Any]]:
    """Extract one JSON object from model text, or None if no tier yields one."""
    if not text:
        return None

    span = locate_json_span(text)
    if span is not None:
        repaired = repair_json(span)
        try:
            return _strict_parse(repaired)
        except ParseError as e:
            logger.debug("Repaired JSON did not parse (%s): %.200s", e, repaired)

    match = _FIRST_OBJECT.search(text)
    if match:
        try:
            return _strict_parse(match.group(0))
        except ParseError:
            logger.debug("First {...} match did not parse either")

    return None


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return False


def _operation_from(value: Any, outer: dict[str, Any]) -> Optional[OperationDescriptor]:
    if isinstance(value, dict):
        name = value.get("option") or value.get("name") or value.get("function")
        args = value.get("args", [])
    elif isinstance(value, str):
        name = value
        args = outer.get("args", [])
    else:
        return None
    if not isinstance(name, str) or not name.strip():
        return None
    return OperationDescriptor(name=name.strip(), args=args if args is not None else [])


def decision_from_object(obj: dict[str, Any]) -> AnalysisDecision:
    operation = _operation_from(obj.get("operation"), obj)
    if "needsAction" in obj:
        needs_action = _as_bool(obj["needsAction"])
    else:
        needs_action = operation is not None
    return AnalysisDecision(
        message=str(obj.get("message") or ""),
        needs_action=needs_action,
        is_complete=_as_bool(obj.get("isComplete")),
        operation=operation,
    )


def fallback_decision(text: str) -> AnalysisDecision:
    """Approximate a decision from keywords when no JSON object parses."""
    lower = text.lower()

    operation = None
    op_match = _OPTION_FIELD.search(text)
    if op_match:
        args: Any = []
        args_match = _ARGS_FIELD.search(text)
        if args_match:
            try:
                args = json.loads(args_match.group(1))
            except json.JSONDecodeError:
                args = []
        operation = OperationDescriptor(name=op_match.group(1), args=args)

    needs_action = operation is not None and not _NEEDS_ACTION_FALSE.search(lower)
    is_complete = bool(_IS_COMPLETE_TRUE.search(lower)) or any(p in lower for p in COMPLETE_PHRASES)

    return AnalysisDecision(
        message="parsed with fallback heuristics",
        needs_action=needs_action,
        is_complete=is_complete or not needs_action,
        operation=operation if needs_action else None,
        via_fallback=True,
    )


def parse_decision(text: Optional[str]) -> AnalysisDecision:
    """Interpret one analysis response. Never raises."""
    obj = extract_json_object(text)
    if obj is not None:
        return decision_from_object(obj)
    logger.info("Using fallback analysis parsing")
    return fallback_decision(text or "")


# ---------------------------------------------------------------------------
# Validation verdict
# ---------------------------------------------------------------------------

def fallback_validation(text: str) -> ValidationVerdict:
    lower = text.lower()
    if _NEEDS_MORE_WORK_FALSE.search(lower):
        needs_more_work = False
    else:
        needs_more_work = bool(_NEEDS_MORE_WORK_TRUE.search(lower)) or any(
            p in lower for p in MORE_WORK_PHRASES
        )
    reason = (
        "fallback parsing judged that more work is needed"
        if needs_more_work
        else "fallback parsing judged the task complete"
    )
    return ValidationVerdict(needs_more_work=needs_more_work, reason=reason, via_fallback=True)


def parse_validation(text: Optional[str]) -> ValidationVerdict:
    """Interpret one validation response. Never raises."""
    obj = extract_json_object(text)
    if obj is not None:
        return ValidationVerdict(
            needs_more_work=_as_bool(obj.get("needsMoreWork")),
            reason=str(obj.get("reason") or "validation complete"),
        )
    logger.info("Using fallback validation parsing")
    return fallback_validation(text or "")


# ---------------------------------------------------------------------------
# Task plan
# ---------------------------------------------------------------------------

def _category(value: Any) -> StepCategory:
    if isinstance(value, str):
        try:
            return StepCategory(value.strip().lower())
        except ValueError:
            pass
    return StepCategory.EDIT


def parse_plan(text: Optional[str]) -> Optional[TaskPlan]:
    """Interpret a planning response; None when no usable step list is found."""
    obj = extract_json_object(text)
    if obj is None or not isinstance(obj.get("tasks"), list):
        return None

    steps: list[PlannedStep] = []
    for index, item in enumerate(obj["tasks"], start=1):
        if isinstance(item, dict):
            steps.append(PlannedStep(
                id=str(item.get("id", index)),
                description=str(item.get("description") or ""),
                category=_category(item.get("type")),
            ))
        elif isinstance(item, str) and item.strip():
            steps.append(PlannedStep(id=str(index), description=item.strip()))
    if not steps:
        return None
    return TaskPlan(task_message=str(obj.get("taskMessage") or ""), steps=steps)
