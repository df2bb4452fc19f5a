"""Advisory task plan tracking.

The plan is produced once per run by a best-effort planning prompt. Executed
operations tick off the first open step of a matching category. Nothing here
gates execution.
"""

from __future__ import annotations

from typing import Optional

from docpilot.core.models import PlannedStep, StepCategory, TaskPlan


class TaskPlanTracker:
    def __init__(self, plan: Optional[TaskPlan] = None):
        self.plan = plan

    @property
    def has_plan(self) -> bool:
        return self.plan is not None and bool(self.plan.steps)

    def mark_operation(self, category: Optional[StepCategory]) -> Optional[PlannedStep]:
        """Complete the first open step matching the operation's category.

        Reads match ``read`` steps; writes and edits match either ``write``
        or ``edit`` steps.
        """
        if not self.has_plan or category is None:
            return None
        if category is StepCategory.READ:
            wanted = {StepCategory.READ}
        else:
            wanted = {StepCategory.WRITE, StepCategory.EDIT}
        for step in self.plan.steps:
            if not step.is_complete and step.category in wanted:
                step.is_complete = True
                return step
        return None

    def status_lines(self) -> list[str]:
        if not self.has_plan:
            return []
        return [
            f"[{'x' if s.is_complete else ' '}] {s.id}. ({s.category.value}) {s.description}"
            for s in self.plan.steps
        ]
