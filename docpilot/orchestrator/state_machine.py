"""Workflow state machine for docpilot.

Manages legal state transitions for the orchestrator and enforces the
state graph:
  IDLE → INITIALIZING → ANALYZING ⇄ EXECUTING → SUMMARIZING
       → COMPLETED | ERROR | PENDING_CONFIRMATION
PENDING_CONFIRMATION moves to COMPLETED (via SUMMARIZING) on confirm and
back to IDLE on reject.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from docpilot.core.exceptions import WorkflowStateError
from docpilot.core.models import WorkflowState

logger = logging.getLogger("docpilot.orchestrator.state_machine")

S = WorkflowState

# Legal state transitions: each key maps to the set of states it can move to
VALID_TRANSITIONS: dict[WorkflowState, set[WorkflowState]] = {
    S.IDLE: {S.INITIALIZING},
    S.INITIALIZING: {S.IDLE, S.ANALYZING, S.SUMMARIZING, S.ERROR},
    S.ANALYZING: {S.ANALYZING, S.EXECUTING, S.SUMMARIZING, S.ERROR},
    S.EXECUTING: {S.ANALYZING, S.SUMMARIZING, S.ERROR},
    S.SUMMARIZING: {S.COMPLETED, S.PENDING_CONFIRMATION, S.ERROR},
    S.PENDING_CONFIRMATION: {S.SUMMARIZING, S.COMPLETED, S.IDLE},
    S.COMPLETED: {S.INITIALIZING},
    S.ERROR: {S.INITIALIZING},
}

# States in which no task is in flight and a new one may start.
RESTING_STATES: frozenset[WorkflowState] = frozenset({S.IDLE, S.COMPLETED, S.ERROR})


class WorkflowStateMachine:
    """Holds the current state and validates every move."""

    def __init__(
        self,
        on_change: Optional[Callable[[WorkflowState], None]] = None,
        initial: WorkflowState = WorkflowState.IDLE,
    ):
        self.state = initial
        self._on_change = on_change

    def can_transition(self, from_state: WorkflowState, to_state: WorkflowState) -> bool:
        return to_state in VALID_TRANSITIONS.get(from_state, set())

    def transition(self, new_state: WorkflowState, reason: Optional[str] = None) -> WorkflowState:
        """Move to a new state.

        Raises:
            WorkflowStateError: If the transition is not allowed.
        """
        if not self.can_transition(self.state, new_state):
            raise WorkflowStateError(
                f"Invalid transition: {self.state.value} → {new_state.value}"
            )
        old_state = self.state
        self.state = new_state
        if old_state is not new_state:
            log_msg = f"Workflow: {old_state.value} → {new_state.value}"
            if reason:
                log_msg += f" ({reason})"
            logger.info(log_msg)
        if self._on_change is not None:
            self._on_change(new_state)
        return new_state

    def fail(self, reason: str) -> WorkflowState:
        """Move to ERROR from any non-resting state."""
        if self.state is S.ERROR:
            return self.state
        if S.ERROR not in VALID_TRANSITIONS.get(self.state, set()):
            # Pending/resting states have no ERROR edge; force it so the failure is visible.
            logger.warning("Forcing ERROR from %s (%s)", self.state.value, reason)
            self.state = S.ERROR
            if self._on_change is not None:
                self._on_change(S.ERROR)
            return self.state
        return self.transition(S.ERROR, reason=reason)

    @property
    def is_resting(self) -> bool:
        return self.state in RESTING_STATES
