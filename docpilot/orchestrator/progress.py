"""Progress heuristic for the orchestration loop.

Scores each executed operation and decides when the loop should pause to
ask the model whether the request is satisfied. The constants live in
ProgressConfig; the score is an approximation, never proof of completion.
"""

from __future__ import annotations

import logging
from typing import Optional

from docpilot.core.config import ProgressConfig
from docpilot.core.models import ProgressState, StepCategory
from docpilot.tools.registry import GET_DOCUMENT_BY_ID

logger = logging.getLogger("docpilot.orchestrator.progress")


class ProgressTracker:
    def __init__(self, config: Optional[ProgressConfig] = None):
        self.config = config or ProgressConfig()
        self.state = ProgressState()

    def update(self, operation: Optional[str], category: Optional[StepCategory], success: bool) -> None:
        """Score one executed operation."""
        cfg = self.config
        st = self.state
        if category is StepCategory.READ:
            st.consecutive_read_count += 1
            st.score += cfg.read_increment
            if operation == GET_DOCUMENT_BY_ID and st.last_operation == operation:
                st.score -= cfg.repeated_read_penalty
        elif category is not None:
            st.consecutive_read_count = 0
            st.score += cfg.write_increment
            if success:
                st.score += cfg.success_bonus
        st.last_operation = operation
        logger.debug(
            "Progress: score=%.1f consecutive_reads=%d last=%s",
            st.score, st.consecutive_read_count, operation,
        )

    def termination_reason(self, has_content: bool) -> Optional[str]:
        """Why the loop should stop to validate, or None to keep going."""
        st = self.state
        if st.score >= self.config.required_score:
            return "progress threshold reached"
        if has_content and st.consecutive_read_count > self.config.read_streak_cap:
            return "redundant read operations"
        if st.score < 0:
            return "negative progress score"
        return None

    def can_validate(self, max_rounds: int) -> bool:
        return self.state.validation_round_count < max_rounds

    def record_validation(self, needs_more_work: bool) -> float:
        """Count a validation round; on "needs more work" lower the score.

        Returns:
            The score reduction applied (0 when satisfied).
        """
        st = self.state
        st.validation_round_count += 1
        if not needs_more_work:
            return 0.0
        reduction = float(max(1, self.config.validation_penalty_base - st.validation_round_count + 1))
        st.score = max(0.0, st.score - reduction)
        st.consecutive_read_count = 0
        return reduction

    def record_retry(self) -> int:
        self.state.retry_count += 1
        return self.state.retry_count

    def reset_retries(self) -> None:
        self.state.retry_count = 0
