from __future__ import annotations

from .models import ExecutionAction


class ExecutionActionEvaluator:
    """Maps a confidence and two permission flags to Suggest / Ask / Execute."""

    def __init__(self, execute_threshold: float = 0.95, ask_threshold: float = 0.5):
        self.execute_threshold = execute_threshold
        self.ask_threshold = ask_threshold

    def evaluate(
        self,
        confidence: float,
        is_safe_to_auto_execute: bool,
        user_allows_auto_execute: bool,
        threshold: float | None = None,
    ) -> ExecutionAction:
        threshold = self.execute_threshold if threshold is None else threshold
        if confidence < self.ask_threshold:
            return ExecutionAction.SUGGEST
        if confidence >= threshold and is_safe_to_auto_execute and user_allows_auto_execute:
            return ExecutionAction.EXECUTE
        return ExecutionAction.ASK
