from __future__ import annotations
from datetime import datetime, time
from loguru import logger

from config.settings import ReminderSettings

from .evaluator import ExecutionActionEvaluator
from .models import ActionTransition, ExecutionAction, ReminderCandidate, ReminderDecision, ReminderStyle
from .ports import CooldownRepository, ExecutionHistoryRepository, PreferencesRepository

PHRASES = {
    ExecutionAction.EXECUTE: "Running {action} for you now.",
    ExecutionAction.ASK: "Would you like me to {action}?",
    ExecutionAction.SUGGEST: "You might want to {action}.",
}


class ReminderPolicyEvaluator:
    """Decides whether a learned transition is mature enough to schedule a reminder."""

    def __init__(self, settings: ReminderSettings | None = None):
        self.settings = settings or ReminderSettings()

    def should_create_reminder(self, transition: ActionTransition, context_bucket: str) -> bool:
        if transition.occurrence_count < self.settings.minimum_occurrences:
            return False
        if transition.confidence < self.settings.minimum_confidence:
            return False
        if transition.context_bucket != context_bucket:
            return False
        return transition.average_delay is not None


class ReminderEvaluationService:
    """Runs the per-person gates for a due candidate and builds the decision."""

    def __init__(
        self,
        preferences: PreferencesRepository,
        cooldowns: CooldownRepository,
        history: ExecutionHistoryRepository,
        evaluator: ExecutionActionEvaluator | None = None,
    ):
        self.preferences = preferences
        self.cooldowns = cooldowns
        self.history = history
        self.evaluator = evaluator or ExecutionActionEvaluator()

    def evaluate(self, candidate: ReminderCandidate, now: datetime, is_safe_to_auto_execute: bool = False) -> ReminderDecision:
        prefs = self.preferences.get_preferences(candidate.person_id)
        if not prefs.enabled:
            return self._silent("Reminders are disabled for this person", candidate)

        cooldown = self.cooldowns.active_cooldown(candidate.person_id, candidate.suggested_action, now)
        if cooldown is not None:
            return self._silent(f"Action is in cooldown until {cooldown.suppressed_until_utc.isoformat()}", candidate)

        start_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        if self.history.count_executed_since(candidate.person_id, start_of_day) >= prefs.daily_limit:
            return self._silent("Daily reminder limit reached", candidate)

        last = self.history.last_executed_at(candidate.person_id)
        if last is not None and now - last < prefs.minimum_interval:
            return self._silent("Minimum interval between reminders not elapsed", candidate)

        action = self.evaluator.evaluate(candidate.confidence, is_safe_to_auto_execute, prefs.allow_auto_execute)
        phrase = PHRASES[action].format(action=candidate.suggested_action)
        should_speak = candidate.style != ReminderStyle.SILENT
        logger.debug(f"Candidate {candidate.id} -> {action.value} (confidence {candidate.confidence:.2f})")
        return ReminderDecision(
            should_speak=should_speak,
            reason=f"Confidence {candidate.confidence:.2f} -> {action.value}",
            confidence_level=candidate.confidence,
            execution_action=action,
            natural_language_phrase=phrase if should_speak else None,
        )

    @staticmethod
    def _silent(reason: str, candidate: ReminderCandidate) -> ReminderDecision:
        return ReminderDecision(should_speak=False, reason=reason, confidence_level=candidate.confidence)
