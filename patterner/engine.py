from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List
from loguru import logger

from config.settings import PatternerSettings

from .evaluator import ExecutionActionEvaluator
from .models import (
    ActionEvent,
    ExecutionAction,
    ExecutionRecord,
    FeedbackType,
    ProbabilityAction,
    ReminderCandidate,
    ReminderCooldown,
    ReminderStyle,
    UserReminderPreferences,
    as_utc,
    utcnow,
)
from .occurrence import OccurrencePatternParser
from .policy import ReminderEvaluationService
from .ports import PatternStore
from .routines import RoutineLearningService
from .scheduler import ReminderScheduler
from .storage import PatternStorage
from .transitions import TransitionLearner
from .workers import (
    CandidateSchedulerWorker,
    EventCleanupWorker,
    IntervalWorker,
    TransitionDecayWorker,
    WindowCloserWorker,
)

# learning rates applied when a person confirms a reminder
POSITIVE_FEEDBACK_ALPHA = 0.1
POSITIVE_FEEDBACK_BETA = 0.1


@dataclass
class IngestResult:
    event_id: str
    scheduled_candidate_ids: List[str] = field(default_factory=list)
    related_reminder_id: str | None = None


@dataclass
class ProcessResult:
    executed: bool
    should_speak: bool = False
    phrase: str | None = None
    reason: str = ""
    found: bool = True
    follow_up_candidate_id: str | None = None


class PatternEngine:
    """Entry point: ingest events, process due candidates, take feedback."""

    def __init__(self, settings: PatternerSettings | None = None, storage: PatternStore | None = None):
        self.settings = settings or PatternerSettings()
        self.storage: PatternStore = storage or PatternStorage(self.settings.db_path)
        s = self.settings
        self.learner = TransitionLearner(self.storage, self.storage, s.learning)
        self.routines = RoutineLearningService(self.storage, self.storage, self.storage, self.storage, s)
        self.scheduler = ReminderScheduler(self.storage, self.storage, self.routines, s.reminders)
        self.evaluator = ExecutionActionEvaluator(s.policies.execute_auto_threshold, s.policies.ask_threshold)
        self.evaluation = ReminderEvaluationService(self.storage, self.storage, self.storage, self.evaluator)
        self.parser = OccurrencePatternParser()
        self._workers: List[IntervalWorker] = []

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> "PatternEngine":
        return cls(PatternerSettings.from_dict(config))

    # --- events ---
    def ingest_event(self, event: ActionEvent) -> IngestResult:
        self.storage.add_event(event)
        if event.is_intent:
            _, scheduled = self.routines.handle_intent(event)
            return IngestResult(event.id, scheduled, None)

        self.learner.update_transitions(event)
        related = self.routines.process_observed_event(event)
        scheduled = self.scheduler.schedule_candidates_for_event(event)
        if event.probability_action is not None and event.probability_value is not None:
            self._adjust_probability(event)
        return IngestResult(event.id, scheduled, related)

    def _adjust_probability(self, event: ActionEvent):
        candidate = self.storage.find_scheduled_candidate(event.person_id, event.action_type)
        if candidate is None:
            return
        candidate.update_confidence(event.probability_value, event.probability_action)
        self.storage.upsert_candidate(candidate)
        logger.debug(
            f"{event.probability_action.value} confidence of {candidate.id} by {event.probability_value} -> {candidate.confidence:.2f}"
        )

    # --- candidates ---
    def process_candidate(self, candidate_id: str, bypass_date_check: bool = False, now: datetime | None = None) -> ProcessResult:
        now = as_utc(now) if now else utcnow()
        candidate = self.storage.get_candidate(candidate_id)
        if candidate is None:
            return ProcessResult(executed=False, reason="not found", found=False)
        if candidate.is_terminal:
            return ProcessResult(executed=False, reason="already processed")
        if not bypass_date_check and not candidate.is_due(now):
            return ProcessResult(executed=False, reason="Candidate is not yet due")
        min_probability = self.settings.policies.minimum_probability_for_execution
        if not bypass_date_check and not candidate.is_routine and candidate.confidence < min_probability:
            return ProcessResult(
                executed=False,
                reason=f"Confidence {candidate.confidence:.2f} below minimum {min_probability:.2f}",
            )

        decision = self.evaluation.evaluate(candidate, now, self._is_safe_to_auto_execute(candidate))
        executed = decision.should_speak or decision.execution_action == ExecutionAction.EXECUTE
        if executed:
            candidate.mark_executed(decision, now)
        else:
            candidate.mark_skipped(decision, now)
        self.storage.upsert_candidate(candidate)
        self.storage.add_execution_record(ExecutionRecord(
            candidate_id=candidate.id,
            person_id=candidate.person_id,
            suggested_action=candidate.suggested_action,
            executed=executed,
            should_speak=decision.should_speak,
            reason=decision.reason,
            execution_action=decision.execution_action.value,
            recorded_at_utc=now,
        ))
        logger.info(
            f"Candidate {candidate.id} ({candidate.suggested_action}) {'executed' if executed else 'skipped'}: {decision.reason}"
        )

        follow_up = self._schedule_follow_up(candidate, now) if candidate.occurrence else None
        return ProcessResult(
            executed=executed,
            should_speak=decision.should_speak,
            phrase=decision.natural_language_phrase,
            reason=decision.reason,
            follow_up_candidate_id=follow_up.id if follow_up else None,
        )

    def _is_safe_to_auto_execute(self, candidate: ReminderCandidate) -> bool:
        reminder_id = (candidate.custom_data or {}).get('routineReminderId')
        if not reminder_id:
            return False
        reminder = self.storage.get_routine_reminder_by_id(reminder_id)
        return bool(reminder and reminder.is_safe_to_auto_execute)

    def _schedule_follow_up(self, candidate: ReminderCandidate, now: datetime) -> ReminderCandidate | None:
        next_at = self.parser.calculate_next_execution_time(candidate.occurrence, now, last_execution=now)
        if next_at is None:
            logger.warning(f"Cannot parse occurrence '{candidate.occurrence}' of {candidate.id}; not rescheduled")
            return None
        follow_up = ReminderCandidate(
            person_id=candidate.person_id,
            suggested_action=candidate.suggested_action,
            check_at_utc=next_at,
            style=candidate.style,
            confidence=candidate.confidence,
            transition_id=candidate.transition_id,
            occurrence=candidate.occurrence,
            custom_data=candidate.custom_data,
        )
        self.storage.upsert_candidate(follow_up)
        return follow_up

    def create_manual_reminder(
        self,
        person_id: str,
        suggested_action: str,
        check_at: datetime | None = None,
        style: ReminderStyle = ReminderStyle.SUGGEST,
        occurrence: str | None = None,
        confidence: float | None = None,
        custom_data: dict[str, str] | None = None,
        now: datetime | None = None,
    ) -> ReminderCandidate:
        if check_at is None and occurrence:
            check_at = self.parser.calculate_next_execution_time(occurrence, now or utcnow())
        if check_at is None:
            raise ValueError("check_at or a parseable occurrence is required")
        candidate = ReminderCandidate(
            person_id=person_id,
            suggested_action=suggested_action,
            check_at_utc=check_at,
            style=style,
            confidence=self.settings.reminders.default_confidence if confidence is None else confidence,
            occurrence=occurrence,
            custom_data=custom_data,
        )
        self.storage.upsert_candidate(candidate)
        return candidate

    def update_reminder_occurrence(self, candidate_id: str, occurrence: str | None, now: datetime | None = None) -> ReminderCandidate | None:
        candidate = self.storage.get_candidate(candidate_id)
        if candidate is None:
            return None
        candidate.occurrence = occurrence
        if occurrence:
            last = candidate.executed_at_utc or candidate.check_at_utc
            next_at = self.parser.calculate_next_execution_time(occurrence, now or utcnow(), last_execution=last)
            if next_at is not None:
                candidate.check_at_utc = next_at
        self.storage.upsert_candidate(candidate)
        return candidate

    # --- feedback ---
    def submit_feedback(self, candidate_id: str, feedback: FeedbackType | str, now: datetime | None = None) -> bool:
        candidate = self.storage.get_candidate(candidate_id)
        if candidate is None:
            return False
        feedback = FeedbackType(feedback.lower() if isinstance(feedback, str) else feedback)
        if feedback == FeedbackType.LATER:
            return True

        now = as_utc(now) if now else utcnow()
        cfg = self.settings.reminders
        transition = self.storage.get_transition_by_id(candidate.transition_id) if candidate.transition_id else None
        reminder_id = (candidate.custom_data or {}).get('routineReminderId')
        step = self.settings.routine.probability_increase_step

        if feedback == FeedbackType.YES:
            if transition is not None:
                transition.update_with_observation(timedelta(0), POSITIVE_FEEDBACK_ALPHA, POSITIVE_FEEDBACK_BETA)
                self.storage.upsert_transition(transition)
            if reminder_id:
                self.routines.handle_feedback(reminder_id, ProbabilityAction.INCREASE, step)
        else:
            if transition is not None:
                transition.reduce_confidence(cfg.negative_feedback_reduction)
                self.storage.upsert_transition(transition)
            if reminder_id:
                self.routines.handle_feedback(reminder_id, ProbabilityAction.DECREASE, step)
            self.storage.add_cooldown(ReminderCooldown(
                person_id=candidate.person_id,
                action_type=candidate.suggested_action,
                suppressed_until_utc=now + timedelta(hours=cfg.feedback_cooldown_hours),
                reason="negative feedback",
            ))
        logger.info(f"Feedback '{feedback.value}' for {candidate.suggested_action} ({candidate.person_id})")
        return True

    def set_preferences(self, prefs: UserReminderPreferences):
        self.storage.upsert_preferences(prefs)

    # --- workers ---
    def build_workers(self) -> List[IntervalWorker]:
        w = self.settings.workers
        return [
            CandidateSchedulerWorker(
                self.storage,
                self.process_candidate,
                interval_seconds=w.scheduler_interval_seconds,
                batch_size=w.scheduler_batch_size,
                min_probability=self.settings.policies.minimum_probability_for_execution,
            ),
            TransitionDecayWorker(self.learner, self.settings.learning.decay_rate, w.decay_interval_hours),
            WindowCloserWorker(self.routines, w.window_closer_interval_seconds),
            EventCleanupWorker(self.storage, w.event_retention_days, w.cleanup_interval_hours),
        ]

    def start_workers(self):
        if not self._workers:
            self._workers = self.build_workers()
        for worker in self._workers:
            worker.start()

    def stop_workers(self):
        for worker in self._workers:
            worker.stop()
