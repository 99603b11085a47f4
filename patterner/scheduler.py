from __future__ import annotations
from typing import List
from loguru import logger

from config.settings import ReminderSettings

from .buckets import ContextBucketKeyBuilder
from .models import ActionEvent, ReminderCandidate, ReminderStyle
from .policy import ReminderPolicyEvaluator
from .ports import CandidateRepository, TransitionRepository
from .routines import RoutineLearningService


class ReminderScheduler:
    """Schedules general (non-routine) reminders from learned transitions."""

    def __init__(
        self,
        transitions: TransitionRepository,
        candidates: CandidateRepository,
        routines: RoutineLearningService,
        settings: ReminderSettings | None = None,
    ):
        self.transitions = transitions
        self.candidates = candidates
        self.routines = routines
        self.settings = settings or ReminderSettings()
        self.policy = ReminderPolicyEvaluator(self.settings)
        self.bucket_builder = ContextBucketKeyBuilder(self.settings.context_bucket_format)

    def schedule_candidates_for_event(self, event: ActionEvent) -> List[str]:
        if event.is_intent:
            return []
        # the routine engine owns everything that happens inside its window
        if self.routines.is_event_within_learning_window(event.person_id, event.timestamp_utc):
            return []

        bucket = self.bucket_builder.build_key(event.context)
        scheduled: List[str] = []
        for transition in self.transitions.transitions_from(event.person_id, event.action_type):
            if not self.policy.should_create_reminder(transition, bucket):
                continue
            existing = self.candidates.find_scheduled_candidate(event.person_id, transition.to_action)
            if existing is not None:
                existing.increase_confidence(self.settings.confidence_step)
                self.candidates.upsert_candidate(existing)
                scheduled.append(existing.id)
                continue
            candidate = ReminderCandidate(
                person_id=event.person_id,
                suggested_action=transition.to_action,
                check_at_utc=event.timestamp_utc + transition.average_delay,
                style=ReminderStyle.SUGGEST,
                confidence=self.settings.default_confidence,
                transition_id=transition.id,
                source_event_id=event.id,
            )
            self.candidates.upsert_candidate(candidate)
            scheduled.append(candidate.id)
            logger.info(
                f"Scheduled {candidate.suggested_action} for {candidate.person_id} at {candidate.check_at_utc.isoformat()}"
            )
        return scheduled
