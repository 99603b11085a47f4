from __future__ import annotations
from datetime import timedelta
from loguru import logger

from config.settings import LearningSettings

from .buckets import ContextBucketKeyBuilder
from .models import ActionEvent, ActionTransition
from .ports import EventRepository, TransitionRepository


class TransitionLearner:
    """Learns "after A, person usually does B" from consecutive events."""

    def __init__(
        self,
        events: EventRepository,
        transitions: TransitionRepository,
        settings: LearningSettings | None = None,
        bucket_builder: ContextBucketKeyBuilder | None = None,
    ):
        self.events = events
        self.transitions = transitions
        self.settings = settings or LearningSettings()
        self.bucket_builder = bucket_builder or ContextBucketKeyBuilder()

    def update_transitions(self, event: ActionEvent) -> ActionTransition | None:
        previous = self.events.get_previous_event(event.person_id, event.timestamp_utc, exclude_id=event.id)
        if previous is None:
            return None
        delay = event.timestamp_utc - previous.timestamp_utc
        if delay > timedelta(minutes=self.settings.session_window_minutes):
            return None

        bucket = self.bucket_builder.build_key(event.context)
        transition = self.transitions.get_transition(event.person_id, previous.action_type, event.action_type, bucket)
        if transition is None:
            transition = ActionTransition(
                person_id=event.person_id,
                from_action=previous.action_type,
                to_action=event.action_type,
                context_bucket=bucket,
            )
            logger.debug(f"New transition {previous.action_type} -> {event.action_type} [{bucket}] for {event.person_id}")
        transition.update_with_observation(delay, self.settings.confidence_alpha, self.settings.delay_beta)
        self.transitions.upsert_transition(transition)
        return transition

    def decay_all(self, rate: float | None = None) -> int:
        rate = self.settings.decay_rate if rate is None else rate
        count = 0
        for transition in self.transitions.transitions_with_confidence():
            transition.apply_decay(rate)
            self.transitions.upsert_transition(transition)
            count += 1
        return count
