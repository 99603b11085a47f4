"""Routine observation: intents open a learning window, follow-up actions inside
the window are learned as routine reminders with a relative delay."""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import List, Tuple

import numpy as np
from loguru import logger

from config.settings import PatternerSettings

from .buckets import select_time_bucket
from .models import (
    ActionEvent,
    DelayEvidence,
    ProbabilityAction,
    ReminderCandidate,
    ReminderStyle,
    Routine,
    RoutineReminder,
    SignalProfile,
    utcnow,
)
from .ports import CandidateRepository, PreferencesRepository, RoutineReminderRepository, RoutineRepository
from .signals import SignalSelector, SignalSimilarityEvaluator, blend_profiles

MIN_OUTLIER_DEVIATION_SECONDS = 60.0


class RoutineLearningService:
    def __init__(
        self,
        routines: RoutineRepository,
        reminders: RoutineReminderRepository,
        candidates: CandidateRepository,
        preferences: PreferencesRepository,
        settings: PatternerSettings | None = None,
    ):
        self.routines = routines
        self.reminders = reminders
        self.candidates = candidates
        self.preferences = preferences
        self.settings = settings or PatternerSettings()
        selection = self.settings.policies.signal_selection
        self.selector = SignalSelector(selection)
        self.similarity = SignalSimilarityEvaluator()

    # --- intents ---
    def handle_intent(self, event: ActionEvent) -> Tuple[Routine, List[str]]:
        """Open a fresh observation window for the intent and schedule what the
        routine has already learned for the active time bucket.

        Returns the routine and the ids of the candidates scheduled for it.
        """
        # read-all-active then close; concurrent intents for one person may race
        for active in self.routines.active_routines(event.person_id):
            if active.close_observation_window():
                self.routines.upsert_routine(active)
                logger.debug(f"Closed window of routine {active.intent_type} for {event.person_id}")

        routine = self.routines.get_routine(event.person_id, event.action_type)
        if routine is None:
            routine = Routine(
                person_id=event.person_id,
                intent_type=event.action_type,
                observation_window_minutes=self.settings.policies.observation_window_minutes,
            )
            logger.info(f"Created routine {routine.intent_type} for {routine.person_id}")

        bucket = select_time_bucket(event.timestamp_utc, self.settings.routine.time_context)
        routine.open_observation_window(event.timestamp_utc, routine.observation_window_minutes, bucket)
        self.routines.upsert_routine(routine)

        scheduled = self._schedule_routine_candidates(routine, event)
        logger.info(
            f"Routine {routine.intent_type} window opened for {routine.person_id} "
            f"[{bucket}], {len(scheduled)} candidate(s) scheduled"
        )
        return routine, scheduled

    def _schedule_routine_candidates(self, routine: Routine, event: ActionEvent) -> List[str]:
        bucket = routine.active_time_context_bucket
        prefs = self.preferences.get_preferences(routine.person_id)
        window_seconds = routine.observation_window_minutes * 60
        min_samples = self.settings.routine.delay_learning.min_samples_for_timing
        created: List[str] = []
        for reminder in self.reminders.reminders_for_routine(routine.id, bucket):
            delay = reminder.best_delay_seconds()
            if delay is None:
                delay = float(self.settings.routine.default_delay_seconds)
            delay = max(0.0, min(float(window_seconds), delay))

            if reminder.delay_sample_count < min_samples:
                style = ReminderStyle.ASK
                confidence = min(reminder.confidence, self.settings.routine.low_evidence_confidence_cap)
            else:
                style = prefs.default_style
                confidence = reminder.confidence

            self._expire_stale_candidate(routine.person_id, reminder)
            custom = dict(reminder.custom_data or {})
            custom.update({
                'source': 'routine',
                'routineId': routine.id,
                'routineReminderId': reminder.id,
                'intentType': routine.intent_type,
                'timeContextBucket': bucket or '',
                'learnedDelaySeconds': f"{delay:.0f}",
            })
            candidate = ReminderCandidate(
                person_id=routine.person_id,
                suggested_action=reminder.suggested_action,
                check_at_utc=routine.observation_window_start_utc + timedelta(seconds=delay),
                style=style,
                confidence=confidence,
                source_event_id=event.id,
                custom_data=custom,
                signal_profile=reminder.signal_profile,
            )
            self.candidates.upsert_candidate(candidate)
            created.append(candidate.id)
        return created

    def _expire_stale_candidate(self, person_id: str, reminder: RoutineReminder):
        for stale in self.candidates.scheduled_candidates_for_routine_reminder(reminder.id):
            stale.mark_expired()
            self.candidates.upsert_candidate(stale)
            logger.debug(f"Expired stale routine candidate {stale.id} for {person_id}")

    # --- observations ---
    def process_observed_event(self, event: ActionEvent) -> str | None:
        """Learn ``event`` against every routine with an open window.

        Returns the id of the last routine reminder created or updated.
        """
        if event.is_intent:
            return None
        related: str | None = None
        for routine in self.routines.active_routines(event.person_id):
            if event.action_type == routine.intent_type:
                continue
            reminder = self._observe(routine, event)
            if reminder is not None:
                related = reminder.id
        return related

    def _observe(self, routine: Routine, event: ActionEvent) -> RoutineReminder | None:
        at = event.timestamp_utc
        if at > routine.observation_window_ends_at_utc:
            self.close_window(routine)
            logger.debug(f"Event {event.action_type} arrived after window of {routine.intent_type}; window closed")
            return None
        if at < routine.observation_window_start_utc:
            return None
        offset = at - routine.observation_window_start_utc
        if offset > timedelta(minutes=self.settings.policies.time_offset_minutes):
            return None

        bucket = routine.active_time_context_bucket or 'unknown'
        existing = self.reminders.get_routine_reminder(routine.id, bucket, event.action_type)
        state_signals = event.context.state_signals or {}

        if self.settings.policies.match_by_state_signals and existing is not None and existing.state_signals:
            for key, value in existing.state_signals.items():
                if state_signals.get(key) != value:
                    logger.debug(f"State signal {key} mismatch for {event.action_type}; skipping")
                    return None

        selection = self.settings.policies.signal_selection
        profile: SignalProfile | None = None
        if selection.enabled and event.signal_states:
            profile = self.selector.select_and_normalize_signals(event.signal_states, selection.top_k)
            if profile.is_empty():
                profile = None
        if profile is not None and existing is not None and existing.signal_profile and not existing.signal_profile.is_empty():
            score = self.similarity.calculate_similarity(existing.signal_profile, profile)
            if score < selection.similarity_threshold:
                logger.debug(f"Signal similarity {score:.2f} below threshold for {event.action_type}; skipping")
                return None

        delay_seconds = offset.total_seconds()
        if existing is None:
            reminder = RoutineReminder(
                routine_id=routine.id,
                person_id=routine.person_id,
                suggested_action=event.action_type,
                time_context_bucket=bucket,
                confidence=self.settings.routine.default_probability,
                custom_data=dict(event.custom_data) if event.custom_data else None,
                state_signals=dict(state_signals) if state_signals else None,
            )
            if profile is not None:
                reminder.signal_profile = profile
                reminder.signal_profile_updated_at_utc = at
                reminder.signal_profile_samples_count = 1
            logger.info(f"Learned new routine reminder {reminder.suggested_action} for {routine.intent_type} [{bucket}]")
        else:
            reminder = existing
            reminder.increase_confidence(self.settings.routine.probability_increase_step)
            reminder.merge_custom_data(event.custom_data)
            if profile is not None:
                reminder.signal_profile = blend_profiles(reminder.signal_profile, profile, selection.update_alpha)
                reminder.signal_profile_updated_at_utc = at
                reminder.signal_profile_samples_count += 1

        reminder.record_observation(at)
        if event.user_prompt:
            reminder.append_user_prompt(event.user_prompt, at)
        self.record_delay(reminder, delay_seconds, at)
        self.reminders.upsert_routine_reminder(reminder)
        return reminder

    def record_delay(self, reminder: RoutineReminder, delay_seconds: float, observed_at: datetime):
        """Fold one delay sample into the reminder's timing statistics.

        The EMA rate grows with the time since the previous sample (half-life
        weighting). Samples far from the current median are kept as evidence
        but flagged as outliers and left out of the EMA and the median.
        """
        cfg = self.settings.routine.delay_learning
        inliers = [e.delay_seconds for e in reminder.delay_evidence if not e.is_outlier]

        is_outlier = False
        if len(inliers) >= 2:
            median = float(np.median(inliers))
            sigma = float(np.std(inliers))
            limit = max(3 * sigma, median, MIN_OUTLIER_DEVIATION_SECONDS)
            is_outlier = abs(delay_seconds - median) > limit

        if not is_outlier:
            if reminder.delay_ema_seconds is None:
                reminder.delay_ema_seconds = delay_seconds
                reminder.delay_ema_variance = 0.0
            else:
                previous_at = reminder.delay_evidence[-1].observed_at_utc if reminder.delay_evidence else observed_at
                days = max(0.0, (observed_at - previous_at).total_seconds() / 86400.0)
                alpha = 1 - (1 - cfg.base_alpha) * 0.5 ** (days / cfg.half_life_days)
                diff = delay_seconds - reminder.delay_ema_seconds
                reminder.delay_ema_seconds += alpha * diff
                reminder.delay_ema_variance = (1 - alpha) * ((reminder.delay_ema_variance or 0.0) + alpha * diff * diff)
            reminder.delay_sample_count += 1
        else:
            logger.debug(f"Delay {delay_seconds:.0f}s for {reminder.suggested_action} flagged as outlier")

        reminder.delay_evidence.append(DelayEvidence(delay_seconds, observed_at, is_outlier))
        if len(reminder.delay_evidence) > cfg.max_evidence_items:
            reminder.delay_evidence = reminder.delay_evidence[-cfg.max_evidence_items:]
        reminder.evidence_count += 1

        kept = [e.delay_seconds for e in reminder.delay_evidence if not e.is_outlier]
        if kept:
            reminder.median_delay_approx_seconds = float(np.median(kept))

    # --- feedback / windows ---
    def handle_feedback(self, routine_reminder_id: str, action: ProbabilityAction, value: float) -> bool:
        reminder = self.reminders.get_routine_reminder_by_id(routine_reminder_id)
        if reminder is None:
            return False
        reminder.update_confidence(value, action)
        self.reminders.upsert_routine_reminder(reminder)
        return True

    def is_event_within_learning_window(self, person_id: str, at: datetime) -> bool:
        return any(r.is_observation_window_open(at) for r in self.routines.active_routines(person_id))

    def close_window(self, routine: Routine) -> bool:
        if not routine.close_observation_window():
            return False
        self.routines.upsert_routine(routine)
        return True

    def close_expired_windows(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        closed = 0
        for routine in self.routines.expired_routines(now):
            if self.close_window(routine):
                closed += 1
        if closed:
            logger.info(f"Closed {closed} expired observation window(s)")
        return closed
