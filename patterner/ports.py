"""Storage ports used by the engine services.

``patterner.storage.PatternStorage`` implements all of them on SQLite.
"""
from __future__ import annotations
from datetime import datetime
from typing import List, Optional, Protocol

from .models import (
    ActionEvent,
    ActionTransition,
    ExecutionRecord,
    ReminderCandidate,
    ReminderCooldown,
    Routine,
    RoutineReminder,
    UserReminderPreferences,
)


class EventRepository(Protocol):
    def add_event(self, event: ActionEvent) -> None:
        ...

    def get_previous_event(self, person_id: str, before: datetime, exclude_id: str | None = None) -> Optional[ActionEvent]:
        ...

    def delete_events_before(self, cutoff: datetime) -> int:
        ...


class TransitionRepository(Protocol):
    def get_transition(self, person_id: str, from_action: str, to_action: str, context_bucket: str) -> Optional[ActionTransition]:
        ...

    def get_transition_by_id(self, transition_id: str) -> Optional[ActionTransition]:
        ...

    def transitions_from(self, person_id: str, from_action: str) -> List[ActionTransition]:
        ...

    def transitions_with_confidence(self) -> List[ActionTransition]:
        ...

    def upsert_transition(self, transition: ActionTransition) -> None:
        ...


class RoutineRepository(Protocol):
    def get_routine(self, person_id: str, intent_type: str) -> Optional[Routine]:
        ...

    def routines_for_person(self, person_id: str) -> List[Routine]:
        ...

    def active_routines(self, person_id: str) -> List[Routine]:
        ...

    def expired_routines(self, now: datetime) -> List[Routine]:
        ...

    def upsert_routine(self, routine: Routine) -> None:
        ...


class RoutineReminderRepository(Protocol):
    def get_routine_reminder(self, routine_id: str, bucket: str, suggested_action: str) -> Optional[RoutineReminder]:
        ...

    def get_routine_reminder_by_id(self, reminder_id: str) -> Optional[RoutineReminder]:
        ...

    def reminders_for_routine(self, routine_id: str, bucket: str | None = None) -> List[RoutineReminder]:
        ...

    def upsert_routine_reminder(self, reminder: RoutineReminder) -> None:
        ...


class CandidateRepository(Protocol):
    def upsert_candidate(self, candidate: ReminderCandidate) -> None:
        ...

    def get_candidate(self, candidate_id: str) -> Optional[ReminderCandidate]:
        ...

    def due_candidates(self, now: datetime, limit: int, min_confidence: float = 0.0) -> List[ReminderCandidate]:
        ...

    def find_scheduled_candidate(self, person_id: str, suggested_action: str) -> Optional[ReminderCandidate]:
        ...

    def scheduled_candidates_for_routine_reminder(self, reminder_id: str) -> List[ReminderCandidate]:
        ...


class PreferencesRepository(Protocol):
    def get_preferences(self, person_id: str) -> UserReminderPreferences:
        ...

    def upsert_preferences(self, prefs: UserReminderPreferences) -> None:
        ...


class CooldownRepository(Protocol):
    def active_cooldown(self, person_id: str, action_type: str, now: datetime) -> Optional[ReminderCooldown]:
        ...

    def add_cooldown(self, cooldown: ReminderCooldown) -> None:
        ...


class ExecutionHistoryRepository(Protocol):
    def add_execution_record(self, record: ExecutionRecord) -> None:
        ...

    def count_executed_since(self, person_id: str, since: datetime) -> int:
        ...

    def last_executed_at(self, person_id: str) -> Optional[datetime]:
        ...


class PatternStore(
    EventRepository,
    TransitionRepository,
    RoutineRepository,
    RoutineReminderRepository,
    CandidateRepository,
    PreferencesRepository,
    CooldownRepository,
    ExecutionHistoryRepository,
    Protocol,
):
    """Everything the engine facade needs from one backing store."""
