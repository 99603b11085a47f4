from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import CandidateStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def _check_rate(name: str, value: float):
    if value < 0 or value > 1:
        raise ValueError(f"{name} must be between 0 and 1")


class EventType(str, Enum):
    ACTION = "Action"
    STATE_CHANGE = "StateChange"


class ReminderStyle(str, Enum):
    ASK = "Ask"
    SUGGEST = "Suggest"
    SILENT = "Silent"


class CandidateStatus(str, Enum):
    SCHEDULED = "Scheduled"
    EXECUTED = "Executed"
    SKIPPED = "Skipped"
    EXPIRED = "Expired"


class ExecutionAction(str, Enum):
    SUGGEST = "Suggest"
    ASK = "Ask"
    EXECUTE = "Execute"


class ProbabilityAction(str, Enum):
    INCREASE = "Increase"
    DECREASE = "Decrease"


class FeedbackType(str, Enum):
    YES = "yes"
    NO = "no"
    LATER = "later"


@dataclass
class ActionContext:
    time_bucket: str = "unknown"
    day_type: str = "unknown"
    location: str | None = None
    present_people: List[str] = field(default_factory=list)
    state_signals: Dict[str, str] = field(default_factory=dict)


@dataclass
class SignalState:
    sensor_id: str
    value: Any
    raw_importance: float | None = None


@dataclass
class SignalProfileEntry:
    weight: float
    normalized_value: float


@dataclass
class SignalProfile:
    signals: Dict[str, SignalProfileEntry] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.signals

    def to_dict(self) -> dict[str, Any]:
        return {k: {'weight': e.weight, 'normalized_value': e.normalized_value} for k, e in self.signals.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SignalProfile | None":
        if not data:
            return None
        return cls({k: SignalProfileEntry(float(v['weight']), float(v['normalized_value'])) for k, v in data.items()})


@dataclass
class ActionEvent:
    person_id: str
    action_type: str
    timestamp_utc: datetime
    event_type: EventType = EventType.ACTION
    context: ActionContext = field(default_factory=ActionContext)
    custom_data: Dict[str, str] | None = None
    signal_states: List[SignalState] | None = None
    user_prompt: str | None = None
    probability_value: float | None = None
    probability_action: ProbabilityAction | None = None
    id: str = field(default_factory=new_id)
    created_at_utc: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.person_id or not self.person_id.strip():
            raise ValueError("person_id cannot be empty")
        if not self.action_type or not self.action_type.strip():
            raise ValueError("action_type cannot be empty")
        self.timestamp_utc = as_utc(self.timestamp_utc)
        self.created_at_utc = as_utc(self.created_at_utc)

    @property
    def is_intent(self) -> bool:
        return self.event_type == EventType.STATE_CHANGE


@dataclass
class ActionTransition:
    """Learned (person, from, to, bucket) statistic."""
    person_id: str
    from_action: str
    to_action: str
    context_bucket: str
    confidence: float = 0.0
    occurrence_count: int = 0
    average_delay: timedelta | None = None
    last_observed_utc: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
    created_at_utc: datetime = field(default_factory=utcnow)
    updated_at_utc: datetime = field(default_factory=utcnow)

    def update_with_observation(self, observed_delay: timedelta, alpha: float, beta: float):
        _check_rate("alpha", alpha)
        _check_rate("beta", beta)
        self.occurrence_count += 1
        self.confidence = clamp_confidence(self.confidence + alpha * (1.0 - self.confidence))
        if self.average_delay is None:
            self.average_delay = observed_delay
        else:
            seconds = self.average_delay.total_seconds() * (1 - beta) + observed_delay.total_seconds() * beta
            self.average_delay = timedelta(seconds=seconds)
        self.last_observed_utc = utcnow()
        self.updated_at_utc = self.last_observed_utc

    def apply_decay(self, decay_rate: float):
        _check_rate("decay_rate", decay_rate)
        self.confidence = max(0.0, self.confidence * (1 - decay_rate))
        self.updated_at_utc = utcnow()

    def reduce_confidence(self, reduction_factor: float):
        _check_rate("reduction_factor", reduction_factor)
        self.confidence = max(0.0, self.confidence * (1 - reduction_factor))
        self.updated_at_utc = utcnow()


@dataclass
class Routine:
    """One intent type for one person, with its current observation window."""
    person_id: str
    intent_type: str
    observation_window_minutes: int = 60
    last_intent_occurred_at_utc: datetime | None = None
    observation_window_start_utc: datetime | None = None
    observation_window_ends_at_utc: datetime | None = None
    active_time_context_bucket: str | None = None
    id: str = field(default_factory=new_id)
    created_at_utc: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.observation_window_minutes < 1:
            raise ValueError("observation_window_minutes must be at least 1")

    @property
    def is_open(self) -> bool:
        return self.observation_window_start_utc is not None and self.observation_window_ends_at_utc is not None

    def open_observation_window(self, intent_at: datetime, window_minutes: int, bucket: str):
        self.last_intent_occurred_at_utc = intent_at
        self.observation_window_start_utc = intent_at
        self.observation_window_ends_at_utc = intent_at + timedelta(minutes=window_minutes)
        self.active_time_context_bucket = bucket

    def is_observation_window_open(self, at: datetime) -> bool:
        if not self.is_open:
            return False
        return self.observation_window_start_utc <= at <= self.observation_window_ends_at_utc

    def close_observation_window(self) -> bool:
        """Close the window; returns False when it was already closed."""
        if not self.is_open and self.active_time_context_bucket is None:
            return False
        self.observation_window_start_utc = None
        self.observation_window_ends_at_utc = None
        self.active_time_context_bucket = None
        return True


@dataclass
class DelayEvidence:
    delay_seconds: float
    observed_at_utc: datetime
    is_outlier: bool = False


@dataclass
class RoutineReminder:
    routine_id: str
    person_id: str
    suggested_action: str
    time_context_bucket: str
    confidence: float = 0.5
    observation_count: int = 0
    last_observed_at_utc: datetime | None = None
    custom_data: Dict[str, str] | None = None
    # state signals captured on creation; later observations must match them exactly
    state_signals: Dict[str, str] | None = None
    signal_profile: SignalProfile | None = None
    signal_profile_updated_at_utc: datetime | None = None
    signal_profile_samples_count: int = 0
    user_prompts: List[Dict[str, str]] = field(default_factory=list)
    is_safe_to_auto_execute: bool = False
    delay_ema_seconds: float | None = None
    delay_ema_variance: float | None = None
    median_delay_approx_seconds: float | None = None
    delay_evidence: List[DelayEvidence] = field(default_factory=list)
    delay_sample_count: int = 0
    evidence_count: int = 0
    id: str = field(default_factory=new_id)
    created_at_utc: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.suggested_action or not self.suggested_action.strip():
            raise ValueError("suggested_action cannot be empty")
        self.confidence = clamp_confidence(self.confidence)

    def increase_confidence(self, step: float):
        if step < 0:
            raise ValueError("step must be non-negative")
        self.confidence = clamp_confidence(self.confidence + step)

    def decrease_confidence(self, step: float):
        if step < 0:
            raise ValueError("step must be non-negative")
        self.confidence = clamp_confidence(self.confidence - step)

    def update_confidence(self, value: float, action: ProbabilityAction):
        if action == ProbabilityAction.INCREASE:
            self.increase_confidence(value)
        elif action == ProbabilityAction.DECREASE:
            self.decrease_confidence(value)
        else:
            raise ValueError(f"Unknown probability action: {action!r}")

    def record_observation(self, observed_at: datetime):
        self.observation_count += 1
        self.last_observed_at_utc = observed_at

    def append_user_prompt(self, prompt: str, at: datetime):
        self.user_prompts.append({'text': prompt, 'timestamp': at.isoformat()})

    def merge_custom_data(self, data: Dict[str, str] | None):
        if not data:
            return
        merged = dict(self.custom_data or {})
        merged.update(data)
        self.custom_data = merged

    def best_delay_seconds(self) -> float | None:
        if self.median_delay_approx_seconds is not None:
            return self.median_delay_approx_seconds
        return self.delay_ema_seconds


@dataclass
class ReminderDecision:
    should_speak: bool
    reason: str
    confidence_level: float
    execution_action: ExecutionAction = ExecutionAction.SUGGEST
    natural_language_phrase: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'should_speak': self.should_speak,
            'reason': self.reason,
            'confidence_level': self.confidence_level,
            'execution_action': self.execution_action.value,
            'natural_language_phrase': self.natural_language_phrase,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ReminderDecision | None":
        if not data:
            return None
        return cls(
            should_speak=bool(data['should_speak']),
            reason=data['reason'],
            confidence_level=float(data['confidence_level']),
            execution_action=ExecutionAction(data.get('execution_action', ExecutionAction.SUGGEST.value)),
            natural_language_phrase=data.get('natural_language_phrase'),
        )


@dataclass
class ReminderCandidate:
    person_id: str
    suggested_action: str
    check_at_utc: datetime
    style: ReminderStyle = ReminderStyle.SUGGEST
    confidence: float = 0.5
    transition_id: str | None = None
    occurrence: str | None = None
    source_event_id: str | None = None
    custom_data: Dict[str, str] | None = None
    signal_profile: SignalProfile | None = None
    status: CandidateStatus = CandidateStatus.SCHEDULED
    decision: ReminderDecision | None = None
    executed_at_utc: datetime | None = None
    id: str = field(default_factory=new_id)
    created_at_utc: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.suggested_action or not self.suggested_action.strip():
            raise ValueError("suggested_action cannot be empty")
        self.confidence = clamp_confidence(self.confidence)
        self.check_at_utc = as_utc(self.check_at_utc)

    @property
    def is_routine(self) -> bool:
        source = (self.custom_data or {}).get('source')
        return source is not None and source.lower() == 'routine'

    @property
    def is_terminal(self) -> bool:
        return self.status != CandidateStatus.SCHEDULED

    def is_due(self, now: datetime) -> bool:
        return self.status == CandidateStatus.SCHEDULED and self.check_at_utc <= now

    def increase_confidence(self, step: float):
        self.confidence = clamp_confidence(self.confidence + step)

    def update_confidence(self, value: float, action: ProbabilityAction):
        if action == ProbabilityAction.INCREASE:
            self.confidence = clamp_confidence(self.confidence + value)
        elif action == ProbabilityAction.DECREASE:
            self.confidence = clamp_confidence(self.confidence - value)
        else:
            raise ValueError(f"Unknown probability action: {action!r}")

    def _advance(self, target: CandidateStatus):
        if self.is_terminal:
            raise CandidateStateError(self.id, self.status.value, target.value)
        self.status = target

    def mark_executed(self, decision: ReminderDecision, at: Optional[datetime] = None):
        self._advance(CandidateStatus.EXECUTED)
        self.decision = decision
        self.executed_at_utc = at or utcnow()

    def mark_skipped(self, decision: ReminderDecision | None = None, at: Optional[datetime] = None):
        self._advance(CandidateStatus.SKIPPED)
        self.decision = decision
        self.executed_at_utc = at or utcnow()

    def mark_expired(self):
        self._advance(CandidateStatus.EXPIRED)


@dataclass
class UserReminderPreferences:
    person_id: str
    default_style: ReminderStyle = ReminderStyle.ASK
    daily_limit: int = 10
    minimum_interval: timedelta = timedelta(minutes=15)
    enabled: bool = True
    allow_auto_execute: bool = False
    id: str = field(default_factory=new_id)
    updated_at_utc: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.daily_limit < 0:
            raise ValueError("daily_limit cannot be negative")


@dataclass
class ReminderCooldown:
    person_id: str
    action_type: str
    suppressed_until_utc: datetime
    reason: str | None = None
    id: str = field(default_factory=new_id)
    created_at_utc: datetime = field(default_factory=utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.suppressed_until_utc > now


@dataclass
class ExecutionRecord:
    candidate_id: str
    person_id: str
    suggested_action: str
    executed: bool
    should_speak: bool
    reason: str
    execution_action: str | None = None
    id: str = field(default_factory=new_id)
    recorded_at_utc: datetime = field(default_factory=utcnow)
