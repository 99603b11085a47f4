"""Typed view over the engine configuration dict."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config_loader import create_default_config


@dataclass
class SignalSelectionSettings:
    enabled: bool = True
    top_k: int = 10
    similarity_threshold: float = 0.7
    update_alpha: float = 0.1
    importance_defaults: dict[str, float] = field(default_factory=dict)
    value_ranges: dict[str, tuple[float, float]] = field(default_factory=dict)
    value_mappings: dict[str, dict[str, float]] = field(default_factory=dict)


@dataclass
class PolicySettings:
    minimum_probability_for_execution: float = 0.7
    observation_window_minutes: int = 60
    time_offset_minutes: int = 45
    match_by_state_signals: bool = True
    execute_auto_threshold: float = 0.95
    ask_threshold: float = 0.5
    signal_selection: SignalSelectionSettings = field(default_factory=SignalSelectionSettings)


@dataclass
class LearningSettings:
    session_window_minutes: int = 30
    confidence_alpha: float = 0.1
    delay_beta: float = 0.2
    decay_rate: float = 0.01


@dataclass
class DelayLearningSettings:
    base_alpha: float = 0.3
    half_life_days: float = 14.0
    max_evidence_items: int = 20
    min_samples_for_timing: int = 3


@dataclass
class TimeContextSettings:
    local_time_offset_minutes: int = 0
    morning_start: str = "05:00"
    afternoon_start: str = "12:00"
    evening_start: str = "17:00"
    night_start: str = "22:00"


@dataclass
class RoutineSettings:
    default_probability: float = 0.5
    probability_increase_step: float = 0.1
    default_delay_seconds: int = 300
    low_evidence_confidence_cap: float = 0.6
    delay_learning: DelayLearningSettings = field(default_factory=DelayLearningSettings)
    time_context: TimeContextSettings = field(default_factory=TimeContextSettings)


@dataclass
class ReminderSettings:
    default_confidence: float = 0.5
    confidence_step: float = 0.1
    minimum_occurrences: int = 3
    minimum_confidence: float = 0.4
    context_bucket_format: str = "{dayType}*{timeBucket}*{location}"
    feedback_cooldown_hours: int = 24
    negative_feedback_reduction: float = 0.2


@dataclass
class WorkerSettings:
    scheduler_interval_seconds: int = 30
    scheduler_batch_size: int = 10
    window_closer_interval_seconds: int = 30
    decay_interval_hours: int = 24
    cleanup_interval_hours: int = 24
    event_retention_days: int = 30


@dataclass
class PatternerSettings:
    db_path: str = "patterner_data.db"
    log_level: str = "INFO"
    log_file: str = "logs/patterner_{time:YYYY-MM-DD}.log"
    policies: PolicySettings = field(default_factory=PolicySettings)
    learning: LearningSettings = field(default_factory=LearningSettings)
    routine: RoutineSettings = field(default_factory=RoutineSettings)
    reminders: ReminderSettings = field(default_factory=ReminderSettings)
    workers: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_dict(cls, config: dict[str, Any] | None) -> "PatternerSettings":
        """Build settings from a (possibly partial) config dict.

        Missing sections and keys fall back to ``create_default_config``.
        """
        merged = create_default_config()
        _deep_merge(merged, config or {})

        policies = merged["policies"]
        selection = policies.get("signal_selection", {})
        routine = merged["routine"]
        delay = routine.get("delay_learning", {})
        time_ctx = routine.get("time_context", {})
        learning = merged["learning"]
        reminders = merged["reminders"]

        return cls(
            db_path=str(merged["database"].get("path", cls.db_path)),
            log_level=str(merged["logging"].get("level", cls.log_level)),
            log_file=str(merged["logging"].get("file", cls.log_file)),
            policies=PolicySettings(
                minimum_probability_for_execution=float(policies["minimum_probability_for_execution"]),
                observation_window_minutes=int(policies["observation_window_minutes"]),
                time_offset_minutes=int(policies["time_offset_minutes"]),
                match_by_state_signals=bool(policies["match_by_state_signals"]),
                execute_auto_threshold=float(policies["execute_auto_threshold"]),
                ask_threshold=float(policies["ask_threshold"]),
                signal_selection=SignalSelectionSettings(
                    enabled=bool(selection.get("enabled", True)),
                    top_k=int(selection.get("top_k", 10)),
                    similarity_threshold=float(selection.get("similarity_threshold", 0.7)),
                    update_alpha=float(selection.get("update_alpha", 0.1)),
                    importance_defaults={k: float(v) for k, v in selection.get("importance_defaults", {}).items()},
                    value_ranges={
                        k: (float(v[0]), float(v[1])) for k, v in selection.get("value_ranges", {}).items()
                    },
                    value_mappings={
                        k: {str(name): float(num) for name, num in v.items()}
                        for k, v in selection.get("value_mappings", {}).items()
                    },
                ),
            ),
            learning=LearningSettings(
                session_window_minutes=int(learning["session_window_minutes"]),
                confidence_alpha=float(learning["confidence_alpha"]),
                delay_beta=float(learning["delay_beta"]),
                decay_rate=float(learning["decay_rate"]),
            ),
            routine=RoutineSettings(
                default_probability=float(routine["default_probability"]),
                probability_increase_step=float(routine["probability_increase_step"]),
                default_delay_seconds=int(routine["default_delay_seconds"]),
                low_evidence_confidence_cap=float(routine["low_evidence_confidence_cap"]),
                delay_learning=DelayLearningSettings(
                    base_alpha=float(delay["base_alpha"]),
                    half_life_days=float(delay["half_life_days"]),
                    max_evidence_items=int(delay["max_evidence_items"]),
                    min_samples_for_timing=int(delay["min_samples_for_timing"]),
                ),
                time_context=TimeContextSettings(
                    local_time_offset_minutes=int(time_ctx["local_time_offset_minutes"]),
                    morning_start=str(time_ctx["morning_start"]),
                    afternoon_start=str(time_ctx["afternoon_start"]),
                    evening_start=str(time_ctx["evening_start"]),
                    night_start=str(time_ctx["night_start"]),
                ),
            ),
            reminders=ReminderSettings(
                default_confidence=float(reminders["default_confidence"]),
                confidence_step=float(reminders["confidence_step"]),
                minimum_occurrences=int(reminders["minimum_occurrences"]),
                minimum_confidence=float(reminders["minimum_confidence"]),
                context_bucket_format=str(reminders["context_bucket_format"]),
                feedback_cooldown_hours=int(reminders["feedback_cooldown_hours"]),
                negative_feedback_reduction=float(reminders["negative_feedback_reduction"]),
            ),
            workers=WorkerSettings(
                scheduler_interval_seconds=int(merged["scheduler"]["poll_interval_seconds"]),
                scheduler_batch_size=int(merged["scheduler"]["batch_size"]),
                # the closer never polls faster than every 5 seconds
                window_closer_interval_seconds=max(5, int(merged["window_closer"]["poll_interval_seconds"])),
                decay_interval_hours=int(merged["decay"]["interval_hours"]),
                cleanup_interval_hours=int(merged["cleanup"]["event_cleanup_interval_hours"]),
                event_retention_days=int(merged["cleanup"]["event_retention_days"]),
            ),
        )


def _deep_merge(base: dict, update: dict):
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
