from __future__ import annotations
from typing import Any, Iterable

import numpy as np
from loguru import logger

from config.settings import SignalSelectionSettings

from .models import SignalProfile, SignalProfileEntry, SignalState

DEFAULT_IMPORTANCE = {
    'presence': 1.0,
    'light': 0.3,
    'audio': 0.6,
    'temp': 0.2,
    'humidity': 0.1,
    'motion': 0.8,
    'door': 0.7,
    'window': 0.5,
}

DEFAULT_RANGES = {
    'temp': (0.0, 100.0),
    'temperature': (0.0, 100.0),
    'humidity': (0.0, 100.0),
    'light': (0.0, 1000.0),
    'brightness': (0.0, 1000.0),
}

ENUM_VALUES = {
    ('presence', 'occupancy'): ({'home', 'present', 'on', 'true'}, {'away', 'absent', 'off', 'false'}),
    ('door', 'window'): ({'open', 'opened'}, {'closed', 'shut'}),
    ('music', 'audio'): ({'playing', 'on'}, {'stopped', 'off', 'paused'}),
}

EPSILON = 1e-10


def sensor_type(sensor_id: str) -> str:
    """'sensor.presence.kitchen' -> 'presence'; ids without dots are their own type."""
    if not sensor_id or not sensor_id.strip():
        return 'unknown'
    parts = sensor_id.split('.')
    if len(parts) >= 2:
        return parts[1].lower()
    return sensor_id.lower()


class SignalSelector:
    """Reduces raw sensor readings to a top-K, L2-weighted profile."""

    def __init__(self, settings: SignalSelectionSettings | None = None):
        self.settings = settings or SignalSelectionSettings()

    def select_and_normalize_signals(self, states: Iterable[SignalState] | None, top_k: int) -> SignalProfile:
        scored: list[tuple[str, float, float]] = []
        for s in states or []:
            if not s.sensor_id or not s.sensor_id.strip():
                continue
            value = self.normalize_value(s.sensor_id, s.value)
            raw = 1.0 if s.raw_importance is None else s.raw_importance
            importance = max(0.0, min(1.0, raw)) * self.default_importance(s.sensor_id)
            scored.append((s.sensor_id, value, importance))

        # stable sort keeps input order among equal importances
        top = sorted(scored, key=lambda item: item[2], reverse=True)[:max(0, top_k)]
        if not top:
            return SignalProfile()

        importances = np.array([imp for _, _, imp in top], dtype=float)
        norm = float(np.linalg.norm(importances))
        profile = SignalProfile()
        for (sensor_id, value, importance) in top:
            weight = importance / norm if norm > 0 else 0.0
            profile.signals[sensor_id] = SignalProfileEntry(weight=weight, normalized_value=value)
        return profile

    def default_importance(self, sensor_id: str) -> float:
        stype = sensor_type(sensor_id)
        if stype in self.settings.importance_defaults:
            return self.settings.importance_defaults[stype]
        return DEFAULT_IMPORTANCE.get(stype, 0.5)

    def normalize_value(self, sensor_id: str, value: Any) -> float:
        if value is None:
            return 0.0
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        if isinstance(value, (int, float)):
            return self._normalize_numeric(sensor_id, float(value))
        if isinstance(value, str):
            return self._normalize_string(sensor_id, value)
        try:
            return self._normalize_numeric(sensor_id, float(value))
        except (TypeError, ValueError):
            pass
        logger.warning(f"Unknown value type for sensor {sensor_id}: {type(value).__name__}")
        return 0.5

    def _normalize_numeric(self, sensor_id: str, value: float) -> float:
        stype = sensor_type(sensor_id)
        low, high = self.settings.value_ranges.get(stype) or DEFAULT_RANGES.get(stype, (0.0, 100.0))
        if high <= low:
            return 0.5
        return float(np.clip((value - low) / (high - low), 0.0, 1.0))

    def _normalize_string(self, sensor_id: str, value: str) -> float:
        stype = sensor_type(sensor_id)
        lowered = value.strip().lower()
        for types, (on_values, off_values) in ENUM_VALUES.items():
            if stype in types:
                if lowered in on_values:
                    return 1.0
                if lowered in off_values:
                    return 0.0
                return 0.5
        mapping = self.settings.value_mappings.get(stype, {})
        if value in mapping:
            return mapping[value]
        return 0.5


class SignalSimilarityEvaluator:
    """Weighted cosine similarity between two signal profiles, clamped to [0, 1]."""

    def calculate_similarity(self, baseline: SignalProfile | None, candidate: SignalProfile | None) -> float:
        if baseline is None or baseline.is_empty() or candidate is None or candidate.is_empty():
            return 0.0
        keys = sorted(set(baseline.signals) | set(candidate.signals))
        a = np.array([_component(baseline, k) for k in keys], dtype=float)
        b = np.array([_component(candidate, k) for k in keys], dtype=float)
        norm_a = float(np.linalg.norm(a))
        norm_b = float(np.linalg.norm(b))
        if norm_a < EPSILON or norm_b < EPSILON:
            return 0.0
        similarity = float(np.dot(a, b) / (norm_a * norm_b))
        return max(0.0, min(1.0, similarity))


def _component(profile: SignalProfile, key: str) -> float:
    entry = profile.signals.get(key)
    if entry is None:
        return 0.0
    return entry.weight * entry.normalized_value


def blend_profiles(baseline: SignalProfile | None, update: SignalProfile, alpha: float) -> SignalProfile:
    """EMA-blend ``update`` into ``baseline`` over the union of sensors.

    A missing baseline is replaced by the update as-is.
    """
    if baseline is None or baseline.is_empty():
        return SignalProfile({k: SignalProfileEntry(e.weight, e.normalized_value) for k, e in update.signals.items()})
    blended = SignalProfile()
    for key in set(baseline.signals) | set(update.signals):
        old = baseline.signals.get(key, SignalProfileEntry(0.0, 0.0))
        new = update.signals.get(key, SignalProfileEntry(0.0, 0.0))
        blended.signals[key] = SignalProfileEntry(
            weight=(1 - alpha) * old.weight + alpha * new.weight,
            normalized_value=(1 - alpha) * old.normalized_value + alpha * new.normalized_value,
        )
    return blended
