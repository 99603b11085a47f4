from __future__ import annotations
from datetime import datetime, time, timedelta

from config.settings import TimeContextSettings

from .models import ActionContext

DEFAULT_BUCKET_FORMAT = "{dayType}*{timeBucket}*{location}"


class ContextBucketKeyBuilder:
    """Formats an action context into the key that partitions learned transitions."""

    def __init__(self, key_format: str = DEFAULT_BUCKET_FORMAT):
        self.key_format = key_format

    def build_key(self, context: ActionContext) -> str:
        return (
            self.key_format
            .replace("{dayType}", context.day_type or "unknown")
            .replace("{timeBucket}", context.time_bucket or "unknown")
            .replace("{location}", context.location or "unknown")
        )


def _parse_time(value: str | None, fallback: time) -> time:
    if not value:
        return fallback
    try:
        hours, minutes = value.strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, TypeError):
        return fallback


def _in_range(t: time, start: time, end: time) -> bool:
    if start <= end:
        return start <= t < end
    # wraps across midnight
    return t >= start or t < end


def select_time_bucket(activation_utc: datetime, settings: TimeContextSettings | None = None) -> str:
    """Classify an activation time into morning/afternoon/evening/night.

    The bucket is computed on local time (UTC shifted by the configured offset)
    and is only used as a classifier, never as a schedule.
    """
    settings = settings or TimeContextSettings()
    local = activation_utc + timedelta(minutes=settings.local_time_offset_minutes)
    morning = _parse_time(settings.morning_start, time(5, 0))
    afternoon = _parse_time(settings.afternoon_start, time(12, 0))
    evening = _parse_time(settings.evening_start, time(17, 0))
    night = _parse_time(settings.night_start, time(22, 0))

    t = local.time()
    if _in_range(t, morning, afternoon):
        return "morning"
    if _in_range(t, afternoon, evening):
        return "afternoon"
    if _in_range(t, evening, night):
        return "evening"
    return "night"
