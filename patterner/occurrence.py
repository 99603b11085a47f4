"""Free-text recurrence parsing ("daily at 19:00", "every monday at 08:30", ...)."""
from __future__ import annotations
import re
from datetime import date, datetime, time, timedelta

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_TIME_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_EVERY_N_DAYS_RE = re.compile(r"every\s+(\d+)\s+days?\b")
_DAY_RE = re.compile(r"\b(" + "|".join(DAY_NAMES) + r")\b")


class OccurrencePatternParser:
    """Turns an occurrence pattern into the next concrete due time.

    Every branch needs an ``HH:mm`` token; without one the pattern cannot be
    scheduled and ``None`` is returned. Unrecognised wording is treated as daily.
    """

    def calculate_next_execution_time(
        self,
        pattern: str | None,
        now: datetime,
        last_execution: datetime | None = None,
    ) -> datetime | None:
        if not pattern or not pattern.strip():
            return None
        text = pattern.strip().lower()

        match = _TIME_RE.search(text)
        if not match:
            return None
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            return None

        base_day = (last_execution or now).date()
        at = time(hours, minutes)
        next_time = self._at(base_day, at, now)

        if "daily" in text or "every day" in text:
            return self._roll(next_time, now, lambda d: True)

        if "weekdays" in text:
            return self._roll(next_time, now, lambda d: d.weekday() < 5)

        if "weekends" in text:
            return self._roll(next_time, now, lambda d: d.weekday() >= 5)

        every_n = _EVERY_N_DAYS_RE.search(text)
        if every_n:
            days = int(every_n.group(1))
            if 0 < days <= 365:
                if next_time > now:
                    return next_time
                next_time += timedelta(days=days)
                while next_time <= now:
                    next_time += timedelta(days=days)
                return next_time

        named_days = sorted({DAY_NAMES.index(name) for name in _DAY_RE.findall(text)})
        if len(named_days) == 1:
            target = named_days[0]
            next_time += timedelta(days=(target - next_time.weekday()) % 7)
            while next_time <= now:
                next_time += timedelta(days=7)
            return next_time

        if len(named_days) > 1:
            start = max(next_time, self._at(now.date(), at, now))
            for offset in range(14):
                check = start + timedelta(days=offset)
                if check.weekday() in named_days and check > now:
                    return check

        return self._roll(next_time, now, lambda d: True)

    def is_due(self, pattern: str | None, check_at_utc: datetime, now: datetime) -> bool:
        # check_at_utc already holds the precomputed next time for recurring reminders
        return check_at_utc <= now

    @staticmethod
    def _at(day: date, at: time, now: datetime) -> datetime:
        return datetime.combine(day, at, tzinfo=now.tzinfo)

    @staticmethod
    def _roll(candidate: datetime, now: datetime, accept) -> datetime:
        while not accept(candidate) or candidate <= now:
            candidate += timedelta(days=1)
        return candidate
