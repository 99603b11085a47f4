import sys, pathlib
from datetime import datetime, timedelta, timezone

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from patterner.occurrence import OccurrencePatternParser  # noqa: E402

# Monday
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _d(day, hour, minute=0):
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


@pytest.mark.parametrize('pattern,expected', [
    ('daily at 09:00', _d(2, 9)),
    ('Daily at 07:00', _d(3, 7)),
    ('every day at 19:30', _d(2, 19, 30)),
    ('weekends at 10:00', _d(7, 10)),
    ('every friday at 18:00', _d(6, 18)),
    ('monday at 07:00', _d(9, 7)),
    ('monday and thursday at 20:00', _d(2, 20)),
    ('at 09:15', _d(2, 9, 15)),
])
def test_next_execution_from_monday_morning(pattern, expected):
    assert OccurrencePatternParser().calculate_next_execution_time(pattern, NOW) == expected


def test_weekdays_skip_the_weekend():
    saturday = _d(7, 10)
    assert OccurrencePatternParser().calculate_next_execution_time('weekdays at 07:30', saturday) == _d(9, 7, 30)


def test_day_list_looks_ahead():
    monday_night = _d(2, 21)
    got = OccurrencePatternParser().calculate_next_execution_time('monday, thursday at 20:00', monday_night)
    assert got == _d(5, 20)


def test_every_n_days_counts_from_last_execution():
    parser = OccurrencePatternParser()
    got = parser.calculate_next_execution_time('every 3 days at 08:00', _d(2, 8, 30), last_execution=_d(2, 8))
    assert got == _d(5, 8)
    # still pending today
    assert parser.calculate_next_execution_time('every 3 days at 09:00', NOW) == _d(2, 9)


def test_result_is_always_in_the_future():
    parser = OccurrencePatternParser()
    stale = NOW - timedelta(days=40)
    for pattern in ('daily at 06:00', 'weekdays at 06:00', 'every 2 days at 06:00', 'every sunday at 06:00'):
        assert parser.calculate_next_execution_time(pattern, NOW, last_execution=stale) > NOW


@pytest.mark.parametrize('pattern', [None, '', '   ', 'sometime soon', 'daily at 25:00', 'daily at 10:75'])
def test_unschedulable_patterns(pattern):
    assert OccurrencePatternParser().calculate_next_execution_time(pattern, NOW) is None


def test_is_due():
    parser = OccurrencePatternParser()
    assert parser.is_due('daily at 08:00', NOW, NOW)
    assert not parser.is_due('daily at 08:00', NOW + timedelta(seconds=1), NOW)
