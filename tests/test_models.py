import sys, pathlib
from datetime import datetime, timedelta, timezone

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from patterner.errors import CandidateStateError  # noqa: E402
from patterner.models import (  # noqa: E402
    ActionEvent,
    ActionTransition,
    CandidateStatus,
    ProbabilityAction,
    ReminderCandidate,
    ReminderCooldown,
    ReminderDecision,
    Routine,
    RoutineReminder,
)

T0 = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)


def test_transition_learns_confidence_and_delay():
    t = ActionTransition(person_id='p1', from_action='Wake', to_action='Coffee', context_bucket='weekday*morning*kitchen')
    t.update_with_observation(timedelta(seconds=120), 0.1, 0.2)
    assert t.occurrence_count == 1
    assert t.confidence == pytest.approx(0.1)
    assert t.average_delay == timedelta(seconds=120)

    t.update_with_observation(timedelta(seconds=60), 0.1, 0.2)
    assert t.occurrence_count == 2
    assert t.confidence == pytest.approx(0.19)
    assert t.average_delay.total_seconds() == pytest.approx(108)


def test_transition_confidence_never_leaves_unit_interval():
    t = ActionTransition(person_id='p1', from_action='a', to_action='b', context_bucket='x')
    for _ in range(200):
        t.update_with_observation(timedelta(seconds=10), 1.0, 1.0)
    assert t.confidence == 1.0
    for _ in range(200):
        t.apply_decay(1.0)
    assert t.confidence == 0.0


def test_decay_and_reduction():
    t = ActionTransition(person_id='p1', from_action='a', to_action='b', context_bucket='x', confidence=0.5)
    t.apply_decay(0.01)
    assert t.confidence == pytest.approx(0.495)
    t.reduce_confidence(0.2)
    assert t.confidence == pytest.approx(0.396)


def test_zero_decay_is_a_no_op():
    t = ActionTransition(person_id='p1', from_action='a', to_action='b', context_bucket='x', confidence=0.42)
    t.apply_decay(0.0)
    assert t.confidence == 0.42


def test_repeated_decay_never_raises_confidence():
    t = ActionTransition(person_id='p1', from_action='a', to_action='b', context_bucket='x', confidence=0.9)
    previous = t.confidence
    for rate in [0.01, 0.0, 0.5, 0.001, 1.0, 0.3] * 5:
        t.apply_decay(rate)
        assert 0.0 <= t.confidence <= previous
        previous = t.confidence


@pytest.mark.parametrize('alpha,beta', [(-0.1, 0.2), (1.5, 0.2), (0.1, 2.0)])
def test_invalid_learning_rates_raise(alpha, beta):
    t = ActionTransition(person_id='p1', from_action='a', to_action='b', context_bucket='x')
    with pytest.raises(ValueError):
        t.update_with_observation(timedelta(seconds=1), alpha, beta)


def test_event_requires_person_and_action():
    with pytest.raises(ValueError):
        ActionEvent(person_id=' ', action_type='Coffee', timestamp_utc=T0)
    with pytest.raises(ValueError):
        ActionEvent(person_id='p1', action_type='', timestamp_utc=T0)


def test_routine_window_lifecycle():
    r = Routine(person_id='p1', intent_type='ArrivedHome')
    assert not r.is_open
    r.open_observation_window(T0, 60, 'morning')
    assert r.is_observation_window_open(T0 + timedelta(minutes=30))
    assert r.is_observation_window_open(T0 + timedelta(minutes=60))
    assert not r.is_observation_window_open(T0 + timedelta(minutes=61))
    assert r.close_observation_window() is True
    assert r.close_observation_window() is False
    assert r.active_time_context_bucket is None
    assert r.last_intent_occurred_at_utc == T0


def test_routine_rejects_empty_window():
    with pytest.raises(ValueError):
        Routine(person_id='p1', intent_type='x', observation_window_minutes=0)


def test_routine_reminder_confidence_updates_are_clamped():
    rr = RoutineReminder(routine_id='r', person_id='p1', suggested_action='Coffee', time_context_bucket='morning', confidence=0.95)
    rr.update_confidence(0.2, ProbabilityAction.INCREASE)
    assert rr.confidence == 1.0
    rr.update_confidence(1.5, ProbabilityAction.DECREASE)
    assert rr.confidence == 0.0
    with pytest.raises(ValueError):
        rr.update_confidence(0.1, 'sideways')


def test_best_delay_prefers_median():
    rr = RoutineReminder(routine_id='r', person_id='p1', suggested_action='Coffee', time_context_bucket='morning')
    assert rr.best_delay_seconds() is None
    rr.delay_ema_seconds = 200.0
    assert rr.best_delay_seconds() == 200.0
    rr.median_delay_approx_seconds = 180.0
    assert rr.best_delay_seconds() == 180.0


def test_candidate_moves_forward_only():
    c = ReminderCandidate(person_id='p1', suggested_action='Coffee', check_at_utc=T0)
    assert c.is_due(T0)
    assert not c.is_due(T0 - timedelta(seconds=1))
    c.mark_executed(ReminderDecision(True, 'ok', 0.8), at=T0)
    assert c.status == CandidateStatus.EXECUTED
    assert not c.is_due(T0)
    with pytest.raises(CandidateStateError):
        c.mark_skipped()
    with pytest.raises(CandidateStateError):
        c.mark_expired()
    assert c.status == CandidateStatus.EXECUTED


def test_candidate_routine_source_detection():
    c = ReminderCandidate(person_id='p1', suggested_action='Coffee', check_at_utc=T0, custom_data={'source': 'Routine'})
    assert c.is_routine
    assert not ReminderCandidate(person_id='p1', suggested_action='Coffee', check_at_utc=T0).is_routine


def test_decision_round_trip_keeps_action():
    d = ReminderDecision(True, 'because', 0.7, natural_language_phrase='Coffee?')
    assert ReminderDecision.from_dict(d.to_dict()) == d
    assert ReminderDecision.from_dict(None) is None


def test_cooldown_activity():
    cd = ReminderCooldown(person_id='p1', action_type='Coffee', suppressed_until_utc=T0)
    assert cd.is_active(T0 - timedelta(minutes=1))
    assert not cd.is_active(T0)


def test_naive_datetimes_become_utc():
    naive = datetime(2026, 3, 2, 7, 0)
    event = ActionEvent(person_id='p1', action_type='Coffee', timestamp_utc=naive, created_at_utc=naive)
    assert event.timestamp_utc == T0
    assert event.created_at_utc.tzinfo is not None
    c = ReminderCandidate(person_id='p1', suggested_action='Coffee', check_at_utc=naive)
    assert c.check_at_utc == T0
    assert c.check_at_utc.tzinfo is not None
    shifted = ReminderCandidate(person_id='p1', suggested_action='Coffee',
                                check_at_utc=datetime(2026, 3, 2, 9, 0, tzinfo=timezone(timedelta(hours=2))))
    assert shifted.check_at_utc == T0
    assert shifted.check_at_utc.utcoffset() == timedelta(0)
