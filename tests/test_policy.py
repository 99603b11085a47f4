import sys, pathlib
from datetime import datetime, timedelta, timezone

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from patterner.evaluator import ExecutionActionEvaluator  # noqa: E402
from patterner.models import (  # noqa: E402
    ActionTransition,
    ExecutionAction,
    ExecutionRecord,
    ReminderCandidate,
    ReminderCooldown,
    ReminderStyle,
    UserReminderPreferences,
)
from patterner.policy import ReminderEvaluationService, ReminderPolicyEvaluator  # noqa: E402
from patterner.storage import PatternStorage  # noqa: E402

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize('confidence,safe,allowed,expected', [
    (0.3, True, True, ExecutionAction.SUGGEST),
    (0.49, False, False, ExecutionAction.SUGGEST),
    (0.5, False, False, ExecutionAction.ASK),
    (0.8, True, True, ExecutionAction.ASK),
    (0.95, True, True, ExecutionAction.EXECUTE),
    (0.99, True, False, ExecutionAction.ASK),
    (0.99, False, True, ExecutionAction.ASK),
])
def test_execution_action_table(confidence, safe, allowed, expected):
    assert ExecutionActionEvaluator().evaluate(confidence, safe, allowed) == expected


def test_execution_threshold_override():
    assert ExecutionActionEvaluator().evaluate(0.8, True, True, threshold=0.8) == ExecutionAction.EXECUTE


def _transition(**kw):
    base = dict(
        person_id='p1', from_action='Wake', to_action='Coffee', context_bucket='weekday*morning*kitchen',
        confidence=0.5, occurrence_count=3, average_delay=timedelta(minutes=2),
    )
    base.update(kw)
    return ActionTransition(**base)


def test_policy_requires_mature_transition():
    policy = ReminderPolicyEvaluator()
    bucket = 'weekday*morning*kitchen'
    assert policy.should_create_reminder(_transition(), bucket)
    assert not policy.should_create_reminder(_transition(occurrence_count=2), bucket)
    assert not policy.should_create_reminder(_transition(confidence=0.39), bucket)
    assert not policy.should_create_reminder(_transition(average_delay=None), bucket)
    assert not policy.should_create_reminder(_transition(), 'weekend*morning*kitchen')


@pytest.fixture
def storage(tmp_path):
    st = PatternStorage(str(tmp_path / 'policy.db'))
    yield st
    st.close()


def _candidate(confidence=0.8, style=ReminderStyle.SUGGEST):
    return ReminderCandidate(person_id='p1', suggested_action='Coffee', check_at_utc=NOW, style=style, confidence=confidence)


def test_evaluation_speaks_when_all_gates_pass(storage):
    svc = ReminderEvaluationService(storage, storage, storage)
    decision = svc.evaluate(_candidate(), NOW)
    assert decision.should_speak
    assert decision.execution_action == ExecutionAction.ASK
    assert decision.natural_language_phrase == 'Would you like me to Coffee?'


def test_silent_style_never_speaks(storage):
    svc = ReminderEvaluationService(storage, storage, storage)
    decision = svc.evaluate(_candidate(style=ReminderStyle.SILENT), NOW)
    assert not decision.should_speak
    assert decision.natural_language_phrase is None


def test_disabled_preferences_block(storage):
    storage.upsert_preferences(UserReminderPreferences(person_id='p1', enabled=False))
    decision = ReminderEvaluationService(storage, storage, storage).evaluate(_candidate(), NOW)
    assert not decision.should_speak
    assert 'disabled' in decision.reason


def test_cooldown_blocks(storage):
    storage.add_cooldown(ReminderCooldown(person_id='p1', action_type='Coffee', suppressed_until_utc=NOW + timedelta(hours=1)))
    decision = ReminderEvaluationService(storage, storage, storage).evaluate(_candidate(), NOW)
    assert not decision.should_speak
    assert 'cooldown' in decision.reason


def test_daily_limit_and_minimum_interval(storage):
    svc = ReminderEvaluationService(storage, storage, storage)
    storage.upsert_preferences(UserReminderPreferences(person_id='p1', daily_limit=1, minimum_interval=timedelta(0)))
    storage.add_execution_record(ExecutionRecord(
        candidate_id='c0', person_id='p1', suggested_action='Tea', executed=True, should_speak=True,
        reason='ok', recorded_at_utc=NOW - timedelta(hours=1),
    ))
    decision = svc.evaluate(_candidate(), NOW)
    assert 'Daily' in decision.reason

    storage.upsert_preferences(UserReminderPreferences(person_id='p1', daily_limit=10, minimum_interval=timedelta(hours=2)))
    decision = svc.evaluate(_candidate(), NOW)
    assert 'interval' in decision.reason

    storage.upsert_preferences(UserReminderPreferences(person_id='p1', daily_limit=10, minimum_interval=timedelta(minutes=30)))
    assert svc.evaluate(_candidate(), NOW).should_speak


def test_auto_execute_needs_permission(storage):
    svc = ReminderEvaluationService(storage, storage, storage)
    candidate = _candidate(confidence=0.97)
    assert svc.evaluate(candidate, NOW, is_safe_to_auto_execute=True).execution_action == ExecutionAction.ASK
    storage.upsert_preferences(UserReminderPreferences(person_id='p1', allow_auto_execute=True))
    decision = svc.evaluate(candidate, NOW, is_safe_to_auto_execute=True)
    assert decision.execution_action == ExecutionAction.EXECUTE
    assert decision.natural_language_phrase == 'Running Coffee for you now.'
