import sys, pathlib
from datetime import datetime, timezone

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from config.settings import SignalSelectionSettings, TimeContextSettings  # noqa: E402
from patterner.buckets import ContextBucketKeyBuilder, select_time_bucket  # noqa: E402
from patterner.models import ActionContext, SignalProfile, SignalProfileEntry, SignalState  # noqa: E402
from patterner.signals import (  # noqa: E402
    SignalSelector,
    SignalSimilarityEvaluator,
    blend_profiles,
    sensor_type,
)


def _at(hour, minute=0):
    return datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)


def test_bucket_key_format():
    builder = ContextBucketKeyBuilder()
    ctx = ActionContext(time_bucket='morning', day_type='weekday', location='kitchen')
    assert builder.build_key(ctx) == 'weekday*morning*kitchen'
    assert builder.build_key(ActionContext(time_bucket='morning', day_type='weekday')) == 'weekday*morning*unknown'
    assert ContextBucketKeyBuilder('{location}|{timeBucket}').build_key(ctx) == 'kitchen|morning'


@pytest.mark.parametrize('hour,expected', [
    (5, 'morning'), (11, 'morning'), (12, 'afternoon'), (17, 'evening'), (21, 'evening'), (22, 'night'), (3, 'night'),
])
def test_time_bucket_boundaries(hour, expected):
    assert select_time_bucket(_at(hour)) == expected


def test_time_bucket_uses_local_offset():
    settings = TimeContextSettings(local_time_offset_minutes=120)
    assert select_time_bucket(_at(16), settings) == 'evening'
    broken = TimeContextSettings(morning_start='bogus')
    assert select_time_bucket(_at(6), broken) == 'morning'


def test_sensor_type():
    assert sensor_type('sensor.presence.kitchen') == 'presence'
    assert sensor_type('Motion') == 'motion'
    assert sensor_type('') == 'unknown'


def test_value_normalization():
    sel = SignalSelector()
    assert sel.normalize_value('sensor.presence.hall', True) == 1.0
    assert sel.normalize_value('sensor.temp.hall', 25) == pytest.approx(0.25)
    assert sel.normalize_value('sensor.light.hall', 5000) == 1.0
    assert sel.normalize_value('sensor.light.hall', 500) == pytest.approx(0.5)
    assert sel.normalize_value('sensor.door.front', 'Open') == 1.0
    assert sel.normalize_value('sensor.door.front', 'closed') == 0.0
    assert sel.normalize_value('sensor.presence.hall', 'away') == 0.0
    assert sel.normalize_value('sensor.tv.living', 'netflix') == 0.5
    assert sel.normalize_value('sensor.tv.living', None) == 0.0


def test_configured_value_mapping():
    sel = SignalSelector(SignalSelectionSettings(value_mappings={'tv': {'netflix': 0.9}}))
    assert sel.normalize_value('sensor.tv.living', 'netflix') == 0.9


def test_selection_keeps_top_k_with_unit_weights():
    sel = SignalSelector()
    states = [
        SignalState('sensor.light.kitchen', 300),
        SignalState('sensor.presence.kitchen', 'home'),
        SignalState('sensor.motion.kitchen', True),
    ]
    profile = sel.select_and_normalize_signals(states, top_k=2)
    assert set(profile.signals) == {'sensor.presence.kitchen', 'sensor.motion.kitchen'}
    total = sum(e.weight ** 2 for e in profile.signals.values())
    assert total == pytest.approx(1.0)
    assert profile.signals['sensor.presence.kitchen'].weight > profile.signals['sensor.motion.kitchen'].weight


def test_raw_importance_scales_selection():
    sel = SignalSelector()
    states = [
        SignalState('sensor.presence.kitchen', 'home', raw_importance=0.1),
        SignalState('sensor.door.front', 'open'),
    ]
    profile = sel.select_and_normalize_signals(states, top_k=1)
    assert list(profile.signals) == ['sensor.door.front']


def test_selection_of_nothing_is_empty():
    assert SignalSelector().select_and_normalize_signals([], 10).is_empty()
    assert SignalSelector().select_and_normalize_signals(None, 10).is_empty()


def test_similarity_properties():
    ev = SignalSimilarityEvaluator()
    a = SignalProfile({'s1': SignalProfileEntry(0.8, 1.0), 's2': SignalProfileEntry(0.6, 0.5)})
    b = SignalProfile({'s1': SignalProfileEntry(0.6, 0.2), 's3': SignalProfileEntry(0.8, 1.0)})
    assert ev.calculate_similarity(a, a) == pytest.approx(1.0)
    assert ev.calculate_similarity(a, b) == pytest.approx(ev.calculate_similarity(b, a))
    assert 0.0 <= ev.calculate_similarity(a, b) <= 1.0
    assert ev.calculate_similarity(a, SignalProfile()) == 0.0
    assert ev.calculate_similarity(None, a) == 0.0
    zero = SignalProfile({'s1': SignalProfileEntry(1.0, 0.0)})
    assert ev.calculate_similarity(zero, a) == 0.0


def test_blend_profiles():
    base = SignalProfile({'s1': SignalProfileEntry(1.0, 1.0)})
    update = SignalProfile({'s2': SignalProfileEntry(1.0, 0.0)})
    blended = blend_profiles(base, update, 0.1)
    assert blended.signals['s1'].weight == pytest.approx(0.9)
    assert blended.signals['s2'].weight == pytest.approx(0.1)
    seeded = blend_profiles(None, update, 0.1)
    assert seeded.signals['s2'].weight == 1.0
