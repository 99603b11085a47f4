import sys, pathlib, json

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from config.config_loader import ConfigLoader, create_default_config, load_config  # noqa: E402
from config.settings import PatternerSettings  # noqa: E402
from patterner.engine import PatternEngine  # noqa: E402


def test_missing_config_is_created_with_defaults(tmp_path, monkeypatch):
    path = tmp_path / 'patterner_config.json'
    monkeypatch.setenv('PATTERNER_CONFIG_PATH', str(path))
    monkeypatch.delenv('PATTERNER_DB_PATH', raising=False)
    monkeypatch.delenv('PATTERNER_LOG_LEVEL', raising=False)
    config = load_config()
    assert path.exists()
    assert config == create_default_config()
    assert json.loads(path.read_text(encoding='utf-8'))['policies']['time_offset_minutes'] == 45


def test_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / 'cfg.json'
    path.write_text(json.dumps({'policies': {'observation_window_minutes': 20}}), encoding='utf-8')
    monkeypatch.setenv('PATTERNER_CONFIG_PATH', str(path))
    monkeypatch.setenv('PATTERNER_DB_PATH', str(tmp_path / 'env.db'))
    monkeypatch.setenv('PATTERNER_LOG_LEVEL', 'DEBUG')
    settings = PatternerSettings.from_dict(load_config())
    assert settings.db_path == str(tmp_path / 'env.db')
    assert settings.log_level == 'DEBUG'
    assert settings.policies.observation_window_minutes == 20
    assert settings.policies.time_offset_minutes == 45


def test_invalid_json_falls_back_to_defaults(tmp_path, monkeypatch):
    path = tmp_path / 'broken.json'
    path.write_text('{not json', encoding='utf-8')
    monkeypatch.setenv('PATTERNER_CONFIG_PATH', str(path))
    monkeypatch.delenv('PATTERNER_DB_PATH', raising=False)
    monkeypatch.delenv('PATTERNER_LOG_LEVEL', raising=False)
    assert load_config() == create_default_config()


def test_settings_defaults():
    s = PatternerSettings.from_dict(None)
    assert s.policies.minimum_probability_for_execution == 0.7
    assert s.policies.signal_selection.top_k == 10
    assert s.policies.signal_selection.similarity_threshold == 0.7
    assert s.learning.decay_rate == 0.01
    assert s.routine.default_probability == 0.5
    assert s.routine.delay_learning.half_life_days == 14.0
    assert s.routine.delay_learning.min_samples_for_timing == 3
    assert s.routine.default_delay_seconds == 300
    assert s.workers.scheduler_batch_size == 10


def test_partial_config_merges_nested_sections():
    s = PatternerSettings.from_dict({
        'policies': {'signal_selection': {'top_k': 3, 'value_ranges': {'co2': [400, 2000]}}},
        'window_closer': {'poll_interval_seconds': 1},
    })
    assert s.policies.signal_selection.top_k == 3
    assert s.policies.signal_selection.enabled is True
    assert s.policies.signal_selection.value_ranges['co2'] == (400.0, 2000.0)
    assert s.policies.observation_window_minutes == 60
    assert s.workers.window_closer_interval_seconds == 5


def test_config_loader_dotted_access(tmp_path, monkeypatch):
    monkeypatch.setenv('PATTERNER_CONFIG_PATH', str(tmp_path / 'loader.json'))
    loader = ConfigLoader()
    assert loader.get('policies.time_offset_minutes') == 45
    assert loader.get('policies.nope', 'x') == 'x'
    loader.set('routine.delay_learning.base_alpha', 0.5)
    loader.set('reminders.minimum_occurrences', 5)
    loader.set('database.path', str(tmp_path / 'cli.db'))
    assert loader.get('reminders.minimum_occurrences') == 5
    assert loader.get('reminders.minimum_confidence') == 0.4
    snapshot = loader.to_dict()
    snapshot['reminders']['minimum_occurrences'] = 99
    assert loader.get('reminders.minimum_occurrences') == 5
    settings = PatternerSettings.from_dict(loader.to_dict())
    assert settings.db_path == str(tmp_path / 'cli.db')
    assert settings.routine.delay_learning.base_alpha == 0.5


def test_engine_from_config(tmp_path):
    eng = PatternEngine.from_config({'database': {'path': str(tmp_path / 'cfg.db')}, 'learning': {'session_window_minutes': 5}})
    assert eng.learner.settings.session_window_minutes == 5
    assert (tmp_path / 'cfg.db').exists()
    eng.storage.close()
