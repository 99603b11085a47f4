"""config_loader.py Simple JSON configuration loader for the pattern engine."""

import copy
import json
import os
from pathlib import Path
from typing import Any

from loguru import logger


def _resolve_config_path(config_file: str) -> Path:
    """Resolve config path supporting env overrides and repo defaults."""

    env_override = os.getenv("PATTERNER_CONFIG_PATH")
    if env_override:
        env_path = Path(env_override).expanduser()
        if env_path.is_dir():
            return env_path / config_file
        return env_path

    path = Path(config_file)
    if path.exists() or path.is_absolute():
        return path

    package_dir = Path(__file__).resolve().parent
    candidate = package_dir / config_file
    if candidate.exists():
        return candidate

    root_candidate = package_dir.parent / config_file
    if root_candidate.exists():
        return root_candidate

    # Default: create alongside config package to keep config scoped
    return candidate


def load_config(config_file: str = "patterner_config.json") -> dict[str, Any]:
    """Load configuration from a JSON file and apply environment overrides.

    Args:
        config_file: Name or path of the configuration file

    Returns:
        Dict with configuration
    """
    config_path = _resolve_config_path(config_file)

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, creating default")
        default_config = create_default_config()
        save_config(default_config, config_file)
        config = default_config
    else:
        try:
            with open(config_path, encoding="utf-8") as f:
                config = json.load(f)
            logger.info(f"Loaded configuration from {config_path}")
        except Exception as e:
            logger.error(f"Error loading config {config_file}: {e}")
            config = create_default_config()

    if "PATTERNER_DB_PATH" in os.environ:
        config.setdefault("database", {})["path"] = os.environ["PATTERNER_DB_PATH"]
    if "PATTERNER_LOG_LEVEL" in os.environ:
        config.setdefault("logging", {})["level"] = os.environ["PATTERNER_LOG_LEVEL"]

    return config


def save_config(config: dict[str, Any], config_file: str = "patterner_config.json"):
    """Write configuration to its file."""
    config_path = _resolve_config_path(config_file)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=4, ensure_ascii=False)
        logger.info(f"Saved configuration to {config_path}")
    except Exception as e:
        logger.error(f"Error saving config {config_file}: {e}")


def create_default_config() -> dict[str, Any]:
    """Build the default engine configuration."""
    return {
        "database": {"path": "patterner_data.db"},
        "policies": {
            "minimum_probability_for_execution": 0.7,
            "observation_window_minutes": 60,
            "time_offset_minutes": 45,
            "match_by_state_signals": True,
            "execute_auto_threshold": 0.95,
            "ask_threshold": 0.5,
            "signal_selection": {
                "enabled": True,
                "top_k": 10,
                "similarity_threshold": 0.7,
                "update_alpha": 0.1,
            },
        },
        "learning": {
            "session_window_minutes": 30,
            "confidence_alpha": 0.1,
            "delay_beta": 0.2,
            "decay_rate": 0.01,
        },
        "routine": {
            "default_probability": 0.5,
            "probability_increase_step": 0.1,
            "default_delay_seconds": 300,
            "low_evidence_confidence_cap": 0.6,
            "delay_learning": {
                "base_alpha": 0.3,
                "half_life_days": 14.0,
                "max_evidence_items": 20,
                "min_samples_for_timing": 3,
            },
            "time_context": {
                "local_time_offset_minutes": 0,
                "morning_start": "05:00",
                "afternoon_start": "12:00",
                "evening_start": "17:00",
                "night_start": "22:00",
            },
        },
        "reminders": {
            "default_confidence": 0.5,
            "confidence_step": 0.1,
            "minimum_occurrences": 3,
            "minimum_confidence": 0.4,
            "context_bucket_format": "{dayType}*{timeBucket}*{location}",
            "feedback_cooldown_hours": 24,
            "negative_feedback_reduction": 0.2,
        },
        "scheduler": {"poll_interval_seconds": 30, "batch_size": 10},
        "window_closer": {"poll_interval_seconds": 30},
        "decay": {"interval_hours": 24},
        "cleanup": {"event_cleanup_interval_hours": 24, "event_retention_days": 30},
        "logging": {"level": "INFO", "file": "logs/patterner_{time:YYYY-MM-DD}.log"},
    }


class ConfigLoader:
    """Holds the loaded engine configuration."""

    def __init__(self, config_file: str = "patterner_config.json"):
        self.config_file = config_file
        self.config_path = _resolve_config_path(config_file)
        self._config = None
        self.load()

    def load(self) -> dict[str, Any]:
        self._config = load_config(self.config_file)
        return self._config

    def get_config(self) -> dict[str, Any]:
        """Return the current configuration, reloading if needed."""
        if self._config is None:
            self.load()
        if self._config is None:
            self._config = create_default_config()
        return self._config  # type: ignore[return-value]

    def get(self, key: str, default: Any = None):
        """Read a value, supporting dotted notation like 'policies.time_offset_minutes'."""
        value: Any = self.get_config()
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any):
        config = self.get_config()
        keys = key.split(".")
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.get_config())
