"""
Tests for scheduler configuration and application settings.
"""

from pathlib import Path

import pydantic
import pytest

from config import Settings, get_settings
from src.review.config import SchedulerConfig, load_scheduler_config
from src.review.errors import ConfigurationError


class TestSchedulerConfig:
    def test_defaults(self, config):
        assert config.sm2_min_ease_factor == 1.3
        assert config.sm2_max_ease_factor == 3.5
        assert config.learning_steps == (1, 10)
        assert config.relearning_steps == (10,)
        assert config.graduating_interval == 1
        assert config.easy_interval == 4
        assert config.max_interval == 36500
        assert config.initial_stability == 2.0
        assert config.retention_threshold == 0.7
        assert config.mistake_window_days == 3

    def test_upper_case_keys(self):
        config = load_scheduler_config(
            {"SM2_MIN_EASE_FACTOR": 1.2, "LEARNING_STEPS": [1, 5, 30], "STABILITY_FACTOR": 3.0}
        )
        assert config.sm2_min_ease_factor == 1.2
        assert config.learning_steps == (1, 5, 30)
        assert config.initial_stability == 3.0

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"sm2_min_ease_factor": 0.5}, "sm2_min_ease_factor"),
            ({"max_interval": 50}, "max_interval"),
            ({"interval_modifier": 3.0}, "interval_modifier"),
            ({"initial_stability": 10}, "initial_stability"),
            ({"learning_steps": []}, "learning_steps"),
        ],
    )
    def test_out_of_bounds_rejected(self, overrides, field):
        with pytest.raises(ConfigurationError) as exc:
            load_scheduler_config(overrides)
        assert exc.value.field == field

    def test_step_must_be_at_least_a_minute(self):
        with pytest.raises(ConfigurationError) as exc:
            load_scheduler_config({"learning_steps": [0.5, 10]})
        assert exc.value.field.startswith("learning_steps")

    def test_cross_field_bounds(self):
        with pytest.raises(ConfigurationError):
            load_scheduler_config({"sm2_initial_ease": 1.5, "sm2_min_ease_factor": 1.8})
        with pytest.raises(ConfigurationError):
            load_scheduler_config({"forget_threshold": 0.8})

    def test_frozen(self, config):
        with pytest.raises(pydantic.ValidationError):
            config.max_interval = 365

    def test_with_overrides_returns_new_config(self, config):
        tuned = config.with_overrides(MAX_INTERVAL=3650, stability_factor=4.0)

        assert tuned.max_interval == 3650
        assert tuned.initial_stability == 4.0
        assert config.max_interval == 36500

    def test_with_overrides_validates(self, config):
        with pytest.raises(ConfigurationError):
            config.with_overrides(easy_grade=2)

    def test_instances_are_independent(self):
        slow = SchedulerConfig(interval_modifier=0.5)
        fast = SchedulerConfig(interval_modifier=2.0)
        assert slow.interval_modifier != fast.interval_modifier


class TestSettings:
    @pytest.fixture(autouse=True)
    def clear_cache(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.default_session_size == 20
        assert settings.default_incorrect_ratio == 0.7
        assert settings.log_level == "WARNING"
        assert settings.scheduler == SchedulerConfig()

    def test_nested_scheduler_override(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER__MAX_INTERVAL", "3650")
        monkeypatch.setenv("SCHEDULER__INTERVAL_MODIFIER", "1.5")

        settings = Settings(_env_file=None)

        assert settings.scheduler.max_interval == 3650
        assert settings.scheduler.interval_modifier == 1.5

    def test_state_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "reviews.db"))
        assert Settings(_env_file=None).state_db_path == Path(tmp_path / "reviews.db")

    def test_invalid_session_size(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_SESSION_SIZE", "0")
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None)

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
