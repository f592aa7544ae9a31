"""Tests for cycle_config.yaml loading and validation."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from src.config import Settings
from src.cycles.config_loader import (
    ConfigValidationError,
    CycleConfig,
    _validate_and_build,
    get_cycle_config,
    load_cycle_config,
    reload_cycle_config,
)


@pytest.fixture
def restore_global_config():
    """Put the bundled config back after tests that swap the singleton."""
    yield
    reload_cycle_config()


class TestConfigLoading:
    """Tests for loading the bundled cycle_config.yaml."""

    def test_load_default_config(self, cycle_config: CycleConfig) -> None:
        assert cycle_config.version == "1.0"
        assert cycle_config.prediction.window_size == 6
        assert cycle_config.prediction.default_cycle_length == 28
        assert cycle_config.calendar.ongoing_cap_days == 14

    def test_fertility_model_defaults(self, cycle_config: CycleConfig) -> None:
        f = cycle_config.fertility
        assert (f.min_cycle_days, f.max_cycle_days) == (18, 50)
        assert f.luteal_days == 14
        assert (f.days_before_ovulation, f.days_after_ovulation) == (4, 2)

    def test_sync_timings(self, cycle_config: CycleConfig) -> None:
        s = cycle_config.sync
        assert s.debounce_seconds == 2.0
        assert s.weekly_backup_days == 7
        assert s.token_expiry_buffer_seconds == 60

    def test_valid_cycle_length_bounds_are_exclusive(self, cycle_config: CycleConfig) -> None:
        p = cycle_config.prediction
        assert not p.is_valid_cycle_length(0)
        assert p.is_valid_cycle_length(1)
        assert p.is_valid_cycle_length(89)
        assert not p.is_valid_cycle_length(90)

    def test_load_nonexistent_file_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_cycle_config(path=Path("/nonexistent/path/cycle_config.yaml"))


class TestValidation:
    """Tests for _validate_and_build."""

    def test_empty_dict_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config == CycleConfig(_raw={})

    def test_partial_section_overrides(self) -> None:
        config = _validate_and_build({"prediction": {"window_size": 3}})
        assert config.prediction.window_size == 3
        assert config.prediction.default_cycle_length == 28

    def test_non_numeric_value_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="window_size must be an integer"):
            _validate_and_build({"prediction": {"window_size": "six"}})

    def test_negative_value_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="debounce_seconds"):
            _validate_and_build({"sync": {"debounce_seconds": -1}})

    def test_inverted_cycle_bounds_raise(self) -> None:
        raw = {"prediction": {"min_valid_cycle_days": 40, "max_valid_cycle_days": 40}}
        with pytest.raises(ConfigValidationError, match="min_valid_cycle_days"):
            _validate_and_build(raw)

    def test_confidence_thresholds_ordered(self) -> None:
        raw = {"prediction": {"confidence": {"high_max_stddev": 6, "medium_max_stddev": 5}}}
        with pytest.raises(ConfigValidationError, match="high_max_stddev"):
            _validate_and_build(raw)

    def test_all_errors_reported_together(self) -> None:
        raw = {
            "prediction": {"window_size": "x"},
            "fertility": {"min_cycle_days": 60, "max_cycle_days": 50},
        }
        with pytest.raises(ConfigValidationError, match="2 validation error"):
            _validate_and_build(raw)

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError, match="'calendar' must be a mapping"):
            _validate_and_build({"calendar": [14]})


class TestYamlFiles:
    """Tests that read YAML from disk."""

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "cycle_config.yaml"
        config_file.write_text("prediction: [window_size: 6\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_cycle_config(path=config_file)

    def test_top_level_list_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "cycle_config.yaml"
        config_file.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_cycle_config(path=config_file)

    def test_hot_reload(self, tmp_path: Path, restore_global_config) -> None:
        """reload_cycle_config() should replace the global singleton."""
        config_file = tmp_path / "cycle_config.yaml"
        config_file.write_text(
            textwrap.dedent(
                """
                version: "2.0-test"
                prediction:
                  window_size: 4
                sync:
                  debounce_seconds: 0.5
                """
            ).strip()
        )

        new_config = reload_cycle_config(path=config_file)
        assert new_config.version == "2.0-test"
        assert get_cycle_config() is new_config
        assert get_cycle_config().sync.debounce_seconds == 0.5

    def test_failed_reload_keeps_previous(self, tmp_path: Path) -> None:
        before = get_cycle_config()
        config_file = tmp_path / "cycle_config.yaml"
        config_file.write_text("prediction:\n  window_size: nope\n")

        with pytest.raises(ConfigValidationError, match="validation error"):
            reload_cycle_config(path=config_file)
        assert get_cycle_config() is before


class TestSettings:
    """Deployment settings that feed the cycle engine's startup."""

    def test_debug_forces_debug_logging(self) -> None:
        assert Settings(debug=True, log_level="WARNING").effective_log_level == "DEBUG"

    def test_log_level_used_without_debug(self) -> None:
        assert Settings(debug=False, log_level="WARNING").effective_log_level == "WARNING"
