"""Load, validate, and hot-reload the Lua cycle engine configuration.

The config lives in ``cycle_config.yaml`` alongside this module.  It is
loaded once on first use and cached.  Call ``reload_cycle_config()`` to
re-read it from disk; the previous config is kept if the new file fails
validation.

Usage::

    from src.cycles.config_loader import get_cycle_config

    config = get_cycle_config()
    config.prediction.window_size            # 6
    config.fertility.days_before_ovulation   # 4
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("lua.cycles.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "cycle_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class PredictionConfig:
    """Next-period forecast settings."""

    window_size: int = 6
    default_cycle_length: int = 28
    min_valid_cycle_days: int = 0
    max_valid_cycle_days: int = 90
    high_max_stddev: float = 2.0
    medium_max_stddev: float = 5.0
    forecast_cycles: int = 12
    default_period_duration: int = 5

    def is_valid_cycle_length(self, length: int) -> bool:
        """Return True if a cycle length is usable (both bounds exclusive)."""
        return self.min_valid_cycle_days < length < self.max_valid_cycle_days


@dataclass
class FertilityConfig:
    """Ovulation / fertile window model settings."""

    min_cycle_days: int = 18
    max_cycle_days: int = 50
    luteal_days: int = 14
    min_ovulation_day: int = 5
    days_before_ovulation: int = 4
    days_after_ovulation: int = 2


@dataclass
class CalendarConfig:
    """Calendar date-set settings."""

    ongoing_cap_days: int = 14


@dataclass
class StatisticsConfig:
    """Cycle fluctuation / dynamics settings."""

    window_cycles: int = 12
    normal_min_days: int = 21
    normal_max_days: int = 35


@dataclass
class SyncConfig:
    """Cloud backup timing settings."""

    debounce_seconds: float = 2.0
    weekly_backup_days: int = 7
    silent_refresh_timeout_seconds: float = 5.0
    token_expiry_buffer_seconds: int = 60


@dataclass
class CycleConfig:
    """Complete, validated engine configuration.

    Attributes:
        version:    Config schema version string.
        prediction: Forecast settings.
        fertility:  Ovulation model settings.
        calendar:   Calendar date-set settings.
        statistics: Fluctuation / dynamics settings.
        sync:       Cloud backup timing.
    """

    version: str = "1.0"
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    fertility: FertilityConfig = field(default_factory=FertilityConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    statistics: StatisticsConfig = field(default_factory=StatisticsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when cycle_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    try:
        import yaml  # pyyaml
    except ImportError as exc:
        raise ImportError(
            "pyyaml is required for config loading. Install with: pip install pyyaml"
        ) from exc

    if not path.exists():
        raise FileNotFoundError(f"Cycle config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return raw


def _validate_and_build(raw: dict) -> CycleConfig:
    """Validate the raw YAML dict and construct a CycleConfig.

    Missing keys fall back to the dataclass defaults.  Every problem is
    collected before raising so one run reports all of them.

    Raises:
        ConfigValidationError: If any value has the wrong type or range.
    """
    errors: list[str] = []

    def _int(section: dict, key: str, default: int, where: str, minimum: int = 0) -> int:
        value = section.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{where}.{key} must be an integer, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{where}.{key} = {number} must be >= {minimum}")
        return number

    def _float(section: dict, key: str, default: float, where: str) -> float:
        value = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{where}.{key} must be a number, got {value!r}")
            return default
        if number < 0:
            errors.append(f"{where}.{key} = {number} must not be negative")
        return number

    def _section(key: str) -> dict:
        section = raw.get(key) or {}
        if not isinstance(section, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return section

    version = str(raw.get("version", "1.0"))

    # ── Prediction ──
    pr_raw = _section("prediction")
    conf_raw = pr_raw.get("confidence") or {}
    defaults = PredictionConfig()
    prediction = PredictionConfig(
        window_size=_int(pr_raw, "window_size", defaults.window_size, "prediction", 1),
        default_cycle_length=_int(
            pr_raw, "default_cycle_length", defaults.default_cycle_length, "prediction", 1
        ),
        min_valid_cycle_days=_int(
            pr_raw, "min_valid_cycle_days", defaults.min_valid_cycle_days, "prediction"
        ),
        max_valid_cycle_days=_int(
            pr_raw, "max_valid_cycle_days", defaults.max_valid_cycle_days, "prediction", 1
        ),
        high_max_stddev=_float(
            conf_raw, "high_max_stddev", defaults.high_max_stddev, "prediction.confidence"
        ),
        medium_max_stddev=_float(
            conf_raw, "medium_max_stddev", defaults.medium_max_stddev, "prediction.confidence"
        ),
        forecast_cycles=_int(pr_raw, "forecast_cycles", defaults.forecast_cycles, "prediction"),
        default_period_duration=_int(
            pr_raw, "default_period_duration", defaults.default_period_duration, "prediction", 1
        ),
    )
    if prediction.min_valid_cycle_days >= prediction.max_valid_cycle_days:
        errors.append("prediction.min_valid_cycle_days must be below max_valid_cycle_days")
    if prediction.high_max_stddev > prediction.medium_max_stddev:
        errors.append("prediction.confidence.high_max_stddev must not exceed medium_max_stddev")

    # ── Fertility ──
    fw_raw = _section("fertility")
    fdefaults = FertilityConfig()
    fertility = FertilityConfig(
        min_cycle_days=_int(fw_raw, "min_cycle_days", fdefaults.min_cycle_days, "fertility", 1),
        max_cycle_days=_int(fw_raw, "max_cycle_days", fdefaults.max_cycle_days, "fertility", 1),
        luteal_days=_int(fw_raw, "luteal_days", fdefaults.luteal_days, "fertility", 1),
        min_ovulation_day=_int(
            fw_raw, "min_ovulation_day", fdefaults.min_ovulation_day, "fertility"
        ),
        days_before_ovulation=_int(
            fw_raw, "days_before_ovulation", fdefaults.days_before_ovulation, "fertility"
        ),
        days_after_ovulation=_int(
            fw_raw, "days_after_ovulation", fdefaults.days_after_ovulation, "fertility"
        ),
    )
    if fertility.min_cycle_days > fertility.max_cycle_days:
        errors.append("fertility.min_cycle_days must not exceed max_cycle_days")

    # ── Calendar ──
    cal_raw = _section("calendar")
    calendar = CalendarConfig(
        ongoing_cap_days=_int(cal_raw, "ongoing_cap_days", 14, "calendar"),
    )

    # ── Statistics ──
    st_raw = _section("statistics")
    statistics = StatisticsConfig(
        window_cycles=_int(st_raw, "window_cycles", 12, "statistics", 2),
        normal_min_days=_int(st_raw, "normal_min_days", 21, "statistics"),
        normal_max_days=_int(st_raw, "normal_max_days", 35, "statistics"),
    )

    # ── Sync ──
    sy_raw = _section("sync")
    sync = SyncConfig(
        debounce_seconds=_float(sy_raw, "debounce_seconds", 2.0, "sync"),
        weekly_backup_days=_int(sy_raw, "weekly_backup_days", 7, "sync", 1),
        silent_refresh_timeout_seconds=_float(
            sy_raw, "silent_refresh_timeout_seconds", 5.0, "sync"
        ),
        token_expiry_buffer_seconds=_int(sy_raw, "token_expiry_buffer_seconds", 60, "sync"),
    )

    if errors:
        raise ConfigValidationError(
            f"cycle_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return CycleConfig(
        version=version,
        prediction=prediction,
        fertility=fertility,
        calendar=calendar,
        statistics=statistics,
        sync=sync,
        _raw=raw,
    )


def load_cycle_config(path: Path | None = None) -> CycleConfig:
    """Load and validate the cycle config from disk.

    Args:
        path: Override path to YAML. Uses the bundled cycle_config.yaml by default.

    Returns:
        Validated CycleConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded cycle config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: CycleConfig | None = None
_config_lock = threading.Lock()


def get_cycle_config() -> CycleConfig:
    """Return the global CycleConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_cycle_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_cycle_config()
    return _config


def reload_cycle_config(path: Path | None = None) -> CycleConfig:
    """Reload the cycle config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_cycle_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded cycle config: %s → %s", old_version, new_config.version)
    return new_config
