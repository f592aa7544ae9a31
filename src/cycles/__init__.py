"""Lua cycle engine.

Pure, synchronous prediction logic over a list of logged periods, plus the
persistence, tracker and backup layers built around it.

Subpackages:
    sync/  - Google Drive backup (tokens, Drive client, sync session)

Core modules:
    base           - canonical data types and enums
    dates          - ISO calendar-date helpers
    config_loader  - load/validate/hot-reload cycle_config.yaml
    prediction     - next period, cycle day, forecasts, fertility, phases
    history        - cycle history and the statistics drawn from it
    calendar_sets  - disjoint calendar date sets
    reconcile      - calendar selection diff and overlap guard
    store          - PeriodStore ABC with in-memory and Postgres backends
    import_export  - JSON backup document export / import
    tracker        - load -> derive -> mutate pipeline

Only the engine is re-exported here; import the store, tracker and sync
layers from their modules.
"""

from src.cycles.base import (
    RECOMPUTE,
    CalendarDateSets,
    ChangeAction,
    Confidence,
    CycleDay,
    CycleInfo,
    CyclePhase,
    CyclePrediction,
    FertilityWindow,
    FutureCycle,
    PeriodChange,
    PeriodRecord,
    PhaseInfo,
)
from src.cycles.calendar_sets import build_date_sets
from src.cycles.config_loader import CycleConfig, get_cycle_config
from src.cycles.history import build_cycle_history
from src.cycles.prediction import (
    estimate_fertility_window,
    get_cycle_phase,
    get_day_of_cycle,
    predict_next_n_periods,
    predict_next_period,
)
from src.cycles.reconcile import compute_period_changes, ensure_no_overlap

__all__ = [
    "RECOMPUTE",
    "CalendarDateSets",
    "ChangeAction",
    "Confidence",
    "CycleDay",
    "CycleInfo",
    "CyclePhase",
    "CyclePrediction",
    "FertilityWindow",
    "FutureCycle",
    "PeriodChange",
    "PeriodRecord",
    "PhaseInfo",
    "CycleConfig",
    "get_cycle_config",
    "build_date_sets",
    "build_cycle_history",
    "compute_period_changes",
    "ensure_no_overlap",
    "estimate_fertility_window",
    "get_cycle_phase",
    "get_day_of_cycle",
    "predict_next_n_periods",
    "predict_next_period",
]
