"""Historical cycle list and the statistics drawn from it.

``build_cycle_history`` turns completed periods into one ``CycleInfo`` per
period.  The cycle that follows the newest completed period has no
measured length yet; it is filled from the prediction (or the 28-day
default) and flagged ``estimated``.

Typical usage::

    cycles = build_cycle_history(periods, prediction)
    stats = summarize_fluctuation(cycles, prediction)
    points = cycle_dynamics(cycles)
"""

from __future__ import annotations

import logging

from src.cycles import dates
from src.cycles.base import (
    RECOMPUTE,
    CycleInfo,
    CyclePoint,
    CyclePrediction,
    FluctuationStats,
    PeriodRecord,
    PredictionArg,
)
from src.cycles.config_loader import CycleConfig, get_cycle_config
from src.cycles.prediction import estimate_fertility_window, predict_next_period

logger = logging.getLogger("lua.cycles.history")


def build_cycle_history(
    periods: list[PeriodRecord],
    prediction: PredictionArg = RECOMPUTE,
    *,
    config: CycleConfig | None = None,
) -> list[CycleInfo]:
    """Build the chronological cycle list from completed periods.

    Args:
        periods:    All known records; ongoing ones are ignored.
        prediction: Prediction to take the trailing cycle length from,
                    ``None`` for the default length, or ``RECOMPUTE``.
        config:     Engine config override.

    Returns:
        One CycleInfo per completed period, oldest first.
    """
    config = config or get_cycle_config()
    pc = config.prediction

    completed = sorted((p for p in periods if p.end_date is not None), key=lambda p: p.start_date)
    if not completed:
        return []

    if prediction is RECOMPUTE:
        prediction = predict_next_period(periods, config=config)

    cycles: list[CycleInfo] = []
    for i, period in enumerate(completed):
        duration = dates.period_duration(period.start_date, period.end_date)

        if i < len(completed) - 1:
            length = dates.days_between(completed[i + 1].start_date, period.start_date)
            estimated = False
        else:
            length = (
                prediction.avg_cycle_length
                if prediction is not None
                else pc.default_cycle_length
            )
            estimated = True

        valid = pc.is_valid_cycle_length(length)
        if not valid:
            logger.debug("Cycle starting %s has unusable length %d", period.start_date, length)
        cycles.append(
            CycleInfo(
                start_date=period.start_date,
                end_date=period.end_date,
                cycle_length=length if valid else 0,
                period_duration=duration,
                fertility=(
                    estimate_fertility_window(period.start_date, length, config=config)
                    if valid
                    else None
                ),
                estimated=estimated,
            )
        )

    return cycles


def _measured(cycles: list[CycleInfo], config: CycleConfig) -> list[CycleInfo]:
    """Completed, non-estimated cycles with a usable length, newest window only."""
    pc = config.prediction
    usable = [c for c in cycles if not c.estimated and pc.is_valid_cycle_length(c.cycle_length)]
    return usable[-config.statistics.window_cycles:]


def summarize_fluctuation(
    cycles: list[CycleInfo],
    prediction: CyclePrediction | None,
    *,
    config: CycleConfig | None = None,
) -> FluctuationStats | None:
    """Range of recent cycle lengths plus the last cycle's figures.

    Returns:
        FluctuationStats, or None with fewer than two measured cycles.
    """
    config = config or get_cycle_config()
    recent = _measured(cycles, config)
    if len(recent) < 2:
        return None

    lengths = [c.cycle_length for c in recent]
    return FluctuationStats(
        min_cycle_length=min(lengths),
        max_cycle_length=max(lengths),
        prev_cycle_length=recent[-2].cycle_length,
        last_period_duration=recent[-1].period_duration,
        avg_cycle_length=prediction.avg_cycle_length if prediction is not None else 0,
    )


def cycle_dynamics(
    cycles: list[CycleInfo],
    *,
    config: CycleConfig | None = None,
) -> list[CyclePoint]:
    """Recent measured cycle lengths for the dynamics chart.

    Each point is flagged against the normal 21-35 day range.  Fewer than
    two points cannot form a line, so that case returns [].
    """
    config = config or get_cycle_config()
    st = config.statistics
    recent = _measured(cycles, config)
    if len(recent) < 2:
        return []
    return [
        CyclePoint(
            start_date=c.start_date,
            cycle_length=c.cycle_length,
            in_normal_range=st.normal_min_days <= c.cycle_length <= st.normal_max_days,
        )
        for c in recent
    ]
