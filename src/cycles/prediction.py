"""Menstrual cycle prediction engine.

Turns a list of logged periods into:
- a forecast of the next period (weighted averages + confidence)
- the current day of cycle
- a chain of future cycle forecasts
- fertile window / ovulation estimates
- the five-phase position within the current cycle

Every function here is pure and synchronous.  "Today" is a parameter so
results are reproducible; it defaults to the local calendar date.

Insufficient data (fewer than two completed periods, or no usable cycle
length) yields ``None`` / ``[]`` rather than an exception.
"""

from __future__ import annotations

import logging
import math
import statistics
from datetime import date

from src.cycles import dates
from src.cycles.base import (
    RECOMPUTE,
    Confidence,
    CycleDay,
    CyclePhase,
    CyclePrediction,
    FertilityWindow,
    FutureCycle,
    PeriodRecord,
    PhaseInfo,
    PredictionArg,
)
from src.cycles.config_loader import CycleConfig, get_cycle_config

logger = logging.getLogger("lua.cycles.prediction")

# Premenstrual phase covers the last three days of the modelled cycle
_PREMENSTRUAL_OFFSET = 3


# ---------------------------------------------------------------------------
# Statistics helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives.

    ``round()`` uses banker's rounding (``round(28.5) == 28``), which would
    shift forecasts by a day on exact halves.
    """
    return math.floor(value + 0.5)


def weighted_average(values: list[int], max_count: int) -> float:
    """Weighted mean of the last ``max_count`` values.

    Weights run 1..k over the trailing window so the most recent value
    counts the most.
    """
    window = values[-max_count:]
    weights = range(1, len(window) + 1)
    total_weight = sum(weights)
    return sum(v * w for v, w in zip(window, weights)) / total_weight


def sample_stddev(values: list[int]) -> float:
    """Bessel-corrected standard deviation; 0.0 with fewer than two values."""
    return statistics.stdev(values) if len(values) > 1 else 0.0


def _confidence_for(stddev: float, config: CycleConfig) -> Confidence:
    pc = config.prediction
    if stddev <= pc.high_max_stddev:
        return Confidence.HIGH
    if stddev <= pc.medium_max_stddev:
        return Confidence.MEDIUM
    return Confidence.LOW


def _completed_sorted(periods: list[PeriodRecord]) -> list[PeriodRecord]:
    return sorted((p for p in periods if p.end_date is not None), key=lambda p: p.start_date)


def _latest_ongoing(periods: list[PeriodRecord]) -> PeriodRecord | None:
    ongoing = [p for p in periods if p.end_date is None]
    return max(ongoing, key=lambda p: p.start_date) if ongoing else None


# ---------------------------------------------------------------------------
# Next period
# ---------------------------------------------------------------------------


def predict_next_period(
    periods: list[PeriodRecord],
    window_size: int | None = None,
    *,
    today: date | None = None,
    config: CycleConfig | None = None,
) -> CyclePrediction | None:
    """Forecast the next period from logged history.

    Args:
        periods:     All known records, completed and ongoing, any order.
        window_size: How many recent cycles feed the averages (default 6).
        today:       Reference date for lateness (defaults to today).
        config:      Engine config override.

    Returns:
        CyclePrediction, or None with fewer than two completed periods or
        when no cycle length survives the validity filter.
    """
    config = config or get_cycle_config()
    pc = config.prediction
    window = window_size or pc.window_size
    now = today or dates.today()

    completed = _completed_sorted(periods)
    if len(completed) < 2:
        logger.debug("Not enough completed periods to predict (%d)", len(completed))
        return None

    cycle_lengths: list[int] = []
    for prev, cur in zip(completed, completed[1:]):
        length = dates.days_between(cur.start_date, prev.start_date)
        if pc.is_valid_cycle_length(length):
            cycle_lengths.append(length)
        else:
            logger.debug(
                "Discarding cycle length %d between %s and %s",
                length, prev.start_date, cur.start_date,
            )

    last_completed = completed[-1]
    anchor = last_completed.start_date

    # An ongoing period that started after the last completed one is real
    # information about the current cycle; use it without waiting for an end.
    ongoing = _latest_ongoing(periods)
    if ongoing is not None and ongoing.start_date > last_completed.start_date:
        gap = dates.days_between(ongoing.start_date, last_completed.start_date)
        if pc.is_valid_cycle_length(gap):
            cycle_lengths.append(gap)
        anchor = ongoing.start_date

    if not cycle_lengths:
        logger.debug("No valid cycle lengths among %d completed periods", len(completed))
        return None

    durations = [dates.period_duration(p.start_date, p.end_date) for p in completed]

    avg_cycle_length = round_half_up(weighted_average(cycle_lengths, window))
    avg_period_duration = round_half_up(weighted_average(durations, window))

    predicted_start = dates.add_days(anchor, avg_cycle_length)
    predicted_end = dates.add_days(predicted_start, avg_period_duration - 1)

    days_late = max(0, dates.days_between(now, predicted_start))

    sd = sample_stddev(cycle_lengths[-window:])
    confidence = Confidence.LOW if days_late > 0 else _confidence_for(sd, config)

    return CyclePrediction(
        predicted_start=predicted_start,
        predicted_end=predicted_end,
        avg_cycle_length=avg_cycle_length,
        avg_period_duration=avg_period_duration,
        confidence=confidence,
        stddev=math.floor(sd * 10 + 0.5) / 10,
        days_late=days_late,
    )


# ---------------------------------------------------------------------------
# Day of cycle
# ---------------------------------------------------------------------------


def get_day_of_cycle(
    periods: list[PeriodRecord],
    prediction: PredictionArg = RECOMPUTE,
    *,
    today: date | None = None,
    config: CycleConfig | None = None,
) -> CycleDay | None:
    """Locate today within the current cycle.

    Args:
        periods:    All known records.
        prediction: A prediction to use as-is, ``None`` when it is known
                    that there is none, or ``RECOMPUTE`` (the default) to
                    derive it from ``periods``.
        today:      Reference date.
        config:     Engine config override.

    Returns:
        CycleDay, or None when nothing is logged or the latest period starts
        in the future.
    """
    if not periods:
        return None

    config = config or get_cycle_config()
    now = today or dates.today()

    last = max(periods, key=lambda p: p.start_date)
    day = dates.days_between(now, last.start_date) + 1
    if day < 1:
        return None

    if prediction is RECOMPUTE:
        prediction = predict_next_period(periods, today=now, config=config)

    total = (
        prediction.avg_cycle_length
        if prediction is not None
        else config.prediction.default_cycle_length
    )
    days_until_next = (
        dates.days_between(prediction.predicted_start, now) if prediction is not None else None
    )

    return CycleDay(
        day=day,
        total=total,
        days_until_next=days_until_next,
        stale=day > total * 2,
        last_period_date=last.start_date,
    )


# ---------------------------------------------------------------------------
# Fertility window
# ---------------------------------------------------------------------------


def estimate_fertility_window(
    cycle_start: str,
    cycle_length: int,
    *,
    config: CycleConfig | None = None,
) -> FertilityWindow | None:
    """Estimate ovulation and the fertile window for one cycle.

    Ovulation is placed ``luteal_days`` (14) before the next period, i.e. on
    ``cycle_start + (cycle_length - 14)``.  The fertile window runs from four
    days before ovulation to two days after.

    Returns:
        FertilityWindow, or None when the cycle length is outside [18, 50]
        or ovulation would land before day 5.
    """
    fc = (config or get_cycle_config()).fertility
    if cycle_length < fc.min_cycle_days or cycle_length > fc.max_cycle_days:
        return None

    ovulation_offset = cycle_length - fc.luteal_days
    if ovulation_offset < fc.min_ovulation_day:
        return None

    ovulation = dates.add_days(cycle_start, ovulation_offset)
    return FertilityWindow(
        fertile_start=dates.add_days(ovulation, -fc.days_before_ovulation),
        fertile_end=dates.add_days(ovulation, fc.days_after_ovulation),
        ovulation_day=ovulation,
    )


# ---------------------------------------------------------------------------
# Multi-cycle forecast
# ---------------------------------------------------------------------------


def predict_next_n_periods(
    periods: list[PeriodRecord],
    n: int | None = None,
    window_size: int | None = None,
    *,
    today: date | None = None,
    config: CycleConfig | None = None,
) -> list[FutureCycle]:
    """Chain ``n`` future cycles forward from the next-period forecast.

    Averages are held constant over the whole chain.  When the next period
    is already late the chain starts today instead of at the stale
    predicted date.

    Returns:
        Exactly ``n`` cycles (default 12), or [] without a base prediction.
    """
    config = config or get_cycle_config()
    count = config.prediction.forecast_cycles if n is None else n
    now = today or dates.today()

    base = predict_next_period(periods, window_size, today=now, config=config)
    if base is None:
        return []

    start = dates.to_iso(now) if base.days_late > 0 else base.predicted_start
    cycles: list[FutureCycle] = []
    for number in range(1, count + 1):
        cycles.append(
            FutureCycle(
                cycle_number=number,
                predicted_start=start,
                predicted_end=dates.add_days(start, base.avg_period_duration - 1),
                fertility=estimate_fertility_window(
                    start, base.avg_cycle_length, config=config
                ),
                avg_cycle_length=base.avg_cycle_length,
                avg_period_duration=base.avg_period_duration,
            )
        )
        start = dates.add_days(start, base.avg_cycle_length)
    return cycles


# ---------------------------------------------------------------------------
# Phase model
# ---------------------------------------------------------------------------


def get_cycle_phase(
    day_of_cycle: int,
    cycle_length: int,
    period_duration: int | None = None,
    *,
    config: CycleConfig | None = None,
) -> PhaseInfo | None:
    """Place a cycle day in the five-phase model.

    Bands, in order (28-day cycle, 5-day period shown in brackets):
        menstrual     day <= period_duration                  [1-5]
        follicular    period_duration < day < ovulation_day    [6-13]
        ovulation     day == ovulation_day                     [14]
        luteal        ovulation_day < day < premenstrual_start [15-24]
        premenstrual  day >= premenstrual_start                [25-28, and beyond when late]

    ``period_duration`` defaults to ``prediction.default_period_duration``.

    Returns:
        PhaseInfo, or None when day < 1, cycle_length < 18, or ovulation
        would fall inside the bleeding days.
    """
    cfg = config or get_cycle_config()
    fc = cfg.fertility
    if period_duration is None:
        period_duration = cfg.prediction.default_period_duration
    if day_of_cycle < 1 or cycle_length < fc.min_cycle_days:
        return None

    ovulation_day = cycle_length - fc.luteal_days
    if ovulation_day <= period_duration:
        return None

    premenstrual_start = cycle_length - _PREMENSTRUAL_OFFSET

    if day_of_cycle <= period_duration:
        return PhaseInfo(CyclePhase.MENSTRUAL, day_of_cycle, period_duration)
    if day_of_cycle < ovulation_day:
        return PhaseInfo(
            CyclePhase.FOLLICULAR,
            day_of_cycle - period_duration,
            ovulation_day - period_duration - 1,
        )
    if day_of_cycle == ovulation_day:
        return PhaseInfo(CyclePhase.OVULATION, 1, 1)
    if day_of_cycle < premenstrual_start:
        return PhaseInfo(
            CyclePhase.LUTEAL,
            day_of_cycle - ovulation_day,
            premenstrual_start - ovulation_day - 1,
        )
    return PhaseInfo(
        CyclePhase.PREMENSTRUAL,
        day_of_cycle - premenstrual_start + 1,
        cycle_length - premenstrual_start + 1,
    )
