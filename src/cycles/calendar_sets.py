"""Calendar date sets: which days to paint as period, predicted, fertile, ovulation.

The six sets are disjoint.  A day claimed by a higher-priority set is never
added to a lower one:

    logged period > predicted period > ovulation (past, future) > fertility (past, future)
"""

from __future__ import annotations

from datetime import date, timedelta

from src.cycles import dates
from src.cycles.base import (
    CalendarDateSets,
    CyclePrediction,
    FutureCycle,
    PeriodRecord,
)
from src.cycles.config_loader import CycleConfig, get_cycle_config
from src.cycles.history import build_cycle_history


def build_date_sets(
    periods: list[PeriodRecord],
    prediction: CyclePrediction | None,
    future_cycles: list[FutureCycle],
    *,
    today: date | None = None,
    config: CycleConfig | None = None,
) -> CalendarDateSets:
    """Build the calendar date sets for one snapshot of records.

    Args:
        periods:       All known records.
        prediction:    Current next-period forecast (feeds the history's
                       trailing cycle).
        future_cycles: Forecast chain from ``predict_next_n_periods``.
        today:         Reference date; predictions before it are not drawn.
        config:        Engine config override.
    """
    config = config or get_cycle_config()
    now = today or dates.today()
    today_str = dates.to_iso(now)
    sets = CalendarDateSets()

    # Logged periods; an open period is drawn up to the cap or today
    for p in periods:
        if p.end_date is not None:
            end = p.end_date
        else:
            cap = dates.parse_iso(p.start_date) + timedelta(days=config.calendar.ongoing_cap_days)
            end = dates.to_iso(dates.min_date(cap, now))
        sets.period_dates.update(dates.each_day(p.start_date, end))

    # Predicted periods, today onwards
    for fc in future_cycles:
        if fc.predicted_start > fc.predicted_end:
            continue
        for day in dates.each_day(fc.predicted_start, fc.predicted_end):
            if day >= today_str and day not in sets.period_dates:
                sets.predicted_period_dates.add(day)

    def _claimed(day: str) -> bool:
        return day in sets.period_dates or day in sets.predicted_period_dates

    # Past fertility / ovulation from the cycle history
    history = build_cycle_history(periods, prediction, config=config)
    windows = [c.fertility for c in history if c.fertility is not None]
    for fw in windows:
        if not _claimed(fw.ovulation_day):
            sets.past_ovulation_dates.add(fw.ovulation_day)

    # Future ovulation, today onwards
    for fc in future_cycles:
        if fc.fertility is None:
            continue
        ov = fc.fertility.ovulation_day
        if ov >= today_str and not _claimed(ov) and ov not in sets.past_ovulation_dates:
            sets.future_ovulation_dates.add(ov)

    def _ovulation(day: str) -> bool:
        return day in sets.past_ovulation_dates or day in sets.future_ovulation_dates

    for fw in windows:
        for day in dates.each_day(fw.fertile_start, fw.fertile_end):
            if not _claimed(day) and not _ovulation(day):
                sets.past_fertility_dates.add(day)

    for fc in future_cycles:
        if fc.fertility is None:
            continue
        for day in dates.each_day(fc.fertility.fertile_start, fc.fertility.fertile_end):
            if (
                day >= today_str
                and not _claimed(day)
                and not _ovulation(day)
                and day not in sets.past_fertility_dates
            ):
                sets.future_fertility_dates.add(day)

    return sets
