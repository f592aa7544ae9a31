"""Reconcile an edited calendar selection with stored periods.

The editable calendar lets the user toggle single days.  On save, the
selected days are grouped into runs and diffed against the stored records
to produce add / update / delete changes, which the caller applies in one
transaction.

Manual range entry does not go through the diff; it is guarded by
``ensure_no_overlap`` instead.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from src.cycles import dates
from src.cycles.base import ChangeAction, PeriodChange, PeriodRecord
from src.cycles.exceptions import PeriodOverlapError

logger = logging.getLogger("lua.cycles.reconcile")


def group_into_ranges(selected_days: Iterable[str]) -> list[tuple[str, str]]:
    """Group ISO days into maximal runs of consecutive days.

    Days at most one day apart extend the current run (a repeated day is
    absorbed).

    Returns:
        ``(start, end)`` tuples in ascending order.
    """
    ranges: list[list[str]] = []
    for day in sorted(set(selected_days)):
        if ranges and dates.days_between(day, ranges[-1][1]) <= 1:
            ranges[-1][1] = day
        else:
            ranges.append([day, day])
    return [(start, end) for start, end in ranges]


def compute_period_changes(
    periods: list[PeriodRecord],
    selected_days: Iterable[str],
) -> list[PeriodChange]:
    """Diff a day selection against stored periods.

    For each run of selected days, the first stored record (with an id, not
    yet matched) whose ``[start, end or start]`` overlaps the run is matched
    to it and updated if its dates differ; runs without a match are added.
    Unmatched records none of whose days remain selected are deleted.  A
    record split in two keeps its id on the first half; the second half is
    added.

    Returns:
        Adds and updates in run order, followed by deletes.
    """
    selected = set(selected_days)
    changes: list[PeriodChange] = []
    matched: set[int] = set()

    for start, end in group_into_ranges(selected):
        existing = next(
            (
                p for p in periods
                if p.id is not None
                and p.id not in matched
                and p.start_date <= end
                and p.last_day >= start
            ),
            None,
        )
        if existing is not None:
            matched.add(existing.id)
            if existing.start_date != start or existing.end_date != end:
                changes.append(
                    PeriodChange(
                        ChangeAction.UPDATE,
                        PeriodRecord(start_date=start, end_date=end, id=existing.id),
                    )
                )
        else:
            changes.append(PeriodChange(ChangeAction.ADD, PeriodRecord(start_date=start, end_date=end)))

    for p in periods:
        if p.id is None or p.id in matched:
            continue
        if not any(day in selected for day in dates.each_day(p.start_date, p.last_day)):
            changes.append(
                PeriodChange(
                    ChangeAction.DELETE,
                    PeriodRecord(start_date=p.start_date, end_date=p.end_date, id=p.id),
                )
            )

    logger.debug(
        "Selection of %d days against %d periods -> %d changes",
        len(selected), len(periods), len(changes),
    )
    return changes


def find_overlap(
    periods: list[PeriodRecord],
    start: str,
    end: str,
    *,
    exclude_id: int | None = None,
    today: date | None = None,
) -> PeriodRecord | None:
    """Return the first stored period overlapping ``[start, end]``.

    An ongoing period is treated as running through today.  ``exclude_id``
    skips the record being edited.
    """
    open_end = dates.to_iso(today or dates.today())
    for p in periods:
        if exclude_id is not None and p.id == exclude_id:
            continue
        p_end = p.end_date if p.end_date is not None else open_end
        if start <= p_end and end >= p.start_date:
            return p
    return None


def ensure_no_overlap(
    periods: list[PeriodRecord],
    start: str,
    end: str,
    *,
    exclude_id: int | None = None,
    today: date | None = None,
) -> None:
    """Raise PeriodOverlapError if ``[start, end]`` overlaps a stored period."""
    conflict = find_overlap(periods, start, end, exclude_id=exclude_id, today=today)
    if conflict is not None:
        logger.info(
            "Rejected %s..%s: overlaps period %s (%s..%s)",
            start, end, conflict.id, conflict.start_date, conflict.end_date,
        )
        raise PeriodOverlapError(conflict)
