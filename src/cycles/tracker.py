"""Load -> derive -> mutate pipeline around a PeriodStore.

``PeriodTracker`` owns the one piece of mutable application state: the
latest ``TrackerState`` snapshot (records plus everything derived from
them).  Every write goes through the store and is followed by a full
reload, so derived values are never patched incrementally.

Concurrency:
    - concurrent ``load()`` calls share one in-flight task
    - writes are serialised by one lock covering mutate + reload
    - ``on_mutation`` fires after each successful write (the sync session
      uses it to schedule a debounced upload)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Awaitable, Callable

from src.cycles import dates
from src.cycles.base import (
    CalendarDateSets,
    CycleDay,
    CycleInfo,
    CyclePrediction,
    FutureCycle,
    PeriodChange,
    PeriodRecord,
    PhaseInfo,
    TrackerStatus,
)
from src.cycles.calendar_sets import build_date_sets
from src.cycles.config_loader import CycleConfig, get_cycle_config
from src.cycles.history import build_cycle_history
from src.cycles.import_export import clear_all_data, import_data
from src.cycles.prediction import (
    get_cycle_phase,
    get_day_of_cycle,
    predict_next_n_periods,
    predict_next_period,
)
from src.cycles.reconcile import compute_period_changes, ensure_no_overlap
from src.cycles.store import PeriodStore

logger = logging.getLogger("lua.cycles.tracker")


@dataclass(frozen=True)
class TrackerState:
    """Immutable snapshot published after every load.

    ``error`` holds the message of the last failed load or write; it is
    cleared by the next successful load.
    """

    periods: list[PeriodRecord] = field(default_factory=list)
    prediction: CyclePrediction | None = None
    cycle_day: CycleDay | None = None
    future_cycles: list[FutureCycle] = field(default_factory=list)
    phase: PhaseInfo | None = None
    history: list[CycleInfo] = field(default_factory=list)
    date_sets: CalendarDateSets = field(default_factory=CalendarDateSets)
    loading: bool = True
    error: str | None = None


def _validate_range(start_date: str, end_date: str | None) -> None:
    if not dates.is_iso_date(start_date):
        raise ValueError(f"Invalid start date: {start_date!r}")
    if end_date is not None:
        if not dates.is_iso_date(end_date):
            raise ValueError(f"Invalid end date: {end_date!r}")
        if end_date < start_date:
            raise ValueError("End date before start date")


class PeriodTracker:
    """Application-level facade over the store and the cycle engine."""

    def __init__(
        self,
        store: PeriodStore,
        *,
        config: CycleConfig | None = None,
        on_mutation: Callable[[], None] | None = None,
        clock: Callable[[], date] | None = None,
    ) -> None:
        """
        Args:
            store:       Persistence backend.
            config:      Engine config override (defaults to the singleton).
            on_mutation: Called with no arguments after every successful write.
            clock:       Returns "today"; defaults to the local calendar date.
        """
        self._store = store
        self._config = config or get_cycle_config()
        self._on_mutation = on_mutation
        self._clock = clock or dates.today
        self._state = TrackerState()
        self._load_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def store(self) -> PeriodStore:
        return self._store

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> TrackerState:
        """Reload records and recompute every derived value.

        A load already in flight is joined rather than duplicated.
        """
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.create_task(self._load())
        await asyncio.shield(self._load_task)
        return self._state

    async def _load(self) -> None:
        try:
            periods = await self._store.list_periods()
        except Exception as exc:
            logger.exception("Failed to load periods")
            self._state = replace(self._state, loading=False, error=str(exc) or "Failed to load data")
            return
        self._state = self._derive(sorted(periods, key=lambda p: p.start_date))
        logger.debug("Loaded %d periods", len(periods))

    def _derive(self, periods: list[PeriodRecord]) -> TrackerState:
        today = self._clock()
        cfg = self._config
        prediction = predict_next_period(periods, today=today, config=cfg)
        cycle_day = get_day_of_cycle(periods, prediction, today=today, config=cfg)
        future_cycles = predict_next_n_periods(
            periods,
            cfg.prediction.forecast_cycles,
            cfg.prediction.window_size,
            today=today,
            config=cfg,
        )
        phase = (
            get_cycle_phase(
                cycle_day.day,
                prediction.avg_cycle_length,
                prediction.avg_period_duration,
                config=cfg,
            )
            if cycle_day is not None and prediction is not None
            else None
        )
        return TrackerState(
            periods=periods,
            prediction=prediction,
            cycle_day=cycle_day,
            future_cycles=future_cycles,
            phase=phase,
            history=build_cycle_history(periods, prediction, config=cfg),
            date_sets=build_date_sets(periods, prediction, future_cycles, today=today, config=cfg),
            loading=False,
            error=None,
        )

    async def _reload(self) -> None:
        # A load started before the write may have read stale rows
        if self._load_task is not None and not self._load_task.done():
            await asyncio.shield(self._load_task)
        await self.load()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _mutate(self, action: str, operation: Callable[[], Awaitable[object]]) -> None:
        async with self._write_lock:
            try:
                await operation()
                await self._reload()
            except Exception as exc:
                logger.warning("Failed to %s: %s", action, exc)
                self._state = replace(self._state, error=str(exc))
                raise
        if self._on_mutation is not None:
            self._on_mutation()

    async def add_period(self, start_date: str, end_date: str | None = None) -> None:
        _validate_range(start_date, end_date)
        await self._mutate("add period", lambda: self._store.add_period(start_date, end_date))

    async def update_period(self, period_id: int, start_date: str, end_date: str | None) -> None:
        _validate_range(start_date, end_date)
        await self._mutate(
            "update period",
            lambda: self._store.update_period(period_id, start_date, end_date),
        )

    async def delete_period(self, period_id: int) -> None:
        await self._mutate("delete period", lambda: self._store.delete_period(period_id))

    async def save_period(
        self,
        start_date: str,
        end_date: str | None = None,
        *,
        editing_id: int | None = None,
    ) -> None:
        """Manual range entry: add, or update ``editing_id``, after the overlap check.

        Raises:
            PeriodOverlapError: When the range touches another stored record.
        """
        _validate_range(start_date, end_date)

        async def _save() -> None:
            periods = await self._store.list_periods()
            today = self._clock()
            ensure_no_overlap(
                periods,
                start_date,
                end_date or dates.to_iso(today),
                exclude_id=editing_id,
                today=today,
            )
            if editing_id is not None:
                await self._store.update_period(editing_id, start_date, end_date)
            else:
                await self._store.add_period(start_date, end_date)

        await self._mutate("save period", _save)

    async def apply_selection(self, selected_days: set[str] | list[str]) -> int:
        """Reconcile a calendar day selection with the stored records.

        Returns:
            Number of changes applied (0 means nothing was written).
        """
        changes: list[PeriodChange] = []

        async def _apply() -> None:
            periods = await self._store.list_periods()
            changes.extend(compute_period_changes(periods, selected_days))
            if changes:
                await self._store.apply_changes(changes)

        await self._mutate("apply selection", _apply)
        logger.info("Applied %d period changes from calendar selection", len(changes))
        return len(changes)

    async def import_json(self, json_text: str) -> int:
        """Replace all records with a backup document's periods."""
        imported: list[int] = []

        async def _import() -> None:
            imported.append(await import_data(self._store, json_text))

        await self._mutate("import data", _import)
        return imported[0]

    async def clear_all(self) -> None:
        await self._mutate("clear data", lambda: clear_all_data(self._store))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ongoing_period(self) -> PeriodRecord | None:
        return next((p for p in self._state.periods if p.is_ongoing), None)

    def status(self) -> TrackerStatus:
        s = self._state
        if not s.periods:
            return TrackerStatus.NO_DATA
        if s.cycle_day is not None and s.cycle_day.stale:
            return TrackerStatus.STALE
        if s.prediction is None:
            return TrackerStatus.SINGLE_PERIOD
        return TrackerStatus.NORMAL
