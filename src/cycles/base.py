"""Canonical data types for the Lua cycle engine.

``PeriodRecord`` is the only persisted fact.  Everything else is derived
from a list of records on every load and never stored.  Dates are ISO
``YYYY-MM-DD`` strings throughout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Final


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CyclePhase(str, Enum):
    """The five-phase cycle model used for phase colouring."""

    MENSTRUAL = "menstrual"
    FOLLICULAR = "follicular"
    OVULATION = "ovulation"
    LUTEAL = "luteal"
    PREMENSTRUAL = "premenstrual"


class ChangeAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class TrackerStatus(str, Enum):
    """Named UI states for the home screen.

    no_data:       nothing logged yet
    single_period: records exist but there is no prediction yet
    stale:         the tracked cycle ran past twice its expected length
    normal:        regular day-of-cycle display
    """

    NO_DATA = "no_data"
    SINGLE_PERIOD = "single_period"
    STALE = "stale"
    NORMAL = "normal"


# ---------------------------------------------------------------------------
# Stored record
# ---------------------------------------------------------------------------


@dataclass
class PeriodRecord:
    """One logged period.

    Attributes:
        start_date: First day of bleeding (inclusive).
        end_date:   Last day (inclusive), or None while the period is ongoing.
        id:         Storage identifier; None until persisted.
    """

    start_date: str
    end_date: str | None = None
    id: int | None = None

    @property
    def is_ongoing(self) -> bool:
        return self.end_date is None

    @property
    def last_day(self) -> str:
        """End date, or the start date for a period with no end logged."""
        return self.end_date if self.end_date is not None else self.start_date


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CyclePrediction:
    """Forecast for the next period.

    Attributes:
        predicted_start:     Expected first day of the next period.
        predicted_end:       predicted_start + avg_period_duration - 1.
        avg_cycle_length:    Weighted average cycle length (days).
        avg_period_duration: Weighted average bleeding length (days).
        confidence:          Derived from stddev; LOW whenever the period is late.
        stddev:              Sample stddev of the windowed cycle lengths, 1 decimal.
        days_late:           Days predicted_start lies in the past (0 if not late).
    """

    predicted_start: str
    predicted_end: str
    avg_cycle_length: int
    avg_period_duration: int
    confidence: Confidence
    stddev: float
    days_late: int = 0


@dataclass(frozen=True)
class FertilityWindow:
    fertile_start: str
    fertile_end: str
    ovulation_day: str


@dataclass(frozen=True)
class CycleInfo:
    """One cycle in the history list.

    ``cycle_length`` is 0 when the measured gap is unusable.  ``estimated``
    is only True for the most recent cycle, whose length is not known yet.
    """

    start_date: str
    end_date: str | None
    cycle_length: int
    period_duration: int
    fertility: FertilityWindow | None
    estimated: bool = False


@dataclass(frozen=True)
class FutureCycle:
    cycle_number: int
    predicted_start: str
    predicted_end: str
    fertility: FertilityWindow | None
    avg_cycle_length: int
    avg_period_duration: int


@dataclass(frozen=True)
class PhaseInfo:
    phase: CyclePhase
    day_in_phase: int
    phase_days: int


@dataclass(frozen=True)
class CycleDay:
    """Where today falls in the current cycle.

    Attributes:
        day:              1-based day of the current cycle.
        total:            Expected cycle length (prediction or the default).
        days_until_next:  Days until the predicted start; None without a prediction.
        stale:            True when ``day`` exceeds twice ``total``.
        last_period_date: Start date of the most recent period.
    """

    day: int
    total: int
    days_until_next: int | None
    stale: bool
    last_period_date: str


@dataclass(frozen=True)
class FluctuationStats:
    min_cycle_length: int
    max_cycle_length: int
    prev_cycle_length: int
    last_period_duration: int
    avg_cycle_length: int


@dataclass(frozen=True)
class CyclePoint:
    start_date: str
    cycle_length: int
    in_normal_range: bool


@dataclass(frozen=True)
class PeriodChange:
    action: ChangeAction
    period: PeriodRecord


@dataclass
class CalendarDateSets:
    """Disjoint sets of ISO dates for calendar painting.

    A day appears in at most one set; ``classify`` returns its set name
    following the priority logged > predicted > ovulation > fertility.
    """

    period_dates: set[str] = field(default_factory=set)
    predicted_period_dates: set[str] = field(default_factory=set)
    past_fertility_dates: set[str] = field(default_factory=set)
    future_fertility_dates: set[str] = field(default_factory=set)
    past_ovulation_dates: set[str] = field(default_factory=set)
    future_ovulation_dates: set[str] = field(default_factory=set)

    PRIORITY: ClassVar[tuple[str, ...]] = (
        "period_dates",
        "predicted_period_dates",
        "past_ovulation_dates",
        "future_ovulation_dates",
        "past_fertility_dates",
        "future_fertility_dates",
    )

    def classify(self, day: str) -> str | None:
        """Return the name of the highest-priority set containing ``day``."""
        for name in self.PRIORITY:
            if day in getattr(self, name):
                return name
        return None


# ---------------------------------------------------------------------------
# Prediction option
# ---------------------------------------------------------------------------


class _Recompute:
    """Sentinel type: derive the prediction from the periods passed in."""

    _instance: _Recompute | None = None

    def __new__(cls) -> _Recompute:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "RECOMPUTE"


RECOMPUTE: Final = _Recompute()

# A prediction argument is either a value to use as-is, None for "known to
# be absent, do not recompute", or RECOMPUTE.
PredictionArg = CyclePrediction | None | _Recompute
