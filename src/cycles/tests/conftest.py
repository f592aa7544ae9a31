"""Shared fixtures and period builders for cycle engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from src.cycles.base import PeriodRecord
from src.cycles.config_loader import CycleConfig, load_cycle_config
from src.cycles.store import InMemoryPeriodStore

# Fixed reference dates so results never depend on the wall clock
TEST_TODAY = date(2024, 4, 1)
TEST_NOW = datetime(2024, 4, 1, 9, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_period(start: str, duration: int | None = 5, period_id: int | None = None) -> PeriodRecord:
    """A period of ``duration`` days starting on ``start`` (None = ongoing)."""
    end = None
    if duration is not None:
        end = (date.fromisoformat(start) + timedelta(days=duration - 1)).isoformat()
    return PeriodRecord(start_date=start, end_date=end, id=period_id)


def build_regular_periods(
    n: int = 4,
    cycle_length: int = 28,
    duration: int = 5,
    first: str = "2024-01-01",
) -> list[PeriodRecord]:
    """n completed periods spaced ``cycle_length`` days apart, ids 1..n."""
    start = date.fromisoformat(first)
    periods = []
    for i in range(n):
        periods.append(make_period(start.isoformat(), duration, period_id=i + 1))
        start += timedelta(days=cycle_length)
    return periods


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cycle_config() -> CycleConfig:
    """Load the real bundled cycle config."""
    return load_cycle_config()


@pytest.fixture
def regular_periods() -> list[PeriodRecord]:
    """Starts 2024-01-01, 01-29, 02-26, 03-25; five days each."""
    return build_regular_periods()


@pytest.fixture
def memory_store() -> InMemoryPeriodStore:
    return InMemoryPeriodStore()
