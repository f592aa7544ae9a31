"""Calendar date helpers.

Dates cross module boundaries as ISO ``YYYY-MM-DD`` strings.  The fixed
width format means plain string comparison orders them chronologically,
which the calendar and reconciliation code rely on.
"""

from __future__ import annotations

import re
from datetime import date, timedelta

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso(value: str) -> date:
    """Parse an ISO ``YYYY-MM-DD`` string.

    Raises:
        ValueError: If the string is not a real calendar date.
    """
    return date.fromisoformat(value)


def to_iso(value: date) -> str:
    return value.isoformat()


def is_iso_date(value: object) -> bool:
    """Return True for a ``YYYY-MM-DD`` string naming a real calendar date.

    The shape check runs first because ``date.fromisoformat`` accepts
    other ISO 8601 spellings (``20230101``) on newer interpreters.
    """
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def today() -> date:
    """Return the local calendar date (time of day dropped)."""
    return date.today()


def days_between(later: str | date, earlier: str | date) -> int:
    """Whole days from ``earlier`` to ``later`` (negative if reversed)."""
    return (_as_date(later) - _as_date(earlier)).days


def add_days(value: str | date, days: int) -> str:
    return to_iso(_as_date(value) + timedelta(days=days))


def each_day(start: str | date, end: str | date) -> list[str]:
    """Every ISO date from ``start`` to ``end`` inclusive.

    Returns an empty list when ``start`` is after ``end``.
    """
    first = _as_date(start)
    last = _as_date(end)
    return [to_iso(first + timedelta(days=i)) for i in range((last - first).days + 1)]


def min_date(*values: str | date) -> date:
    return min(_as_date(v) for v in values)


def period_duration(start: str, end: str | None, as_of: date | None = None) -> int:
    """Inclusive length of a period in days; an open period runs through ``as_of``."""
    if end is None:
        return days_between(as_of or today(), start) + 1
    return days_between(end, start) + 1


def _as_date(value: str | date) -> date:
    return value if isinstance(value, date) else parse_iso(value)
