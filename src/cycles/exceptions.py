"""Exception hierarchy for the Lua cycle tracker.

Insufficient data is not an error: engine functions return ``None`` or an
empty list for it.  Everything below is raised to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.cycles.base import PeriodRecord


class CycleTrackerError(Exception):
    """Base class for all tracker errors."""


class ImportValidationError(CycleTrackerError, ValueError):
    """Raised when a backup document fails validation.

    Attributes:
        index: 1-based position of the offending period, or None when the
               whole document is rejected.
        field: ``"startDate"``, ``"endDate"`` or None.
    """

    def __init__(self, message: str, index: int | None = None, field: str | None = None) -> None:
        super().__init__(message)
        self.index = index
        self.field = field


class PeriodOverlapError(CycleTrackerError):
    """Raised when a manually entered range overlaps a stored period."""

    def __init__(self, conflict: PeriodRecord) -> None:
        super().__init__("Overlaps with an existing period")
        self.conflict = conflict


class StorageError(CycleTrackerError):
    """Raised when the persistence backend fails."""


class PeriodNotFoundError(StorageError):
    """Raised when updating or deleting a period id that does not exist."""

    def __init__(self, period_id: int) -> None:
        super().__init__(f"Period {period_id} not found")
        self.period_id = period_id


class SyncError(CycleTrackerError):
    """Raised when a cloud backup operation fails."""


class DriveApiError(SyncError):
    """Non-2xx response from the Google Drive API."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


class AuthExpiredError(SyncError):
    """No valid access token could be obtained, even after a silent refresh."""
