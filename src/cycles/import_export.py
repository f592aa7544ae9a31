"""JSON export / import of logged periods.

Import is a full replace, not a merge: the document is validated up front
and only then swapped in with one ``replace_all`` transaction, so a bad
file never leaves the store half-written.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from src.cycles.base import PeriodRecord
from src.cycles.exceptions import ImportValidationError
from src.cycles.store import PeriodStore
from src.models.backup import BackupDocument, BackupPeriod
from src.models.base import to_timestamp, utc_now

logger = logging.getLogger("lua.cycles.import_export")

_FIELD_MESSAGES = {
    "startDate": "invalid start date",
    "endDate": "invalid end date",
}


async def export_data(store: PeriodStore, *, now: datetime | None = None) -> str:
    """Serialise every stored period to a pretty-printed backup document."""
    periods = await store.list_periods()
    doc = BackupDocument(
        exported_at=to_timestamp(now or utc_now()),
        periods=[BackupPeriod.from_record(p) for p in periods],
    )
    logger.debug("Exported %d periods", len(periods))
    return doc.to_json()


def validate_period(raw: Any, index: int) -> PeriodRecord:
    """Validate one backup entry.

    Args:
        raw:   Decoded JSON value for the entry.
        index: 1-based position, used in the error message.

    Raises:
        ImportValidationError: ``"Period N: invalid start date"`` and friends.
    """
    if not isinstance(raw, dict):
        raise ImportValidationError(f"Period {index}: invalid start date", index, "startDate")
    try:
        return BackupPeriod.model_validate(raw).to_record()
    except ValidationError as exc:
        first = exc.errors()[0]
        field = first["loc"][0] if first["loc"] else None
        reason = _FIELD_MESSAGES.get(field, "end date before start date")
        raise ImportValidationError(f"Period {index}: {reason}", index, field) from exc


def parse_backup(json_text: str) -> list[PeriodRecord]:
    """Validate a backup document and return its periods.

    Checks run in order and stop at the first failure:
    JSON syntax, top-level object, non-empty ``periods`` list, then each
    period's start date, end date and ordering.

    Raises:
        ImportValidationError: With the user-facing message.
    """
    try:
        data = json.loads(json_text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ImportValidationError("Invalid JSON file") from exc

    if not isinstance(data, dict):
        raise ImportValidationError("Invalid file format")

    periods = data.get("periods")
    if not isinstance(periods, list) or not periods:
        raise ImportValidationError("No periods found in file")

    return [validate_period(raw, i) for i, raw in enumerate(periods, start=1)]


async def import_data(store: PeriodStore, json_text: str) -> int:
    """Replace all stored periods with the contents of a backup document.

    Returns:
        Number of periods imported.

    Raises:
        ImportValidationError: Nothing is written in that case.
    """
    periods = parse_backup(json_text)
    count = await store.replace_all(periods)
    logger.info("Imported %d periods", count)
    return count


async def clear_all_data(store: PeriodStore) -> None:
    """Delete every period and all sync metadata."""
    await store.clear_all()
