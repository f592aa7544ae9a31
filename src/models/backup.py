"""Backup document schema.

The same document is written by the JSON export and uploaded to Google
Drive::

    {
      "version": 1,
      "exportedAt": "2024-03-01T09:30:00.000Z",
      "periods": [{"startDate": "2024-01-03", "endDate": "2024-01-07"}]
    }

Storage ids are never exported.
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator

from src.cycles import dates
from src.cycles.base import PeriodRecord
from src.models.base import LuaBase

BACKUP_VERSION = 1


class BackupPeriod(LuaBase):
    start_date: str = Field(alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")

    @field_validator("start_date")
    @classmethod
    def _start_is_calendar_date(cls, v: str) -> str:
        if not dates.is_iso_date(v):
            raise ValueError("invalid start date")
        return v

    @field_validator("end_date")
    @classmethod
    def _end_is_calendar_date(cls, v: str | None) -> str | None:
        if v is not None and not dates.is_iso_date(v):
            raise ValueError("invalid end date")
        return v

    @model_validator(mode="after")
    def _end_not_before_start(self) -> BackupPeriod:
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end date before start date")
        return self

    @classmethod
    def from_record(cls, record: PeriodRecord) -> BackupPeriod:
        return cls(start_date=record.start_date, end_date=record.end_date)

    def to_record(self) -> PeriodRecord:
        return PeriodRecord(start_date=self.start_date, end_date=self.end_date)


class BackupDocument(LuaBase):
    version: int = BACKUP_VERSION
    exported_at: str = Field(alias="exportedAt")
    periods: list[BackupPeriod] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
