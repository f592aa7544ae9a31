"""Period persistence.

``PeriodStore`` is the abstract interface the tracker and the sync session
talk to.  Each backend only has to provide ``transaction()``, yielding a
``StoreTransaction`` whose writes commit together or not at all; every
public operation is built on top of it, so bulk import, cloud restore and
wipe are atomic on every backend.

Two backends:
    InMemoryPeriodStore  - dict-backed, for tests and database-less runs
    PostgresPeriodStore  - asyncpg over ``src.services.database``

Besides periods the store keeps a small key-value meta area; the sync
layer keeps ``lastSyncedAt`` there.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date
from typing import AsyncGenerator

import asyncpg

from src.cycles import dates
from src.cycles.base import ChangeAction, PeriodChange, PeriodRecord
from src.cycles.exceptions import PeriodNotFoundError, StorageError
from src.services.database import get_connection

logger = logging.getLogger("lua.cycles.store")

LAST_SYNCED_AT = "lastSyncedAt"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class StoreTransaction(ABC):
    """Operations available inside one store transaction."""

    @abstractmethod
    async def list_periods(self) -> list[PeriodRecord]:
        """All records, oldest start first."""

    @abstractmethod
    async def add(self, start_date: str, end_date: str | None) -> PeriodRecord:
        """Insert a record and return it with its new id."""

    @abstractmethod
    async def update(self, period_id: int, start_date: str, end_date: str | None) -> PeriodRecord:
        """Overwrite a record's dates.  Raises PeriodNotFoundError."""

    @abstractmethod
    async def delete(self, period_id: int) -> None:
        """Remove a record.  Raises PeriodNotFoundError."""

    @abstractmethod
    async def clear_periods(self) -> None: ...

    @abstractmethod
    async def clear_meta(self) -> None: ...

    @abstractmethod
    async def get_meta(self, key: str) -> str | None: ...

    @abstractmethod
    async def set_meta(self, key: str, value: str) -> None: ...


class PeriodStore(ABC):
    """Abstract period store.

    Subclasses implement ``transaction()``; the operations below are
    composed from it.
    """

    BACKEND = "abstract"

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        """Open a transaction; writes commit on normal exit, roll back on error."""

    async def list_periods(self) -> list[PeriodRecord]:
        async with self.transaction() as tx:
            return await tx.list_periods()

    async def add_period(self, start_date: str, end_date: str | None = None) -> PeriodRecord:
        async with self.transaction() as tx:
            return await tx.add(start_date, end_date)

    async def update_period(
        self, period_id: int, start_date: str, end_date: str | None
    ) -> PeriodRecord:
        async with self.transaction() as tx:
            return await tx.update(period_id, start_date, end_date)

    async def delete_period(self, period_id: int) -> None:
        async with self.transaction() as tx:
            await tx.delete(period_id)

    async def replace_all(
        self,
        periods: list[PeriodRecord],
        meta: dict[str, str] | None = None,
    ) -> int:
        """Replace every record with ``periods`` (ids are reassigned).

        ``meta`` entries are written in the same transaction.

        Returns:
            Number of records inserted.
        """
        async with self.transaction() as tx:
            await tx.clear_periods()
            for p in periods:
                await tx.add(p.start_date, p.end_date)
            for key, value in (meta or {}).items():
                await tx.set_meta(key, value)
        logger.info("Replaced all periods with %d records (%s)", len(periods), self.BACKEND)
        return len(periods)

    async def apply_changes(self, changes: list[PeriodChange]) -> None:
        """Apply a reconciliation result as one unit."""
        async with self.transaction() as tx:
            for change in changes:
                p = change.period
                if change.action is ChangeAction.ADD:
                    await tx.add(p.start_date, p.end_date)
                elif change.action is ChangeAction.UPDATE:
                    await tx.update(p.id, p.start_date, p.end_date)
                else:
                    await tx.delete(p.id)

    async def clear_all(self) -> None:
        """Delete every period and every meta entry."""
        async with self.transaction() as tx:
            await tx.clear_periods()
            await tx.clear_meta()
        logger.info("Cleared all data (%s)", self.BACKEND)

    async def get_meta(self, key: str) -> str | None:
        async with self.transaction() as tx:
            return await tx.get_meta(key)

    async def set_meta(self, key: str, value: str) -> None:
        async with self.transaction() as tx:
            await tx.set_meta(key, value)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _MemoryTransaction(StoreTransaction):
    def __init__(self, periods: dict[int, PeriodRecord], meta: dict[str, str], next_id: int) -> None:
        self.periods = periods
        self.meta = meta
        self.next_id = next_id

    async def list_periods(self) -> list[PeriodRecord]:
        return sorted(
            (copy.copy(p) for p in self.periods.values()),
            key=lambda p: (p.start_date, p.id),
        )

    async def add(self, start_date: str, end_date: str | None) -> PeriodRecord:
        record = PeriodRecord(start_date=start_date, end_date=end_date, id=self.next_id)
        self.periods[record.id] = record
        self.next_id += 1
        return copy.copy(record)

    async def update(self, period_id: int, start_date: str, end_date: str | None) -> PeriodRecord:
        if period_id not in self.periods:
            raise PeriodNotFoundError(period_id)
        record = PeriodRecord(start_date=start_date, end_date=end_date, id=period_id)
        self.periods[period_id] = record
        return copy.copy(record)

    async def delete(self, period_id: int) -> None:
        if self.periods.pop(period_id, None) is None:
            raise PeriodNotFoundError(period_id)

    async def clear_periods(self) -> None:
        self.periods.clear()

    async def clear_meta(self) -> None:
        self.meta.clear()

    async def get_meta(self, key: str) -> str | None:
        return self.meta.get(key)

    async def set_meta(self, key: str, value: str) -> None:
        self.meta[key] = value


class InMemoryPeriodStore(PeriodStore):
    """Dict-backed store.

    Transactions are serialised by one ``asyncio.Lock`` and work on copies
    of the data that replace the originals only on success.
    """

    BACKEND = "memory"

    def __init__(self, periods: list[PeriodRecord] | None = None) -> None:
        self._periods: dict[int, PeriodRecord] = {}
        self._meta: dict[str, str] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()
        for p in periods or []:
            record = PeriodRecord(p.start_date, p.end_date, self._next_id)
            self._periods[record.id] = record
            self._next_id += 1

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[StoreTransaction, None]:
        async with self._lock:
            tx = _MemoryTransaction(
                {k: copy.copy(v) for k, v in self._periods.items()},
                dict(self._meta),
                self._next_id,
            )
            yield tx
            self._periods = tx.periods
            self._meta = tx.meta
            self._next_id = tx.next_id


# ---------------------------------------------------------------------------
# Postgres backend
# ---------------------------------------------------------------------------


def _row_to_record(row: asyncpg.Record) -> PeriodRecord:
    return PeriodRecord(
        start_date=dates.to_iso(row["start_date"]),
        end_date=dates.to_iso(row["end_date"]) if row["end_date"] is not None else None,
        id=row["id"],
    )


def _to_db_date(value: str | None) -> date | None:
    return dates.parse_iso(value) if value is not None else None


class _PostgresTransaction(StoreTransaction):
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def list_periods(self) -> list[PeriodRecord]:
        rows = await self._conn.fetch(
            "SELECT id, start_date, end_date FROM periods ORDER BY start_date, id"
        )
        return [_row_to_record(r) for r in rows]

    async def add(self, start_date: str, end_date: str | None) -> PeriodRecord:
        row = await self._conn.fetchrow(
            "INSERT INTO periods (start_date, end_date) VALUES ($1, $2) "
            "RETURNING id, start_date, end_date",
            _to_db_date(start_date),
            _to_db_date(end_date),
        )
        return _row_to_record(row)

    async def update(self, period_id: int, start_date: str, end_date: str | None) -> PeriodRecord:
        row = await self._conn.fetchrow(
            "UPDATE periods SET start_date = $2, end_date = $3 WHERE id = $1 "
            "RETURNING id, start_date, end_date",
            period_id,
            _to_db_date(start_date),
            _to_db_date(end_date),
        )
        if row is None:
            raise PeriodNotFoundError(period_id)
        return _row_to_record(row)

    async def delete(self, period_id: int) -> None:
        deleted = await self._conn.fetchval(
            "DELETE FROM periods WHERE id = $1 RETURNING id", period_id
        )
        if deleted is None:
            raise PeriodNotFoundError(period_id)

    async def clear_periods(self) -> None:
        await self._conn.execute("DELETE FROM periods")

    async def clear_meta(self) -> None:
        await self._conn.execute("DELETE FROM app_meta")

    async def get_meta(self, key: str) -> str | None:
        return await self._conn.fetchval("SELECT value FROM app_meta WHERE key = $1", key)

    async def set_meta(self, key: str, value: str) -> None:
        await self._conn.execute(
            "INSERT INTO app_meta (key, value) VALUES ($1, $2) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value",
            key,
            value,
        )


class PostgresPeriodStore(PeriodStore):
    """asyncpg-backed store using the shared connection pool.

    Driver and connection failures surface as StorageError.
    """

    BACKEND = "postgres"

    def __init__(self, pool: asyncpg.Pool | None = None) -> None:
        self._pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[StoreTransaction, None]:
        try:
            async with get_connection(self._pool) as conn:
                yield _PostgresTransaction(conn)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.error("Postgres store operation failed: %s", exc)
            raise StorageError(str(exc)) from exc
