"""Tests for the period stores: in-memory behaviour and the Postgres adapter
against a mocked asyncpg connection."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from src.cycles.base import ChangeAction, PeriodChange, PeriodRecord
from src.cycles.exceptions import PeriodNotFoundError, StorageError
from src.cycles.store import LAST_SYNCED_AT, InMemoryPeriodStore, PostgresPeriodStore
from src.cycles.tests.conftest import make_period


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_add_assigns_ids_and_lists_sorted(self, memory_store: InMemoryPeriodStore) -> None:
        second = await memory_store.add_period("2024-02-01", "2024-02-05")
        first = await memory_store.add_period("2024-01-01", None)
        assert (second.id, first.id) == (1, 2)
        periods = await memory_store.list_periods()
        assert [p.start_date for p in periods] == ["2024-01-01", "2024-02-01"]
        assert periods[0].end_date is None

    @pytest.mark.asyncio
    async def test_update_and_delete(self, memory_store: InMemoryPeriodStore) -> None:
        p = await memory_store.add_period("2024-01-01", None)
        updated = await memory_store.update_period(p.id, "2024-01-01", "2024-01-05")
        assert updated == PeriodRecord("2024-01-01", "2024-01-05", p.id)
        await memory_store.delete_period(p.id)
        assert await memory_store.list_periods() == []

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self, memory_store: InMemoryPeriodStore) -> None:
        with pytest.raises(PeriodNotFoundError, match="Period 99 not found"):
            await memory_store.update_period(99, "2024-01-01", None)
        with pytest.raises(PeriodNotFoundError):
            await memory_store.delete_period(99)

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, memory_store: InMemoryPeriodStore) -> None:
        await memory_store.add_period("2024-01-01", "2024-01-05")
        listed = await memory_store.list_periods()
        listed[0].end_date = "2099-01-01"
        assert (await memory_store.list_periods())[0].end_date == "2024-01-05"

    @pytest.mark.asyncio
    async def test_replace_all_reassigns_ids_and_writes_meta(self) -> None:
        store = InMemoryPeriodStore([make_period("2023-01-01", period_id=42)])
        count = await store.replace_all(
            [make_period("2024-01-01", period_id=7), make_period("2024-02-01", None)],
            meta={LAST_SYNCED_AT: "2024-04-01T00:00:00.000Z"},
        )
        assert count == 2
        periods = await store.list_periods()
        assert [p.start_date for p in periods] == ["2024-01-01", "2024-02-01"]
        assert {p.id for p in periods} == {2, 3}
        assert await store.get_meta(LAST_SYNCED_AT) == "2024-04-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back(self) -> None:
        store = InMemoryPeriodStore([make_period("2024-01-01")])
        changes = [
            PeriodChange(ChangeAction.ADD, PeriodRecord("2024-02-01", "2024-02-05")),
            PeriodChange(ChangeAction.DELETE, PeriodRecord("2024-03-01", "2024-03-05", 99)),
        ]
        with pytest.raises(PeriodNotFoundError):
            await store.apply_changes(changes)
        periods = await store.list_periods()
        assert [p.start_date for p in periods] == ["2024-01-01"]
        # the id counter is rolled back too
        assert (await store.add_period("2024-05-01")).id == 2

    @pytest.mark.asyncio
    async def test_apply_changes(self) -> None:
        store = InMemoryPeriodStore([make_period("2024-01-01"), make_period("2024-02-01")])
        await store.apply_changes([
            PeriodChange(ChangeAction.UPDATE, PeriodRecord("2024-01-01", "2024-01-02", 1)),
            PeriodChange(ChangeAction.ADD, PeriodRecord("2024-01-04", "2024-01-05")),
            PeriodChange(ChangeAction.DELETE, PeriodRecord("2024-02-01", "2024-02-05", 2)),
        ])
        periods = await store.list_periods()
        assert [(p.start_date, p.end_date, p.id) for p in periods] == [
            ("2024-01-01", "2024-01-02", 1),
            ("2024-01-04", "2024-01-05", 3),
        ]

    @pytest.mark.asyncio
    async def test_clear_all_wipes_periods_and_meta(self) -> None:
        store = InMemoryPeriodStore([make_period("2024-01-01")])
        await store.set_meta(LAST_SYNCED_AT, "x")
        await store.clear_all()
        assert await store.list_periods() == []
        assert await store.get_meta(LAST_SYNCED_AT) is None


# ---------------------------------------------------------------------------
# Postgres store (mocked connection)
# ---------------------------------------------------------------------------


def make_conn() -> MagicMock:
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="OK")
    return conn


def patch_connection(conn: MagicMock):
    @asynccontextmanager
    async def _fake_get_connection(pool=None):
        yield conn

    return patch("src.cycles.store.get_connection", _fake_get_connection)


class TestPostgresStore:
    @pytest.mark.asyncio
    async def test_list_converts_rows(self) -> None:
        conn = make_conn()
        conn.fetch.return_value = [
            {"id": 1, "start_date": date(2024, 1, 1), "end_date": date(2024, 1, 5)},
            {"id": 2, "start_date": date(2024, 2, 1), "end_date": None},
        ]
        with patch_connection(conn):
            periods = await PostgresPeriodStore().list_periods()
        assert periods == [
            PeriodRecord("2024-01-01", "2024-01-05", 1),
            PeriodRecord("2024-02-01", None, 2),
        ]

    @pytest.mark.asyncio
    async def test_add_passes_date_objects(self) -> None:
        conn = make_conn()
        conn.fetchrow.return_value = {"id": 5, "start_date": date(2024, 1, 1), "end_date": None}
        with patch_connection(conn):
            record = await PostgresPeriodStore().add_period("2024-01-01")
        assert record == PeriodRecord("2024-01-01", None, 5)
        args = conn.fetchrow.call_args.args
        assert args[1:] == (date(2024, 1, 1), None)

    @pytest.mark.asyncio
    async def test_update_missing_row_raises_not_found(self) -> None:
        conn = make_conn()
        with patch_connection(conn):
            with pytest.raises(PeriodNotFoundError):
                await PostgresPeriodStore().update_period(3, "2024-01-01", None)

    @pytest.mark.asyncio
    async def test_replace_all_runs_in_one_connection(self) -> None:
        conn = make_conn()
        conn.fetchrow.return_value = {"id": 1, "start_date": date(2024, 1, 1), "end_date": None}
        with patch_connection(conn):
            await PostgresPeriodStore().replace_all(
                [make_period("2024-01-01", None)], meta={LAST_SYNCED_AT: "ts"}
            )
        statements = [c.args[0] for c in conn.execute.call_args_list]
        assert statements[0] == "DELETE FROM periods"
        assert "app_meta" in statements[-1]

    @pytest.mark.asyncio
    async def test_driver_errors_become_storage_errors(self) -> None:
        conn = make_conn()
        conn.fetch.side_effect = asyncpg.PostgresError("connection reset")
        with patch_connection(conn):
            with pytest.raises(StorageError):
                await PostgresPeriodStore().list_periods()
