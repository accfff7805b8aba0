"""Tests for the Postgres stores, with the pool helpers patched out."""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from src.daily.supplements import SupplementKind
from src.errors import StorageError
from src.services import stores
from src.services.supabase import encode_jsonb
from src.services.stores import (
    SUPPLEMENT_AMOUNTS,
    UPSERT_SUMMARY,
    PostgresDailyStore,
    PostgresOAuthStateStore,
    PostgresWearableCacheStore,
    storage_errors,
)
from src.wearables.base import WhoopWorkoutRecord

DAY = date(2024, 3, 1)
NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


class TestQueries:
    def test_supplement_query_reads_every_table(self):
        for kind in SupplementKind:
            assert f"FROM {kind.table} " in SUPPLEMENT_AMOUNTS
        assert SUPPLEMENT_AMOUNTS.count("UNION ALL") == len(SupplementKind) - 1

    def test_summary_upsert_keeps_updated_at_when_unchanged(self):
        assert "ON CONFLICT (user_id, date) DO UPDATE" in UPSERT_SUMMARY
        assert "IS DISTINCT FROM EXCLUDED.data" in UPSERT_SUMMARY

    def test_workout_upsert_reports_insert(self):
        assert "ON CONFLICT (user_id, whoop_workout_id)" in stores.UPSERT_WHOOP_WORKOUT
        assert "RETURNING (xmax = 0) AS inserted" in stores.UPSERT_WHOOP_WORKOUT


class TestStorageErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc", [OSError("connection refused"), asyncpg.InterfaceError("pool is closed")])
    async def test_driver_errors_become_storage_error(self, exc):
        with pytest.raises(StorageError, match="summary write"):
            async with storage_errors("summary write"):
                raise exc

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        with pytest.raises(KeyError):
            async with storage_errors("summary write"):
                raise KeyError("data")


class TestDailyStore:
    @pytest.mark.asyncio
    async def test_supplement_amounts_skip_empty_tables(self):
        rows = [
            {"kind": "creatine", "amount": 5.0},
            {"kind": "fishOil", "amount": None},
            {"kind": "magnesium", "amount": 400},
        ]
        with patch.object(stores, "fetch", AsyncMock(return_value=rows)) as fetch:
            amounts = await PostgresDailyStore().get_supplement_amounts("user-123", DAY)

        assert amounts == {SupplementKind.creatine: 5.0, SupplementKind.magnesium: 400.0}
        fetch.assert_awaited_once_with(SUPPLEMENT_AMOUNTS, "user-123", DAY, user_id="user-123")

    @pytest.mark.asyncio
    async def test_rows_have_string_ids(self):
        meal_id = uuid.uuid4()
        rows = [{"id": meal_id, "name": "Lunch", "time_hour": 12, "time_minute": 0, "is_pm": True}]
        with patch.object(stores, "fetch", AsyncMock(return_value=rows)):
            meals = await PostgresDailyStore().list_meals("user-123", DAY)

        assert meals[0]["id"] == str(meal_id)

    @pytest.mark.asyncio
    async def test_upsert_summary_passes_document(self):
        document = {"date": "2024-03-01", "totals": {"calories": 800}}
        with patch.object(stores, "execute", AsyncMock()) as execute:
            await PostgresDailyStore().upsert_summary("user-123", DAY, document)

        execute.assert_awaited_once_with(UPSERT_SUMMARY, "user-123", DAY, document, user_id="user-123")

    @pytest.mark.asyncio
    async def test_read_failure_is_storage_error(self):
        with patch.object(stores, "fetch", AsyncMock(side_effect=OSError("reset"))):
            with pytest.raises(StorageError):
                await PostgresDailyStore().list_habit_logs("user-123", DAY)


class TestOAuthStateStore:
    @pytest.mark.asyncio
    async def test_consume_returns_owner(self):
        row = {"user_id": "user-123", "expires_at": NOW + timedelta(minutes=5)}
        with patch.object(stores, "fetchrow", AsyncMock(return_value=row)):
            assert await PostgresOAuthStateStore().consume("state-1", NOW) == "user-123"

    @pytest.mark.asyncio
    async def test_consume_rejects_expired(self):
        row = {"user_id": "user-123", "expires_at": NOW - timedelta(seconds=1)}
        with patch.object(stores, "fetchrow", AsyncMock(return_value=row)):
            assert await PostgresOAuthStateStore().consume("state-1", NOW) is None

    @pytest.mark.asyncio
    async def test_consume_unknown(self):
        with patch.object(stores, "fetchrow", AsyncMock(return_value=None)):
            assert await PostgresOAuthStateStore().consume("forged", NOW) is None


class TestWearableCacheStore:
    @pytest.mark.asyncio
    async def test_upsert_workout_pads_zones(self):
        workout = WhoopWorkoutRecord(
            user_id="user-123",
            whoop_workout_id="wk-1",
            start_time=NOW,
            zone_minutes=[0.0, 5.0],
        )
        with patch.object(stores, "fetchrow", AsyncMock(return_value={"inserted": True})) as fetchrow:
            inserted = await PostgresWearableCacheStore().upsert_workout(workout)

        assert inserted is True
        args = fetchrow.await_args.args
        assert len(args) == 1 + len(stores.WHOOP_WORKOUT_COLUMNS)
        assert list(args[13:19]) == [0.0, 5.0, 0.0, 0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_unlinked_filter(self):
        rows = [
            {"user_id": "user-123", "whoop_workout_id": "wk-1", "start_time": NOW, "linked_session_id": "s-1"},
            {"user_id": "user-123", "whoop_workout_id": "wk-2", "start_time": NOW, "linked_session_id": None},
        ]
        with patch.object(stores, "fetch", AsyncMock(return_value=rows)) as fetch:
            workouts = await PostgresWearableCacheStore().list_workouts("user-123", DAY, unlinked_only=True)

        assert [w.whoop_workout_id for w in workouts] == ["wk-2"]
        assert fetch.await_args.args[1:] == ("user-123", DAY)


class TestJsonbEncoding:
    def test_non_finite_numbers_are_stored_as_null(self):
        raw = {"score": {"average_heart_rate": float("inf"), "zones": [1.5, float("nan")]}, "id": 7}

        encoded = encode_jsonb(raw)

        assert json.loads(encoded) == {"score": {"average_heart_rate": None, "zones": [1.5, None]}, "id": 7}
