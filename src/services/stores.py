"""Postgres implementations of the storage interfaces.

Each store is a thin layer of SQL over the pool helpers in
``src.services.supabase``.  Driver and connection failures are re-raised as
``StorageError`` so callers only ever deal with the domain taxonomy.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncGenerator

import asyncpg

from src.daily.aggregator import MICRONUTRIENTS, DailyStore
from src.daily.supplements import SupplementKind
from src.errors import StorageError
from src.services.supabase import execute, fetch, fetchrow, get_connection
from src.wearables.base import (
    Credential,
    OAuthStateStore,
    TokenStore,
    WearableCacheStore,
    WhoopDay,
    WhoopWorkoutRecord,
)
from src.wearables.sync.dedup import build_upsert_query

logger = logging.getLogger("healthlog.db")

ZONE_COLUMNS = [f"zone_{i}_minutes" for i in range(6)]

WHOOP_DAY_COLUMNS = [
    "user_id", "date", "cycle_id", "recovery_score", "hrv_rmssd", "resting_heart_rate",
    "spo2_percentage", "skin_temp_celsius", "sleep_id", "sleep_score",
    "sleep_duration_minutes", "strain_score", "kilojoules", "calories_burned",
    "avg_heart_rate", "max_heart_rate", "raw_data",
]

WHOOP_WORKOUT_COLUMNS = [
    "user_id", "whoop_workout_id", "start_time", "end_time", "sport_id", "sport_name",
    "strain", "avg_hr", "max_hr", "kilojoules", "calories", "distance_km",
    *ZONE_COLUMNS, "raw_data",
]

UPSERT_WHOOP_DAY = build_upsert_query(
    "whoop_data", WHOOP_DAY_COLUMNS, ["user_id", "date"], report_inserted=True
)
UPSERT_WHOOP_WORKOUT = build_upsert_query(
    "whoop_workouts", WHOOP_WORKOUT_COLUMNS, ["user_id", "whoop_workout_id"], report_inserted=True
)
UPSERT_TOKEN = build_upsert_query(
    "whoop_tokens",
    ["user_id", "access_token", "refresh_token", "expires_at", "whoop_user_id"],
    ["user_id"],
)

# updated_at only moves when the recomputed document differs.
UPSERT_SUMMARY = """
    INSERT INTO daily_summaries (user_id, date, data)
    VALUES ($1, $2, $3)
    ON CONFLICT (user_id, date) DO UPDATE SET
        data = EXCLUDED.data,
        updated_at = CASE
            WHEN daily_summaries.data IS DISTINCT FROM EXCLUDED.data THEN NOW()
            ELSE daily_summaries.updated_at
        END
"""

SUPPLEMENT_AMOUNTS = " UNION ALL ".join(
    f"SELECT '{kind.value}' AS kind, SUM(amount) AS amount FROM {kind.table} "
    "WHERE user_id = $1 AND date = $2"
    for kind in SupplementKind
)


@asynccontextmanager
async def storage_errors(operation: str) -> AsyncGenerator[None, None]:
    """Translate driver failures into ``StorageError``."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        logger.error("Storage failure during %s: %s", operation, exc)
        raise StorageError(f"Storage failure during {operation}") from exc


def _plain(record: asyncpg.Record) -> dict[str, Any]:
    """Record → dict with UUIDs as strings."""
    return {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in dict(record).items()}


# ---------------------------------------------------------------------------
# whoop_tokens
# ---------------------------------------------------------------------------


class PostgresTokenStore(TokenStore):
    async def get(self, user_id: str) -> Credential | None:
        async with storage_errors("token read"):
            row = await fetchrow(
                "SELECT user_id, access_token, refresh_token, expires_at, whoop_user_id, updated_at "
                "FROM whoop_tokens WHERE user_id = $1",
                user_id,
                user_id=user_id,
            )
        if row is None:
            return None
        return Credential(**_plain(row))

    async def upsert(self, credential: Credential) -> None:
        async with storage_errors("token write"):
            await execute(
                UPSERT_TOKEN,
                credential.user_id,
                credential.access_token,
                credential.refresh_token,
                credential.expires_at,
                credential.whoop_user_id,
                user_id=credential.user_id,
            )

    async def delete(self, user_id: str) -> None:
        async with storage_errors("token delete"):
            await execute("DELETE FROM whoop_tokens WHERE user_id = $1", user_id, user_id=user_id)

    async def list_user_ids(self) -> list[str]:
        async with storage_errors("token listing"):
            rows = await fetch("SELECT user_id FROM whoop_tokens ORDER BY user_id")
        return [str(r["user_id"]) for r in rows]


class PostgresOAuthStateStore(OAuthStateStore):
    async def put(self, state: str, user_id: str, expires_at: datetime) -> None:
        async with storage_errors("oauth state write"):
            async with get_connection(user_id=user_id) as conn:
                await conn.execute("DELETE FROM whoop_oauth_states WHERE expires_at < NOW()")
                await conn.execute(
                    "INSERT INTO whoop_oauth_states (state, user_id, expires_at) VALUES ($1, $2, $3)",
                    state, user_id, expires_at,
                )

    async def consume(self, state: str, now: datetime) -> str | None:
        async with storage_errors("oauth state consume"):
            row = await fetchrow(
                "DELETE FROM whoop_oauth_states WHERE state = $1 RETURNING user_id, expires_at",
                state,
            )
        if row is None or row["expires_at"] <= now:
            return None
        return str(row["user_id"])


# ---------------------------------------------------------------------------
# whoop_data / whoop_workouts
# ---------------------------------------------------------------------------


class PostgresWearableCacheStore(WearableCacheStore):
    async def upsert_day(self, day: WhoopDay) -> bool:
        values = [getattr(day, column) for column in WHOOP_DAY_COLUMNS]
        async with storage_errors("whoop day upsert"):
            row = await fetchrow(UPSERT_WHOOP_DAY, *values, user_id=day.user_id)
        return bool(row and row["inserted"])

    async def upsert_workout(self, workout: WhoopWorkoutRecord) -> bool:
        zones = (list(workout.zone_minutes) + [0.0] * 6)[:6]
        values = [
            workout.user_id, workout.whoop_workout_id, workout.start_time, workout.end_time,
            workout.sport_id, workout.sport_name, workout.strain, workout.avg_hr, workout.max_hr,
            workout.kilojoules, workout.calories, workout.distance_km, *zones, workout.raw_data,
        ]
        async with storage_errors("whoop workout upsert"):
            row = await fetchrow(UPSERT_WHOOP_WORKOUT, *values, user_id=workout.user_id)
        return bool(row and row["inserted"])

    async def get_day(self, user_id: str, target_date: date) -> WhoopDay | None:
        async with storage_errors("whoop day read"):
            row = await fetchrow(
                f"SELECT {', '.join(WHOOP_DAY_COLUMNS)} FROM whoop_data WHERE user_id = $1 AND date = $2",
                user_id, target_date,
                user_id=user_id,
            )
        if row is None:
            return None
        data = _plain(row)
        data["raw_data"] = data.get("raw_data") or {}
        return WhoopDay(**data)

    async def list_workouts(
        self,
        user_id: str,
        target_date: date | None = None,
        unlinked_only: bool = False,
    ) -> list[WhoopWorkoutRecord]:
        conditions = ["w.user_id = $1"]
        params: list[Any] = [user_id]
        if target_date is not None:
            params.append(target_date)
            conditions.append(f"(w.start_time AT TIME ZONE 'UTC')::date = ${len(params)}")

        query = f"""
            SELECT w.*, (
                SELECT ws.id::text FROM workout_sessions ws
                WHERE ws.user_id = w.user_id AND ws.whoop_workout_id = w.whoop_workout_id
                LIMIT 1
            ) AS linked_session_id
            FROM whoop_workouts w
            WHERE {' AND '.join(conditions)}
            ORDER BY w.start_time DESC
        """
        async with storage_errors("whoop workout listing"):
            rows = await fetch(query, *params, user_id=user_id)

        workouts = [_workout_from_row(_plain(r)) for r in rows]
        if unlinked_only:
            workouts = [w for w in workouts if w.linked_session_id is None]
        return workouts


def _workout_from_row(row: dict[str, Any]) -> WhoopWorkoutRecord:
    return WhoopWorkoutRecord(
        user_id=row["user_id"],
        whoop_workout_id=row["whoop_workout_id"],
        start_time=row["start_time"],
        end_time=row.get("end_time"),
        sport_id=row.get("sport_id"),
        sport_name=row.get("sport_name"),
        strain=row.get("strain"),
        avg_hr=row.get("avg_hr"),
        max_hr=row.get("max_hr"),
        kilojoules=row.get("kilojoules"),
        calories=row.get("calories"),
        distance_km=row.get("distance_km"),
        zone_minutes=[float(row.get(c) or 0) for c in ZONE_COLUMNS],
        raw_data=row.get("raw_data") or {},
        linked_session_id=row.get("linked_session_id"),
    )


# ---------------------------------------------------------------------------
# First-party logs + daily_summaries
# ---------------------------------------------------------------------------


class PostgresDailyStore(DailyStore):
    async def _rows(self, operation: str, query: str, user_id: str, target_date: date) -> list[dict[str, Any]]:
        async with storage_errors(operation):
            rows = await fetch(query, user_id, target_date, user_id=user_id)
        return [_plain(r) for r in rows]

    async def list_meals(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        return await self._rows(
            "meal read",
            "SELECT id, name, time_hour, time_minute, is_pm FROM meals "
            "WHERE user_id = $1 AND date = $2",
            user_id, target_date,
        )

    async def list_food_logs(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        micros = ", ".join(f"f.{m}" for m in MICRONUTRIENTS)
        return await self._rows(
            "food log read",
            f"""
            SELECT l.id, l.meal_id, l.food_id, l.servings,
                   f.name, f.serving_size, f.calories, f.protein, f.total_fat,
                   f.total_carbohydrates, {micros}
            FROM food_logs l
            LEFT JOIN foods f ON f.id = l.food_id
            WHERE l.user_id = $1 AND l.date = $2
            ORDER BY l.created_at, l.id
            """,
            user_id, target_date,
        )

    async def list_habit_logs(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        return await self._rows(
            "habit log read",
            "SELECT habit_key, completed, amount FROM habit_logs "
            "WHERE user_id = $1 AND date = $2 ORDER BY habit_key",
            user_id, target_date,
        )

    async def get_supplement_amounts(
        self, user_id: str, target_date: date
    ) -> dict[SupplementKind, float]:
        rows = await self._rows("supplement read", SUPPLEMENT_AMOUNTS, user_id, target_date)
        return {
            SupplementKind(r["kind"]): float(r["amount"])
            for r in rows
            if r["amount"] is not None
        }

    async def list_exercise_logs(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        return await self._rows(
            "exercise log read",
            """
            SELECT l.id, l.exercise_id, e.name, e.category
            FROM exercise_logs l
            LEFT JOIN exercises e ON e.id = l.exercise_id
            WHERE l.user_id = $1 AND l.date = $2
            ORDER BY l.created_at, l.id
            """,
            user_id, target_date,
        )

    async def list_exercise_sets(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        return await self._rows(
            "exercise set read",
            """
            SELECT s.log_id, s.set_number, s.is_warmup, s.reps, s.weight, s.notes
            FROM exercise_sets s
            JOIN exercise_logs l ON l.id = s.log_id
            WHERE l.user_id = $1 AND l.date = $2
            ORDER BY s.log_id, s.set_number
            """,
            user_id, target_date,
        )

    async def list_treadmill_sessions(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        return await self._rows(
            "treadmill read",
            "SELECT id, duration_minutes, incline, speed, notes FROM treadmill_sessions "
            "WHERE user_id = $1 AND date = $2 ORDER BY created_at, id",
            user_id, target_date,
        )

    async def get_summary(self, user_id: str, target_date: date) -> dict[str, Any] | None:
        async with storage_errors("summary read"):
            row = await fetchrow(
                "SELECT user_id, date, data, created_at, updated_at FROM daily_summaries "
                "WHERE user_id = $1 AND date = $2",
                user_id, target_date,
                user_id=user_id,
            )
        return _plain(row) if row else None

    async def upsert_summary(self, user_id: str, target_date: date, data: dict[str, Any]) -> None:
        async with storage_errors("summary write"):
            await execute(UPSERT_SUMMARY, user_id, target_date, data, user_id=user_id)

    async def list_active_user_ids(self) -> list[str]:
        async with storage_errors("active user listing"):
            rows = await fetch(
                "SELECT user_id FROM meals UNION SELECT user_id FROM food_logs "
                "UNION SELECT user_id FROM habit_logs ORDER BY 1"
            )
        return [str(r["user_id"]) for r in rows]
