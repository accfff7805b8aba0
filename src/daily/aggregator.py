"""Daily aggregator.

Builds the summary document for one user and one calendar date from:

- meals and food logs (servings-scaled macros, per-meal and daily totals)
- habit logs
- the fixed supplement log tables
- exercise logs, their sets, and treadmill sessions
- the cached Whoop day row and cached Whoop workouts for the date

All reads are local and independent, so they run concurrently.  Nothing
here calls the vendor API; a date without a cached Whoop row simply has
``whoop = None``.  The summary row is written with one upsert after every
read succeeded, so a failed read leaves the previous row untouched.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from src.daily.supplements import SupplementKind
from src.errors import AggregationFailure, StorageError
from src.models.daily_summary import (
    DailySummaryData,
    ExerciseSetSummary,
    ExerciseSummary,
    HabitEntry,
    HabitsSummary,
    MacroTotals,
    MealFoodItem,
    MealSummary,
    NutritionTotals,
    SupplementsSummary,
    TreadmillSummary,
    WhoopSnapshot,
    WhoopWorkoutSummary,
    WorkoutSummary,
)
from src.wearables.base import WearableCacheStore, WhoopDay, WhoopWorkoutRecord

logger = logging.getLogger("healthlog.daily")

MICRONUTRIENTS = (
    "fiber",
    "sugar",
    "sodium",
    "saturated_fat",
    "vitamin_a",
    "vitamin_c",
    "vitamin_d",
    "calcium",
    "iron",
)


class DailyStore(ABC):
    """Read access to first-party logs plus the ``daily_summaries`` table.

    Every ``list_*`` method returns plain dict rows for one user and date;
    an empty list means nothing was logged, never an error.  Storage
    failures raise ``StorageError``.
    """

    @abstractmethod
    async def list_meals(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        """Rows with ``id, name, time_hour, time_minute, is_pm``."""

    @abstractmethod
    async def list_food_logs(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        """Food logs joined to their food.

        Rows carry ``id, meal_id, food_id, servings`` and the food columns
        ``name, serving_size, calories, protein, total_fat,
        total_carbohydrates`` plus the micronutrients.  Food columns are
        None when the referenced food no longer exists.
        """

    @abstractmethod
    async def list_habit_logs(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        """Rows with ``habit_key, completed, amount``."""

    @abstractmethod
    async def get_supplement_amounts(
        self, user_id: str, target_date: date
    ) -> dict[SupplementKind, float]:
        """Logged amount per supplement kind.  Kinds with no log are omitted."""

    @abstractmethod
    async def list_exercise_logs(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        """Rows with ``id, exercise_id`` and the exercise's ``name, category``."""

    @abstractmethod
    async def list_exercise_sets(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        """Sets belonging to the date's exercise logs (``log_id, set_number, ...``)."""

    @abstractmethod
    async def list_treadmill_sessions(self, user_id: str, target_date: date) -> list[dict[str, Any]]:
        """Rows with ``id, duration_minutes, incline, speed, notes``."""

    @abstractmethod
    async def get_summary(self, user_id: str, target_date: date) -> dict[str, Any] | None:
        """Return the stored summary row or None."""

    @abstractmethod
    async def upsert_summary(
        self, user_id: str, target_date: date, data: dict[str, Any]
    ) -> None:
        """Insert or replace the summary for ``(user_id, target_date)`` in one statement."""

    @abstractmethod
    async def list_active_user_ids(self) -> list[str]:
        """Users who have logged anything (meals, food, or habits)."""


def format_meal_time(hour: int, minute: int, is_pm: bool) -> str:
    """Format a 12-hour clock time as ``"8:30 AM"``."""
    display_hour = 12 if hour in (0, 12) else hour % 12
    return f"{display_hour}:{minute:02d} {'PM' if is_pm else 'AM'}"


def _minutes_since_midnight(meal: dict[str, Any]) -> int:
    hour = int(meal.get("time_hour") or 0) % 12
    if meal.get("is_pm"):
        hour += 12
    return hour * 60 + int(meal.get("time_minute") or 0)


def _num(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _rounded(value: float) -> float:
    return round(value, 2)


class DailyAggregator:
    """Compute and persist one ``DailySummaryData`` per user and date.

    Usage::

        aggregator = DailyAggregator(daily_store, wearable_store)
        summary = await aggregator.sync_daily_summary(user_id, date(2024, 3, 1))
    """

    def __init__(self, store: DailyStore, wearable_store: WearableCacheStore) -> None:
        self._store = store
        self._wearables = wearable_store

    async def aggregate(self, user_id: str, target_date: date) -> DailySummaryData:
        """Read every source for the date and build the summary.  No writes.

        Raises:
            AggregationFailure: A storage read failed.
        """
        # A failed read cancels the remaining reads before the error surfaces.
        try:
            async with asyncio.TaskGroup() as group:
                meals = group.create_task(self._store.list_meals(user_id, target_date))
                food_logs = group.create_task(self._store.list_food_logs(user_id, target_date))
                habit_logs = group.create_task(self._store.list_habit_logs(user_id, target_date))
                supplements = group.create_task(self._store.get_supplement_amounts(user_id, target_date))
                exercise_logs = group.create_task(self._store.list_exercise_logs(user_id, target_date))
                exercise_sets = group.create_task(self._store.list_exercise_sets(user_id, target_date))
                treadmill = group.create_task(self._store.list_treadmill_sessions(user_id, target_date))
                whoop_day = group.create_task(self._wearables.get_day(user_id, target_date))
                whoop_workouts = group.create_task(self._wearables.list_workouts(user_id, target_date))
        except ExceptionGroup as failures:
            storage_failures = failures.subgroup(StorageError)
            if storage_failures is None:
                raise failures.exceptions[0]
            exc = storage_failures.exceptions[0]
            logger.error("Daily aggregation read failed for %s on %s: %s", user_id, target_date, exc)
            raise AggregationFailure(f"Failed to read logs for {target_date}: {exc.message}") from exc

        return DailySummaryData(
            date=target_date,
            totals=self._nutrition_totals(food_logs.result()),
            meals=self._meal_summaries(meals.result(), food_logs.result()),
            habits=self._habits(habit_logs.result()),
            supplements=self._supplements(supplements.result()),
            workout=self._workout(
                exercise_logs.result(), exercise_sets.result(), treadmill.result(), whoop_workouts.result()
            ),
            whoop=self._whoop_snapshot(whoop_day.result()),
        )

    async def sync_daily_summary(self, user_id: str, target_date: date) -> DailySummaryData:
        """Aggregate the date and upsert its summary row.

        Raises:
            AggregationFailure: A read or the final write failed.  The
                previously stored row, if any, is unchanged.
        """
        summary = await self.aggregate(user_id, target_date)
        try:
            await self._store.upsert_summary(user_id, target_date, summary.model_dump(mode="json"))
        except StorageError as exc:
            logger.error("Daily summary write failed for %s on %s: %s", user_id, target_date, exc)
            raise AggregationFailure(f"Failed to save summary for {target_date}: {exc.message}") from exc

        logger.info(
            "Daily summary for %s on %s: %.0f kcal, %d meals, %d exercises",
            user_id, target_date, summary.totals.calories, len(summary.meals),
            summary.workout.total_exercises,
        )
        return summary

    async def get_summary(self, user_id: str, target_date: date) -> dict[str, Any] | None:
        return await self._store.get_summary(user_id, target_date)

    async def active_user_ids(self) -> list[str]:
        return await self._store.list_active_user_ids()

    # ------------------------------------------------------------------
    # Nutrition
    # ------------------------------------------------------------------

    @staticmethod
    def _food_item(log: dict[str, Any]) -> MealFoodItem:
        servings = _num(log.get("servings") if log.get("servings") is not None else 1)
        return MealFoodItem(
            food_id=str(log["food_id"]) if log.get("food_id") is not None else None,
            name=log.get("name") or "Unknown",
            serving_size=log.get("serving_size") or "",
            servings=servings,
            calories=_rounded(_num(log.get("calories")) * servings),
            protein=_rounded(_num(log.get("protein")) * servings),
            fat=_rounded(_num(log.get("total_fat")) * servings),
            carbs=_rounded(_num(log.get("total_carbohydrates")) * servings),
        )

    @staticmethod
    def _nutrition_totals(food_logs: list[dict[str, Any]]) -> NutritionTotals:
        macros = {"calories": 0.0, "protein": 0.0, "fat": 0.0, "carbs": 0.0}
        micros: dict[str, float | None] = dict.fromkeys(MICRONUTRIENTS)

        for log in food_logs:
            # A log whose food was deleted contributes nothing.
            if log.get("name") is None:
                continue
            servings = _num(log.get("servings") if log.get("servings") is not None else 1)
            macros["calories"] += _num(log.get("calories")) * servings
            macros["protein"] += _num(log.get("protein")) * servings
            macros["fat"] += _num(log.get("total_fat")) * servings
            macros["carbs"] += _num(log.get("total_carbohydrates")) * servings
            for key in MICRONUTRIENTS:
                value = log.get(key)
                if value is None:
                    continue
                micros[key] = (micros[key] or 0.0) + float(value) * servings

        return NutritionTotals(
            **{k: _rounded(v) for k, v in macros.items()},
            **{k: (_rounded(v) if v is not None else None) for k, v in micros.items()},
        )

    def _meal_summaries(
        self, meals: list[dict[str, Any]], food_logs: list[dict[str, Any]]
    ) -> list[MealSummary]:
        logs_by_meal: dict[str, list[dict[str, Any]]] = {}
        for log in food_logs:
            if log.get("meal_id") is not None:
                logs_by_meal.setdefault(str(log["meal_id"]), []).append(log)

        summaries = []
        for meal in sorted(meals, key=lambda m: (_minutes_since_midnight(m), str(m["id"]))):
            foods = [self._food_item(log) for log in logs_by_meal.get(str(meal["id"]), [])]
            totals = MacroTotals(
                calories=_rounded(sum(f.calories for f in foods)),
                protein=_rounded(sum(f.protein for f in foods)),
                fat=_rounded(sum(f.fat for f in foods)),
                carbs=_rounded(sum(f.carbs for f in foods)),
            )
            hour = int(meal.get("time_hour") or 0)
            minute = int(meal.get("time_minute") or 0)
            is_pm = bool(meal.get("is_pm"))
            summaries.append(
                MealSummary(
                    meal_id=str(meal["id"]),
                    name=meal.get("name") or "Meal",
                    time=format_meal_time(hour, minute, is_pm),
                    time_hour=hour,
                    time_minute=minute,
                    is_pm=is_pm,
                    foods=foods,
                    meal_totals=totals,
                )
            )
        return summaries

    # ------------------------------------------------------------------
    # Habits & supplements
    # ------------------------------------------------------------------

    @staticmethod
    def _habits(habit_logs: list[dict[str, Any]]) -> HabitsSummary:
        entries: dict[str, HabitEntry] = {}
        for log in sorted(habit_logs, key=lambda h: str(h.get("habit_key"))):
            key = log.get("habit_key")
            if not key:
                continue
            amount = log.get("amount")
            entries[key] = HabitEntry(
                completed=bool(log.get("completed")),
                amount=float(amount) if amount is not None else None,
            )
        return HabitsSummary(
            entries=entries,
            completed_count=sum(1 for e in entries.values() if e.completed),
        )

    @staticmethod
    def _supplements(amounts: dict[SupplementKind, float]) -> SupplementsSummary:
        values = {kind.summary_key: float(amounts.get(kind) or 0) for kind in SupplementKind}
        return SupplementsSummary(
            amounts=values,
            taken_count=sum(1 for v in values.values() if v > 0),
        )

    # ------------------------------------------------------------------
    # Workouts
    # ------------------------------------------------------------------

    @staticmethod
    def _workout(
        exercise_logs: list[dict[str, Any]],
        exercise_sets: list[dict[str, Any]],
        treadmill: list[dict[str, Any]],
        whoop_workouts: list[WhoopWorkoutRecord],
    ) -> WorkoutSummary:
        sets_by_log: dict[str, list[dict[str, Any]]] = {}
        for row in exercise_sets:
            sets_by_log.setdefault(str(row["log_id"]), []).append(row)

        exercises = []
        for log in exercise_logs:
            sets = [
                ExerciseSetSummary(
                    set_number=int(s["set_number"]),
                    is_warmup=bool(s.get("is_warmup")),
                    reps=s.get("reps"),
                    weight=float(s["weight"]) if s.get("weight") is not None else None,
                    notes=s.get("notes"),
                )
                for s in sorted(sets_by_log.get(str(log["id"]), []), key=lambda s: s["set_number"])
            ]
            max_weight = max((s.weight or 0 for s in sets), default=0)
            exercises.append(
                ExerciseSummary(
                    exercise_id=str(log["exercise_id"]) if log.get("exercise_id") is not None else None,
                    name=log.get("name") or "Unknown",
                    category=log.get("category") or "unknown",
                    sets=sets,
                    total_sets=len(sets),
                    total_reps=sum(s.reps or 0 for s in sets),
                    max_weight=max_weight if max_weight > 0 else None,
                )
            )

        sessions = [
            TreadmillSummary(
                session_id=str(row["id"]),
                duration_minutes=_num(row.get("duration_minutes")),
                incline=row.get("incline"),
                speed=row.get("speed"),
                notes=row.get("notes"),
            )
            for row in treadmill
        ]

        vendor = [
            WhoopWorkoutSummary(
                whoop_workout_id=w.whoop_workout_id,
                sport_name=w.sport_name,
                start_time=w.start_time,
                end_time=w.end_time,
                strain=w.strain,
                calories=w.calories,
                avg_hr=w.avg_hr,
                max_hr=w.max_hr,
                distance_km=w.distance_km,
                linked_session_id=w.linked_session_id,
            )
            for w in sorted(whoop_workouts, key=lambda w: (w.start_time, w.whoop_workout_id))
        ]

        return WorkoutSummary(
            exercises=exercises,
            treadmill=sessions,
            whoop_workouts=vendor,
            total_exercises=len(exercises),
            total_sets=sum(e.total_sets for e in exercises),
            total_cardio_minutes=_rounded(sum(t.duration_minutes for t in sessions)),
        )

    @staticmethod
    def _whoop_snapshot(day: WhoopDay | None) -> WhoopSnapshot | None:
        if day is None:
            return None
        return WhoopSnapshot(**day.snapshot())
