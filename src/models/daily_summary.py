"""Pydantic models for the per-date daily summary document and its endpoints."""

from __future__ import annotations

from datetime import date as DateType, datetime
from typing import Any

from pydantic import Field, model_validator

from src.models.base import HealthlogBase


# ---------- Nutrition ----------

class MacroTotals(HealthlogBase):
    calories: float = 0
    protein: float = 0
    fat: float = 0
    carbs: float = 0


class NutritionTotals(MacroTotals):
    """Daily totals.  Micronutrients stay null until a logged food reports them."""

    fiber: float | None = None
    sugar: float | None = None
    sodium: float | None = None
    saturated_fat: float | None = None
    vitamin_a: float | None = None
    vitamin_c: float | None = None
    vitamin_d: float | None = None
    calcium: float | None = None
    iron: float | None = None


class MealFoodItem(MacroTotals):
    food_id: str | None = None
    name: str = "Unknown"
    serving_size: str = ""
    servings: float = 1


class MealSummary(HealthlogBase):
    meal_id: str
    name: str
    time: str
    time_hour: int
    time_minute: int
    is_pm: bool
    foods: list[MealFoodItem] = Field(default_factory=list)
    meal_totals: MacroTotals = Field(default_factory=MacroTotals)


# ---------- Habits & supplements ----------

class HabitEntry(HealthlogBase):
    completed: bool = False
    amount: float | None = None


class HabitsSummary(HealthlogBase):
    entries: dict[str, HabitEntry] = Field(default_factory=dict)
    completed_count: int = 0


class SupplementsSummary(HealthlogBase):
    amounts: dict[str, float] = Field(default_factory=dict)
    taken_count: int = 0


# ---------- Workouts ----------

class ExerciseSetSummary(HealthlogBase):
    set_number: int
    is_warmup: bool = False
    reps: int | None = None
    weight: float | None = None
    notes: str | None = None


class ExerciseSummary(HealthlogBase):
    exercise_id: str | None = None
    name: str = "Unknown"
    category: str = "unknown"
    sets: list[ExerciseSetSummary] = Field(default_factory=list)
    total_sets: int = 0
    total_reps: int = 0
    max_weight: float | None = None


class TreadmillSummary(HealthlogBase):
    session_id: str
    duration_minutes: float = 0
    incline: float | None = None
    speed: float | None = None
    notes: str | None = None


class WhoopWorkoutSummary(HealthlogBase):
    whoop_workout_id: str
    sport_name: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    strain: float | None = None
    calories: int | None = None
    avg_hr: int | None = None
    max_hr: int | None = None
    distance_km: float | None = None
    linked_session_id: str | None = None


class WorkoutSummary(HealthlogBase):
    exercises: list[ExerciseSummary] = Field(default_factory=list)
    treadmill: list[TreadmillSummary] = Field(default_factory=list)
    whoop_workouts: list[WhoopWorkoutSummary] = Field(default_factory=list)
    total_exercises: int = 0
    total_sets: int = 0
    total_cardio_minutes: float = 0


# ---------- Wearable snapshot ----------

class WhoopSnapshot(HealthlogBase):
    recovery_score: float | None = None
    hrv_rmssd: float | None = None
    resting_heart_rate: float | None = None
    spo2_percentage: float | None = None
    skin_temp_celsius: float | None = None
    sleep_score: int | None = None
    sleep_duration_minutes: int | None = None
    strain_score: float | None = None
    kilojoules: float | None = None
    calories_burned: int | None = None
    avg_heart_rate: int | None = None
    max_heart_rate: int | None = None


# ---------- Summary document ----------

class DailySummaryData(HealthlogBase):
    """The JSONB document stored in ``daily_summaries.data``."""

    date: DateType
    totals: NutritionTotals = Field(default_factory=NutritionTotals)
    meals: list[MealSummary] = Field(default_factory=list)
    habits: HabitsSummary = Field(default_factory=HabitsSummary)
    supplements: SupplementsSummary = Field(default_factory=SupplementsSummary)
    workout: WorkoutSummary = Field(default_factory=WorkoutSummary)
    whoop: WhoopSnapshot | None = None


# ---------- Requests / responses ----------

class DailySummaryRequest(HealthlogBase):
    """Either a single ``date`` or an inclusive ``startDate``/``endDate`` range."""

    date: DateType | None = None
    start_date: DateType | None = Field(default=None, alias="startDate")
    end_date: DateType | None = Field(default=None, alias="endDate")

    @model_validator(mode="after")
    def _check_target(self) -> "DailySummaryRequest":
        if self.date is None and (self.start_date is None or self.end_date is None):
            raise ValueError("Date or date range required")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


class DailySummaryResponse(HealthlogBase):
    summary: dict[str, Any] | None = None


class DayOutcome(HealthlogBase):
    date: DateType
    success: bool
    error: str | None = None


class DailySummaryRangeResponse(HealthlogBase):
    success: bool
    count: int
    failed: int = 0
    summaries: list[dict[str, Any]] = Field(default_factory=list)
    results: list[DayOutcome] = Field(default_factory=list)
