"""Pydantic models for the Whoop connection and sync endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field

from src.models.base import HealthlogBase


class WhoopStatusResponse(HealthlogBase):
    connected: bool
    state: str
    expires_at: datetime | None = Field(default=None, serialization_alias="expiresAt")
    is_expiring_soon: bool | None = Field(default=None, serialization_alias="isExpiringSoon")


class WhoopSyncRequest(HealthlogBase):
    days: int | None = Field(default=None, ge=1, le=366)


class WhoopDayRead(HealthlogBase):
    date: date
    cycle_id: int
    recovery_score: float | None = None
    hrv_rmssd: float | None = None
    resting_heart_rate: float | None = None
    spo2_percentage: float | None = None
    skin_temp_celsius: float | None = None
    sleep_id: str | None = None
    sleep_score: int | None = None
    sleep_duration_minutes: int | None = None
    strain_score: float | None = None
    kilojoules: float | None = None
    calories_burned: int | None = None
    avg_heart_rate: int | None = None
    max_heart_rate: int | None = None


class WhoopWorkoutRead(HealthlogBase):
    whoop_workout_id: str
    start_time: datetime
    end_time: datetime | None = None
    sport_id: int | None = None
    sport_name: str | None = None
    strain: float | None = None
    avg_hr: int | None = None
    max_hr: int | None = None
    kilojoules: float | None = None
    calories: int | None = None
    distance_km: float | None = None
    zone_minutes: list[float] = Field(default_factory=list)
    linked_session_id: str | None = None


class WhoopDataResponse(HealthlogBase):
    data: WhoopDayRead | None = None


class WhoopWorkoutsResponse(HealthlogBase):
    workouts: list[WhoopWorkoutRead] = Field(default_factory=list)
    count: int = 0

