"""Base classes and canonical data models for the wearable sync subsystem.

The vendor adapter returns the canonical ``WhoopDay`` / ``WhoopWorkoutRecord``
types; the sync engine writes them through a ``WearableCacheStore`` and the
daily aggregator reads them back.  Credentials live behind a ``TokenStore``
owned exclusively by the token lifecycle manager.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

logger = logging.getLogger("healthlog.wearables")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# OAuth credentials
# ---------------------------------------------------------------------------


@dataclass
class TokenGrant:
    """Token payload returned by the vendor's token endpoint.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_in:    Lifetime of the access token in seconds.
        token_type:    Token type, typically "Bearer".
        scope:         Granted OAuth scopes, space separated.
    """

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""


@dataclass
class Credential:
    """Stored OAuth credential for one user (one row of ``whoop_tokens``).

    ``expires_at`` is always computed by the store writer from the grant's
    ``expires_in``; callers never supply it.
    """

    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    whoop_user_id: int | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Cached vendor data
# ---------------------------------------------------------------------------


@dataclass
class WhoopDay:
    """Per-day vendor snapshot keyed by ``(user_id, date)``.

    One vendor cycle maps to one day; recovery and sleep are joined to it
    by ``cycle_id``.  Durations are minutes, energy is kilojoules plus the
    derived kilocalories.
    """

    user_id: str
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
    raw_data: dict = field(default_factory=dict)

    def snapshot(self) -> dict[str, Any]:
        """Return the fields copied into a daily summary."""
        data = asdict(self)
        for key in ("user_id", "date", "cycle_id", "sleep_id", "raw_data"):
            data.pop(key)
        return data


@dataclass
class WhoopWorkoutRecord:
    """One cached vendor workout keyed by ``(user_id, whoop_workout_id)``."""

    user_id: str
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
    zone_minutes: list[float] = field(default_factory=list)  # zones 0..5
    raw_data: dict = field(default_factory=dict)
    linked_session_id: str | None = None


# ---------------------------------------------------------------------------
# Storage interfaces
# ---------------------------------------------------------------------------


class TokenStore(ABC):
    """Persistence for ``whoop_tokens``.  One live row per user."""

    @abstractmethod
    async def get(self, user_id: str) -> Credential | None:
        """Return the stored credential or None.  No side effects."""

    @abstractmethod
    async def upsert(self, credential: Credential) -> None:
        """Insert or fully replace the user's credential row."""

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Remove the user's row.  Deleting a missing row is not an error."""

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        """Return every user that currently holds a credential."""


class OAuthStateStore(ABC):
    """Server-side binding of issued CSRF ``state`` values to users."""

    @abstractmethod
    async def put(self, state: str, user_id: str, expires_at: datetime) -> None:
        """Record an issued state."""

    @abstractmethod
    async def consume(self, state: str, now: datetime) -> str | None:
        """Atomically remove ``state`` and return its user if it had not expired."""


class WearableCacheStore(ABC):
    """Persistence for cached vendor rows (``whoop_data``, ``whoop_workouts``)."""

    @abstractmethod
    async def upsert_day(self, day: WhoopDay) -> bool:
        """Upsert on ``(user_id, date)``.  Returns True if a new row was created."""

    @abstractmethod
    async def upsert_workout(self, workout: WhoopWorkoutRecord) -> bool:
        """Upsert on ``(user_id, whoop_workout_id)``.  Returns True if new."""

    @abstractmethod
    async def get_day(self, user_id: str, target_date: date) -> WhoopDay | None:
        """Return the cached day row for ``target_date`` or None."""

    @abstractmethod
    async def list_workouts(
        self,
        user_id: str,
        target_date: date | None = None,
        unlinked_only: bool = False,
    ) -> list[WhoopWorkoutRecord]:
        """Return cached workouts, newest first, optionally for one UTC date."""


# ---------------------------------------------------------------------------
# Shared parsing helpers
# ---------------------------------------------------------------------------


def safe_int(value: object) -> int | None:
    """Safely coerce a value to int, returning None on failure."""
    number = safe_float(value)
    return int(round(number)) if number is not None else None


def safe_float(value: object) -> float | None:
    """Safely coerce a value to float, returning None on failure.

    NaN and infinities count as failures.
    """
    if value is None:
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string to an aware UTC datetime.

    Naive strings are assumed to be UTC.  Returns None if the value is None
    or unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, TypeError, AttributeError, OverflowError):
        logger.warning("Could not parse datetime string: %r", value)
        return None
