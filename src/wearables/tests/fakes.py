"""In-memory stores and helpers shared by the wearable and daily tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

from src.errors import StorageError
from src.wearables.base import (
    Credential,
    OAuthStateStore,
    TokenStore,
    WearableCacheStore,
    WhoopDay,
    WhoopWorkoutRecord,
)

TEST_USER_ID = "user-123"
NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self.rows: dict[str, Credential] = {}
        self.upserts = 0
        self.fail_writes = False

    async def get(self, user_id: str) -> Credential | None:
        row = self.rows.get(user_id)
        return replace(row) if row else None

    async def upsert(self, credential: Credential) -> None:
        if self.fail_writes:
            raise StorageError("whoop_tokens unavailable")
        self.upserts += 1
        self.rows[credential.user_id] = replace(credential)

    async def delete(self, user_id: str) -> None:
        self.rows.pop(user_id, None)

    async def list_user_ids(self) -> list[str]:
        return sorted(self.rows)


class InMemoryOAuthStateStore(OAuthStateStore):
    def __init__(self) -> None:
        self.states: dict[str, tuple[str, datetime]] = {}

    async def put(self, state: str, user_id: str, expires_at: datetime) -> None:
        self.states[state] = (user_id, expires_at)

    async def consume(self, state: str, now: datetime) -> str | None:
        entry = self.states.pop(state, None)
        if entry is None or entry[1] <= now:
            return None
        return entry[0]


class InMemoryWearableCacheStore(WearableCacheStore):
    """Keyed exactly like the UNIQUE constraints on the real tables."""

    def __init__(self) -> None:
        self.days: dict[tuple[str, date], WhoopDay] = {}
        self.workouts: dict[tuple[str, str], WhoopWorkoutRecord] = {}
        self.linked: dict[tuple[str, str], str] = {}
        self.fail_reads = False

    async def upsert_day(self, day: WhoopDay) -> bool:
        key = (day.user_id, day.date)
        inserted = key not in self.days
        self.days[key] = day
        return inserted

    async def upsert_workout(self, workout: WhoopWorkoutRecord) -> bool:
        key = (workout.user_id, workout.whoop_workout_id)
        inserted = key not in self.workouts
        self.workouts[key] = workout
        return inserted

    async def get_day(self, user_id: str, target_date: date) -> WhoopDay | None:
        if self.fail_reads:
            raise StorageError("whoop_data unavailable")
        return self.days.get((user_id, target_date))

    async def list_workouts(
        self,
        user_id: str,
        target_date: date | None = None,
        unlinked_only: bool = False,
    ) -> list[WhoopWorkoutRecord]:
        if self.fail_reads:
            raise StorageError("whoop_workouts unavailable")
        result = []
        for (owner, workout_id), workout in self.workouts.items():
            if owner != user_id:
                continue
            if target_date is not None and workout.start_time.astimezone(timezone.utc).date() != target_date:
                continue
            linked = self.linked.get((owner, workout_id))
            if unlinked_only and linked:
                continue
            result.append(replace(workout, linked_session_id=linked))
        return sorted(result, key=lambda w: w.start_time, reverse=True)


# ---------------------------------------------------------------------------
# Whoop API payloads
# ---------------------------------------------------------------------------


def cycle_payload(cycle_id: int, start: str, strain: float = 10.5, kilojoule: float = 8368.0) -> dict:
    return {
        "id": cycle_id,
        "user_id": 10129,
        "start": start,
        "end": None,
        "timezone_offset": "-05:00",
        "score_state": "SCORED",
        "score": {
            "strain": strain,
            "kilojoule": kilojoule,
            "average_heart_rate": 68,
            "max_heart_rate": 141,
        },
    }


def recovery_payload(cycle_id: int, recovery_score: float = 66.0) -> dict:
    return {
        "cycle_id": cycle_id,
        "sleep_id": f"sleep-{cycle_id}",
        "score_state": "SCORED",
        "score": {
            "recovery_score": recovery_score,
            "resting_heart_rate": 52.0,
            "hrv_rmssd_milli": 61.2,
            "spo2_percentage": 96.4,
            "skin_temp_celsius": 33.7,
        },
    }


def sleep_payload(cycle_id: int, nap: bool = False, light_ms: int = 14_400_000) -> dict:
    return {
        "id": f"sleep-{cycle_id}{'-nap' if nap else ''}",
        "cycle_id": cycle_id,
        "nap": nap,
        "score_state": "SCORED",
        "score": {
            "stage_summary": {
                "total_in_bed_time_milli": light_ms + 12_600_000,
                "total_light_sleep_time_milli": light_ms,
                "total_slow_wave_sleep_time_milli": 5_400_000,
                "total_rem_sleep_time_milli": 6_000_000,
            },
            "sleep_performance_percentage": 91.6,
        },
    }


def workout_payload(workout_id: str, start: str, sport_id: int = 0) -> dict:
    return {
        "id": workout_id,
        "start": start,
        "end": start.replace("T07:", "T08:"),
        "sport_id": sport_id,
        "score_state": "SCORED",
        "score": {
            "strain": 12.1,
            "average_heart_rate": 148,
            "max_heart_rate": 176,
            "kilojoule": 2092.0,
            "distance_meter": 8046.7,
            "zone_durations": {
                "zone_zero_milli": 0,
                "zone_one_milli": 300_000,
                "zone_two_milli": 1_200_000,
                "zone_three_milli": 1_500_000,
                "zone_four_milli": 600_000,
                "zone_five_milli": 0,
            },
        },
    }
