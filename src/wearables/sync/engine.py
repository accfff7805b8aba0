"""Wearable sync engine.

Pulls cycles, recovery, sleep, and workouts from Whoop for a date window and
reconciles them into the local cache tables:

1. Obtain a valid access token, refreshing if needed.  Without one, nothing is fetched.
2. Page through every collection endpoint for the window.
3. Normalize each record and upsert it on its natural key, so re-running
   the same window never creates duplicates.
4. Count what was created, what replaced an existing row, and what was
   skipped.  A bad record is skipped and logged; only a failed request
   (auth, network, 5xx) aborts the run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from src.errors import MalformedUpstreamData, NotConnected
from src.wearables.adapters.whoop import WhoopAdapter
from src.wearables.base import (
    WearableCacheStore,
    WhoopDay,
    WhoopWorkoutRecord,
    parse_iso_datetime,
    safe_float,
    safe_int,
    utc_now,
)
from src.wearables.sync.dedup import InMemoryDedupCache, day_key, workout_key
from src.wearables.tokens import TokenLifecycleManager

logger = logging.getLogger("healthlog.sync")


@dataclass
class SyncCounts:
    """Outcome counts for one record type.

    Attributes:
        imported: Rows created by this run.
        updated:  Rows that already existed and were replaced.
        skipped:  Records not written (malformed, or superseded within the run).
    """

    imported: int = 0
    updated: int = 0
    skipped: int = 0

    def record(self, inserted: bool) -> None:
        if inserted:
            self.imported += 1
        else:
            self.updated += 1


@dataclass
class SyncResult:
    user_id: str
    start_date: date
    end_date: date
    days: SyncCounts = field(default_factory=SyncCounts)
    workouts: SyncCounts = field(default_factory=SyncCounts)
    synced_at: datetime = field(default_factory=utc_now)

    @property
    def imported_count(self) -> int:
        return self.days.imported + self.workouts.imported

    @property
    def updated_count(self) -> int:
        return self.days.updated + self.workouts.updated

    @property
    def skipped_count(self) -> int:
        return self.days.skipped + self.workouts.skipped

    @property
    def synced(self) -> int:
        return self.imported_count + self.updated_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "synced": self.synced,
            "importedCount": self.imported_count,
            "updatedCount": self.updated_count,
            "skippedCount": self.skipped_count,
            "days": vars(self.days).copy(),
            "workouts": vars(self.workouts).copy(),
            "dateRange": {"start": self.start_date.isoformat(), "end": self.end_date.isoformat()},
        }


class WearableSyncEngine:
    """Reconcile Whoop collections into ``whoop_data`` and ``whoop_workouts``.

    Usage::

        engine = WearableSyncEngine(tokens, adapter, cache_store)
        result = await engine.sync_range(user_id, date(2024, 3, 1), date(2024, 3, 7))
        logger.info("imported=%d skipped=%d", result.imported_count, result.skipped_count)
    """

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        adapter: WhoopAdapter,
        store: WearableCacheStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._tokens = tokens
        self._adapter = adapter
        self._store = store
        self._clock = clock

    async def _access_token(self, user_id: str) -> str:
        token = await self._tokens.get_valid_access_token(user_id)
        if token is None:
            raise NotConnected()
        return token

    def lookback_window(self, days: int) -> tuple[date, date]:
        """Return the inclusive UTC date window ending today."""
        end = self._clock().date()
        return end - timedelta(days=max(days, 0)), end

    async def sync_range(self, user_id: str, start_date: date, end_date: date) -> SyncResult:
        """Sync days and workouts for an inclusive date window.

        Raises:
            NotConnected:        No usable credential for ``user_id``.
            Unauthorized:        Whoop rejected the access token.
            UpstreamUnavailable: A collection request failed.
        """
        if start_date > end_date:
            raise ValueError(f"start_date {start_date} is after end_date {end_date}")

        access_token = await self._access_token(user_id)
        logger.info("Whoop sync for user %s: %s..%s", user_id, start_date, end_date)

        cycles, recoveries, sleeps, workouts = await self._fetch_collections(
            access_token, start_date, end_date
        )

        result = SyncResult(user_id=user_id, start_date=start_date, end_date=end_date)
        await self._reconcile_days(user_id, cycles, recoveries, sleeps, result.days)
        await self._reconcile_workouts(user_id, workouts, result.workouts)

        logger.info(
            "Whoop sync complete for user %s — days %s, workouts %s",
            user_id, vars(result.days), vars(result.workouts),
        )
        return result

    async def _fetch_collections(
        self, access_token: str, start_date: date, end_date: date
    ) -> tuple[list[dict], list[dict], list[dict], list[dict]]:
        """Fetch all four collections concurrently.

        The first failed request cancels the others and is re-raised as is.
        """
        fetchers = (
            self._adapter.fetch_cycles,
            self._adapter.fetch_recoveries,
            self._adapter.fetch_sleeps,
            self._adapter.fetch_workouts,
        )
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(fetch(access_token, start_date, end_date)) for fetch in fetchers]
        except ExceptionGroup as failures:
            for extra in failures.exceptions[1:]:
                logger.warning("Additional Whoop fetch failure: %s", extra)
            raise failures.exceptions[0]
        cycles, recoveries, sleeps, workouts = (task.result() for task in tasks)
        return cycles, recoveries, sleeps, workouts

    async def sync_workouts(self, user_id: str, lookback_days: int) -> SyncResult:
        """Sync only workouts for the last ``lookback_days`` days."""
        start_date, end_date = self.lookback_window(lookback_days)
        access_token = await self._access_token(user_id)

        workouts = await self._adapter.fetch_workouts(access_token, start_date, end_date)
        result = SyncResult(user_id=user_id, start_date=start_date, end_date=end_date)
        await self._reconcile_workouts(user_id, workouts, result.workouts)

        logger.info("Whoop workout sync for user %s — %s", user_id, vars(result.workouts))
        return result

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _reconcile_days(
        self,
        user_id: str,
        cycles: list[dict],
        recoveries: list[dict],
        sleeps: list[dict],
        counts: SyncCounts,
    ) -> None:
        recovery_by_cycle = _index_by_cycle(recoveries)
        sleep_by_cycle = _primary_sleep_by_cycle(sleeps)

        # Newest cycle first so it wins when two cycles start on the same date.
        ordered = sorted(cycles, key=_start_sort_key, reverse=True)
        seen = InMemoryDedupCache()

        for cycle in ordered:
            cycle_id = _cycle_ref(cycle)
            try:
                day = self._adapter.normalize_day(
                    user_id,
                    cycle,
                    recovery_by_cycle.get(cycle_id),
                    sleep_by_cycle.get(cycle_id),
                )
            except MalformedUpstreamData as exc:
                logger.warning("Skipping malformed Whoop cycle for user %s: %s", user_id, exc)
                counts.skipped += 1
                continue

            key = day_key(user_id, day.date)
            if seen.is_seen(key):
                logger.debug("Cycle %s superseded for %s", day.cycle_id, day.date)
                counts.skipped += 1
                continue
            seen.mark_seen(key)
            counts.record(await self._store.upsert_day(day))

    async def _reconcile_workouts(
        self, user_id: str, workouts: list[dict], counts: SyncCounts
    ) -> None:
        seen = InMemoryDedupCache()
        for raw in workouts:
            try:
                workout: WhoopWorkoutRecord = self._adapter.normalize_workout(user_id, raw)
            except MalformedUpstreamData as exc:
                logger.warning("Skipping malformed Whoop workout for user %s: %s", user_id, exc)
                counts.skipped += 1
                continue

            key = workout_key(user_id, workout.whoop_workout_id)
            if seen.is_seen(key):
                counts.skipped += 1
                continue
            seen.mark_seen(key)
            counts.record(await self._store.upsert_workout(workout))

    async def get_cached_day(self, user_id: str, target_date: date) -> WhoopDay | None:
        return await self._store.get_day(user_id, target_date)

    async def list_cached_workouts(
        self, user_id: str, target_date: date | None = None, unlinked_only: bool = False
    ) -> list[WhoopWorkoutRecord]:
        return await self._store.list_workouts(user_id, target_date, unlinked_only)


def _start_sort_key(record: Any) -> datetime:
    start = record.get("start") if isinstance(record, dict) else None
    return parse_iso_datetime(start) or datetime.min.replace(tzinfo=timezone.utc)


def _cycle_ref(record: Any, field_name: str = "id") -> int | None:
    """Cycle id of a record as the join key, or None if absent or unusable."""
    if not isinstance(record, dict):
        return None
    return safe_int(record.get(field_name))


def _index_by_cycle(records: list[dict]) -> dict[int, dict]:
    """Map cycle id to record.  Records without a usable ``cycle_id`` are dropped."""
    indexed: dict[int, dict] = {}
    for record in records:
        cycle_id = _cycle_ref(record, "cycle_id")
        if cycle_id is None:
            logger.warning("Ignoring Whoop record without a usable cycle_id: %r", record)
            continue
        indexed[cycle_id] = record
    return indexed


def _primary_sleep_by_cycle(sleeps: list[dict]) -> dict[int, dict]:
    """Pick one sleep per cycle: main sleep over naps, then the longest."""

    def rank(sleep: dict) -> tuple[int, float]:
        score = sleep.get("score")
        stages = score.get("stage_summary") if isinstance(score, dict) else None
        in_bed = stages.get("total_in_bed_time_milli") if isinstance(stages, dict) else None
        return (0 if sleep.get("nap") else 1, safe_float(in_bed) or 0.0)

    chosen: dict[int, dict] = {}
    for sleep in sleeps:
        cycle_id = _cycle_ref(sleep, "cycle_id")
        if cycle_id is None:
            logger.warning("Ignoring Whoop sleep without a usable cycle_id: %r", sleep)
            continue
        current = chosen.get(cycle_id)
        if current is None or rank(sleep) > rank(current):
            chosen[cycle_id] = sleep
    return chosen
