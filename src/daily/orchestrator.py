"""Cron / range orchestrator.

Drives the daily aggregator over one date or an inclusive date range, and
the Whoop sync engine over every connected user.  Batches are best effort:
a failed day (or user) is recorded and the batch moves on, so the caller
always gets a per-item report instead of an all-or-nothing error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo

from src.daily.aggregator import DailyAggregator
from src.errors import HealthlogError
from src.models.daily_summary import DailySummaryData
from src.wearables.base import utc_now
from src.wearables.sync.engine import WearableSyncEngine
from src.wearables.tokens import TokenLifecycleManager

logger = logging.getLogger("healthlog.cron")


def iter_dates(start_date: date, end_date: date):
    """Yield each calendar day from ``start_date`` to ``end_date`` inclusive."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


@dataclass
class DayResult:
    date: date
    summary: DailySummaryData | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class RangeResult:
    start_date: date
    end_date: date
    results: list[DayResult] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> list[DayResult]:
        return [r for r in self.results if not r.success]

    @property
    def summaries(self) -> list[DailySummaryData]:
        return [r.summary for r in self.results if r.summary is not None]


@dataclass
class UserRunResult:
    user_id: str
    success: bool
    error: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class CronReport:
    """Per-user outcome of one cron batch."""

    job: str
    date: date
    results: list[UserRunResult] = field(default_factory=list)
    finished_at: datetime = field(default_factory=utc_now)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total(self) -> int:
        return len(self.results)

    def message(self) -> str:
        if not self.results:
            return "No users to sync"
        return f"{self.job} synced for {self.succeeded}/{self.total} users"


class DailyOrchestrator:
    """Run aggregation and vendor sync for single dates, ranges, and all users.

    Usage::

        orchestrator = DailyOrchestrator(aggregator, sync_engine, tokens)
        result = await orchestrator.run_for_range(user_id, date(2024, 3, 1), date(2024, 3, 3))
        if result.failures:
            logger.warning("%d days failed", len(result.failures))
    """

    def __init__(
        self,
        aggregator: DailyAggregator,
        sync_engine: WearableSyncEngine | None = None,
        tokens: TokenLifecycleManager | None = None,
        max_range_days: int = 366,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._aggregator = aggregator
        self._sync_engine = sync_engine
        self._tokens = tokens
        self._max_range_days = max_range_days
        self._tz = ZoneInfo(timezone)
        self._clock = clock

    def today(self) -> date:
        """Current calendar date in the configured timezone."""
        return self._clock().astimezone(self._tz).date()

    def validate_range(self, start_date: date, end_date: date) -> None:
        """Raise ``ValueError`` for a reversed or oversized range."""
        if start_date > end_date:
            raise ValueError("startDate must not be after endDate")
        span = (end_date - start_date).days + 1
        if span > self._max_range_days:
            raise ValueError(f"Date range spans {span} days; the maximum is {self._max_range_days}")

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def get_summary(self, user_id: str, target_date: date) -> dict[str, Any] | None:
        return await self._aggregator.get_summary(user_id, target_date)

    async def run_for_date(self, user_id: str, target_date: date) -> DailySummaryData:
        return await self._aggregator.sync_daily_summary(user_id, target_date)

    async def run_for_range(self, user_id: str, start_date: date, end_date: date) -> RangeResult:
        """Aggregate each day in order; a failed day is recorded, not raised."""
        self.validate_range(start_date, end_date)

        result = RangeResult(start_date=start_date, end_date=end_date)
        for day in iter_dates(start_date, end_date):
            try:
                summary = await self._aggregator.sync_daily_summary(user_id, day)
            except HealthlogError as exc:
                logger.warning("Summary for %s on %s failed: %s", user_id, day, exc.message)
                result.results.append(DayResult(date=day, error=exc.message))
                continue
            result.results.append(DayResult(date=day, summary=summary))

        logger.info(
            "Summaries for %s %s..%s: %d processed, %d failed",
            user_id, start_date, end_date, result.count, len(result.failures),
        )
        return result

    # ------------------------------------------------------------------
    # Cron batches
    # ------------------------------------------------------------------

    async def run_daily_cron(self, target_date: date | None = None) -> CronReport:
        """Aggregate ``target_date`` (default: today) for every active user."""
        day = target_date or self.today()
        report = CronReport(job="Daily summary", date=day)

        for user_id in await self._aggregator.active_user_ids():
            try:
                summary = await self._aggregator.sync_daily_summary(user_id, day)
            except HealthlogError as exc:
                report.results.append(UserRunResult(user_id=user_id, success=False, error=exc.message))
                continue
            report.results.append(
                UserRunResult(
                    user_id=user_id,
                    success=True,
                    detail={"calories": summary.totals.calories, "meals": len(summary.meals)},
                )
            )

        logger.info("Daily cron for %s: %s", day, report.message())
        return report

    async def run_whoop_cron(self, days: int) -> CronReport:
        """Sync the last ``days`` days for every connected user, then re-aggregate them."""
        if self._sync_engine is None or self._tokens is None:
            raise RuntimeError("Whoop sync is not configured for this orchestrator")

        end_date = self.today()
        start_date = end_date - timedelta(days=max(days, 0))
        report = CronReport(job="Whoop sync", date=end_date)

        for user_id in await self._tokens.connected_user_ids():
            try:
                sync = await self._sync_engine.sync_range(user_id, start_date, end_date)
            except HealthlogError as exc:
                logger.warning("Whoop cron sync failed for %s: %s", user_id, exc.message)
                report.results.append(UserRunResult(user_id=user_id, success=False, error=exc.message))
                continue

            summaries = await self.run_for_range(user_id, start_date, end_date)
            report.results.append(
                UserRunResult(
                    user_id=user_id,
                    success=True,
                    detail={
                        "synced": sync.synced,
                        "skipped": sync.skipped_count,
                        "summaries": summaries.count - len(summaries.failures),
                    },
                )
            )

        logger.info("Whoop cron %s..%s: %s", start_date, end_date, report.message())
        return report
