"""Tests for the range/cron orchestrator."""

from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.daily.aggregator import DailyAggregator
from src.daily.orchestrator import DailyOrchestrator, iter_dates
from src.daily.tests.fakes import InMemoryDailyStore
from src.errors import NotConnected
from src.wearables.sync.engine import SyncResult, WearableSyncEngine
from src.wearables.tests.fakes import TEST_USER_ID, FakeClock
from src.wearables.tokens import TokenLifecycleManager

START = date(2024, 3, 1)
END = date(2024, 3, 3)


@pytest.fixture
def orchestrator(aggregator: DailyAggregator) -> DailyOrchestrator:
    return DailyOrchestrator(aggregator, max_range_days=31, clock=FakeClock())


def test_iter_dates_is_inclusive():
    assert list(iter_dates(START, END)) == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]
    assert list(iter_dates(END, START)) == []


class TestToday:
    def test_uses_configured_timezone(self, aggregator: DailyAggregator):
        # 03:00 UTC is still the previous evening in Los Angeles
        clock = FakeClock(datetime(2024, 3, 5, 3, 0, tzinfo=timezone.utc))
        utc = DailyOrchestrator(aggregator, clock=clock)
        la = DailyOrchestrator(aggregator, timezone="America/Los_Angeles", clock=clock)

        assert utc.today() == date(2024, 3, 5)
        assert la.today() == date(2024, 3, 4)


class TestRange:
    @pytest.mark.asyncio
    async def test_failed_day_does_not_stop_the_range(
        self, orchestrator: DailyOrchestrator, daily_store: InMemoryDailyStore
    ):
        daily_store.failing_dates.add(date(2024, 3, 2))

        result = await orchestrator.run_for_range(TEST_USER_ID, START, END)

        assert result.count == 3
        assert [r.date for r in result.failures] == [date(2024, 3, 2)]
        assert "2024-03-02" in result.failures[0].error
        assert [s.date for s in result.summaries] == [date(2024, 3, 1), date(2024, 3, 3)]
        assert (TEST_USER_ID, date(2024, 3, 1)) in daily_store.summaries
        assert (TEST_USER_ID, date(2024, 3, 2)) not in daily_store.summaries
        assert (TEST_USER_ID, date(2024, 3, 3)) in daily_store.summaries

    @pytest.mark.asyncio
    async def test_single_day_range(self, orchestrator: DailyOrchestrator):
        result = await orchestrator.run_for_range(TEST_USER_ID, START, START)
        assert result.count == 1
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_reversed_range_rejected(
        self, orchestrator: DailyOrchestrator, daily_store: InMemoryDailyStore
    ):
        with pytest.raises(ValueError, match="must not be after"):
            await orchestrator.run_for_range(TEST_USER_ID, END, START)
        assert daily_store.summary_writes == 0

    @pytest.mark.asyncio
    async def test_oversized_range_rejected(self, orchestrator: DailyOrchestrator):
        with pytest.raises(ValueError, match="maximum is 31"):
            await orchestrator.run_for_range(TEST_USER_ID, date(2024, 1, 1), date(2024, 3, 1))


class TestDailyCron:
    @pytest.mark.asyncio
    async def test_reports_each_active_user(
        self, orchestrator: DailyOrchestrator, daily_store: InMemoryDailyStore
    ):
        today = date(2024, 3, 5)
        daily_store.add_food("food-a", "Oatmeal", calories=500)
        daily_store.log_food("user-a", today, "food-a")
        daily_store.habit_logs[("user-b", today)] = [{"habit_key": "water", "completed": True}]

        report = await orchestrator.run_daily_cron()

        assert report.date == today
        assert [r.user_id for r in report.results] == ["user-a", "user-b"]
        assert all(r.success for r in report.results)
        assert report.results[0].detail["calories"] == 500
        assert report.message() == "Daily summary synced for 2/2 users"

    @pytest.mark.asyncio
    async def test_no_users(self, orchestrator: DailyOrchestrator):
        report = await orchestrator.run_daily_cron(date(2024, 3, 1))
        assert report.total == 0
        assert report.message() == "No users to sync"

    @pytest.mark.asyncio
    async def test_failed_user_recorded(
        self, orchestrator: DailyOrchestrator, daily_store: InMemoryDailyStore
    ):
        day = date(2024, 3, 1)
        daily_store.habit_logs[("user-a", day)] = [{"habit_key": "water", "completed": True}]
        daily_store.fail_writes = True

        report = await orchestrator.run_daily_cron(day)

        assert report.succeeded == 0
        assert "Failed to save summary" in report.results[0].error


class TestWhoopCron:
    def build(self, aggregator: DailyAggregator, users: list[str]) -> tuple[DailyOrchestrator, MagicMock]:
        tokens = MagicMock(spec=TokenLifecycleManager)
        tokens.connected_user_ids = AsyncMock(return_value=users)
        engine = MagicMock(spec=WearableSyncEngine)
        orchestrator = DailyOrchestrator(aggregator, sync_engine=engine, tokens=tokens, clock=FakeClock())
        return orchestrator, engine

    @pytest.mark.asyncio
    async def test_syncs_then_reaggregates(self, aggregator: DailyAggregator, daily_store: InMemoryDailyStore):
        orchestrator, engine = self.build(aggregator, ["user-a"])
        engine.sync_range = AsyncMock(
            side_effect=lambda user_id, start, end: SyncResult(user_id=user_id, start_date=start, end_date=end)
        )

        report = await orchestrator.run_whoop_cron(days=2)

        engine.sync_range.assert_awaited_once_with("user-a", date(2024, 3, 3), date(2024, 3, 5))
        (result,) = report.results
        assert result.success
        assert result.detail == {"synced": 0, "skipped": 0, "summaries": 3}
        assert ("user-a", date(2024, 3, 4)) in daily_store.summaries

    @pytest.mark.asyncio
    async def test_one_user_failing_does_not_stop_others(self, aggregator: DailyAggregator):
        orchestrator, engine = self.build(aggregator, ["user-a", "user-b"])

        async def sync_range(user_id, start, end):
            if user_id == "user-a":
                raise NotConnected()
            return SyncResult(user_id=user_id, start_date=start, end_date=end)

        engine.sync_range = AsyncMock(side_effect=sync_range)

        report = await orchestrator.run_whoop_cron(days=1)

        assert [r.success for r in report.results] == [False, True]
        assert report.results[0].error == "Not connected to Whoop"
        assert report.message() == "Whoop sync synced for 1/2 users"

    @pytest.mark.asyncio
    async def test_requires_sync_wiring(self, orchestrator: DailyOrchestrator):
        with pytest.raises(RuntimeError):
            await orchestrator.run_whoop_cron(days=1)
