"""Shared fixtures for the daily aggregation tests."""

from __future__ import annotations

import pytest

from src.daily.aggregator import DailyAggregator
from src.daily.tests.fakes import InMemoryDailyStore
from src.wearables.tests.fakes import InMemoryWearableCacheStore


@pytest.fixture
def daily_store() -> InMemoryDailyStore:
    return InMemoryDailyStore()


@pytest.fixture
def cache_store() -> InMemoryWearableCacheStore:
    return InMemoryWearableCacheStore()


@pytest.fixture
def aggregator(daily_store: InMemoryDailyStore, cache_store: InMemoryWearableCacheStore) -> DailyAggregator:
    return DailyAggregator(daily_store, cache_store)
