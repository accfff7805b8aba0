"""Shared fixtures for the Whoop token, adapter, and sync tests."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.wearables.adapters.whoop import WhoopAdapter
from src.wearables.base import Credential, TokenGrant
from src.wearables.tests.fakes import (
    NOW,
    TEST_USER_ID,
    FakeClock,
    InMemoryOAuthStateStore,
    InMemoryTokenStore,
    InMemoryWearableCacheStore,
)
from src.wearables.tokens import TokenLifecycleManager


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def state_store() -> InMemoryOAuthStateStore:
    return InMemoryOAuthStateStore()


@pytest.fixture
def cache_store() -> InMemoryWearableCacheStore:
    return InMemoryWearableCacheStore()


@pytest.fixture
def mock_adapter() -> MagicMock:
    """Adapter double whose token endpoints are AsyncMocks."""
    adapter = MagicMock(spec=WhoopAdapter)
    adapter.refresh_token = AsyncMock(
        return_value=TokenGrant(access_token="new-access", refresh_token="new-refresh", expires_in=3600)
    )
    adapter.exchange_code = AsyncMock(
        return_value=TokenGrant(access_token="code-access", refresh_token="code-refresh", expires_in=3600)
    )
    adapter.authorization_url.side_effect = lambda state: f"https://whoop.test/auth?state={state}"
    return adapter


@pytest.fixture
def manager(
    token_store: InMemoryTokenStore,
    state_store: InMemoryOAuthStateStore,
    mock_adapter: MagicMock,
    clock: FakeClock,
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        store=token_store,
        adapter=mock_adapter,
        state_store=state_store,
        skew_seconds=300,
        state_ttl_seconds=600,
        clock=clock,
    )


@pytest.fixture
def fresh_credential() -> Credential:
    return Credential(
        user_id=TEST_USER_ID,
        access_token="stored-access",
        refresh_token="stored-refresh",
        expires_at=NOW + timedelta(hours=6),
    )


@pytest.fixture
def expired_credential() -> Credential:
    return Credential(
        user_id=TEST_USER_ID,
        access_token="stale-access",
        refresh_token="stale-refresh",
        expires_at=NOW - timedelta(minutes=1),
    )
