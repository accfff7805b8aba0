"""App fixtures for the HTTP route tests.

Service factories are replaced through ``dependency_overrides`` with
in-memory stores, so no database or vendor API is touched.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.config import Settings, get_settings
from src.daily.aggregator import DailyAggregator
from src.daily.orchestrator import DailyOrchestrator
from src.daily.tests.fakes import InMemoryDailyStore
from src.dependencies import (
    get_orchestrator,
    get_sync_engine,
    get_sync_orchestrator,
    get_token_manager,
)
from src.main import create_app
from src.middleware.session_auth import create_session_token
from src.wearables.adapters.whoop import WhoopAdapter
from src.wearables.base import TokenGrant
from src.wearables.sync.engine import WearableSyncEngine
from src.wearables.tests.fakes import (
    TEST_USER_ID,
    InMemoryOAuthStateStore,
    InMemoryTokenStore,
    InMemoryWearableCacheStore,
)
from src.wearables.tokens import TokenLifecycleManager

CRON_SECRET = "cron-test-secret"
APP_PASSWORD = "correct horse"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_url="https://app.test",
        app_password=APP_PASSWORD,
        app_user_id=TEST_USER_ID,
        session_secret="session-test-secret-with-enough-length",
        cron_secret=CRON_SECRET,
        max_range_days=31,
        login_rate_limit_per_minute=3,
    )


@pytest.fixture
def daily_store() -> InMemoryDailyStore:
    return InMemoryDailyStore()


@pytest.fixture
def state_store() -> InMemoryOAuthStateStore:
    return InMemoryOAuthStateStore()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def mock_adapter() -> MagicMock:
    adapter = MagicMock(spec=WhoopAdapter)
    adapter.exchange_code = AsyncMock(
        return_value=TokenGrant(access_token="code-access", refresh_token="code-refresh", expires_in=3600)
    )
    adapter.authorization_url.side_effect = lambda state: f"https://whoop.test/auth?state={state}"
    return adapter


@pytest.fixture
def tokens(
    token_store: InMemoryTokenStore, state_store: InMemoryOAuthStateStore, mock_adapter: MagicMock
) -> TokenLifecycleManager:
    return TokenLifecycleManager(store=token_store, adapter=mock_adapter, state_store=state_store)


@pytest.fixture
def sync_engine() -> MagicMock:
    return MagicMock(spec=WearableSyncEngine)


@pytest.fixture
def sync_orchestrator() -> MagicMock:
    return MagicMock(spec=DailyOrchestrator)


@pytest.fixture
def app(
    settings: Settings,
    daily_store: InMemoryDailyStore,
    tokens: TokenLifecycleManager,
    sync_engine: MagicMock,
    sync_orchestrator: MagicMock,
) -> FastAPI:
    app = create_app(settings, with_lifespan=False)
    aggregator = DailyAggregator(daily_store, InMemoryWearableCacheStore())

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_token_manager] = lambda: tokens
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine
    app.dependency_overrides[get_orchestrator] = lambda: DailyOrchestrator(
        aggregator, max_range_days=settings.max_range_days
    )
    app.dependency_overrides[get_sync_orchestrator] = lambda: sync_orchestrator
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Anonymous client."""
    return TestClient(app)


@pytest.fixture
def authed_client(app: FastAPI, settings: Settings) -> TestClient:
    """Client carrying a valid session cookie for ``TEST_USER_ID``."""
    token = create_session_token(settings, TEST_USER_ID)
    return TestClient(app, cookies={settings.session_cookie_name: token})
