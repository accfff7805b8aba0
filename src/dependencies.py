"""Shared FastAPI dependencies injected into route handlers.

Service factories are cached per process: the token manager's per-user
refresh locks only work if every request shares one instance.  Tests swap
them out through ``app.dependency_overrides``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from src.config import Settings, get_settings
from src.daily.aggregator import DailyAggregator
from src.daily.orchestrator import DailyOrchestrator
from src.errors import Unauthorized
from src.services.stores import (
    PostgresDailyStore,
    PostgresOAuthStateStore,
    PostgresTokenStore,
    PostgresWearableCacheStore,
)
from src.wearables.adapters.whoop import WhoopAdapter
from src.wearables.sync.engine import WearableSyncEngine
from src.wearables.tokens import TokenLifecycleManager


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller extracted from the session token."""

    user_id: str


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The session auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise Unauthorized("Not authenticated")
    return auth


# ---------- Service wiring ----------

@lru_cache
def get_whoop_adapter() -> WhoopAdapter:
    return WhoopAdapter.from_settings(get_settings())


@lru_cache
def get_token_manager() -> TokenLifecycleManager:
    settings = get_settings()
    return TokenLifecycleManager(
        store=PostgresTokenStore(),
        adapter=get_whoop_adapter(),
        state_store=PostgresOAuthStateStore(),
        skew_seconds=settings.whoop_token_skew_seconds,
        state_ttl_seconds=settings.whoop_oauth_state_ttl_seconds,
    )


@lru_cache
def get_sync_engine() -> WearableSyncEngine:
    return WearableSyncEngine(
        tokens=get_token_manager(),
        adapter=get_whoop_adapter(),
        store=PostgresWearableCacheStore(),
    )


@lru_cache
def get_aggregator() -> DailyAggregator:
    return DailyAggregator(PostgresDailyStore(), PostgresWearableCacheStore())


def get_orchestrator() -> DailyOrchestrator:
    """Aggregation-only orchestrator; needs no vendor credentials."""
    settings = get_settings()
    return DailyOrchestrator(
        get_aggregator(),
        max_range_days=settings.max_range_days,
        timezone=settings.timezone,
    )


def get_sync_orchestrator() -> DailyOrchestrator:
    """Orchestrator that also drives the Whoop sync engine."""
    settings = get_settings()
    return DailyOrchestrator(
        get_aggregator(),
        sync_engine=get_sync_engine(),
        tokens=get_token_manager(),
        max_range_days=settings.max_range_days,
        timezone=settings.timezone,
    )


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Tokens = Annotated[TokenLifecycleManager, Depends(get_token_manager)]
SyncEngine = Annotated[WearableSyncEngine, Depends(get_sync_engine)]
Orchestrator = Annotated[DailyOrchestrator, Depends(get_orchestrator)]
SyncOrchestrator = Annotated[DailyOrchestrator, Depends(get_sync_orchestrator)]
