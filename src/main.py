"""Healthlog API: FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import Settings, get_settings
from src.errors import register_exception_handlers
from src.middleware.rate_limit import RateLimitMiddleware
from src.middleware.session_auth import SessionAuthMiddleware
from src.routers import auth, cron, daily_summary, health, whoop
from src.services.supabase import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthlog")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Healthlog API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    await init_pool(settings)
    yield
    await close_pool()
    logger.info("Healthlog API shut down")


# ---------- App factory ----------

def create_app(settings: Settings | None = None, with_lifespan: bool = True) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Healthlog API",
        description=(
            "Personal health log: nutrition, habits, supplements, workouts, "
            "Whoop sync, and per-day summaries."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan if with_lifespan else None,
    )

    register_exception_handlers(app)

    # ---------- Middleware (last added runs first) ----------

    # Login throttling
    app.add_middleware(RateLimitMiddleware, settings=settings)

    # Session cookie authentication
    app.add_middleware(SessionAuthMiddleware, settings=settings)

    # CORS outermost so preflight never reaches auth
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    # ---------- Routes ----------
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(daily_summary.router)
    app.include_router(whoop.router)
    app.include_router(cron.router)

    return app


app = create_app()
