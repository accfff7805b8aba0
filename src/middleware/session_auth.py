"""Session-cookie verification middleware.

Login mints an HS256 JWT carrying the user id; it travels back in an
HTTP-only cookie (or as a Bearer token for CLI callers).  Every request
except the public routes must carry a valid one.  The middleware sets
``request.state.auth`` for ``get_current_user``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings
from src.dependencies import AuthContext
from src.wearables.base import utc_now

logger = logging.getLogger("healthlog.auth")

SESSION_ALGORITHM = "HS256"

# Paths that do not require a session
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/whoop/callback",
}

# Prefixes with their own credential check (login password, cron bearer)
PUBLIC_PREFIXES: tuple[str, ...] = ("/auth/", "/cron/", "/docs", "/redoc")


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def _error(detail: str, status_code: int = 401) -> Response:
    return Response(
        content=f'{{"error":"{detail}"}}',
        status_code=status_code,
        media_type="application/json",
    )


def create_session_token(settings: Settings, user_id: str) -> str:
    """Sign a session token for ``user_id`` valid for the configured max age."""
    now = utc_now()
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=settings.session_max_age_seconds),
    }
    return pyjwt.encode(payload, settings.session_secret, algorithm=SESSION_ALGORITHM)


def decode_session_token(settings: Settings, token: str) -> AuthContext:
    """Verify a session token.  Raises ``jwt.InvalidTokenError`` on any problem."""
    payload = pyjwt.decode(
        token,
        settings.session_secret,
        algorithms=[SESSION_ALGORITHM],
        options={"require": ["sub", "exp"]},
    )
    return AuthContext(user_id=str(payload["sub"]))


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Verify the session token and populate request.state.auth."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()

    def _token(self, request: Request) -> str | None:
        cookie = request.cookies.get(self._settings.session_cookie_name)
        if cookie:
            return cookie
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header.removeprefix("Bearer ").strip()
        return None

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # OPTIONS requests pass through (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        if not self._settings.session_secret:
            logger.error("SESSION_SECRET is not configured")
            return _error("Required setting not configured: SESSION_SECRET", status_code=500)

        token = self._token(request)
        if not token:
            return _error("Not authenticated")

        try:
            request.state.auth = decode_session_token(self._settings, token)
        except pyjwt.ExpiredSignatureError:
            return _error("Session expired")
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Session validation failed: %s", exc)
            return _error("Invalid session")

        return await call_next(request)
