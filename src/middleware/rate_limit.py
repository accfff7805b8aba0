"""Simple in-memory sliding-window rate limiter for credential endpoints.

Only the paths passed in ``paths`` are counted, so a password guesser is
throttled without touching normal API traffic.  Sufficient for the
single-instance deployment this service targets.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP sliding window rate limiter."""

    def __init__(
        self,
        app: Any,
        settings: Settings | None = None,
        paths: tuple[str, ...] = ("/auth/login",),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        s = settings or get_settings()
        self._max_requests = s.login_rate_limit_per_minute
        self._window_seconds = 60
        self._paths = paths
        self._clock = clock
        # ip -> list of timestamps
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _cleanup(self, ip: str, now: float) -> None:
        cutoff = now - self._window_seconds
        self._requests[ip] = [t for t in self._requests[ip] if t > cutoff]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path not in self._paths:
            return await call_next(request)

        ip = self._client_ip(request)
        now = self._clock()
        self._cleanup(ip, now)

        if len(self._requests[ip]) >= self._max_requests:
            retry_after = int(self._window_seconds - (now - self._requests[ip][0]))
            return Response(
                content='{"error":"Too many attempts"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(max(retry_after, 1))},
            )

        self._requests[ip].append(now)

        response = await call_next(request)

        remaining = self._max_requests - len(self._requests[ip])
        response.headers["X-RateLimit-Limit"] = str(self._max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(remaining, 0))

        return response
