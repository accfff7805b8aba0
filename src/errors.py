"""Typed failures raised by the core and their HTTP translation.

Lower layers raise these; only the orchestrator and the HTTP entry points
decide whether a failure aborts a request, is recorded and skipped, or is
reported back to the caller.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("healthlog.errors")


class HealthlogError(Exception):
    """Base class for all domain failures."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class BadRequest(HealthlogError):
    """Request parameters are missing or out of range."""

    status_code = 400


class Unauthorized(HealthlogError):
    """Missing or invalid caller credential (session, cron bearer, password)."""

    status_code = 401


class NotConnected(Unauthorized):
    """No usable vendor credential is stored for the user."""

    def __init__(self, message: str = "Not connected to Whoop") -> None:
        super().__init__(message)


class UpstreamUnavailable(HealthlogError):
    """Vendor API network failure, timeout, or non-auth error response."""

    status_code = 502


class MalformedUpstreamData(HealthlogError):
    """A single vendor record could not be normalized."""

    status_code = 502


class AggregationFailure(HealthlogError):
    """A required local read failed while building a daily summary."""

    status_code = 500


class ConfigurationError(HealthlogError):
    """A required secret or environment value is absent."""

    status_code = 500


class StorageError(HealthlogError):
    """The backing store rejected a read or write."""

    status_code = 500


async def _handle_healthlog_error(request: Request, exc: HealthlogError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HealthlogError, _handle_healthlog_error)  # type: ignore[arg-type]
