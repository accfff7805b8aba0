"""Password login and logout.  Public: these routes issue the session."""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Response

from src.config import require
from src.dependencies import AppSettings
from src.errors import Unauthorized
from src.middleware.session_auth import create_session_token
from src.models.base import HealthlogBase

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("healthlog.auth")


class LoginRequest(HealthlogBase):
    password: str


@router.post("/login")
async def login(body: LoginRequest, response: Response, settings: AppSettings) -> dict:
    expected = require(settings, "app_password")
    require(settings, "session_secret")
    user_id = require(settings, "app_user_id")

    if not secrets.compare_digest(body.password.encode(), expected.encode()):
        logger.warning("Rejected login attempt")
        raise Unauthorized("Invalid password")

    response.set_cookie(
        key=settings.session_cookie_name,
        value=create_session_token(settings, user_id),
        max_age=settings.session_max_age_seconds,
        httponly=True,
        secure=settings.environment == "production",
        samesite="lax",
        path="/",
    )
    return {"success": True}


@router.post("/logout")
async def logout(response: Response, settings: AppSettings) -> dict:
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"success": True}
