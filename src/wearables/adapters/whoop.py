"""Whoop API v2 adapter.

Uses the OAuth2 authorization-code grant for authentication.

Settings:
    WHOOP_CLIENT_ID     — OAuth2 client ID
    WHOOP_CLIENT_SECRET — OAuth2 client secret
    WHOOP_REDIRECT_URI  — registered callback URL

API base: https://api.prod.whoop.com/developer

Endpoints used:
    /v2/cycle             — Physiological cycles (strain, energy)
    /v2/recovery          — Recovery scores (HRV, RHR, SpO2, skin temp)
    /v2/activity/sleep    — Sleep sessions
    /v2/activity/workout  — Workout sessions

Collection endpoints are paginated: each page carries ``records`` and a
``next_token`` that is sent back as ``nextToken`` until it is empty.
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from datetime import date, timezone
from typing import Any, AsyncGenerator
from urllib.parse import urlencode

import httpx

from src.config import Settings, require
from src.errors import MalformedUpstreamData, Unauthorized, UpstreamUnavailable
from src.wearables.base import (
    TokenGrant,
    WhoopDay,
    WhoopWorkoutRecord,
    parse_iso_datetime,
    safe_float,
    safe_int,
)

logger = logging.getLogger("healthlog.whoop")

_KJ_PER_KCAL = 4.184
_MAX_PAGES = 200

# Whoop sport ID → readable name, used when the record has no sport_name
_WHOOP_SPORT_MAP: dict[int, str] = {
    -1: "activity",
    0: "running",
    1: "cycling",
    16: "baseball",
    17: "basketball",
    33: "swimming",
    44: "yoga",
    45: "weightlifting",
    48: "functional_fitness",
    52: "hiking",
    57: "rowing",
    63: "walking",
    71: "other",
    96: "hiit",
    97: "spin",
}

_ZONE_KEYS = (
    "zone_zero_milli",
    "zone_one_milli",
    "zone_two_milli",
    "zone_three_milli",
    "zone_four_milli",
    "zone_five_milli",
)


def _ms_to_minutes(ms: object) -> int | None:
    value = safe_float(ms)
    return round(value / 60000) if value is not None else None


def _kj_to_kcal(kj: float | None) -> int | None:
    if kj is None or not math.isfinite(kj):
        return None
    return round(kj / _KJ_PER_KCAL)


def _object(value: object, what: str) -> dict:
    """Return a nested JSON object, treating null as empty.

    Raises:
        MalformedUpstreamData: If ``value`` is present but not an object.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedUpstreamData(f"Whoop {what} is not an object: {value!r}")
    return value


class WhoopAdapter:
    """Whoop OAuth2 + REST client.

    All vendor I/O goes through this class.  Network failures and non-2xx
    responses surface as ``UpstreamUnavailable`` (or ``Unauthorized`` for a
    rejected bearer token); token payloads missing required fields surface
    as ``MalformedUpstreamData``.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        api_base: str = "https://api.prod.whoop.com/developer",
        auth_url: str = "https://api.prod.whoop.com/oauth/oauth2/auth",
        token_url: str = "https://api.prod.whoop.com/oauth/oauth2/token",
        scopes: str = "read:recovery read:cycles read:sleep read:workout read:profile offline",
        timeout_seconds: float = 15.0,
        page_limit: int = 25,
        page_delay_seconds: float = 0.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Whoop adapter.

        Args:
            client_id:          OAuth2 client ID.
            client_secret:      OAuth2 client secret.
            redirect_uri:       Callback URL registered with Whoop.
            timeout_seconds:    Per-request timeout for every outbound call.
            page_limit:         Records requested per page (Whoop max is 25).
            page_delay_seconds: Pause between pages to stay under rate limits.
            http_client:        Optional pre-configured httpx client (for testing).
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._api_base = api_base.rstrip("/")
        self._auth_url = auth_url
        self._token_url = token_url
        self._scopes = scopes
        self._timeout = timeout_seconds
        self._page_limit = page_limit
        self._page_delay = page_delay_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> "WhoopAdapter":
        return cls(
            client_id=require(settings, "whoop_client_id"),
            client_secret=require(settings, "whoop_client_secret"),
            redirect_uri=require(settings, "whoop_redirect_uri"),
            api_base=settings.whoop_api_base,
            auth_url=settings.whoop_auth_url,
            token_url=settings.whoop_token_url,
            scopes=settings.whoop_scopes,
            timeout_seconds=settings.whoop_timeout_seconds,
            page_limit=settings.whoop_page_limit,
            http_client=http_client,
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": self._scopes,
            "state": state,
        }
        return f"{self._auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            }
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access + refresh token pair."""
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": "offline",
            }
        )

    async def _token_request(self, form: dict[str, str]) -> TokenGrant:
        grant_type = form["grant_type"]
        async with self._client() as client:
            try:
                response = await client.post(
                    self._token_url,
                    data=form,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
            except httpx.HTTPError as exc:
                raise UpstreamUnavailable(f"Whoop token request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning("Whoop token endpoint returned %d for %s", response.status_code, grant_type)
            raise UpstreamUnavailable(f"Whoop token endpoint returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedUpstreamData("Whoop token response is not JSON") from exc
        return self.parse_grant(data)

    @staticmethod
    def parse_grant(data: Any) -> TokenGrant:
        """Validate a token endpoint payload."""
        if not isinstance(data, dict):
            raise MalformedUpstreamData("Whoop token response is not an object")
        missing = [k for k in ("access_token", "refresh_token", "expires_in") if not data.get(k)]
        if missing:
            raise MalformedUpstreamData(f"Whoop token response missing: {', '.join(missing)}")
        expires_in = safe_int(data["expires_in"])
        if expires_in is None or expires_in <= 0:
            raise MalformedUpstreamData(f"Invalid expires_in: {data['expires_in']!r}")
        return TokenGrant(
            access_token=str(data["access_token"]),
            refresh_token=str(data["refresh_token"]),
            expires_in=expires_in,
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def fetch_cycles(self, access_token: str, start_date: date, end_date: date) -> list[dict]:
        return await self._get_paginated("/v2/cycle", access_token, start_date, end_date)

    async def fetch_recoveries(self, access_token: str, start_date: date, end_date: date) -> list[dict]:
        return await self._get_paginated("/v2/recovery", access_token, start_date, end_date)

    async def fetch_sleeps(self, access_token: str, start_date: date, end_date: date) -> list[dict]:
        return await self._get_paginated("/v2/activity/sleep", access_token, start_date, end_date)

    async def fetch_workouts(self, access_token: str, start_date: date, end_date: date) -> list[dict]:
        return await self._get_paginated("/v2/activity/workout", access_token, start_date, end_date)

    async def _get_paginated(
        self, path: str, access_token: str, start_date: date, end_date: date
    ) -> list[dict]:
        """Fetch every page of a collection for an inclusive date window."""
        params: dict[str, Any] = {
            "start": f"{start_date.isoformat()}T00:00:00.000Z",
            "end": f"{end_date.isoformat()}T23:59:59.999Z",
            "limit": self._page_limit,
        }
        records: list[dict] = []
        seen_tokens: set[str] = set()

        async with self._client() as client:
            for _ in range(_MAX_PAGES):
                data = await self._get(client, path, params, access_token)
                page = data.get("records") or []
                records.extend(r for r in page if isinstance(r, dict))

                next_token = data.get("next_token")
                if not next_token or next_token in seen_tokens:
                    break
                seen_tokens.add(next_token)
                params["nextToken"] = next_token
                if self._page_delay:
                    await asyncio.sleep(self._page_delay)
            else:
                logger.warning("Whoop %s: stopped after %d pages", path, _MAX_PAGES)

        logger.debug("Whoop %s: %d records for %s..%s", path, len(records), start_date, end_date)
        return records

    async def _get(
        self, client: httpx.AsyncClient, path: str, params: dict, access_token: str
    ) -> dict:
        """Make an authenticated GET request to the Whoop API."""
        url = f"{self._api_base}{path}"
        try:
            response = await client.get(
                url, params=params, headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Whoop request to {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise Unauthorized(f"Whoop rejected the access token ({response.status_code})")
        if response.status_code >= 400:
            logger.warning("Whoop %s returned %d", path, response.status_code)
            raise UpstreamUnavailable(f"Whoop API error {response.status_code} for {path}")

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"Whoop returned a non-JSON page for {path}") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable(f"Whoop returned an unexpected page for {path}")
        return data

    @asynccontextmanager
    async def _client(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_day(
        self,
        user_id: str,
        cycle: dict,
        recovery: dict | None = None,
        sleep: dict | None = None,
    ) -> WhoopDay:
        """Convert a cycle plus its recovery and sleep into a cached day row.

        The day is the UTC calendar date of the cycle start.  Unscored
        records (``score`` null) keep their metrics as None.

        Raises:
            MalformedUpstreamData: If the cycle has no id or no parseable start, or
                a nested score block is not an object.
        """
        if not isinstance(cycle, dict):
            raise MalformedUpstreamData(f"Cycle is not an object: {cycle!r}")
        cycle_id = safe_int(cycle.get("id"))
        start = parse_iso_datetime(cycle.get("start"))
        if cycle_id is None or start is None:
            raise MalformedUpstreamData(f"Cycle missing id/start: {cycle.get('id')!r}")

        cycle_score = _object(cycle.get("score"), "cycle score")
        recovery_score = _object(_object(recovery, "recovery").get("score"), "recovery score")

        sleep_minutes: int | None = None
        sleep_score: int | None = None
        sleep_block = _object(_object(sleep, "sleep").get("score"), "sleep score")
        if sleep_block:
            stages = _object(sleep_block.get("stage_summary"), "sleep stage summary")
            asleep_ms = sum(
                safe_float(stages.get(k)) or 0.0
                for k in (
                    "total_light_sleep_time_milli",
                    "total_slow_wave_sleep_time_milli",
                    "total_rem_sleep_time_milli",
                )
            )
            sleep_minutes = _ms_to_minutes(asleep_ms)
            sleep_score = round(safe_float(sleep_block.get("sleep_performance_percentage")) or 0)

        kilojoules = safe_float(cycle_score.get("kilojoule"))

        return WhoopDay(
            user_id=user_id,
            date=start.astimezone(timezone.utc).date(),
            cycle_id=cycle_id,
            recovery_score=safe_float(recovery_score.get("recovery_score")),
            hrv_rmssd=safe_float(recovery_score.get("hrv_rmssd_milli")),
            resting_heart_rate=safe_float(recovery_score.get("resting_heart_rate")),
            spo2_percentage=safe_float(recovery_score.get("spo2_percentage")),
            skin_temp_celsius=safe_float(recovery_score.get("skin_temp_celsius")),
            sleep_id=str(sleep["id"]) if sleep and sleep.get("id") else None,
            sleep_score=sleep_score,
            sleep_duration_minutes=sleep_minutes,
            strain_score=safe_float(cycle_score.get("strain")),
            kilojoules=kilojoules,
            calories_burned=_kj_to_kcal(kilojoules),
            avg_heart_rate=safe_int(cycle_score.get("average_heart_rate")),
            max_heart_rate=safe_int(cycle_score.get("max_heart_rate")),
            raw_data={"cycle": cycle, "recovery": recovery, "sleep": sleep},
        )

    def normalize_workout(self, user_id: str, raw: dict) -> WhoopWorkoutRecord:
        """Convert a Whoop workout JSON record into a cached workout row.

        Raises:
            MalformedUpstreamData: If the workout has no id or no parseable start, or
                its score is not an object.
        """
        if not isinstance(raw, dict):
            raise MalformedUpstreamData(f"Workout is not an object: {raw!r}")
        workout_id = raw.get("id")
        start = parse_iso_datetime(raw.get("start"))
        if workout_id in (None, "") or start is None:
            raise MalformedUpstreamData(f"Workout missing id/start: {workout_id!r}")

        score = _object(raw.get("score"), "workout score")
        zones = _object(score.get("zone_durations") or score.get("zone_duration"), "workout zone durations")
        sport_id = safe_int(raw.get("sport_id"))
        kilojoules = safe_float(score.get("kilojoule"))
        distance_m = safe_float(score.get("distance_meter"))

        zone_minutes: list[float] = []
        if zones:
            zone_minutes = [round((safe_float(zones.get(k)) or 0.0) / 60000, 1) for k in _ZONE_KEYS]

        return WhoopWorkoutRecord(
            user_id=user_id,
            whoop_workout_id=str(workout_id),
            start_time=start,
            end_time=parse_iso_datetime(raw.get("end")),
            sport_id=sport_id,
            sport_name=raw.get("sport_name") or _WHOOP_SPORT_MAP.get(sport_id if sport_id is not None else -2),
            strain=safe_float(score.get("strain")),
            avg_hr=safe_int(score.get("average_heart_rate")),
            max_hr=safe_int(score.get("max_heart_rate")),
            kilojoules=kilojoules,
            calories=_kj_to_kcal(kilojoules),
            distance_km=round(distance_m / 1000, 3) if distance_m is not None else None,
            zone_minutes=zone_minutes,
            raw_data=raw,
        )
