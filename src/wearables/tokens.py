"""Whoop OAuth token lifecycle.

The ``TokenLifecycleManager`` is the only writer of ``whoop_tokens``.  It
decides whether a stored access token is still usable, refreshes it ahead
of expiry, and drives the authorization-code flow:

    DISCONNECTED ──begin_authorization──▶ AUTHORIZATION_PENDING
    AUTHORIZATION_PENDING ──callback, state matches──▶ CONNECTED
    AUTHORIZATION_PENDING ──state mismatch / vendor error──▶ DISCONNECTED
    CONNECTED ──now ≥ expires_at − skew──▶ NEEDS_REFRESH
    NEEDS_REFRESH ──refresh ok──▶ CONNECTED
    any ──disconnect──▶ DISCONNECTED

A failed refresh leaves the stale credential in place: a vendor outage must
not force the user to re-authorize.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from src.errors import HealthlogError, StorageError
from src.wearables.adapters.whoop import WhoopAdapter
from src.wearables.base import Credential, OAuthStateStore, TokenGrant, TokenStore, utc_now

logger = logging.getLogger("healthlog.tokens")


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    authorization_pending = "authorization_pending"
    connected = "connected"
    needs_refresh = "needs_refresh"


@dataclass
class ConnectionStatus:
    """What ``GET /whoop/status`` reports."""

    state: ConnectionState
    expires_at: datetime | None = None
    is_expiring_soon: bool = False

    @property
    def connected(self) -> bool:
        return self.state in (ConnectionState.connected, ConnectionState.needs_refresh)


@dataclass
class AuthorizationOutcome:
    """Result of one step of the authorization-code flow."""

    state: ConnectionState
    user_id: str | None = None
    error: str | None = None
    authorization_url: str | None = None


class TokenLifecycleManager:
    """Read, validate, refresh, and persist per-user Whoop credentials.

    Usage::

        manager = TokenLifecycleManager(store, adapter, skew_seconds=300)
        token = await manager.get_valid_access_token(user_id)
        if token is None:
            ...  # prompt the user to reconnect
    """

    def __init__(
        self,
        store: TokenStore,
        adapter: WhoopAdapter,
        state_store: OAuthStateStore | None = None,
        skew_seconds: int = 300,
        state_ttl_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._state_store = state_store
        self._skew = timedelta(seconds=skew_seconds)
        self._state_ttl = timedelta(seconds=state_ttl_seconds)
        self._clock = clock
        self._refresh_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Credential access
    # ------------------------------------------------------------------

    async def get_stored_credential(self, user_id: str) -> Credential | None:
        return await self._store.get(user_id)

    def is_expired(self, credential: Credential, skew_seconds: int | None = None) -> bool:
        """True once ``now >= expires_at - skew``."""
        skew = self._skew if skew_seconds is None else timedelta(seconds=skew_seconds)
        return self._clock() >= credential.expires_at - skew

    async def get_valid_access_token(self, user_id: str) -> str | None:
        """Return a usable access token, refreshing it first if needed.

        Returns None when no credential is stored, or when the refresh
        exchange fails for any reason (network, non-2xx, malformed body).
        """
        credential = await self._store.get(user_id)
        if credential is None:
            return None
        if not self.is_expired(credential):
            return credential.access_token

        async with self._refresh_locks[user_id]:
            # Another caller may have refreshed while we waited on the lock.
            current = await self._store.get(user_id)
            if current is None:
                return None
            if not self.is_expired(current):
                return current.access_token
            return await self._refresh(current)

    async def _refresh(self, credential: Credential) -> str | None:
        if not credential.refresh_token:
            logger.warning("No refresh token stored for user %s", credential.user_id)
            return None
        try:
            grant = await self._adapter.refresh_token(credential.refresh_token)
        except HealthlogError as exc:
            logger.warning("Whoop token refresh failed for user %s: %s", credential.user_id, exc)
            return None

        await self.store_credential(
            credential.user_id,
            grant.access_token,
            grant.refresh_token,
            grant.expires_in,
            whoop_user_id=credential.whoop_user_id,
        )
        logger.info("Refreshed Whoop token for user %s", credential.user_id)
        return grant.access_token

    async def store_credential(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_in_seconds: int,
        whoop_user_id: int | None = None,
    ) -> Credential:
        """Compute the absolute expiry from now and upsert by user."""
        now = self._clock()
        credential = Credential(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=expires_in_seconds),
            whoop_user_id=whoop_user_id,
            updated_at=now,
        )
        await self._store.upsert(credential)
        return credential

    async def delete_credential(self, user_id: str) -> None:
        await self._store.delete(user_id)
        logger.info("Whoop credential removed for user %s", user_id)

    async def connected_user_ids(self) -> list[str]:
        return await self._store.list_user_ids()

    # ------------------------------------------------------------------
    # Connection state
    # ------------------------------------------------------------------

    async def connection_status(self, user_id: str) -> ConnectionStatus:
        """Report connectivity, refreshing an expired token on the way."""
        credential = await self._store.get(user_id)
        if credential is None:
            return ConnectionStatus(state=ConnectionState.disconnected)

        token = await self.get_valid_access_token(user_id)
        if token is None:
            return ConnectionStatus(state=ConnectionState.disconnected)

        current = await self._store.get(user_id) or credential
        expiring = self.is_expired(current)
        return ConnectionStatus(
            state=ConnectionState.needs_refresh if expiring else ConnectionState.connected,
            expires_at=current.expires_at,
            is_expiring_soon=expiring,
        )

    # ------------------------------------------------------------------
    # Authorization-code flow
    # ------------------------------------------------------------------

    async def begin_authorization(self, user_id: str) -> AuthorizationOutcome:
        """Issue a CSRF state bound to ``user_id``.

        The outcome is pending and carries the vendor URL to redirect to.
        """
        if self._state_store is None:
            raise RuntimeError("OAuth state store not configured")
        state = secrets.token_urlsafe(32)
        await self._state_store.put(state, user_id, self._clock() + self._state_ttl)
        logger.info("Issued Whoop authorization state for user %s", user_id)
        return AuthorizationOutcome(
            state=ConnectionState.authorization_pending,
            user_id=user_id,
            authorization_url=self._adapter.authorization_url(state),
        )

    async def complete_authorization(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> AuthorizationOutcome:
        """Handle the vendor redirect.

        The state is consumed before anything else; the token endpoint is
        only called when it matches a live issued state.
        """
        if error:
            logger.warning("Whoop OAuth error: %s (%s)", error, error_description)
            return AuthorizationOutcome(
                state=ConnectionState.disconnected, error=error_description or error
            )
        if not state or self._state_store is None:
            return AuthorizationOutcome(state=ConnectionState.disconnected, error="Invalid state parameter")

        user_id = await self._state_store.consume(state, self._clock())
        if user_id is None:
            logger.warning("Whoop OAuth callback with unknown or expired state")
            return AuthorizationOutcome(state=ConnectionState.disconnected, error="Invalid state parameter")
        if not code:
            return AuthorizationOutcome(
                state=ConnectionState.disconnected,
                user_id=user_id,
                error="No authorization code received",
            )

        try:
            grant: TokenGrant = await self._adapter.exchange_code(code)
        except HealthlogError as exc:
            logger.warning("Whoop code exchange failed for user %s: %s", user_id, exc)
            return AuthorizationOutcome(
                state=ConnectionState.disconnected,
                user_id=user_id,
                error="Authentication failed",
            )

        try:
            await self.store_credential(user_id, grant.access_token, grant.refresh_token, grant.expires_in)
        except StorageError as exc:
            logger.error("Saving Whoop credential failed for user %s: %s", user_id, exc)
            return AuthorizationOutcome(
                state=ConnectionState.disconnected,
                user_id=user_id,
                error="Failed to save Whoop connection",
            )
        logger.info("Whoop connected for user %s", user_id)
        return AuthorizationOutcome(state=ConnectionState.connected, user_id=user_id)
