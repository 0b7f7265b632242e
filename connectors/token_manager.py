"""
Token manager — get / refresh / store per-user OAuth tokens.

This is the single interface that API clients use to get a valid access
token for a given user + provider combination.

Refresh lifecycle
-----------------
  Active ──refresh ok──────────────▶ Active
  Active ──reauth error────────────▶ NeedsReauth
  Active ──transient error × N─────▶ NeedsReauth   (RefreshFailed)
  NeedsReauth ──store_connection───▶ Active        (user reconnected)

Refreshes for one (user, provider) are serialized with a keyed lock; a
caller that waited on the lock re-reads the connection and reuses the
token the winner just stored.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from connectors.base import BaseConnector
from connectors.encryption import TokenCipher
from connectors.errors import (
    ConnectionNotFound,
    ReauthRequired,
    RefreshFailed,
    UnsupportedProvider,
    is_reauth_error,
)
from connectors.models import (
    Connection,
    ConnectionHealth,
    ConnectionStatus,
    TokenRefreshResult,
    TokenResponse,
)
from connectors.registry import ConnectorRegistry
from database.credential_store import CredentialStore
from utils.keyed_lock import KeyedLock
from utils.retry import with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_REFRESH_TOKEN = "No refresh token available. Please reconnect your account."
_NEEDS_REAUTH = "Connection needs re-authorization. Please reconnect your account."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Keeps stored OAuth credentials valid and hands out access tokens."""

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        connectors: Union[ConnectorRegistry, Mapping[str, BaseConnector]],
        *,
        expiry_buffer: timedelta = timedelta(minutes=5),
        max_refresh_attempts: int = 3,
        refresh_retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_refresh_attempts < 1:
            raise ValueError("max_refresh_attempts must be at least 1")
        self._store = store
        self._cipher = cipher
        self._connectors = connectors
        self.expiry_buffer = expiry_buffer
        self.max_refresh_attempts = max_refresh_attempts
        self.refresh_retry_delay = refresh_retry_delay
        self._sleep = sleep
        self._locks = locks or KeyedLock()
        self._clock = clock or _utcnow

    # ── Token access ────────────────────────────────────────────────────

    async def get_valid_token(self, user_id: str, provider: str) -> str:
        """
        Return a usable access token, refreshing it first if it expires
        within ``expiry_buffer``.

        Raises
        ------
        ConnectionNotFound – the user never connected this provider
        ReauthRequired     – the credential is flagged or the grant is dead
        RefreshFailed      – every refresh attempt failed on transient errors
        """
        conn = await self._load(user_id, provider)
        self._ensure_usable(conn)

        if not self._expiring_soon(conn):
            logger.debug("Token for %s/%s still valid", provider, user_id)
            return self._cipher.decrypt(conn.encrypted_access_token)

        async with self._locks.acquire((user_id, provider)):
            # Another caller may have refreshed while we waited.
            conn = await self._load(user_id, provider)
            self._ensure_usable(conn)
            if not self._expiring_soon(conn):
                return self._cipher.decrypt(conn.encrypted_access_token)
            return await self._refresh(conn)

    async def with_token(
        self,
        user_id: str,
        provider: str,
        api_call: Callable[[str], Awaitable[T]],
        *,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        exponential_backoff: bool = True,
    ) -> T:
        """
        Resolve a token and run ``api_call(token)``, retrying transient
        upstream failures up to ``max_retries`` times.
        """
        token = await self.get_valid_token(user_id, provider)
        return await with_retry(
            lambda: api_call(token),
            max_retries=max_retries,
            base_delay=retry_delay,
            exponential=exponential_backoff,
            jitter=0.0,
            sleep=self._sleep,
            label=f"{provider} call for user {user_id}",
        )

    async def force_refresh_token(self, user_id: str, provider: str) -> TokenRefreshResult:
        """Refresh regardless of expiry; failures are reported, not raised."""
        async with self._locks.acquire((user_id, provider)):
            conn = await self._store.find(user_id, provider)
            if conn is None:
                return TokenRefreshResult(success=False, error="No connection found")
            try:
                token = await self._refresh(conn)
            except (ReauthRequired, RefreshFailed) as exc:
                return TokenRefreshResult(
                    success=False,
                    error=exc.message,
                    needs_reauth=True,
                )
        return TokenRefreshResult(success=True, access_token=token)

    # ── Connection lifecycle ────────────────────────────────────────────

    async def store_connection(
        self,
        user_id: str,
        provider: str,
        token: TokenResponse,
    ) -> Connection:
        """
        Create or replace a connection after an OAuth exchange.

        Keeps the stored refresh token when the provider omits one and
        clears any ``needs_reauth`` flag.
        """
        self._connector(provider)
        async with self._locks.acquire((user_id, provider)):
            existing = await self._store.find(user_id, provider)
            now = self._clock()

            if token.refresh_token:
                refresh = self._cipher.encrypt(token.refresh_token)
            else:
                refresh = existing.encrypted_refresh_token if existing else None

            conn = Connection(
                user_id=user_id,
                provider=provider,
                encrypted_access_token=self._cipher.encrypt(token.access_token),
                encrypted_refresh_token=refresh,
                expires_at=now + timedelta(seconds=token.expires_in),
                needs_reauth=False,
                last_error=None,
                last_attempt_at=existing.last_attempt_at if existing else None,
                scope=token.scope or (existing.scope if existing else None),
                created_at=existing.created_at if existing else now,
            )
            stored = await self._store.upsert(conn)

        logger.info(
            "%s %s connection for user %s",
            "Updated" if existing else "Created",
            provider,
            user_id,
        )
        return stored

    async def clear_needs_reauth(self, user_id: str, provider: str) -> None:
        async with self._locks.acquire((user_id, provider)):
            conn = await self._load(user_id, provider)
            await self._store.upsert(
                conn.model_copy(update={"needs_reauth": False, "last_error": None})
            )

    async def disconnect(self, user_id: str, provider: str) -> bool:
        """
        Revoke (best effort) and delete a connection.
        Returns True if deleted, False if not found.
        """
        async with self._locks.acquire((user_id, provider)):
            conn = await self._store.find(user_id, provider)
            if conn is None:
                return False

            try:
                revoked = await self._connector(provider).revoke_token(
                    self._cipher.decrypt(conn.encrypted_access_token)
                )
                logger.debug("Upstream revocation for %s/%s: %s", provider, user_id, revoked)
            except Exception as exc:
                logger.warning(
                    "Token revocation failed for %s/%s, deleting locally anyway: %s",
                    provider,
                    user_id,
                    exc,
                )

            deleted = await self._store.delete(user_id, provider)

        logger.info("Disconnected %s for user %s", provider, user_id)
        return deleted

    # ── Health ──────────────────────────────────────────────────────────

    async def get_connection_health(
        self, user_id: str, provider: str
    ) -> Optional[ConnectionHealth]:
        conn = await self._store.find(user_id, provider)
        return self._health(conn) if conn else None

    async def get_all_connections_health(self, user_id: str) -> List[ConnectionHealth]:
        return [self._health(c) for c in await self._store.list_for_user(user_id)]

    async def has_connections_needing_reauth(self, user_id: str) -> bool:
        return any(c.needs_reauth for c in await self._store.list_for_user(user_id))

    # ── Internals ───────────────────────────────────────────────────────

    def _connector(self, provider: str) -> BaseConnector:
        if isinstance(self._connectors, Mapping):
            connector = self._connectors.get(provider)
            if connector is None:
                raise UnsupportedProvider(
                    f"No connector registered for provider '{provider}'",
                    provider=provider,
                )
            return connector
        return self._connectors.get(provider)

    async def _load(self, user_id: str, provider: str) -> Connection:
        conn = await self._store.find(user_id, provider)
        if conn is None:
            raise ConnectionNotFound(
                f"No {provider} connection for user {user_id}",
                user_id=user_id,
                provider=provider,
            )
        return conn

    def _ensure_usable(self, conn: Connection) -> None:
        if conn.needs_reauth:
            raise ReauthRequired(
                conn.last_error or _NEEDS_REAUTH,
                user_id=conn.user_id,
                provider=conn.provider,
            )

    def _expiring_soon(self, conn: Connection) -> bool:
        if conn.expires_at is None:
            return True
        return conn.expires_at <= self._clock() + self.expiry_buffer

    def _health(self, conn: Connection) -> ConnectionHealth:
        if conn.needs_reauth:
            status = ConnectionStatus.NEEDS_REAUTH
        elif self._expiring_soon(conn):
            status = ConnectionStatus.EXPIRED
        else:
            status = ConnectionStatus.ACTIVE
        return ConnectionHealth(
            provider=conn.provider,
            status=status,
            expires_at=conn.expires_at,
            last_attempt_at=conn.last_attempt_at,
            last_error=conn.last_error,
            needs_reauth=conn.needs_reauth,
        )

    async def _refresh(self, conn: Connection) -> str:
        """Refresh ``conn`` with the attempt budget. Caller holds the lock."""
        user_id, provider = conn.user_id, conn.provider
        connector = self._connector(provider)

        if not conn.encrypted_refresh_token:
            await self._mark_needs_reauth(conn, _NO_REFRESH_TOKEN)
            raise ReauthRequired(_NO_REFRESH_TOKEN, user_id=user_id, provider=provider)

        refresh_token = self._cipher.decrypt(conn.encrypted_refresh_token)
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.max_refresh_attempts + 1):
            logger.info(
                "Refreshing %s token for user %s (attempt %d/%d)",
                provider,
                user_id,
                attempt,
                self.max_refresh_attempts,
            )
            try:
                token = await connector.refresh_access_token(refresh_token)
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "Token refresh attempt %d/%d failed for %s/%s: %s",
                    attempt,
                    self.max_refresh_attempts,
                    provider,
                    user_id,
                    exc,
                )
                conn = await self._store.upsert(
                    conn.model_copy(
                        update={"last_error": str(exc), "last_attempt_at": self._clock()}
                    )
                )
                if is_reauth_error(exc):
                    await self._mark_needs_reauth(conn, str(exc))
                    raise ReauthRequired(str(exc), user_id=user_id, provider=provider) from exc
                if attempt < self.max_refresh_attempts:
                    await self._sleep(self.refresh_retry_delay * attempt)
                continue

            return await self._persist_refresh(conn, token)

        reason = f"Failed after {self.max_refresh_attempts} attempts: {last_exc}"
        await self._mark_needs_reauth(conn, reason)
        raise RefreshFailed(
            reason,
            attempts=self.max_refresh_attempts,
            user_id=user_id,
            provider=provider,
        ) from last_exc

    async def _persist_refresh(self, conn: Connection, token: TokenResponse) -> str:
        now = self._clock()
        update: Dict[str, Any] = {
            "encrypted_access_token": self._cipher.encrypt(token.access_token),
            "expires_at": now + timedelta(seconds=token.expires_in),
            "needs_reauth": False,
            "last_error": None,
            "last_attempt_at": now,
        }
        # Some providers rotate refresh tokens
        if token.refresh_token:
            update["encrypted_refresh_token"] = self._cipher.encrypt(token.refresh_token)
        if token.scope:
            update["scope"] = token.scope

        await self._store.upsert(conn.model_copy(update=update))
        logger.info("Refreshed %s token for user %s", conn.provider, conn.user_id)
        return token.access_token

    async def _mark_needs_reauth(self, conn: Connection, reason: str) -> Connection:
        logger.warning(
            "Marking %s connection for user %s as needing re-authorization: %s",
            conn.provider,
            conn.user_id,
            reason,
        )
        return await self._store.upsert(
            conn.model_copy(
                update={
                    "needs_reauth": True,
                    "last_error": reason,
                    "last_attempt_at": self._clock(),
                }
            )
        )
