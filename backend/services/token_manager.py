"""
Token manager for vendor credentials.

- HubSpot: private-app bearer token from settings
- BrightLocal: API key (+ signing secret for Citation Builder) from settings
- Google Business Profile: OAuth access tokens, either per connected
  account (held by Pipedream) or the agency's default account (refreshed
  with Google's token endpoint)

GBP tokens are cached per connection id and reused while more than five
minutes remain. Concurrent callers that miss the cache share one refresh.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Awaitable, Callable, Optional
from uuid import UUID

import httpx
from sqlalchemy import or_, select

from config import settings
from models.connected_account import ConnectedAccount
from models.database import get_session
from services.pipedream import get_pipedream_client

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)
DEFAULT_CONNECTION_ID = "default"


class TokenError(RuntimeError):
    """Raised when no usable token can be obtained."""


@dataclass
class TokenData:
    """A cached access token."""

    access_token: str
    expires_at: datetime
    connection_id: str
    refresh_token: Optional[str] = None

    def is_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now < TOKEN_REFRESH_BUFFER


class TokenManager:
    """Hands out vendor tokens; one instance per process."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._cache: dict[str, TokenData] = {}
        self._refreshes: dict[str, asyncio.Task[str]] = {}
        self._transport = transport

    # ------------------------------------------------------------------
    # HubSpot / BrightLocal (static credentials)
    # ------------------------------------------------------------------

    def get_hubspot_token(self) -> str:
        token = settings.HUBSPOT_ACCESS_TOKEN
        if not token:
            raise ValueError(
                "HUBSPOT_ACCESS_TOKEN is not set in environment variables."
            )
        return token

    def get_brightlocal_credentials(self) -> tuple[str, Optional[str]]:
        """Return (api_key, api_secret); the secret is only needed for v4 calls."""
        api_key = settings.BRIGHTLOCAL_API_KEY
        if not api_key:
            raise ValueError("BRIGHTLOCAL_API_KEY is not set in environment variables.")
        return api_key, settings.BRIGHTLOCAL_API_SECRET

    # ------------------------------------------------------------------
    # Google Business Profile
    # ------------------------------------------------------------------

    async def get_token(self, connection_id: str) -> str:
        """
        Get an access token for a connected GBP account.

        Args:
            connection_id: Our connected-account row id or the Pipedream
                account id

        Returns:
            Valid access token
        """
        cached = self._cache.get(connection_id)
        if cached and not cached.is_expiring_soon():
            return cached.access_token

        return await self._single_flight(connection_id, self._refresh_connection_token)

    async def get_default_token(self) -> str:
        """
        Get the access token for the agency's own GBP account.

        With a refresh token configured the token is refreshed through
        Google and cached; if that fails the static GBP_ACCESS_TOKEN is
        used as-is.
        """
        env_token = settings.GBP_ACCESS_TOKEN
        refresh_token = settings.GBP_REFRESH_TOKEN

        if refresh_token:
            cached = self._cache.get(DEFAULT_CONNECTION_ID)
            if cached and not cached.is_expiring_soon():
                return cached.access_token
            try:
                return await self._single_flight(
                    DEFAULT_CONNECTION_ID, self._refresh_default_token
                )
            except (TokenError, httpx.HTTPError) as e:
                logger.error("[TokenManager] Failed to refresh default token: %s", e)
                if env_token:
                    return env_token
                raise

        if env_token:
            return env_token

        raise TokenError("No GBP access token configured. Set GBP_ACCESS_TOKEN.")

    async def _single_flight(
        self, key: str, refresh: Callable[[str], Awaitable[str]]
    ) -> str:
        """Run refresh(key) once for all concurrent callers of the same key."""
        task = self._refreshes.get(key)
        if task is None:
            task = asyncio.create_task(refresh(key))
            self._refreshes[key] = task
            try:
                return await task
            finally:
                self._refreshes.pop(key, None)
        return await task

    async def _refresh_connection_token(self, connection_id: str) -> str:
        logger.info("[TokenManager] Refreshing token for connection: %s", connection_id)

        connection = await self._lookup_connection(connection_id)
        if connection is None:
            raise TokenError(f"Connection not found: {connection_id}")

        access_token, expires_at = await self.get_token_from_pipedream(
            connection.pipedream_account_id, connection.external_id
        )
        self._cache[connection_id] = TokenData(
            access_token=access_token,
            expires_at=expires_at or datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME,
            connection_id=connection_id,
        )
        return access_token

    async def _refresh_default_token(self, connection_id: str) -> str:
        refresh_token = settings.GBP_REFRESH_TOKEN
        if not refresh_token:
            raise TokenError("GBP_REFRESH_TOKEN is not set")
        access_token, expires_in = await self.refresh_with_credentials(refresh_token)
        self.cache_token(connection_id, access_token, refresh_token, expires_in)
        return access_token

    async def _lookup_connection(self, connection_id: str) -> Optional[ConnectedAccount]:
        """Find a connected account by row id or Pipedream account id."""
        conditions = [ConnectedAccount.pipedream_account_id == connection_id]
        try:
            conditions.append(ConnectedAccount.id == UUID(connection_id))
        except ValueError:
            pass

        async with get_session() as session:
            result = await session.execute(
                select(ConnectedAccount).where(or_(*conditions))
            )
            return result.scalars().first()

    async def refresh_with_credentials(self, refresh_token: str) -> tuple[str, int]:
        """
        Exchange a Google refresh token for a new access token.

        Returns:
            Tuple of (access_token, expires_in seconds)
        """
        client_id = settings.GBP_CLIENT_ID
        client_secret = settings.GBP_CLIENT_SECRET
        if not client_id or not client_secret:
            raise TokenError("Missing Google OAuth credentials for token refresh")

        async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )

        if response.status_code != 200:
            logger.error("[TokenManager] Token refresh failed: %s", response.text[:500])
            raise TokenError(f"Token refresh failed: {response.status_code}")

        data = response.json()
        logger.info("[TokenManager] Token refreshed successfully")
        return data["access_token"], int(data.get("expires_in", 3600))

    async def get_token_from_pipedream(
        self,
        pipedream_account_id: str,
        external_user_id: Optional[str] = None,
    ) -> tuple[str, Optional[datetime]]:
        """Fetch the Google access token Pipedream holds for an account."""
        logger.info("[TokenManager] Fetching token from Pipedream for account: %s", pipedream_account_id)
        try:
            return await get_pipedream_client().get_access_token(
                pipedream_account_id, external_user_id=external_user_id
            )
        except Exception as e:
            raise TokenError(f"Pipedream token fetch failed: {e}") from e

    def clear_cache(self, connection_id: Optional[str] = None) -> None:
        if connection_id:
            self._cache.pop(connection_id, None)
        else:
            self._cache.clear()

    def cache_token(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: int,
    ) -> None:
        self._cache[connection_id] = TokenData(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            connection_id=connection_id,
        )


# Singleton instance
_token_manager: Optional[TokenManager] = None


def get_token_manager() -> TokenManager:
    """Get the process-wide token manager."""
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager()
    return _token_manager
