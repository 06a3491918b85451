"""
Pipedream Connect client for OAuth and credential management.

Pipedream handles:
- The Google OAuth popup for Business Profile accounts
- Token storage and automatic refresh
- Account health (healthy/dead flags)

We only keep the Pipedream account id; credentials are fetched on demand.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

PIPEDREAM_API_BASE = "https://api.pipedream.com/v1"


class PipedreamError(RuntimeError):
    """Raised when Pipedream rejects a request or returns an unexpected body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PipedreamClient:
    """Client for the Pipedream Connect REST API."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        environment: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize Pipedream client.

        Args:
            project_id: Pipedream project id ("proj_..."). Falls back to settings.
            client_id: OAuth client id for the Pipedream API. Falls back to settings.
            client_secret: OAuth client secret. Falls back to settings.
            environment: "development" or "production". Falls back to settings.
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.project_id = project_id or settings.PIPEDREAM_PROJECT_ID
        self.client_id = client_id or settings.PIPEDREAM_CLIENT_ID
        self.client_secret = client_secret or settings.PIPEDREAM_CLIENT_SECRET
        self.environment = environment or settings.PIPEDREAM_ENVIRONMENT
        if not (self.project_id and self.client_id and self.client_secret):
            raise ValueError(
                "Missing Pipedream credentials (PIPEDREAM_PROJECT_ID, "
                "PIPEDREAM_CLIENT_ID, PIPEDREAM_CLIENT_SECRET)"
            )
        self._transport = transport
        self._api_token: Optional[str] = None
        self._api_token_expires_at: Optional[datetime] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=30.0)

    async def _get_api_token(self) -> str:
        """Client-credentials token for the Pipedream API, cached until expiry."""
        now = datetime.now(timezone.utc)
        if (
            self._api_token
            and self._api_token_expires_at
            and self._api_token_expires_at - now > timedelta(seconds=60)
        ):
            return self._api_token

        async with self._client() as client:
            response = await client.post(
                f"{PIPEDREAM_API_BASE}/oauth/token",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
        if response.status_code != 200:
            raise PipedreamError(
                f"Pipedream OAuth token request failed ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        self._api_token = data["access_token"]
        self._api_token_expires_at = now + timedelta(seconds=int(data.get("expires_in", 3600)))
        return self._api_token

    async def _get_headers(self) -> dict[str, str]:
        """Get authorization headers for the Connect API."""
        token = await self._get_api_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-PD-Environment": self.environment,
        }

    def _connect_url(self, path: str) -> str:
        return f"{PIPEDREAM_API_BASE}/connect/{self.project_id}{path}"

    async def create_connect_token(
        self,
        external_user_id: str,
        allowed_origins: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """
        Create a short-lived Connect token for the frontend OAuth popup.

        Args:
            external_user_id: Our user id; accounts connected with this token
                are tagged with it
            allowed_origins: Browser origins allowed to use the token

        Returns:
            Dict with token, expires_at and connect_link_url
        """
        payload: dict[str, Any] = {"external_user_id": external_user_id}
        if allowed_origins:
            payload["allowed_origins"] = allowed_origins

        async with self._client() as client:
            response = await client.post(
                self._connect_url("/tokens"),
                headers=await self._get_headers(),
                json=payload,
            )

        if response.status_code not in (200, 201):
            raise PipedreamError(
                f"Failed to create Pipedream connect token: {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        return {
            "token": data.get("token"),
            "expires_at": data.get("expires_at"),
            "connect_link_url": data.get("connect_link_url"),
        }

    async def get_account(
        self,
        account_id: str,
        include_credentials: bool = False,
        external_user_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Get a connected account's details.

        Args:
            account_id: Pipedream account id ("apn_...")
            include_credentials: Whether to include the OAuth credentials
            external_user_id: Optional owner filter

        Returns:
            Account dict (id, name, external_id, healthy, dead, app,
            credentials when requested, expires_at)
        """
        params: dict[str, str] = {}
        if include_credentials:
            params["include_credentials"] = "true"
        if external_user_id:
            params["external_user_id"] = external_user_id

        async with self._client() as client:
            response = await client.get(
                self._connect_url(f"/accounts/{account_id}"),
                headers=await self._get_headers(),
                params=params,
            )

        if response.status_code == 404:
            raise PipedreamError(f"Pipedream account not found: {account_id}", status_code=404)
        if response.status_code != 200:
            raise PipedreamError(
                f"Pipedream account fetch failed ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        # Some endpoints wrap the account in 'data'
        return data.get("data", data)

    async def get_access_token(
        self,
        account_id: str,
        external_user_id: Optional[str] = None,
    ) -> tuple[str, Optional[datetime]]:
        """
        Get the Google OAuth access token held by a connected account.

        Returns:
            Tuple of (access_token, expires_at or None)
        """
        account = await self.get_account(
            account_id, include_credentials=True, external_user_id=external_user_id
        )
        credentials = account.get("credentials") or {}
        access_token = credentials.get("oauth_access_token")
        if not access_token:
            logger.error(
                "[Pipedream] No access token in account response for %s (keys: %s)",
                account_id,
                list(credentials.keys()),
            )
            raise PipedreamError("No access token found in Pipedream account response")

        return access_token, _parse_timestamp(account.get("expires_at"))

    async def list_accounts(
        self,
        external_user_id: Optional[str] = None,
        app: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        List connected accounts, optionally filtered by owner and app.

        Returns:
            List of account dicts (empty list on failure)
        """
        params: dict[str, str] = {}
        if external_user_id:
            params["external_user_id"] = external_user_id
        if app:
            params["app"] = app

        async with self._client() as client:
            response = await client.get(
                self._connect_url("/accounts"),
                headers=await self._get_headers(),
                params=params,
            )

        if response.status_code != 200:
            logger.warning(
                "Pipedream list accounts failed (%d): %s",
                response.status_code,
                response.text[:200],
            )
            return []

        data = response.json()
        return data.get("data", [])

    async def delete_account(self, account_id: str) -> bool:
        """
        Delete a connected account (revokes the stored credentials).

        Returns:
            True if deleted (or already gone)
        """
        async with self._client() as client:
            response = await client.delete(
                self._connect_url(f"/accounts/{account_id}"),
                headers=await self._get_headers(),
            )
        return response.status_code in (200, 204, 404)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a Pipedream response."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Singleton instance
pipedream_client: Optional[PipedreamClient] = (
    PipedreamClient()
    if settings.PIPEDREAM_PROJECT_ID and settings.PIPEDREAM_CLIENT_ID and settings.PIPEDREAM_CLIENT_SECRET
    else None
)


def get_pipedream_client() -> PipedreamClient:
    """Get the Pipedream client instance."""
    if pipedream_client is None:
        raise ValueError(
            "Pipedream is not configured. Set PIPEDREAM_PROJECT_ID, "
            "PIPEDREAM_CLIENT_ID and PIPEDREAM_CLIENT_SECRET."
        )
    return pipedream_client
