"""
Google Business Profile client.

Talks to the four GBP REST surfaces:
- Account Management v1 (accounts)
- Business Information v1 (locations)
- Performance v1 (search keyword impressions)
- Legacy My Business v4 (reviews, media, local posts)

Tokens come from the token manager. A 401, or an HTML page where JSON was
expected (Google's answer to an expired token on some endpoints), triggers a
token refresh and a retry, up to ``max_retries`` times.
"""

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Optional

import httpx

from connectors.base import BaseClient
from services.token_manager import DEFAULT_CONNECTION_ID, TokenError, get_token_manager

logger = logging.getLogger(__name__)

API_URLS: dict[str, str] = {
    "account_management": "https://mybusinessaccountmanagement.googleapis.com/v1",
    "business_info": "https://mybusinessbusinessinformation.googleapis.com/v1",
    "performance": "https://businessprofileperformance.googleapis.com/v1",
    "legacy": "https://mybusiness.googleapis.com/v4",
}

LOCATION_READ_MASK = ",".join(
    [
        "name",
        "title",
        "metadata",
        "profile",
        "storefrontAddress",
        "phoneNumbers",
        "websiteUri",
        "categories",
        "regularHours",
        "latlng",
    ]
)

LIST_LOCATIONS_READ_MASK = ",".join(
    ["name", "title", "storefrontAddress", "phoneNumbers", "websiteUri", "categories"]
)


class GBPError(RuntimeError):
    """Raised for non-OK GBP responses."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GBPClient(BaseClient):
    """Client for the Google Business Profile APIs."""

    source_system = "gbp"

    def __init__(
        self,
        access_token: str,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize GBP client.

        Args:
            access_token: Google OAuth access token
            account_id: Default account id for account-scoped calls
            location_id: Default location id for location-scoped calls
            connection_id: Connected account used to refresh the token; the
                agency's default token is refreshed when omitted
            max_retries: Token-refresh retries per request
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        super().__init__(transport=transport)
        self.access_token = access_token
        self.account_id = account_id
        self.location_id = location_id
        self.connection_id = connection_id
        self.max_retries = max_retries

    @classmethod
    async def for_connection(
        cls,
        connection_id: Optional[str] = None,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> "GBPClient":
        """Build a client with a fresh token for a connection (or the default account)."""
        manager = get_token_manager()
        if connection_id:
            token = await manager.get_token(connection_id)
        else:
            token = await manager.get_default_token()
        return cls(
            access_token=token,
            account_id=account_id,
            location_id=location_id,
            connection_id=connection_id,
        )

    async def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _refresh_token(self) -> None:
        manager = get_token_manager()
        manager.clear_cache(self.connection_id or DEFAULT_CONNECTION_ID)
        try:
            if self.connection_id:
                self.access_token = await manager.get_token(self.connection_id)
            else:
                self.access_token = await manager.get_default_token()
        except (TokenError, httpx.HTTPError) as e:
            logger.error("[GBPClient] Token refresh failed: %s", e)
            raise GBPError("Failed to refresh access token") from e
        logger.info("[GBPClient] Token refreshed successfully")

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[Any] = None,
    ) -> dict[str, Any]:
        """Authenticated request with refresh-and-retry on 401 or HTML bodies."""
        retry_count = 0
        while True:
            response = await self._send(
                method, url, await self._get_headers(), params=params, json_data=json_data
            )
            text = response.text
            stripped = text.lstrip()

            if stripped.startswith("<!DOCTYPE") or stripped.startswith("<html"):
                if retry_count < self.max_retries:
                    retry_count += 1
                    logger.info(
                        "[GBPClient] HTML response detected, refreshing token (retry %d/%d)",
                        retry_count, self.max_retries,
                    )
                    await self._refresh_token()
                    continue
                raise GBPError(
                    "Invalid response - token may be expired. Max retries exceeded.",
                    status_code=response.status_code,
                )

            if response.status_code == 401 and retry_count < self.max_retries:
                retry_count += 1
                logger.info(
                    "[GBPClient] 401 Unauthorized, refreshing token (retry %d/%d)",
                    retry_count, self.max_retries,
                )
                await self._refresh_token()
                continue

            if not text:
                if response.is_success:
                    return {}
                raise GBPError(
                    f"API Error ({response.status_code}): empty response",
                    status_code=response.status_code,
                )

            try:
                data = response.json()
            except ValueError:
                raise GBPError(
                    f"Failed to parse response: {text[:200]}",
                    status_code=response.status_code,
                )

            if not response.is_success:
                raise GBPError(
                    f"API Error ({response.status_code}): {self._extract_error(response)}",
                    status_code=response.status_code,
                )
            return data

    def _account_and_location(
        self, account_id: Optional[str], location_id: Optional[str]
    ) -> tuple[str, str]:
        acc_id = account_id or self.account_id
        loc_id = location_id or self.location_id
        if not acc_id or not loc_id:
            raise ValueError("Account and Location IDs required")
        return acc_id, loc_id

    # =========================================================================
    # Account Management
    # =========================================================================

    async def list_accounts(self) -> dict[str, Any]:
        return await self._request("GET", f"{API_URLS['account_management']}/accounts")

    # =========================================================================
    # Business Information
    # =========================================================================

    async def get_location(self, location_id: Optional[str] = None) -> dict[str, Any]:
        loc_id = location_id or self.location_id
        if not loc_id:
            raise ValueError("Location ID required")
        return await self._request(
            "GET",
            f"{API_URLS['business_info']}/locations/{loc_id}",
            params={"readMask": LOCATION_READ_MASK},
        )

    async def list_locations(self, account_id: Optional[str] = None) -> dict[str, Any]:
        acc_id = account_id or self.account_id
        if not acc_id:
            raise ValueError("Account ID required")
        return await self._request(
            "GET",
            f"{API_URLS['business_info']}/accounts/{acc_id}/locations",
            params={"readMask": LIST_LOCATIONS_READ_MASK},
        )

    # =========================================================================
    # Legacy v4: reviews, media, posts
    # =========================================================================

    async def _get_location_collection(
        self,
        collection: str,
        account_id: Optional[str],
        location_id: Optional[str],
        page_token: Optional[str],
    ) -> dict[str, Any]:
        acc_id, loc_id = self._account_and_location(account_id, location_id)
        params = {"pageToken": page_token} if page_token else None
        return await self._request(
            "GET",
            f"{API_URLS['legacy']}/accounts/{acc_id}/locations/{loc_id}/{collection}",
            params=params,
        )

    async def get_reviews(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        page_token: Optional[str] = None,
    ) -> dict[str, Any]:
        """One page of reviews: {reviews, averageRating, totalReviewCount, nextPageToken}."""
        return await self._get_location_collection("reviews", account_id, location_id, page_token)

    async def reply_to_review(self, review_name: str, comment: str) -> dict[str, Any]:
        """Create or replace the owner reply on a review (name is the full resource path)."""
        return await self._request(
            "PUT", f"{API_URLS['legacy']}/{review_name}/reply", json_data={"comment": comment}
        )

    async def delete_review_reply(self, review_name: str) -> None:
        await self._request("DELETE", f"{API_URLS['legacy']}/{review_name}/reply")

    async def get_media(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        page_token: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self._get_location_collection("media", account_id, location_id, page_token)

    async def create_media(
        self, account_id: str, location_id: str, media_data: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Add a photo or video from a public URL.

        Args:
            media_data: {"sourceUrl", "mediaFormat": PHOTO|VIDEO,
                "locationAssociation": {"category": ...}, "description"}
        """
        acc_id, loc_id = self._account_and_location(account_id, location_id)
        return await self._request(
            "POST",
            f"{API_URLS['legacy']}/accounts/{acc_id}/locations/{loc_id}/media",
            json_data=media_data,
        )

    async def delete_media(self, media_name: str) -> None:
        await self._request("DELETE", f"{API_URLS['legacy']}/{media_name}")

    async def get_local_posts(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        page_token: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self._get_location_collection("localPosts", account_id, location_id, page_token)

    # =========================================================================
    # Performance
    # =========================================================================

    async def get_search_keywords(
        self,
        location_id: Optional[str] = None,
        start_month: Optional[tuple[int, int]] = None,
        end_month: Optional[tuple[int, int]] = None,
    ) -> dict[str, Any]:
        """
        Monthly search keyword impressions.

        Args:
            location_id: Location id (falls back to the client default)
            start_month: (year, month); defaults to last month
            end_month: (year, month); defaults to this month
        """
        loc_id = location_id or self.location_id
        if not loc_id:
            raise ValueError("Location ID required")

        now = datetime.now(timezone.utc)
        end_year, end_mon = end_month or (now.year, now.month)
        if start_month:
            start_year, start_mon = start_month
        elif now.month == 1:
            start_year, start_mon = now.year - 1, 12
        else:
            start_year, start_mon = now.year, now.month - 1

        params = {
            "monthlyRange.startMonth.year": str(start_year),
            "monthlyRange.startMonth.month": str(start_mon),
            "monthlyRange.endMonth.year": str(end_year),
            "monthlyRange.endMonth.month": str(end_mon),
        }
        return await self._request(
            "GET",
            f"{API_URLS['performance']}/locations/{loc_id}/searchkeywords/impressions/monthly",
            params=params,
        )

    # =========================================================================
    # Convenience
    # =========================================================================

    async def get_full_location_data(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Location details plus first pages of reviews, media and posts, fetched concurrently."""
        acc_id, loc_id = self._account_and_location(account_id, location_id)
        location, reviews, media, posts = await asyncio.gather(
            self.get_location(loc_id),
            self.get_reviews(acc_id, loc_id),
            self.get_media(acc_id, loc_id),
            self.get_local_posts(acc_id, loc_id),
        )
        return {"location": location, "reviews": reviews, "media": media, "posts": posts}
