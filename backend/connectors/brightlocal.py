"""
BrightLocal client.

Two APIs:
- Management API v1 (locations), authenticated with an ``x-api-key`` header
- Citation Builder (API v4), authenticated per request with the api key, an
  expiry timestamp and an HMAC-SHA1 signature over ``api_key + expires``
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Any, Optional

import httpx

from connectors.base import BaseClient
from services.token_manager import get_token_manager

logger = logging.getLogger(__name__)

MANAGEMENT_API_BASE = "https://api.brightlocal.com/manage/v1"
CITATION_BUILDER_BASE = "https://tools.brightlocal.com/seo-tools/api/v4/cb"
SIGNATURE_TTL_SECONDS = 1800


class BrightLocalError(RuntimeError):
    """Raised when BrightLocal answers with success=false."""

    def __init__(self, message: str, errors: Optional[Any] = None) -> None:
        super().__init__(message)
        self.errors = errors


def sign_request(api_key: str, api_secret: str, expires: int) -> str:
    """Citation Builder signature: base64(HMAC-SHA1(secret, api_key + expires))."""
    digest = hmac.new(
        api_secret.encode("utf-8"),
        f"{api_key}{expires}".encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class BrightLocalClient(BaseClient):
    """Client for BrightLocal locations and Citation Builder campaigns."""

    source_system = "brightlocal"
    api_base = MANAGEMENT_API_BASE

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(transport=transport)
        if api_key is None:
            api_key, configured_secret = get_token_manager().get_brightlocal_credentials()
            api_secret = api_secret or configured_secret
        self.api_key = api_key
        self.api_secret = api_secret

    async def _get_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Accept": "application/json",
        }

    # ------------------------------------------------------------------
    # Management API: locations
    # ------------------------------------------------------------------

    async def list_locations(self, page: int = 1, page_size: int = 100) -> dict[str, Any]:
        """
        One page of locations.

        Returns:
            {"items": [...], "total_count": int | None}; total_count is None
            when the response does not report one
        """
        data = await self._make_request(
            "GET", "/locations", params={"page": page, "page_size": page_size}
        )
        items = data.get("items") or data.get("locations") or data.get("results") or []
        total_count = data.get("total_count")
        return {"items": items, "total_count": int(total_count) if total_count is not None else None}

    async def get_location(self, location_id: str) -> dict[str, Any]:
        return await self._make_request("GET", f"/locations/{location_id}")

    async def create_location(self, location: dict[str, Any]) -> dict[str, Any]:
        return await self._make_request("POST", "/locations", json_data=location)

    async def update_location(self, location_id: str, location: dict[str, Any]) -> dict[str, Any]:
        return await self._make_request("PUT", f"/locations/{location_id}", json_data=location)

    async def delete_location(self, location_id: str) -> None:
        await self._make_request("DELETE", f"/locations/{location_id}")

    # ------------------------------------------------------------------
    # Citation Builder (v4, signed)
    # ------------------------------------------------------------------

    def _signed_params(self, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        if not self.api_secret:
            raise ValueError("BRIGHTLOCAL_API_SECRET is required for Citation Builder calls")
        expires = int(time.time()) + SIGNATURE_TTL_SECONDS
        signed: dict[str, Any] = {
            "api-key": self.api_key,
            "expires": expires,
            "sig": sign_request(self.api_key, self.api_secret, expires),
        }
        if params:
            signed.update(params)
        return signed

    async def _citation_builder(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        data = await self._make_request(
            "GET", f"{CITATION_BUILDER_BASE}/{action}", params=self._signed_params(params)
        )
        if data.get("success") is False:
            errors = data.get("errors")
            raise BrightLocalError(f"BrightLocal {action} failed: {errors}", errors=errors)
        return data

    async def get_campaigns(self, location_id: str) -> list[dict[str, Any]]:
        """All Citation Builder campaigns for a location."""
        data = await self._citation_builder("get-all", {"location-id": location_id})
        results = data.get("results") or {}
        if isinstance(results, dict):
            return list(results.get("campaigns") or [])
        return list(results)

    async def get_campaign(self, campaign_id: str) -> dict[str, Any]:
        data = await self._citation_builder("get", {"campaign-id": campaign_id})
        return data.get("campaign") or data.get("results") or {}

    async def get_citations(self, campaign_id: str) -> dict[str, Any]:
        """Citation status per directory for a campaign."""
        data = await self._citation_builder("citations", {"campaign-id": campaign_id})
        return data.get("citations") or data.get("results") or {}
