"""
Base client class that all vendor API clients inherit from.

Each vendor client supplies its API base URL and auth headers; the base
class owns the HTTP round trip, 429 back-off and error extraction so that
every vendor fails the same way (httpx.HTTPStatusError with the vendor's
own message in the exception text).
"""

from abc import ABC, abstractmethod
import asyncio
import logging
from typing import Any, Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: float = 30.0
MAX_RETRY_AFTER_SECS: float = 30.0


class BaseClient(ABC):
    """Abstract base class for vendor REST clients."""

    # Override in subclasses - used in log lines and error messages
    source_system: str = "unknown"
    api_base: str = ""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """
        Initialize the client.

        Args:
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            timeout: Per-request timeout in seconds
        """
        self._transport = transport
        self._timeout = timeout

    @abstractmethod
    async def _get_headers(self) -> dict[str, str]:
        """Return auth headers for the vendor API."""
        pass

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.api_base}{endpoint}"

    def _extract_error(self, response: httpx.Response) -> str:
        """
        Pull a readable message out of an error response.

        Handles the common shapes: HubSpot {"message", "errors": [...]},
        Google {"error": {"message", "status"}} and BrightLocal
        {"errors": {...}}. Falls back to the raw body.
        """
        try:
            body = response.json()
        except ValueError:
            return response.text[:500] if response.text else ""

        if not isinstance(body, dict):
            return str(body)[:500]

        detail: str = ""
        error = body.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or error.get("status") or ""
        elif isinstance(error, str):
            detail = error

        if not detail:
            detail = body.get("message", "")

        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            messages: list[str] = [
                e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors
            ]
            detail = f"{detail}: {'; '.join(messages)}" if detail else "; ".join(messages)
        elif isinstance(errors, dict) and errors:
            messages = [f"{key}: {value}" for key, value in errors.items()]
            detail = f"{detail}: {'; '.join(messages)}" if detail else "; ".join(messages)

        return detail or str(body)[:500]

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        form_data: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        async with self._client() as client:
            return await client.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_data,
                data=form_data,
            )

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        form_data: Optional[dict[str, Any]] = None,
        _max_retries: int = 5,
    ) -> dict[str, Any]:
        """Make an authenticated request with 429 retry.

        Returns the decoded JSON body, or an empty dict for empty responses
        (204 on DELETE).
        """
        headers: dict[str, str] = await self._get_headers()
        url: str = self._build_url(endpoint)

        last_exc: Optional[httpx.HTTPStatusError] = None
        for attempt in range(_max_retries + 1):
            response: httpx.Response = await self._send(
                method, url, headers, params=params, json_data=json_data, form_data=form_data
            )

            # Retry on 429 rate limit
            if response.status_code == 429 and attempt < _max_retries:
                retry_after: float = _parse_retry_after(response.headers.get("Retry-After"))
                wait_secs: float = min(retry_after, MAX_RETRY_AFTER_SECS)
                logger.warning(
                    "[%s] 429 rate limited on %s, retrying in %ss (attempt %d/%d)",
                    self.source_system, endpoint, wait_secs, attempt + 1, _max_retries,
                )
                await asyncio.sleep(wait_secs)
                continue

            if response.status_code >= 400:
                error_detail: str = self._extract_error(response)
                last_exc = httpx.HTTPStatusError(
                    f"{self.source_system} API error ({response.status_code}): {error_detail}",
                    request=response.request,
                    response=response,
                )
                raise last_exc

            if not response.content:
                return {}
            return response.json()

        # Should not reach here, but satisfy type checker
        assert last_exc is not None
        raise last_exc


def _parse_retry_after(value: Optional[str]) -> float:
    """Retry-After in seconds; defaults to 10 when absent or not numeric."""
    if not value:
        return 10.0
    try:
        return max(float(value), 0.0)
    except ValueError:
        return 10.0


def error_status(exc: BaseException) -> Optional[int]:
    """HTTP status carried by a vendor error, if any."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return getattr(exc, "status_code", None)
