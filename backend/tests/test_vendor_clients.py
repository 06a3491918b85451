import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

from config import settings
from connectors import gbp as gbp_module
from connectors.base import error_status
from connectors.gbp import GBPClient, GBPError
from connectors.hubspot import HubSpotClient
from services.pipedream import PipedreamClient, PipedreamError


def test_hubspot_retries_after_rate_limit() -> None:
    attempts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"}, json={"message": "rate limited"})
        return httpx.Response(200, json={"results": [{"id": "1"}], "paging": None})

    client = HubSpotClient(access_token="hs-token", transport=httpx.MockTransport(handler))

    data = asyncio.run(client.list_contacts(limit=500))

    assert data["results"] == [{"id": "1"}]
    assert len(attempts) == 2
    assert attempts[0].headers["Authorization"] == "Bearer hs-token"
    assert attempts[0].url.params["limit"] == "100"


def test_hubspot_error_carries_status_and_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"message": "Property values were not valid", "errors": [{"message": "bad email"}]},
        )

    client = HubSpotClient(access_token="hs-token", transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        asyncio.run(client.update_contact("501", {"email": "nope"}))

    assert error_status(exc_info.value) == 400
    assert "Property values were not valid: bad email" in str(exc_info.value)


def test_hubspot_company_associations_take_first_company() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/crm/v4/associations/contacts/companies/batch/read"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"from": {"id": "1"}, "to": [{"toObjectId": 9001}, {"toObjectId": 9002}]},
                    {"from": {"id": "2"}, "to": []},
                ]
            },
        )

    client = HubSpotClient(access_token="hs-token", transport=httpx.MockTransport(handler))

    assert asyncio.run(client.get_company_associations(["1", "2"])) == {"1": "9001"}


def test_hubspot_create_contact_posts_properties() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/crm/v3/objects/contacts"
        return httpx.Response(201, json={"id": "777", "properties": {"email": "new@shop.example"}})

    client = HubSpotClient(access_token="hs-token", transport=httpx.MockTransport(handler))

    created = asyncio.run(client.create_contact({"email": "new@shop.example"}))

    assert created == {"id": "777", "properties": {"email": "new@shop.example"}}


def test_hubspot_customer_companies_are_reshaped_contacts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "id": "42",
                        "createdAt": "2025-01-01T00:00:00Z",
                        "properties": {
                            "lifecyclestage": "customer",
                            "email": "jane@bakery.example",
                            "website": "https://www.bakery.example/menu",
                        },
                    },
                    {"id": "43", "properties": {"lifecyclestage": "lead", "company": "Not Yet"}},
                ],
                "paging": {"next": {"after": "100"}},
            },
        )

    client = HubSpotClient(access_token="hs-token", transport=httpx.MockTransport(handler))

    data = asyncio.run(client.list_customer_companies(limit=10))

    assert data["next_after"] == "100"
    assert data["pages_fetched"] == 1
    company = data["companies"][0]
    assert len(data["companies"]) == 1
    assert company["name"] == "Jane"
    assert company["domain"] == "bakery.example"
    assert company["url"] == "https://app.hubspot.com/contacts/contacts/42"


class FakeTokenManager:
    def __init__(self, token: str = "new-token") -> None:
        self.token = token
        self.cleared: list[Optional[str]] = []

    def clear_cache(self, connection_id: Optional[str] = None) -> None:
        self.cleared.append(connection_id)

    async def get_token(self, connection_id: str) -> str:
        return self.token

    async def get_default_token(self) -> str:
        return self.token


def test_gbp_refreshes_token_after_401(monkeypatch) -> None:
    manager = FakeTokenManager()
    monkeypatch.setattr(gbp_module, "get_token_manager", lambda: manager)
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Authorization"])
        if request.headers["Authorization"] == "Bearer old-token":
            return httpx.Response(401, json={"error": {"message": "Request had invalid credentials"}})
        return httpx.Response(200, json={"accounts": [{"name": "accounts/1"}]})

    client = GBPClient(access_token="old-token", connection_id="conn-1", transport=httpx.MockTransport(handler))

    data = asyncio.run(client.list_accounts())

    assert data == {"accounts": [{"name": "accounts/1"}]}
    assert seen == ["Bearer old-token", "Bearer new-token"]
    assert manager.cleared == ["conn-1"]


def test_gbp_html_body_is_treated_as_expired_token(monkeypatch) -> None:
    manager = FakeTokenManager()
    monkeypatch.setattr(gbp_module, "get_token_manager", lambda: manager)
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(200, text="<!DOCTYPE html><html>Sign in</html>")
        return httpx.Response(200, json={"reviews": []})

    client = GBPClient(access_token="old-token", account_id="1", location_id="2", transport=httpx.MockTransport(handler))

    assert asyncio.run(client.get_reviews()) == {"reviews": []}
    assert manager.cleared == ["default"]


def test_gbp_gives_up_after_max_retries(monkeypatch) -> None:
    monkeypatch.setattr(gbp_module, "get_token_manager", lambda: FakeTokenManager("still-bad"))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Request had invalid credentials"}})

    client = GBPClient(access_token="old-token", max_retries=2, transport=httpx.MockTransport(handler))

    with pytest.raises(GBPError) as exc_info:
        asyncio.run(client.list_accounts())

    assert exc_info.value.status_code == 401
    assert "invalid credentials" in str(exc_info.value)


def test_gbp_location_scoped_calls_need_ids() -> None:
    client = GBPClient(access_token="token")

    with pytest.raises(ValueError):
        asyncio.run(client.get_reviews())


def _pipedream(handler) -> PipedreamClient:
    return PipedreamClient(
        project_id="proj_1",
        client_id="pd-client",
        client_secret="pd-secret",
        environment="development",
        transport=httpx.MockTransport(handler),
    )


def test_pipedream_api_token_is_reused_until_expiry() -> None:
    token_requests: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth/token":
            token_requests.append(1)
            return httpx.Response(200, json={"access_token": f"pd-token-{len(token_requests)}", "expires_in": 3600})
        assert request.headers["X-PD-Environment"] == "development"
        return httpx.Response(200, json={"data": [{"id": "apn_1"}]})

    client = _pipedream(handler)

    async def run():
        await client.list_accounts()
        await client.list_accounts()
        first = client._api_token
        # Inside the 60 second refresh margin
        client._api_token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=30)
        await client.list_accounts()
        return first

    first = asyncio.run(run())

    assert first == "pd-token-1"
    assert len(token_requests) == 2
    assert client._api_token == "pd-token-2"


def test_pipedream_access_token_requires_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth/token":
            return httpx.Response(200, json={"access_token": "pd-token", "expires_in": 3600})
        assert request.url.params["include_credentials"] == "true"
        return httpx.Response(200, json={"id": "apn_1", "credentials": {}})

    with pytest.raises(PipedreamError) as exc_info:
        asyncio.run(_pipedream(handler).get_access_token("apn_1"))

    assert "No access token" in str(exc_info.value)


def test_pipedream_access_token_and_expiry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth/token":
            return httpx.Response(200, json={"access_token": "pd-token", "expires_in": 3600})
        return httpx.Response(
            200,
            json={
                "data": {
                    "id": "apn_1",
                    "credentials": {"oauth_access_token": "ya29.google"},
                    "expires_at": "2025-03-04T12:00:00Z",
                }
            },
        )

    token, expires_at = asyncio.run(_pipedream(handler).get_access_token("apn_1"))

    assert token == "ya29.google"
    assert expires_at == datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def test_pipedream_client_needs_project_credentials(monkeypatch) -> None:
    monkeypatch.setattr(settings, "PIPEDREAM_PROJECT_ID", None)

    with pytest.raises(ValueError):
        PipedreamClient(client_id="pd-client", client_secret="pd-secret")
