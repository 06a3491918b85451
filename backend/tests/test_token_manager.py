import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional

import httpx
import pytest

from config import settings
from services.token_manager import DEFAULT_CONNECTION_ID, TokenError, TokenManager


def _fake_pipedream(manager: TokenManager, monkeypatch, expires_at: Optional[datetime] = None) -> list[str]:
    calls: list[str] = []

    async def lookup(connection_id: str):
        return SimpleNamespace(pipedream_account_id="apn_123", external_id="user-1")

    async def fetch(account_id: str, external_user_id: Optional[str] = None):
        calls.append(account_id)
        await asyncio.sleep(0.01)
        return f"token-{len(calls)}", expires_at

    monkeypatch.setattr(manager, "_lookup_connection", lookup)
    monkeypatch.setattr(manager, "get_token_from_pipedream", fetch)
    return calls


def test_cached_token_is_reused(monkeypatch) -> None:
    manager = TokenManager()
    calls = _fake_pipedream(manager, monkeypatch)
    manager.cache_token("conn-1", "cached-token", None, 3600)

    assert asyncio.run(manager.get_token("conn-1")) == "cached-token"
    assert calls == []


def test_token_expiring_within_five_minutes_is_refreshed(monkeypatch) -> None:
    manager = TokenManager()
    calls = _fake_pipedream(manager, monkeypatch)
    manager.cache_token("conn-1", "stale-token", None, 120)

    assert asyncio.run(manager.get_token("conn-1")) == "token-1"
    assert calls == ["apn_123"]


def test_concurrent_callers_share_one_refresh(monkeypatch) -> None:
    manager = TokenManager()
    calls = _fake_pipedream(
        manager, monkeypatch, expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
    )

    async def fetch_many() -> list[str]:
        return await asyncio.gather(*(manager.get_token("conn-1") for _ in range(5)))

    tokens = asyncio.run(fetch_many())

    assert tokens == ["token-1"] * 5
    assert calls == ["apn_123"]
    # Cached afterwards
    assert asyncio.run(manager.get_token("conn-1")) == "token-1"


def test_unknown_connection_raises(monkeypatch) -> None:
    manager = TokenManager()

    async def lookup(connection_id: str):
        return None

    monkeypatch.setattr(manager, "_lookup_connection", lookup)

    with pytest.raises(TokenError):
        asyncio.run(manager.get_token("missing"))


def test_clear_cache_forces_refresh(monkeypatch) -> None:
    manager = TokenManager()
    calls = _fake_pipedream(manager, monkeypatch)
    manager.cache_token("conn-1", "cached-token", None, 3600)

    manager.clear_cache("conn-1")

    assert asyncio.run(manager.get_token("conn-1")) == "token-1"
    assert len(calls) == 1


def _google_transport(requests: list[httpx.Request], status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "google-token", "expires_in": 3599})

    return httpx.MockTransport(handler)


def _default_credentials(monkeypatch, access_token: Optional[str] = None) -> None:
    monkeypatch.setattr(settings, "GBP_REFRESH_TOKEN", "refresh-1")
    monkeypatch.setattr(settings, "GBP_CLIENT_ID", "client-id")
    monkeypatch.setattr(settings, "GBP_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(settings, "GBP_ACCESS_TOKEN", access_token)


def test_default_token_refreshed_through_google_and_cached(monkeypatch) -> None:
    _default_credentials(monkeypatch)
    requests: list[httpx.Request] = []
    manager = TokenManager(transport=_google_transport(requests))

    assert asyncio.run(manager.get_default_token()) == "google-token"
    assert asyncio.run(manager.get_default_token()) == "google-token"

    assert len(requests) == 1
    body = requests[0].content.decode()
    assert "grant_type=refresh_token" in body
    assert "refresh_token=refresh-1" in body
    assert DEFAULT_CONNECTION_ID in manager._cache


def test_default_token_falls_back_to_static_token_when_refresh_fails(monkeypatch) -> None:
    _default_credentials(monkeypatch, access_token="static-token")
    manager = TokenManager(transport=_google_transport([], status_code=400))

    assert asyncio.run(manager.get_default_token()) == "static-token"


def test_default_token_without_any_credentials_raises(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GBP_REFRESH_TOKEN", None)
    monkeypatch.setattr(settings, "GBP_ACCESS_TOKEN", None)

    with pytest.raises(TokenError):
        asyncio.run(TokenManager().get_default_token())


def test_hubspot_token_must_be_configured(monkeypatch) -> None:
    monkeypatch.setattr(settings, "HUBSPOT_ACCESS_TOKEN", None)

    with pytest.raises(ValueError):
        TokenManager().get_hubspot_token()


def test_default_refresh_without_refresh_token_raises(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GBP_REFRESH_TOKEN", None)

    with pytest.raises(TokenError):
        asyncio.run(TokenManager()._refresh_default_token(DEFAULT_CONNECTION_ID))
