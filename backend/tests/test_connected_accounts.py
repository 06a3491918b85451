import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import UUID

import pytest
from sqlalchemy.dialects import postgresql

from models.connected_account import ConnectedAccount
from services import connected_accounts
from services.connected_accounts import AccountNotFoundError


USER_ID = UUID("11111111-1111-1111-1111-111111111111")
GOOD_ROW = UUID("22222222-2222-2222-2222-222222222222")
BAD_ROW = UUID("33333333-3333-3333-3333-333333333333")


class FakeResult:
    def __init__(self, rows: list[Any]) -> None:
        self.rows = rows

    def all(self) -> list[Any]:
        return self.rows

    def scalar_one(self) -> Any:
        return self.rows[0]

    def scalar_one_or_none(self) -> Any:
        return self.rows[0] if self.rows else None


class FakeDatabase:
    """Hands out sessions that replay queued results and record what ran."""

    def __init__(self, results: Optional[list[list[Any]]] = None, rows: Optional[dict[UUID, Any]] = None) -> None:
        self.results = list(results or [])
        self.rows = rows or {}
        self.statements: list[Any] = []
        self.sessions_opened = 0
        self.open = 0
        self.commits = 0

    @asynccontextmanager
    async def session(self):
        self.sessions_opened += 1
        self.open += 1
        try:
            yield self
        finally:
            self.open -= 1

    async def execute(self, statement: Any) -> FakeResult:
        self.statements.append(statement)
        return FakeResult(self.results.pop(0) if self.results else [])

    async def get(self, model: Any, key: UUID) -> Any:
        return self.rows.get(key)

    async def commit(self) -> None:
        self.commits += 1


class FakePipedream:
    def __init__(self) -> None:
        self.deleted: list[str] = []

    async def get_account(self, account_id: str, external_user_id=None) -> dict[str, Any]:
        return {
            "id": account_id,
            "name": "Main Street Bakery",
            "healthy": True,
            "app": {"name_slug": "google_my_business", "name": "Google My Business"},
            "credentials": {"email": "owner@bakery.example"},
        }

    async def delete_account(self, account_id: str) -> bool:
        self.deleted.append(account_id)
        return True


def _account(row_id: UUID, pipedream_id: str) -> ConnectedAccount:
    return ConnectedAccount(
        id=row_id,
        user_id=USER_ID,
        pipedream_account_id=pipedream_id,
        app_name="google_my_business",
        healthy=True,
        dead=False,
    )


def test_save_account_upserts_on_pipedream_id(monkeypatch) -> None:
    stored = _account(GOOD_ROW, "apn_good")
    db = FakeDatabase(results=[[], [stored]])
    monkeypatch.setattr(connected_accounts, "get_session", db.session)

    saved = asyncio.run(
        connected_accounts.save_account(USER_ID, "apn_good", external_user_id=str(USER_ID), pipedream=FakePipedream())
    )

    assert saved["pipedream_account_id"] == "apn_good"
    assert db.commits == 1
    upsert = db.statements[0].compile(dialect=postgresql.dialect())
    assert "ON CONFLICT (pipedream_account_id) DO UPDATE" in str(upsert)
    assert upsert.params["account_email"] == "owner@bakery.example"
    assert upsert.params["account_name"] == "Main Street Bakery"
    assert upsert.params["metadata"] == {"app": "Google My Business"}


def test_disconnect_of_foreign_account_is_not_found(monkeypatch) -> None:
    db = FakeDatabase(results=[[]])
    pipedream = FakePipedream()
    monkeypatch.setattr(connected_accounts, "get_session", db.session)

    with pytest.raises(AccountNotFoundError):
        asyncio.run(connected_accounts.disconnect(USER_ID, "apn_not_mine", pipedream=pipedream))

    assert pipedream.deleted == []
    assert db.sessions_opened == 1


def test_check_health_stores_outcome_outside_the_read_session(monkeypatch) -> None:
    good = _account(GOOD_ROW, "apn_good")
    bad = _account(BAD_ROW, "apn_bad")
    db = FakeDatabase(
        results=[[(GOOD_ROW, "apn_good"), (BAD_ROW, "apn_bad")]],
        rows={GOOD_ROW: good, BAD_ROW: bad},
    )
    checked: list[str] = []

    async def account_error(connection_id: str) -> Optional[str]:
        # Vendor calls must not hold a database session
        assert db.open == 0
        checked.append(connection_id)
        return None if connection_id == str(GOOD_ROW) else "Token refresh failed: 400"

    monkeypatch.setattr(connected_accounts, "get_session", db.session)
    monkeypatch.setattr(connected_accounts, "_account_error", account_error)

    results = asyncio.run(connected_accounts.check_health(USER_ID))

    assert checked == [str(GOOD_ROW), str(BAD_ROW)]
    assert db.sessions_opened == 2
    assert db.commits == 1
    by_id = {r["pipedream_account_id"]: r for r in results}
    assert by_id["apn_good"]["healthy"] is True
    assert by_id["apn_good"]["last_error"] is None
    assert by_id["apn_good"]["last_checked_at"] is not None
    assert by_id["apn_bad"]["healthy"] is False
    assert by_id["apn_bad"]["last_error"] == "Token refresh failed: 400"
    assert bad.last_checked_at is not None
