from typing import Any, Optional
from uuid import UUID

from fastapi.testclient import TestClient
import httpx
import pytest

from api.auth_middleware import AuthContext, get_current_auth, require_user_id
from api.main import app
from api.routes.hubspot import get_contact_updater, get_hubspot_client
from api.routes.pipedream import get_pipedream
from api.routes.store import get_contact_store
from services.cache_reader import get_cache_reader
from services.contact_updater import ContactUpdateError


USER_ID = UUID("11111111-1111-1111-1111-111111111111")

client = TestClient(app)


@pytest.fixture(autouse=True)
def signed_in_user():
    app.dependency_overrides[get_current_auth] = lambda: AuthContext(
        user_id=USER_ID, email="staff@agency.example", role="authenticated"
    )
    app.dependency_overrides[require_user_id] = lambda: USER_ID
    yield
    app.dependency_overrides.clear()


class FakeUpdater:
    def __init__(self, error: Optional[ContactUpdateError] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, dict[str, Any], Optional[str]]] = []

    async def update_contact(self, contact_id, properties, user_id=None, request_meta=None) -> dict[str, Any]:
        self.calls.append((contact_id, properties, user_id))
        if self.error:
            raise self.error
        return {
            "success": True,
            "message": "Contact updated",
            "hubspot_updated": True,
            "supabase_updated": True,
            "updated_properties": {k: str(v) for k, v in properties.items()},
            "contact": {"id": "c-1"},
        }

    async def sync_single_contact(self, identifier, user_id=None, trigger="manual") -> dict[str, Any]:
        if self.error:
            raise self.error
        return {"id": "c-1", "hubspot_contact_id": identifier}


class FakeHubSpot:
    def __init__(self, status_code: Optional[int] = None) -> None:
        self.status_code = status_code

    def _maybe_fail(self) -> None:
        if self.status_code:
            request = httpx.Request("GET", "https://api.hubapi.com/crm/v3/objects/contacts")
            raise httpx.HTTPStatusError(
                "hubspot API error", request=request, response=httpx.Response(self.status_code, request=request)
            )

    async def list_contacts(self, limit=100, after=None, properties=None) -> dict[str, Any]:
        self._maybe_fail()
        return {
            "results": [{"id": "1", "createdAt": "2025-01-01T00:00:00Z", "properties": {"email": "a@b.example"}}],
            "paging": {"next": {"after": "cursor-2"}},
        }

    async def get_contact(self, contact_id, properties=None) -> dict[str, Any]:
        self._maybe_fail()
        return {"id": contact_id, "properties": {"email": "a@b.example"}}


def test_user_routes_require_authorization_header() -> None:
    app.dependency_overrides.clear()

    response = client.get("/api/hubspot/contacts")

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Missing Authorization header"}


def test_patch_without_properties_is_rejected() -> None:
    updater = FakeUpdater()
    app.dependency_overrides[get_contact_updater] = lambda: updater

    response = client.patch("/api/hubspot/contacts/501", json={"phone": "555"})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Invalid request",
        "message": "Request body must include a properties object",
    }
    assert updater.calls == []


def test_patch_dual_writes_through_updater() -> None:
    updater = FakeUpdater()
    app.dependency_overrides[get_contact_updater] = lambda: updater

    response = client.patch("/api/hubspot/contacts/501", json={"properties": {"phone": "555-0199"}})

    assert response.status_code == 200
    payload = response.json()
    assert payload["hubspot_updated"] is True
    assert payload["supabase_updated"] is True
    assert "warning" not in payload
    assert updater.calls == [("501", {"phone": "555-0199"}, str(USER_ID))]


def test_patch_maps_hubspot_rejection() -> None:
    error = ContactUpdateError(404, "Contact not found", "Contact with ID 501 does not exist")
    app.dependency_overrides[get_contact_updater] = lambda: FakeUpdater(error)

    response = client.patch("/api/hubspot/contacts/501", json={"properties": {"phone": "555"}})

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "Contact not found",
        "message": "Contact with ID 501 does not exist",
    }


def test_single_contact_sync_route() -> None:
    app.dependency_overrides[get_contact_updater] = lambda: FakeUpdater()

    response = client.post("/api/hubspot/contacts/501/sync")

    assert response.status_code == 200
    assert response.json()["data"]["hubspot_contact_id"] == "501"
    assert response.json()["message"] == "Contact synced successfully from HubSpot"


def test_live_contact_list_shape() -> None:
    app.dependency_overrides[get_hubspot_client] = lambda: FakeHubSpot()

    response = client.get("/api/hubspot/contacts?limit=10")

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"][0]["properties"] == {"email": "a@b.example"}
    assert payload["data"][0]["archived"] is False
    assert payload["metadata"] == {"total_contacts": 1, "has_more": True, "next_cursor": "cursor-2"}


@pytest.mark.parametrize("status_code, expected", [(404, 404), (403, 403), (429, 429), (503, 500)])
def test_live_contact_errors_are_mapped(status_code: int, expected: int) -> None:
    app.dependency_overrides[get_hubspot_client] = lambda: FakeHubSpot(status_code)

    response = client.get("/api/hubspot/contacts/501")

    assert response.status_code == expected
    assert response.json()["success"] is False


def test_stored_contacts_are_paged() -> None:
    class FakeContact:
        def to_dict(self) -> dict[str, Any]:
            return {"id": "c-1", "email": "a@b.example"}

    class FakeStore:
        def __init__(self) -> None:
            self.calls: list[dict[str, Any]] = []

        async def list_contacts(self, user_id=None, search=None, lifecyclestage=None, limit=50, offset=0):
            self.calls.append({"user_id": user_id, "search": search})
            return [FakeContact()], 3

    store = FakeStore()
    app.dependency_overrides[get_contact_store] = lambda: store

    response = client.get("/api/store/contacts?search=bakery&limit=1")

    assert response.status_code == 200
    assert response.json()["metadata"] == {"total_contacts": 3, "limit": 1, "offset": 0, "has_more": True}
    assert store.calls == [{"user_id": str(USER_ID), "search": "bakery"}]


class FakePipedream:
    def __init__(self) -> None:
        self.tokens: list[str] = []

    async def create_connect_token(self, external_user_id: str, allowed_origins=None) -> dict[str, Any]:
        self.tokens.append(external_user_id)
        return {"token": "ctok_1", "expires_at": "2025-03-04T12:00:00Z", "connect_link_url": "https://pipedream.example/c"}


def test_connect_token_only_for_own_user() -> None:
    pipedream = FakePipedream()
    app.dependency_overrides[get_pipedream] = lambda: pipedream

    mismatch = client.post("/api/pipedream/connect-token", json={"external_user_id": "someone-else"})
    missing = client.post("/api/pipedream/connect-token", json={})
    ok = client.post("/api/pipedream/connect-token", json={"external_user_id": str(USER_ID)})

    assert mismatch.status_code == 403
    assert mismatch.json() == {"success": False, "error": "User ID mismatch"}
    assert missing.status_code == 400
    assert ok.status_code == 200
    assert ok.json()["token"] == "ctok_1"
    assert ok.json()["user_id"] == str(USER_ID)
    assert pipedream.tokens == [str(USER_ID)]


class FakeCacheReader:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    async def gbp_snapshot(self, location_id=None) -> dict[str, list[dict[str, Any]]]:
        self.calls.append(("gbp", location_id))
        return {
            "reviews": [{"star_rating": 5, "reply_comment": None, "fetched_at": "2025-03-02T06:00:00Z"}],
            "analytics": [],
            "posts": [],
            "media": [],
            "locations": [],
        }

    async def brightlocal_snapshot(self, hubspot_company_id=None) -> dict[str, list[dict[str, Any]]]:
        self.calls.append(("brightlocal", hubspot_company_id))
        return {"locations": [{"brightlocal_location_id": "77"}], "campaigns": []}

    async def contact_records(self, user_id) -> list[dict[str, Any]]:
        self.calls.append(("contacts", user_id))
        return [{"id": "c-1", "lifecyclestage": "lead", "state": "OR", "properties": {}}]


def test_cached_gbp_route_filters_by_location() -> None:
    reader = FakeCacheReader()
    app.dependency_overrides[get_cache_reader] = lambda: reader

    response = client.get("/api/store/gbp?locationId=loc-9")

    assert response.status_code == 200
    assert reader.calls == [("gbp", "loc-9")]
    assert response.json()["stats"]["five_star_count"] == 1
    assert response.json()["stats"]["last_sync_date"] == "2025-03-02T06:00:00Z"


def test_cached_brightlocal_route_filters_by_company() -> None:
    reader = FakeCacheReader()
    app.dependency_overrides[get_cache_reader] = lambda: reader

    response = client.get("/api/store/brightlocal?hubspotCompanyId=9001")

    assert response.status_code == 200
    assert reader.calls == [("brightlocal", "9001")]
    assert response.json()["metadata"] == {"total_locations": 1, "total_campaigns": 0}


def test_contact_analytics_reads_callers_contacts() -> None:
    reader = FakeCacheReader()
    app.dependency_overrides[get_cache_reader] = lambda: reader

    response = client.get("/api/store/analytics?lifecycle=lead")

    assert response.status_code == 200
    assert reader.calls == [("contacts", USER_ID)]
    payload = response.json()
    assert payload["filter"] == "lead"
    assert payload["data"]["kpis"]["total_contacts"] == 1
    assert payload["data"]["charts"]["geographic_distribution"] == [{"name": "Oregon", "value": 1}]
