from typing import Any, Optional

from fastapi.testclient import TestClient
import pytest

from api.main import app
from api.routes import sync as sync_routes
from config import settings
from services.cache_reader import get_cache_reader
from services.contact_sync import ContactSyncResult
from services.gbp_sync import JobResult


CRON_SECRET = "cron-secret-for-tests"
SYNC_USER_ID = "11111111-1111-1111-1111-111111111111"
CRON_HEADERS = {"Authorization": f"Bearer {CRON_SECRET}"}

client = TestClient(app)


@pytest.fixture(autouse=True)
def cron_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(settings, "SYNC_USER_ID", SYNC_USER_ID)


def test_cron_route_rejects_missing_and_wrong_secret() -> None:
    missing = client.post("/api/sync/brightlocal")
    wrong = client.post("/api/sync/brightlocal", headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert missing.json()["success"] is False
    assert wrong.status_code == 401
    assert wrong.json() == {"success": False, "error": "Unauthorized"}


def test_cron_route_rejects_everything_when_secret_unset(monkeypatch) -> None:
    monkeypatch.setattr(settings, "CRON_SECRET", None)

    response = client.post("/api/sync/brightlocal", headers={"Authorization": "Bearer anything"})

    assert response.status_code == 401


def test_brightlocal_sync_returns_job_result(monkeypatch) -> None:
    async def fake_sync(trigger: str = "cron") -> JobResult:
        assert trigger == "cron"
        return JobResult(success=True, job_type="brightlocal", records_fetched=3, records_created=3)

    monkeypatch.setattr(sync_routes, "sync_brightlocal", fake_sync)

    response = client.post("/api/sync/brightlocal", headers=CRON_HEADERS)

    assert response.status_code == 200
    assert response.json()["records_created"] == 3

    status = client.get("/api/sync/status/brightlocal").json()
    assert status["status"] == "completed"
    assert status["counts"]["records_fetched"] == 3


def test_gbp_sync_passes_query_ids_through(monkeypatch) -> None:
    calls: list[tuple[Any, ...]] = []

    async def fake_run(resource: str, account_id: Optional[str], location_id: Optional[str], trigger: str = "cron") -> JobResult:
        calls.append((resource, account_id, location_id, trigger))
        return JobResult(success=True, job_type=f"gbp_{resource}")

    monkeypatch.setattr(sync_routes, "run_gbp_sync", fake_run)

    response = client.post("/api/sync/gbp-posts?accountId=1&locationId=2", headers=CRON_HEADERS)

    assert response.status_code == 200
    assert calls == [("posts", "1", "2", "cron")]


def test_failed_sync_answers_500_with_result_body(monkeypatch) -> None:
    async def fake_run(resource: str, account_id=None, location_id=None, trigger: str = "cron") -> JobResult:
        return JobResult(success=False, job_type="gbp_reviews", errors=1, error_message="quota exceeded")

    monkeypatch.setattr(sync_routes, "run_gbp_sync", fake_run)

    response = client.post("/api/sync/gbp-reviews", headers=CRON_HEADERS)

    assert response.status_code == 500
    assert response.json()["error_message"] == "quota exceeded"
    assert client.get("/api/sync/status/gbp_reviews").json()["status"] == "failed"


def test_get_twin_describes_the_job() -> None:
    response = client.get("/api/sync/gbp-analytics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["method"] == "POST"
    assert payload["job_type"] == "gbp_analytics"


def test_contact_sync_rejects_unknown_mode() -> None:
    response = client.post("/api/sync/all-contacts?mode=everything", headers=CRON_HEADERS)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "Invalid mode" in response.json()["error"]


def test_cron_contact_sync_runs_for_sync_user(monkeypatch) -> None:
    calls: list[tuple[str, str, str]] = []

    async def fake_sync(user_id: str, mode: str = "sync", trigger: str = "manual") -> ContactSyncResult:
        calls.append((user_id, mode, trigger))
        return ContactSyncResult(success=True, mode=mode, total_contacts=10, inserted=4, updated=6)

    monkeypatch.setattr(sync_routes, "sync_all_contacts", fake_sync)

    response = client.post("/api/sync/all-contacts?mode=incremental", headers=CRON_HEADERS)

    assert response.status_code == 200
    assert response.json()["inserted"] == 4
    assert calls == [(SYNC_USER_ID, "incremental", "cron")]


def test_cron_contact_sync_needs_an_owner(monkeypatch) -> None:
    monkeypatch.setattr(settings, "SYNC_USER_ID", None)

    response = client.post("/api/sync/all-contacts", headers=CRON_HEADERS)

    assert response.status_code == 400
    assert "SYNC_USER_ID" in response.json()["error"]


def test_background_contact_sync_returns_202(monkeypatch) -> None:
    calls: list[str] = []

    async def fake_sync(user_id: str, mode: str = "sync", trigger: str = "manual") -> ContactSyncResult:
        calls.append(mode)
        return ContactSyncResult(success=True, mode=mode)

    monkeypatch.setattr(sync_routes, "sync_all_contacts", fake_sync)

    response = client.post("/api/sync/all-contacts?mode=insert&background=true", headers=CRON_HEADERS)

    assert response.status_code == 202
    assert response.json() == {"status": "started", "mode": "insert", "job_type": "hubspot_contacts_insert"}
    assert calls == ["insert"]


def test_status_for_job_never_run() -> None:
    response = client.get("/api/sync/status/gbp_media_never")

    assert response.status_code == 200
    assert response.json()["status"] == "never_synced"
    assert response.json()["counts"] is None


class FakeReader:
    def __init__(self, recent: list[dict[str, Any]], successes: dict[str, dict[str, Any]]) -> None:
        self.recent = recent
        self.successes = successes
        self.calls: list[tuple[Optional[str], int]] = []

    async def recent_jobs(self, since, job_type=None, limit=20) -> list[dict[str, Any]]:
        self.calls.append((job_type, limit))
        return self.recent

    async def last_successes(self) -> dict[str, dict[str, Any]]:
        return self.successes


def test_job_summary_reports_recent_history(monkeypatch) -> None:
    reader = FakeReader(
        recent=[
            {"job_type": "gbp_reviews", "status": "failed", "completed_at": "2025-03-02T06:00:05Z"},
            {
                "job_type": "gbp_reviews",
                "status": "completed",
                "completed_at": "2025-03-01T06:00:09Z",
                "duration_ms": 9000,
                "records_created": 4,
                "records_updated": 6,
            },
        ],
        successes={},
    )
    monkeypatch.setitem(app.dependency_overrides, get_cache_reader, lambda: reader)

    response = client.get("/api/sync/jobs/summary?jobType=gbp_reviews&limit=5", headers=CRON_HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert reader.calls == [("gbp_reviews", 5)]
    assert payload["stats"]["total_jobs_last_7_days"] == 2
    assert payload["stats"]["overall_success_rate"] == 50
    [summary] = payload["data"]["summaries"]
    assert summary["last_status"] == "failed"
    assert summary["last_successful_sync"] == "2025-03-01T06:00:09Z"
    assert summary["total_records_last_sync"] == 10


def test_job_summary_requires_auth() -> None:
    response = client.get("/api/sync/jobs/summary")

    assert response.status_code == 401


def test_last_customer_sync(monkeypatch) -> None:
    requested: list[Optional[str]] = []

    class FakeJob:
        def to_dict(self) -> dict[str, Any]:
            return {"job_type": "hubspot_contacts_customers", "status": "completed"}

    async def fake_latest(job_type: Optional[str] = None) -> Optional[FakeJob]:
        requested.append(job_type)
        return FakeJob() if len(requested) == 1 else None

    monkeypatch.setattr(sync_routes, "get_latest_job", fake_latest)

    first = client.get("/api/sync/customers/last", headers=CRON_HEADERS)
    second = client.get("/api/sync/customers/last", headers=CRON_HEADERS)

    assert first.json()["last_sync"]["status"] == "completed"
    assert second.json() == {"success": True, "last_sync": None}
    assert requested == ["hubspot_contacts_customers", "hubspot_contacts_customers"]
