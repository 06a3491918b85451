from config import settings
from services import contact_sync, gbp_sync
from services.contact_sync import ContactSyncResult
from services.gbp_sync import JobResult
from workers.celery_app import celery_app
from workers.tasks import sync as sync_tasks


def test_beat_schedule_covers_every_cache_job() -> None:
    schedule = celery_app.conf.beat_schedule

    tasks = {entry["task"] for entry in schedule.values()}
    assert tasks == {
        "workers.tasks.sync.sync_contacts",
        "workers.tasks.sync.sync_gbp",
        "workers.tasks.sync.sync_brightlocal",
    }
    gbp_resources = {
        entry["args"][0] for entry in schedule.values() if entry["task"] == "workers.tasks.sync.sync_gbp"
    }
    assert gbp_resources == {"reviews", "posts", "media", "locations", "analytics"}
    assert schedule["hourly-incremental-contact-sync"]["kwargs"] == {"mode": "incremental"}


def test_contact_task_without_owner_does_nothing(monkeypatch) -> None:
    monkeypatch.setattr(settings, "SYNC_USER_ID", None)

    result = sync_tasks.sync_contacts("incremental")

    assert result["success"] is False
    assert result["error_message"] == "SYNC_USER_ID is not set"


def test_contact_task_runs_sync_as_cron(monkeypatch) -> None:
    calls: list[tuple[str, str, str]] = []

    async def fake_sync(user_id: str, mode: str = "sync", trigger: str = "manual") -> ContactSyncResult:
        calls.append((user_id, mode, trigger))
        return ContactSyncResult(success=True, mode=mode, inserted=2)

    monkeypatch.setattr(settings, "SYNC_USER_ID", "11111111-1111-1111-1111-111111111111")
    monkeypatch.setattr(contact_sync, "sync_all_contacts", fake_sync)

    result = sync_tasks.sync_contacts("incremental")

    assert result["inserted"] == 2
    assert calls == [("11111111-1111-1111-1111-111111111111", "incremental", "cron")]


def test_gbp_task_returns_job_result(monkeypatch) -> None:
    async def fake_run(resource, account_id=None, location_id=None, trigger="cron") -> JobResult:
        return JobResult(success=True, job_type=f"gbp_{resource}", records_created=5)

    monkeypatch.setattr(gbp_sync, "run_gbp_sync", fake_run)

    result = sync_tasks.sync_gbp("reviews")

    assert result["job_type"] == "gbp_reviews"
    assert result["records_created"] == 5
