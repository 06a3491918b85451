"""
Sync trigger endpoints.

Endpoints:
- POST /api/sync/all-contacts?mode=insert|sync|incremental - HubSpot -> contacts table
- POST /api/sync/customers                                  - Customer-stage contacts only
- POST /api/sync/gbp-{reviews,posts,media,locations,analytics}
- POST /api/sync/brightlocal
- GET  /api/sync/jobs/latest                                - Last sync_jobs row
- GET  /api/sync/jobs/summary                               - Per-type status over the last 7 days
- GET  /api/sync/customers/last                             - Last customer sync run
- GET  /api/sync/status/{job_type}                          - Live status of a job in this process

Every POST has a GET twin that describes the job. Scheduled callers
authenticate with CRON_SECRET; the contact sync also accepts a signed-in user.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.auth_middleware import AuthContext, require_cron, require_cron_or_user
from config import SYNC_JOB_TYPES, settings, to_iso8601
from services.brightlocal_sync import sync_brightlocal
from services.cache_reader import CacheReader, get_cache_reader, history_start, summarize_jobs
from services.contact_sync import SyncMode, sync_all_contacts, sync_customers
from services.gbp_sync import GBP_JOBS, run_gbp_sync
from services.sync_jobs import get_latest_job

router = APIRouter()
logger = logging.getLogger(__name__)

# Simple in-memory sync status tracking (per process)
_sync_status: dict[str, dict[str, str | datetime | None | dict[str, int]]] = {}

CONTACT_SYNC_MODES: tuple[str, ...] = (
    SyncMode.INSERT.value,
    SyncMode.SYNC.value,
    SyncMode.INCREMENTAL.value,
)

GBP_JOB_DESCRIPTIONS: dict[str, str] = {
    "reviews": "Cache GBP reviews (daily 06:00 UTC)",
    "posts": "Cache GBP local posts (Sunday 09:00 UTC)",
    "media": "Cache GBP photos and videos (Sunday 10:00 UTC)",
    "locations": "Cache GBP location details (Sunday 11:00 UTC)",
    "analytics": "Snapshot GBP search keyword impressions for the last 3 months (Sunday 07:00 UTC)",
}


class SyncStatusResponse(BaseModel):
    """Response model for sync status."""

    job_type: str
    status: str
    started_at: Optional[str]
    completed_at: Optional[str]
    error: Optional[str]
    counts: Optional[dict[str, int]]


async def _tracked(job_type: str, run: Callable[[], Awaitable[Any]]) -> Any:
    """Run a sync while keeping _sync_status current."""
    _sync_status[job_type] = {
        "status": "syncing",
        "started_at": datetime.now(timezone.utc),
        "completed_at": None,
        "error": None,
        "counts": None,
    }
    try:
        result = await run()
    except Exception as e:
        logger.exception("[Sync] %s crashed", job_type)
        _sync_status[job_type].update(
            status="failed", completed_at=datetime.now(timezone.utc), error=str(e)
        )
        raise

    data = result.to_dict()
    _sync_status[job_type].update(
        status="completed" if data.get("success") else "failed",
        completed_at=datetime.now(timezone.utc),
        error=data.get("error_message"),
        counts={
            key: value
            for key, value in data.items()
            if isinstance(value, int) and not isinstance(value, bool)
        },
    )
    return result


def _result_response(result: Any) -> JSONResponse:
    data = result.to_dict()
    return JSONResponse(status_code=200 if data.get("success") else 500, content=data)


def _sync_owner(auth: AuthContext) -> str:
    owner = auth.user_id_str or settings.SYNC_USER_ID
    if not owner:
        raise HTTPException(
            status_code=400,
            detail="No user to own synced contacts; set SYNC_USER_ID for cron calls",
        )
    return owner


async def _run_contact_sync(user_id: str, mode: str, trigger: str) -> None:
    """Background task body for a contact sync."""
    await _tracked(
        f"hubspot_contacts_{mode}",
        lambda: sync_all_contacts(user_id, mode=mode, trigger=trigger),
    )


# =============================================================================
# HubSpot contacts
# =============================================================================


@router.get("/all-contacts")
async def describe_contact_sync() -> dict[str, Any]:
    return {
        "endpoint": "/api/sync/all-contacts",
        "method": "POST",
        "description": "Sync HubSpot contacts into the contacts table",
        "modes": {
            "insert": "Insert contacts that are not stored yet; never touch existing rows",
            "sync": "Insert new contacts and update existing ones (default)",
            "incremental": "Only contacts modified since the newest stored change",
        },
        "query": {"mode": "insert|sync|incremental", "background": "true to return immediately"},
        "schedule": "incremental, hourly at minute 0",
    }


@router.post("/all-contacts")
async def trigger_contact_sync(
    background_tasks: BackgroundTasks,
    mode: str = Query(SyncMode.SYNC.value),
    background: bool = Query(False),
    auth: AuthContext = Depends(require_cron_or_user),
) -> Any:
    if mode not in CONTACT_SYNC_MODES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid mode '{mode}'. Use one of: {', '.join(CONTACT_SYNC_MODES)}",
        )
    user_id = _sync_owner(auth)
    trigger = "cron" if auth.is_cron else "manual"
    logger.info("[Sync] Contact sync requested (mode=%s, trigger=%s, user=%s)", mode, trigger, user_id)

    if background:
        background_tasks.add_task(_run_contact_sync, user_id, mode, trigger)
        return JSONResponse(
            status_code=202,
            content={"status": "started", "mode": mode, "job_type": f"hubspot_contacts_{mode}"},
        )

    result = await _tracked(
        f"hubspot_contacts_{mode}",
        lambda: sync_all_contacts(user_id, mode=mode, trigger=trigger),
    )
    return _result_response(result)


@router.get("/customers")
async def describe_customer_sync() -> dict[str, Any]:
    return {
        "endpoint": "/api/sync/customers",
        "method": "POST",
        "description": "Insert customer, dnc and active contacts that are not stored yet",
    }


@router.post("/customers")
async def trigger_customer_sync(
    auth: AuthContext = Depends(require_cron_or_user),
) -> JSONResponse:
    user_id = _sync_owner(auth)
    trigger = "cron" if auth.is_cron else "manual"
    result = await _tracked(
        "hubspot_contacts_customers", lambda: sync_customers(user_id, trigger=trigger)
    )
    return _result_response(result)


# =============================================================================
# Cache syncs (cron)
# =============================================================================


def _describe_gbp(resource: str) -> dict[str, Any]:
    return {
        "endpoint": f"/api/sync/gbp-{resource}",
        "method": "POST",
        "job_type": SYNC_JOB_TYPES[resource],
        "description": GBP_JOB_DESCRIPTIONS[resource],
        "query": {"accountId": "optional, defaults to GBP_DEFAULT_ACCOUNT_ID",
                  "locationId": "optional, defaults to GBP_DEFAULT_LOCATION_ID"},
        "auth": "Authorization: Bearer <CRON_SECRET>",
    }


def _register_gbp_routes(resource: str) -> None:
    async def describe() -> dict[str, Any]:
        return _describe_gbp(resource)

    async def trigger(
        account_id: Optional[str] = Query(None, alias="accountId"),
        location_id: Optional[str] = Query(None, alias="locationId"),
        auth: AuthContext = Depends(require_cron),
    ) -> JSONResponse:
        result = await _tracked(
            SYNC_JOB_TYPES[resource],
            lambda: run_gbp_sync(resource, account_id, location_id, trigger="cron"),
        )
        return _result_response(result)

    router.add_api_route(f"/gbp-{resource}", describe, methods=["GET"], name=f"describe_gbp_{resource}")
    router.add_api_route(f"/gbp-{resource}", trigger, methods=["POST"], name=f"sync_gbp_{resource}")


for _resource in GBP_JOBS:
    _register_gbp_routes(_resource)


@router.get("/brightlocal")
async def describe_brightlocal_sync() -> dict[str, Any]:
    return {
        "endpoint": "/api/sync/brightlocal",
        "method": "POST",
        "job_type": SYNC_JOB_TYPES["brightlocal"],
        "description": "Cache BrightLocal locations and Citation Builder campaigns (daily 05:00 UTC)",
        "auth": "Authorization: Bearer <CRON_SECRET>",
    }


@router.post("/brightlocal")
async def trigger_brightlocal_sync(auth: AuthContext = Depends(require_cron)) -> JSONResponse:
    result = await _tracked(SYNC_JOB_TYPES["brightlocal"], lambda: sync_brightlocal(trigger="cron"))
    return _result_response(result)


# =============================================================================
# Job history
# =============================================================================


@router.get("/jobs/latest")
async def latest_job(
    job_type: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_cron_or_user),
) -> dict[str, Any]:
    job = await get_latest_job(job_type)
    if job is None:
        raise HTTPException(status_code=404, detail="No sync jobs recorded")
    return {"success": True, "job": job.to_dict()}


@router.get("/jobs/summary")
async def job_summary(
    job_type: Optional[str] = Query(None, alias="jobType"),
    limit: int = Query(20, ge=1, le=200),
    auth: AuthContext = Depends(require_cron_or_user),
    reader: CacheReader = Depends(get_cache_reader),
) -> dict[str, Any]:
    recent = await reader.recent_jobs(history_start(), job_type=job_type, limit=limit)
    summary = summarize_jobs(recent, await reader.last_successes())
    logger.info("[Sync] Summarised %d recent jobs into %d types", len(recent), len(summary["summaries"]))
    return {
        "success": True,
        "data": {"summaries": summary["summaries"], "recent_jobs": recent},
        "stats": summary["stats"],
    }


@router.get("/customers/last")
async def last_customer_sync(
    auth: AuthContext = Depends(require_cron_or_user),
) -> dict[str, Any]:
    job = await get_latest_job("hubspot_contacts_customers")
    return {"success": True, "last_sync": job.to_dict() if job else None}


@router.get("/status/{job_type}", response_model=SyncStatusResponse)
async def get_sync_status(job_type: str) -> SyncStatusResponse:
    """Status of the last run of job_type started by this process."""
    status = _sync_status.get(job_type)
    if not status:
        return SyncStatusResponse(
            job_type=job_type,
            status="never_synced",
            started_at=None,
            completed_at=None,
            error=None,
            counts=None,
        )

    started_at = status.get("started_at")
    completed_at = status.get("completed_at")
    counts = status.get("counts")
    error = status.get("error")
    return SyncStatusResponse(
        job_type=job_type,
        status=str(status.get("status", "unknown")),
        started_at=to_iso8601(started_at) if isinstance(started_at, datetime) else None,
        completed_at=to_iso8601(completed_at) if isinstance(completed_at, datetime) else None,
        error=str(error) if error else None,
        counts=counts if isinstance(counts, dict) else None,
    )
