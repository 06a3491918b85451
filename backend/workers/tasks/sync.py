"""
Sync tasks for Celery workers.

Each task wraps one sync service call; the services record their own
sync_jobs rows and never raise, so task results mirror the service result.
"""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure backend directory is in Python path for Celery forked workers
_backend_dir = Path(__file__).resolve().parent.parent.parent
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

import asyncio
import logging
from typing import Any, Awaitable, Optional

from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro: Awaitable[Any]) -> Any:
    """Run an async function in a sync context (for Celery tasks).

    Each task gets a fresh event loop. The engine is disposed before the
    loop closes so asyncpg connections never outlive the loop they were
    opened on.
    """
    from models.database import close_db

    async def _run() -> Any:
        try:
            return await coro
        finally:
            await close_db()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()


@celery_app.task(bind=True, name="workers.tasks.sync.sync_contacts")
def sync_contacts(self: Any, mode: str = "incremental", user_id: Optional[str] = None) -> dict[str, Any]:
    """
    Celery task to sync HubSpot contacts into the contacts table.

    Args:
        mode: insert, sync, incremental or customers
        user_id: Owner of the synced rows (defaults to SYNC_USER_ID)
    """
    from config import settings
    from services.contact_sync import sync_all_contacts

    owner = user_id or settings.SYNC_USER_ID
    if not owner:
        logger.error("SYNC_USER_ID is not set; skipping %s contact sync", mode)
        return {"success": False, "mode": mode, "error_message": "SYNC_USER_ID is not set"}

    logger.info(f"Task {self.request.id}: contact sync ({mode}) for user {owner}")
    result = run_async(sync_all_contacts(owner, mode=mode, trigger="cron"))
    return result.to_dict()


@celery_app.task(bind=True, name="workers.tasks.sync.sync_gbp")
def sync_gbp(
    self: Any,
    resource: str,
    account_id: Optional[str] = None,
    location_id: Optional[str] = None,
) -> dict[str, Any]:
    """Celery task to refresh one GBP cache table (reviews, posts, media, locations, analytics)."""
    from services.gbp_sync import run_gbp_sync

    logger.info(f"Task {self.request.id}: GBP {resource} sync")
    result = run_async(run_gbp_sync(resource, account_id, location_id, trigger="cron"))
    return result.to_dict()


@celery_app.task(bind=True, name="workers.tasks.sync.sync_brightlocal")
def sync_brightlocal(self: Any) -> dict[str, Any]:
    """Celery task to refresh the BrightLocal location and campaign cache."""
    from services.brightlocal_sync import sync_brightlocal as run_brightlocal_sync

    logger.info(f"Task {self.request.id}: BrightLocal sync")
    result = run_async(run_brightlocal_sync(trigger="cron"))
    return result.to_dict()
