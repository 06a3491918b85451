"""
Reads from the local contacts mirror and the vendor caches.

Endpoints:
- GET /api/store/contacts    - Search and page stored contacts
- GET /api/store/analytics   - Lifecycle, completeness and geography over stored contacts
- GET /api/store/gbp         - Cached GBP rows plus review and keyword stats
- GET /api/store/brightlocal - Cached BrightLocal locations and campaigns
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.auth_middleware import require_user_id
from config import to_iso8601
from services.cache_reader import CacheReader, contact_analytics, gbp_stats, get_cache_reader
from services.contact_store import ContactStore

router = APIRouter()
logger = logging.getLogger(__name__)


def get_contact_store() -> ContactStore:
    return ContactStore()


@router.get("/contacts")
async def list_stored_contacts(
    search: Optional[str] = Query(None),
    lifecyclestage: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: UUID = Depends(require_user_id),
    store: ContactStore = Depends(get_contact_store),
) -> dict[str, Any]:
    contacts, total = await store.list_contacts(
        user_id=str(user_id),
        search=search,
        lifecyclestage=lifecyclestage,
        limit=limit,
        offset=offset,
    )
    logger.info("[Store] Returned %d of %d stored contacts", len(contacts), total)
    return {
        "success": True,
        "data": [contact.to_dict() for contact in contacts],
        "timestamp": to_iso8601(datetime.now(timezone.utc)),
        "metadata": {
            "total_contacts": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(contacts) < total,
        },
    }


@router.get("/analytics")
async def stored_contact_analytics(
    lifecycle: str = Query("all"),
    user_id: UUID = Depends(require_user_id),
    reader: CacheReader = Depends(get_cache_reader),
) -> dict[str, Any]:
    records = await reader.contact_records(user_id)
    logger.info("[Store] Analytics over %d stored contacts (lifecycle=%s)", len(records), lifecycle)
    return {
        "success": True,
        "timestamp": to_iso8601(datetime.now(timezone.utc)),
        "filter": lifecycle,
        "data": contact_analytics(records, lifecycle=lifecycle),
    }


@router.get("/gbp")
async def cached_gbp(
    location_id: Optional[str] = Query(None, alias="locationId"),
    user_id: UUID = Depends(require_user_id),
    reader: CacheReader = Depends(get_cache_reader),
) -> dict[str, Any]:
    snapshot = await reader.gbp_snapshot(location_id)
    return {"success": True, "data": snapshot, "stats": gbp_stats(snapshot)}


@router.get("/brightlocal")
async def cached_brightlocal(
    hubspot_company_id: Optional[str] = Query(None, alias="hubspotCompanyId"),
    user_id: UUID = Depends(require_user_id),
    reader: CacheReader = Depends(get_cache_reader),
) -> dict[str, Any]:
    snapshot = await reader.brightlocal_snapshot(hubspot_company_id)
    return {
        "success": True,
        "data": snapshot,
        "metadata": {
            "total_locations": len(snapshot["locations"]),
            "total_campaigns": len(snapshot["campaigns"]),
        },
    }
