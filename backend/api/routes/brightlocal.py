"""
BrightLocal endpoints (live reads).

Endpoints:
- GET /api/brightlocal/locations
- GET /api/brightlocal/locations/{location_id}
- GET /api/brightlocal/campaigns?location_id=
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from api.auth_middleware import AuthContext, get_current_auth
from connectors.base import error_status
from connectors.brightlocal import BrightLocalClient, BrightLocalError

router = APIRouter()
logger = logging.getLogger(__name__)


def get_brightlocal_client() -> BrightLocalClient:
    try:
        return BrightLocalClient()
    except ValueError as e:
        logger.error("[BrightLocal] %s", e)
        raise HTTPException(status_code=500, detail="BrightLocal is not configured")


def _brightlocal_http_error(exc: Exception, action: str) -> HTTPException:
    status_code = error_status(exc)
    if status_code not in (400, 401, 403, 404, 429):
        status_code = 500
    return HTTPException(
        status_code=status_code,
        detail={"error": f"Failed to {action}", "message": str(exc) or "Unknown error occurred"},
    )


@router.get("/locations")
async def list_locations(
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=100),
    auth: AuthContext = Depends(get_current_auth),
    client: BrightLocalClient = Depends(get_brightlocal_client),
) -> dict[str, Any]:
    try:
        data = await client.list_locations(page=page, page_size=page_size)
    except (httpx.HTTPError, BrightLocalError) as e:
        raise _brightlocal_http_error(e, "list BrightLocal locations")
    return {
        "success": True,
        "locations": data["items"],
        "total_count": data["total_count"],
        "page": page,
    }


@router.get("/locations/{location_id}")
async def get_location(
    location_id: str,
    auth: AuthContext = Depends(get_current_auth),
    client: BrightLocalClient = Depends(get_brightlocal_client),
) -> dict[str, Any]:
    try:
        location = await client.get_location(location_id)
    except (httpx.HTTPError, BrightLocalError) as e:
        raise _brightlocal_http_error(e, "fetch BrightLocal location")
    return {"success": True, "location": location}


@router.get("/campaigns")
async def list_campaigns(
    location_id: str = Query(...),
    auth: AuthContext = Depends(get_current_auth),
    client: BrightLocalClient = Depends(get_brightlocal_client),
) -> dict[str, Any]:
    try:
        campaigns = await client.get_campaigns(location_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (httpx.HTTPError, BrightLocalError) as e:
        raise _brightlocal_http_error(e, "list Citation Builder campaigns")
    return {"success": True, "campaigns": campaigns, "total": len(campaigns)}
