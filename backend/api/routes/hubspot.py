"""
HubSpot endpoints.

Endpoints:
- GET   /api/hubspot/contacts              - Page of live contacts
- GET   /api/hubspot/contacts/{id}         - One live contact
- PATCH /api/hubspot/contacts/{id}         - Dual-write update (HubSpot, then store)
- GET   /api/hubspot/contacts/{id}/sync    - Describe the single-contact sync
- POST  /api/hubspot/contacts/{id}/sync    - Refresh the stored copy from HubSpot
- GET   /api/hubspot/companies             - Customer contacts shaped as companies
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from api.auth_middleware import AuthContext, get_current_auth
from config import to_iso8601
from connectors.base import error_status
from connectors.hubspot import CONTACT_PROPERTIES, HubSpotClient
from services.contact_updater import ContactUpdateError, ContactUpdater, RequestMeta

router = APIRouter()
logger = logging.getLogger(__name__)


class ContactUpdateResponse(BaseModel):
    success: bool
    message: str
    hubspot_updated: bool
    supabase_updated: bool
    updated_properties: dict[str, str]
    contact: Optional[dict[str, Any]] = None
    warning: Optional[str] = None


def get_hubspot_client() -> HubSpotClient:
    return HubSpotClient()


def get_contact_updater() -> ContactUpdater:
    return ContactUpdater()


def _now() -> str:
    return to_iso8601(datetime.now(timezone.utc)) or ""


def _hubspot_http_error(exc: Exception, action: str) -> HTTPException:
    """Translate a HubSpot client failure into the route's error response."""
    status_code = error_status(exc)
    if status_code == 404:
        return HTTPException(status_code=404, detail="Contact not found")
    if status_code == 403:
        return HTTPException(
            status_code=403,
            detail={
                "error": "Permission denied",
                "message": "Access token does not have permission to read contacts",
            },
        )
    if status_code == 429:
        return HTTPException(status_code=429, detail="HubSpot rate limit exceeded")
    return HTTPException(
        status_code=500,
        detail={"error": f"Failed to {action}", "message": str(exc) or "Unknown error occurred"},
    )


@router.get("/contacts")
async def list_contacts(
    limit: int = Query(100),
    after: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_auth),
    client: HubSpotClient = Depends(get_hubspot_client),
) -> dict[str, Any]:
    limit = max(1, min(limit, 100))
    logger.info("[HubSpot] Listing contacts (limit=%d, after=%s)", limit, after or "none")
    try:
        response = await client.list_contacts(limit=limit, after=after, properties=CONTACT_PROPERTIES)
    except (httpx.HTTPError, ValueError) as e:
        logger.error("[HubSpot] Error listing contacts: %s", e)
        raise _hubspot_http_error(e, "list contacts")

    contacts = [
        {
            "id": contact.get("id"),
            "created_at": contact.get("createdAt"),
            "updated_at": contact.get("updatedAt"),
            "archived": bool(contact.get("archived", False)),
            "properties": contact.get("properties") or {},
        }
        for contact in response.get("results", [])
    ]
    next_cursor = ((response.get("paging") or {}).get("next") or {}).get("after")
    return {
        "success": True,
        "data": contacts,
        "paging": response.get("paging"),
        "timestamp": _now(),
        "metadata": {
            "total_contacts": len(contacts),
            "has_more": next_cursor is not None,
            "next_cursor": next_cursor,
        },
    }


@router.get("/contacts/{contact_id}")
async def get_contact(
    contact_id: str,
    auth: AuthContext = Depends(get_current_auth),
    client: HubSpotClient = Depends(get_hubspot_client),
) -> dict[str, Any]:
    try:
        contact = await client.get_contact(contact_id)
    except (httpx.HTTPError, ValueError) as e:
        logger.error("[HubSpot] Error reading contact %s: %s", contact_id, e)
        raise _hubspot_http_error(e, "read contact")
    return {"success": True, "contact": contact, "properties": contact.get("properties") or {}}


@router.patch("/contacts/{contact_id}", response_model=ContactUpdateResponse, response_model_exclude_none=True)
async def update_contact(
    contact_id: str,
    request: Request,
    body: Any = Body(None),
    auth: AuthContext = Depends(get_current_auth),
    updater: ContactUpdater = Depends(get_contact_updater),
) -> dict[str, Any]:
    """Write the edit to HubSpot, then mirror it into the contacts table."""
    properties = body.get("properties") if isinstance(body, dict) else None
    if not isinstance(properties, dict):
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid request",
                "message": "Request body must include a properties object",
            },
        )

    meta = RequestMeta(
        ip_address=(request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
        or (request.client.host if request.client else None),
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get("x-request-id"),
    )
    try:
        return await updater.update_contact(
            contact_id, properties, user_id=auth.user_id_str, request_meta=meta
        )
    except ContactUpdateError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())


@router.get("/contacts/{contact_id}/sync")
async def describe_contact_sync(contact_id: str) -> dict[str, Any]:
    return {
        "endpoint": f"/api/hubspot/contacts/{contact_id}/sync",
        "method": "POST",
        "description": "Refresh one stored contact from HubSpot",
        "accepts": "Stored contact UUID or HubSpot contact id",
    }


@router.post("/contacts/{contact_id}/sync")
async def sync_contact(
    contact_id: str,
    auth: AuthContext = Depends(get_current_auth),
    updater: ContactUpdater = Depends(get_contact_updater),
) -> dict[str, Any]:
    try:
        contact = await updater.sync_single_contact(contact_id, user_id=auth.user_id_str)
    except ContactUpdateError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())
    except (httpx.HTTPError, ValueError) as e:
        raise _hubspot_http_error(e, "sync contact from HubSpot")

    return {
        "success": True,
        "data": contact,
        "message": "Contact synced successfully from HubSpot",
        "timestamp": _now(),
    }


@router.get("/companies")
async def list_companies(
    limit: int = Query(100),
    after: Optional[str] = Query(None),
    fetch_all: bool = Query(False, alias="all"),
    auth: AuthContext = Depends(get_current_auth),
    client: HubSpotClient = Depends(get_hubspot_client),
) -> dict[str, Any]:
    """Customer contacts reshaped as companies (one business per contact)."""
    limit = max(1, min(limit, 100))
    try:
        page = await client.list_customer_companies(limit=limit, after=after, fetch_all=fetch_all)
    except (httpx.HTTPError, ValueError) as e:
        logger.error("[HubSpot] Error fetching companies: %s", e)
        raise _hubspot_http_error(e, "fetch companies from HubSpot")

    companies = page["companies"]
    cursor = page["next_after"]
    return {
        "success": True,
        "data": companies,
        "timestamp": _now(),
        "paging": {"next": {"after": cursor}} if cursor else None,
        "metadata": {
            "total_companies": len(companies),
            "has_more": cursor is not None,
            "next_cursor": cursor,
            "pages_fetched": page["pages_fetched"],
        },
    }
