"""
Google Business Profile endpoints (live API reads and review replies).

Endpoints:
- GET    /api/gbp/health
- GET    /api/gbp/accounts
- GET    /api/gbp/{account_id}/locations
- GET    /api/gbp/locations/{location_id}
- GET    /api/gbp/reviews
- PUT    /api/gbp/reviews/reply
- DELETE /api/gbp/reviews/reply
- GET    /api/gbp/posts
- GET    /api/gbp/media
- POST   /api/gbp/media

Calls use the connection given by ?connectionId= (which must belong to the
caller), or the agency's default GBP account. accountId/locationId default
to GBP_DEFAULT_ACCOUNT_ID and GBP_DEFAULT_LOCATION_ID.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.auth_middleware import AuthContext, get_current_auth
from config import settings, to_iso8601
from connectors.gbp import GBPClient, GBPError
from services import connected_accounts
from services.token_manager import TokenError, get_token_manager

router = APIRouter()
logger = logging.getLogger(__name__)


class ReviewReplyRequest(BaseModel):
    review_name: str
    comment: str


class ReviewReplyDeleteRequest(BaseModel):
    review_name: str


class MediaCreateRequest(BaseModel):
    source_url: str
    media_format: str = "PHOTO"
    category: str = "ADDITIONAL"
    description: Optional[str] = None


async def get_gbp_client(
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    auth: AuthContext = Depends(get_current_auth),
) -> GBPClient:
    if connection_id:
        account = None
        if auth.user_id is not None:
            account = await connected_accounts.find_owned_account(auth.user_id, connection_id)
        if account is None:
            logger.warning("[GBP] User %s asked for connection %s it does not own", auth.user_id, connection_id)
            raise HTTPException(status_code=404, detail="Connection not found")
        connection_id = str(account.id)
    try:
        return await GBPClient.for_connection(
            connection_id,
            account_id=settings.GBP_DEFAULT_ACCOUNT_ID,
            location_id=settings.GBP_DEFAULT_LOCATION_ID,
        )
    except TokenError as e:
        logger.warning("[GBP] No usable token: %s", e)
        raise HTTPException(status_code=401, detail=f"GBP authentication failed: {e}")


def _gbp_http_error(exc: Exception, action: str) -> HTTPException:
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    status_code = getattr(exc, "status_code", None) or 500
    if status_code not in (401, 403, 404, 429):
        status_code = 500
    return HTTPException(
        status_code=status_code,
        detail={"error": f"Failed to {action}", "message": str(exc) or "Unknown error occurred"},
    )


_GBP_ERRORS = (GBPError, httpx.HTTPError, ValueError)


@router.get("/health")
async def gbp_health() -> dict[str, Any]:
    """Check configuration, token retrieval and API connectivity."""
    checks: dict[str, dict[str, Any]] = {}
    overall = "ok"

    has_credentials = bool(settings.GBP_CLIENT_ID and settings.GBP_CLIENT_SECRET)
    checks["environment"] = {
        "status": "ok" if has_credentials else "error",
        "details": {
            "has_client_id": bool(settings.GBP_CLIENT_ID),
            "has_client_secret": bool(settings.GBP_CLIENT_SECRET),
            "has_refresh_token": bool(settings.GBP_REFRESH_TOKEN),
            "has_access_token": bool(settings.GBP_ACCESS_TOKEN),
        },
    }
    if not has_credentials:
        overall = "error"

    token: Optional[str] = None
    try:
        token = await get_token_manager().get_default_token()
        checks["token_manager"] = {"status": "ok", "message": "Token retrieved successfully"}
    except (TokenError, httpx.HTTPError) as e:
        checks["token_manager"] = {"status": "error", "message": str(e) or "Token retrieval failed"}
        overall = "error"

    if token:
        try:
            accounts = (await GBPClient(access_token=token).list_accounts()).get("accounts") or []
            checks["gbp_api"] = {
                "status": "ok",
                "message": f"Connected - {len(accounts)} accounts found",
                "details": {"account_count": len(accounts)},
            }
        except _GBP_ERRORS as e:
            checks["gbp_api"] = {"status": "error", "message": str(e) or "API call failed"}
            overall = "degraded" if overall == "ok" else overall
    else:
        checks["gbp_api"] = {"status": "error", "message": "Skipped - no valid token"}

    return {
        "status": overall,
        "timestamp": to_iso8601(datetime.now(timezone.utc)),
        "checks": checks,
        "summary": {
            "total": len(checks),
            "passing": sum(1 for c in checks.values() if c["status"] == "ok"),
            "failing": sum(1 for c in checks.values() if c["status"] == "error"),
        },
    }


@router.get("/accounts")
async def list_accounts(
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        data = await client.list_accounts()
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "list GBP accounts")
    return {"success": True, "accounts": data.get("accounts") or []}


@router.get("/locations/{location_id}")
async def get_location(
    location_id: str,
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        location = await client.get_location(location_id)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "fetch GBP location")
    return {"success": True, "location": location}


@router.get("/reviews")
async def get_reviews(
    account_id: Optional[str] = Query(None, alias="accountId"),
    location_id: Optional[str] = Query(None, alias="locationId"),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        data = await client.get_reviews(account_id, location_id, page_token)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "fetch reviews")
    return {
        "success": True,
        "reviews": data.get("reviews") or [],
        "average_rating": data.get("averageRating"),
        "total_review_count": data.get("totalReviewCount", 0),
        "next_page_token": data.get("nextPageToken"),
    }


@router.put("/reviews/reply")
async def reply_to_review(
    body: ReviewReplyRequest,
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    if not body.comment.strip():
        raise HTTPException(status_code=400, detail="Reply comment is required")
    try:
        reply = await client.reply_to_review(body.review_name, body.comment)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "reply to review")
    logger.info("[GBP] Replied to review %s", body.review_name)
    return {"success": True, "reply": reply}


@router.delete("/reviews/reply")
async def delete_review_reply(
    body: ReviewReplyDeleteRequest,
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        await client.delete_review_reply(body.review_name)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "delete review reply")
    return {"success": True}


@router.get("/posts")
async def get_posts(
    account_id: Optional[str] = Query(None, alias="accountId"),
    location_id: Optional[str] = Query(None, alias="locationId"),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        data = await client.get_local_posts(account_id, location_id, page_token)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "fetch posts")
    return {
        "success": True,
        "posts": data.get("localPosts") or [],
        "next_page_token": data.get("nextPageToken"),
    }


@router.get("/media")
async def get_media(
    account_id: Optional[str] = Query(None, alias="accountId"),
    location_id: Optional[str] = Query(None, alias="locationId"),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        data = await client.get_media(account_id, location_id, page_token)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "fetch media")
    return {
        "success": True,
        "media": data.get("mediaItems") or [],
        "total_media_item_count": data.get("totalMediaItemCount", 0),
        "next_page_token": data.get("nextPageToken"),
    }


@router.post("/media")
async def create_media(
    body: MediaCreateRequest,
    account_id: Optional[str] = Query(None, alias="accountId"),
    location_id: Optional[str] = Query(None, alias="locationId"),
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    media_data: dict[str, Any] = {
        "mediaFormat": body.media_format,
        "sourceUrl": body.source_url,
        "locationAssociation": {"category": body.category},
    }
    if body.description:
        media_data["description"] = body.description
    try:
        media = await client.create_media(
            account_id or settings.GBP_DEFAULT_ACCOUNT_ID,
            location_id or settings.GBP_DEFAULT_LOCATION_ID,
            media_data,
        )
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "upload media")
    return {"success": True, "media": media}


@router.get("/{account_id}/locations")
async def list_locations(
    account_id: str,
    auth: AuthContext = Depends(get_current_auth),
    client: GBPClient = Depends(get_gbp_client),
) -> dict[str, Any]:
    try:
        data = await client.list_locations(account_id)
    except _GBP_ERRORS as e:
        raise _gbp_http_error(e, "list GBP locations")
    locations = data.get("locations") or []
    return {"success": True, "locations": locations, "total": len(locations)}
