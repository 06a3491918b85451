"""
Pipedream Connect endpoints for linking GBP accounts.

Endpoints:
- POST /api/pipedream/connect-token       - Short-lived token for the OAuth popup
- POST /api/pipedream/save-account        - Record an account after OAuth completes
- GET  /api/pipedream/connected-accounts  - The caller's accounts
- POST /api/pipedream/connected-accounts/health - Re-check every account
- POST /api/pipedream/disconnect          - Revoke and forget an account
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.auth_middleware import require_user_id
from config import settings
from services import connected_accounts
from services.pipedream import PipedreamClient, PipedreamError, get_pipedream_client

router = APIRouter()
logger = logging.getLogger(__name__)


class ConnectTokenRequest(BaseModel):
    external_user_id: Optional[str] = None


class SaveAccountRequest(BaseModel):
    account_id: str
    external_user_id: Optional[str] = None
    hubspot_company_id: Optional[str] = None


class DisconnectRequest(BaseModel):
    account_id: str


def get_pipedream() -> PipedreamClient:
    try:
        return get_pipedream_client()
    except ValueError as e:
        logger.error("[Pipedream] %s", e)
        raise HTTPException(status_code=500, detail="Pipedream is not configured")


def _pipedream_http_error(exc: PipedreamError, action: str) -> HTTPException:
    status_code = exc.status_code if exc.status_code in (400, 401, 403, 404) else 500
    return HTTPException(status_code=status_code, detail=f"Failed to {action}: {exc}")


@router.post("/connect-token")
async def create_connect_token(
    body: ConnectTokenRequest,
    user_id: UUID = Depends(require_user_id),
    pipedream: PipedreamClient = Depends(get_pipedream),
) -> dict[str, Any]:
    """Tokens are only issued for the caller's own external user id."""
    if not body.external_user_id:
        raise HTTPException(status_code=400, detail="Missing external_user_id")
    if body.external_user_id != str(user_id):
        logger.warning(
            "[Pipedream] Token requested for %s by user %s", body.external_user_id, user_id
        )
        raise HTTPException(status_code=403, detail="User ID mismatch")

    try:
        token = await pipedream.create_connect_token(
            body.external_user_id, allowed_origins=[settings.FRONTEND_URL]
        )
    except PipedreamError as e:
        raise _pipedream_http_error(e, "generate Pipedream token")

    logger.info("[Pipedream] Connect token issued for user %s", user_id)
    return {**token, "user_id": body.external_user_id}


@router.post("/save-account")
async def save_account(
    body: SaveAccountRequest,
    user_id: UUID = Depends(require_user_id),
    pipedream: PipedreamClient = Depends(get_pipedream),
) -> dict[str, Any]:
    if body.external_user_id and body.external_user_id != str(user_id):
        raise HTTPException(status_code=403, detail="User ID mismatch")
    try:
        account = await connected_accounts.save_account(
            user_id,
            body.account_id,
            external_user_id=body.external_user_id or str(user_id),
            hubspot_company_id=body.hubspot_company_id,
            pipedream=pipedream,
        )
    except PipedreamError as e:
        raise _pipedream_http_error(e, "save connected account")
    return {"success": True, "account": account}


@router.get("/connected-accounts")
async def list_connected_accounts(
    user_id: UUID = Depends(require_user_id),
) -> dict[str, Any]:
    accounts = await connected_accounts.list_accounts(user_id)
    return {"success": True, "accounts": accounts, "total": len(accounts)}


@router.post("/connected-accounts/health")
async def check_connected_accounts(
    user_id: UUID = Depends(require_user_id),
) -> dict[str, Any]:
    accounts = await connected_accounts.check_health(user_id)
    return {
        "success": True,
        "accounts": accounts,
        "healthy": sum(1 for a in accounts if a["healthy"]),
        "unhealthy": sum(1 for a in accounts if not a["healthy"]),
    }


@router.post("/disconnect")
async def disconnect_account(
    body: DisconnectRequest,
    user_id: UUID = Depends(require_user_id),
    pipedream: PipedreamClient = Depends(get_pipedream),
) -> dict[str, Any]:
    try:
        await connected_accounts.disconnect(user_id, body.account_id, pipedream=pipedream)
    except connected_accounts.AccountNotFoundError:
        raise HTTPException(status_code=404, detail="Connected account not found")
    except PipedreamError as e:
        raise _pipedream_http_error(e, "disconnect account")
    return {"success": True, "message": "Account disconnected"}
