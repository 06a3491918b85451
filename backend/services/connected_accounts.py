"""
Registry of GBP accounts connected through Pipedream Connect.

Pipedream keeps the OAuth credentials; rows here record ownership and the
result of the last health check.
"""

import logging
from typing import Any, Optional
from uuid import UUID

import httpx
from sqlalchemy import delete, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from config import settings
from connectors.gbp import GBPClient, GBPError
from models.connected_account import ConnectedAccount
from models.database import column_values, get_session, utc_now
from services.pipedream import PipedreamClient, get_pipedream_client
from services.token_manager import TokenError, get_token_manager

logger = logging.getLogger(__name__)


class AccountNotFoundError(LookupError):
    """The account does not exist or belongs to another user."""


def _account_email(account: dict[str, Any]) -> Optional[str]:
    credentials = account.get("credentials") or {}
    return (
        account.get("email")
        or credentials.get("email")
        or (account.get("metadata") or {}).get("email")
    )


async def save_account(
    user_id: UUID,
    account_id: str,
    external_user_id: Optional[str] = None,
    hubspot_company_id: Optional[str] = None,
    pipedream: Optional[PipedreamClient] = None,
) -> dict[str, Any]:
    """
    Record a freshly connected Pipedream account for a user.

    Account details (name, email, health) are read back from Pipedream; the
    row is upserted on the Pipedream account id so reconnecting is harmless.
    """
    pipedream = pipedream or get_pipedream_client()
    account = await pipedream.get_account(account_id, external_user_id=external_user_id)
    app = account.get("app") or {}

    values: dict[str, Any] = {
        "user_id": user_id,
        "pipedream_account_id": account_id,
        "external_id": external_user_id or account.get("external_id") or str(user_id),
        "app_name": app.get("name_slug") or settings.PIPEDREAM_GBP_APP,
        "account_name": account.get("name"),
        "account_email": _account_email(account),
        "healthy": bool(account.get("healthy", True)),
        "dead": bool(account.get("dead", False)),
        "hubspot_company_id": hubspot_company_id,
        "extra_data": {"app": app.get("name")} if app.get("name") else {},
    }
    columns = column_values(ConnectedAccount, values)
    stmt = pg_insert(ConnectedAccount.__table__).values(**columns)
    stmt = stmt.on_conflict_do_update(
        index_elements=["pipedream_account_id"],
        set_={
            **{name: stmt.excluded[name] for name in columns if name != "pipedream_account_id"},
            "updated_at": utc_now(),
        },
    )

    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()
        result = await session.execute(
            select(ConnectedAccount).where(ConnectedAccount.pipedream_account_id == account_id)
        )
        saved = result.scalar_one()
        logger.info("[ConnectedAccounts] Saved %s for user %s", account_id, user_id)
        return saved.to_dict()


async def list_accounts(user_id: UUID) -> list[dict[str, Any]]:
    async with get_session() as session:
        result = await session.execute(
            select(ConnectedAccount)
            .where(ConnectedAccount.user_id == user_id)
            .order_by(ConnectedAccount.created_at.desc())
        )
        return [account.to_dict() for account in result.scalars().all()]


async def disconnect(
    user_id: UUID,
    account_id: str,
    pipedream: Optional[PipedreamClient] = None,
) -> None:
    """
    Revoke an account at Pipedream, then forget it locally.

    Raises:
        AccountNotFoundError: The user owns no such account
    """
    async with get_session() as session:
        result = await session.execute(
            select(ConnectedAccount).where(
                ConnectedAccount.pipedream_account_id == account_id,
                ConnectedAccount.user_id == user_id,
            )
        )
        account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(account_id)

    pipedream = pipedream or get_pipedream_client()
    if not await pipedream.delete_account(account_id):
        logger.warning("[ConnectedAccounts] Pipedream refused to delete %s", account_id)

    async with get_session() as session:
        await session.execute(delete(ConnectedAccount).where(ConnectedAccount.id == account.id))
        await session.commit()

    get_token_manager().clear_cache(account_id)
    get_token_manager().clear_cache(str(account.id))
    logger.info("[ConnectedAccounts] Disconnected %s for user %s", account_id, user_id)


async def find_owned_account(user_id: UUID, connection_id: str) -> Optional[ConnectedAccount]:
    """The account behind a row id or Pipedream account id, if the user owns it."""
    conditions = [ConnectedAccount.pipedream_account_id == connection_id]
    try:
        conditions.append(ConnectedAccount.id == UUID(connection_id))
    except ValueError:
        pass

    async with get_session() as session:
        result = await session.execute(
            select(ConnectedAccount).where(or_(*conditions), ConnectedAccount.user_id == user_id)
        )
        return result.scalars().first()


async def _account_error(connection_id: str) -> Optional[str]:
    """Fetch a token and list GBP accounts; returns the error text, or None when healthy."""
    try:
        token = await get_token_manager().get_token(connection_id)
        await GBPClient(access_token=token, connection_id=connection_id).list_accounts()
    except (TokenError, GBPError, httpx.HTTPError, ValueError) as e:
        return str(e) or type(e).__name__
    return None


async def check_health(user_id: UUID) -> list[dict[str, Any]]:
    """
    Try every account of a user with a real GBP call and store the outcome.

    No session is held during the vendor calls: rows are read, checked, then
    written back in a second session.
    """
    async with get_session() as session:
        result = await session.execute(
            select(ConnectedAccount.id, ConnectedAccount.pipedream_account_id).where(
                ConnectedAccount.user_id == user_id
            )
        )
        targets = [(row_id, pipedream_id) for row_id, pipedream_id in result.all()]

    outcomes: dict[UUID, Optional[str]] = {}
    for row_id, pipedream_id in targets:
        error = await _account_error(str(row_id))
        if error:
            logger.warning("[ConnectedAccounts] Health check failed for %s: %s", pipedream_id, error)
        outcomes[row_id] = error

    checked: list[dict[str, Any]] = []
    async with get_session() as session:
        for row_id, error in outcomes.items():
            account = await session.get(ConnectedAccount, row_id)
            if account is None:
                continue
            account.record_health(error is None, error)
            checked.append(account)
        await session.commit()
    return [account.to_dict() for account in checked]
