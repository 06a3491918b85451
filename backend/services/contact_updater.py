"""
Dual-write contact updates.

An edit is written to HubSpot first (the source of truth) and then mirrored
into the contacts table by re-reading the contact from HubSpot. There is no
rollback: if the mirror write fails the HubSpot change stands, the response
carries supabase_updated=False, and the transaction_log row is flagged
critical_error so the next sync (or a manual /sync call) can repair it.
"""

from dataclasses import dataclass
import logging
import time
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import httpx

from config import settings
from connectors.base import error_status
from connectors.hubspot import CONTACT_PROPERTIES, CUSTOMER_PROPERTIES, HubSpotClient
from models.database import get_session
from models.transaction_log import TransactionLog
from services.contact_store import ContactStore
from services.contact_sync import build_merged_record
from services.sync_jobs import LOG_WRITE_ERRORS, SyncJobRecorder

logger = logging.getLogger(__name__)

SINGLE_CONTACT_JOB_TYPE = "hubspot_contact_single"

# Everything the list sync and the customer sync read, once each
SINGLE_CONTACT_PROPERTIES: list[str] = list(dict.fromkeys(CONTACT_PROPERTIES + CUSTOMER_PROPERTIES))

_ERRORS_BY_STATUS: dict[int, tuple[str, str]] = {
    404: ("Contact not found", "Contact with ID {contact_id} does not exist"),
    403: ("Permission denied", "Access token does not have permission to update contacts"),
    400: ("Invalid properties", "One or more properties are invalid or do not exist"),
}


class ContactUpdateError(Exception):
    """Update failure with the HTTP status the route should answer with."""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


@dataclass
class RequestMeta:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


def clean_properties(properties: dict[str, Any]) -> dict[str, str]:
    """HubSpot only accepts string values; None means 'leave alone'."""
    cleaned: dict[str, str] = {}
    for key, value in properties.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def map_hubspot_error(exc: Exception, contact_id: str) -> ContactUpdateError:
    status = error_status(exc)
    if status in _ERRORS_BY_STATUS:
        error, message = _ERRORS_BY_STATUS[status]
        details = str(exc) if status == 400 else None
        return ContactUpdateError(status, error, message.format(contact_id=contact_id), details)
    return ContactUpdateError(500, "Failed to update contact", str(exc) or "Unknown error occurred")


async def write_transaction_log(**fields: Any) -> None:
    """Append a transaction_log row. Logging failures never fail the edit."""
    try:
        async with get_session() as session:
            session.add(TransactionLog(**fields))
            await session.commit()
    except LOG_WRITE_ERRORS as e:
        logger.error("[ContactUpdater] Failed to write transaction log: %s", e)


class ContactUpdater:
    """Writes contact edits to HubSpot and mirrors them locally."""

    def __init__(
        self,
        client: Optional[HubSpotClient] = None,
        store: Optional[ContactStore] = None,
        jobs: Optional[SyncJobRecorder] = None,
        log_writer: Optional[Callable[..., Awaitable[None]]] = None,
    ) -> None:
        self.client = client or HubSpotClient()
        self.store = store or ContactStore()
        self.jobs = jobs or SyncJobRecorder()
        self.log_writer = log_writer or write_transaction_log

    async def update_contact(
        self,
        contact_id: str,
        properties: dict[str, Any],
        user_id: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """
        Update a HubSpot contact, then mirror it into the store.

        Raises:
            ContactUpdateError: HubSpot rejected the update
        """
        started = time.monotonic()
        meta = request_meta or RequestMeta()
        cleaned = clean_properties(properties)
        logger.info(
            "[ContactUpdater] Updating HubSpot contact %s (%s)", contact_id, ", ".join(cleaned) or "no properties"
        )

        previous_state: Optional[dict[str, Any]] = None
        try:
            previous_state = await self.store.get_by_hubspot_id(contact_id)
        except LOG_WRITE_ERRORS as e:
            logger.warning("[ContactUpdater] Could not read stored contact %s: %s", contact_id, e)

        log_fields: dict[str, Any] = {
            "contact_id": contact_id,
            "user_id": UUID(user_id) if user_id and _is_uuid(user_id) else None,
            "operation": "update",
            "properties_changed": list(cleaned),
            "previous_state": _json_state(previous_state, cleaned),
            "ip_address": meta.ip_address,
            "user_agent": meta.user_agent,
            "request_id": meta.request_id,
        }

        try:
            await self.client.update_contact(contact_id, cleaned)
        except (httpx.HTTPError, ValueError) as e:
            error = map_hubspot_error(e, contact_id)
            logger.error("[ContactUpdater] HubSpot update failed for %s: %s", contact_id, e)
            await self.log_writer(
                **log_fields,
                hubspot_updated=False,
                supabase_updated=False,
                error_message=error.message,
                error_details={"status": error.status_code, "error": str(e)},
                duration_ms=_elapsed_ms(started),
            )
            raise error from e

        logger.info("[ContactUpdater] HubSpot update succeeded for contact %s", contact_id)

        synced: Optional[dict[str, Any]] = None
        mirror_error: Optional[str] = None
        try:
            synced = await self.sync_single_contact(contact_id, user_id=user_id)
        except Exception as e:
            mirror_error = str(e) or type(e).__name__
            logger.error(
                "[ContactUpdater] HubSpot updated but mirror failed for %s: %s", contact_id, mirror_error
            )

        await self.log_writer(
            **log_fields,
            hubspot_updated=True,
            supabase_updated=mirror_error is None,
            critical_error=mirror_error is not None,
            error_message=mirror_error,
            new_state=cleaned,
            duration_ms=_elapsed_ms(started),
        )

        result: dict[str, Any] = {
            "success": True,
            "message": "Contact updated",
            "hubspot_updated": True,
            "supabase_updated": mirror_error is None,
            "updated_properties": cleaned,
            "contact": synced,
        }
        if mirror_error:
            result["warning"] = (
                "Contact updated in HubSpot but the local copy could not be refreshed; "
                "it will catch up on the next sync"
            )
        return result

    async def sync_single_contact(
        self,
        identifier: str,
        user_id: Optional[str] = None,
        trigger: str = "manual",
    ) -> dict[str, Any]:
        """
        Refresh one stored contact from HubSpot.

        Args:
            identifier: Stored row UUID or numeric HubSpot contact id
            user_id: Owner for contacts that are not stored yet (falls back
                to SYNC_USER_ID)

        Returns:
            The stored contact
        """
        try:
            return await self._sync_single_contact(identifier, user_id)
        except Exception as e:
            logger.error("[ContactUpdater] Single contact sync failed for %s: %s", identifier, e)
            await self.jobs.record_failure(
                SINGLE_CONTACT_JOB_TYPE,
                str(e) or type(e).__name__,
                trigger=trigger,
                metadata={"identifier": identifier},
            )
            raise

    async def _sync_single_contact(self, identifier: str, user_id: Optional[str]) -> dict[str, Any]:
        if _is_uuid(identifier):
            stored = await self.store.get_by_id(UUID(identifier))
            if stored is None:
                raise ContactUpdateError(
                    404, "Contact not found", f"No stored contact with id {identifier}"
                )
            hubspot_id = stored.get("hs_object_id") or stored.get("hubspot_contact_id")
            if not hubspot_id:
                raise ContactUpdateError(
                    400, "Invalid contact", f"Contact {identifier} has no HubSpot id"
                )
        else:
            hubspot_id = identifier
            stored = await self.store.get_by_hubspot_id(identifier)

        contact = await self.client.get_contact(hubspot_id, properties=SINGLE_CONTACT_PROPERTIES)

        owner = (stored or {}).get("user_id") or user_id or settings.SYNC_USER_ID
        if not owner:
            raise ContactUpdateError(
                400, "Invalid contact", "No owner for a new contact; set SYNC_USER_ID"
            )

        record = build_merged_record(contact, stored, str(owner))
        stored_stage = (stored or {}).get("lifecyclestage")
        if stored_stage and stored_stage.lower() == "customer":
            record["lifecyclestage"] = stored_stage

        saved = await self.store.upsert_by_id(record)
        logger.info("[ContactUpdater] Synced contact %s (HubSpot %s)", saved.get("id"), hubspot_id)
        return saved


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _json_state(stored: Optional[dict[str, Any]], changed: dict[str, str]) -> Optional[dict[str, Any]]:
    """Stored values of the properties being changed."""
    if not stored:
        return None
    properties = stored.get("properties") or {}
    return {
        name: (str(stored[name]) if stored.get(name) is not None else None)
        if name in stored
        else properties.get(name)
        for name in changed
    }
