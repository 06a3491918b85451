"""
HubSpot -> Postgres contact sync (fetch, merge, upsert).

For every HubSpot contact page:
1. Load the stored rows for the page's contact ids
2. Merge: start from the stored row, overlay HubSpot values only where
   HubSpot has data
3. Write the merged rows in batches keyed on (hubspot_contact_id, user_id)

Blank HubSpot fields never erase stored data, and columns HubSpot does not
know about (hubspot_company_id, locations, ...) survive every sync.

Modes:
- insert: add contacts that are not stored yet, skip the rest
- sync: full pagination, every contact merged and upserted
- incremental: only contacts modified since the start of the UTC day of the
  newest stored lastmodifieddate (falls back to sync when nothing is stored)
- customers: customer-stage contacts only, insert-only, linked to their
  primary HubSpot company
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
import re
import time
from typing import Any, Optional, Protocol
import uuid

from config import to_iso8601
from connectors.hubspot import HubSpotClient
from models.contact import Contact, MAPPED_FIELDS, TIMESTAMP_FIELDS
from services.contact_store import ContactStore
from services.sync_jobs import JobCounts, SyncJobRecorder
from services.sync_utils import (
    format_duration,
    parse_timestamp,
    retry_with_backoff,
    start_of_utc_day,
)

logger = logging.getLogger(__name__)

HUBSPOT_BATCH_SIZE = 100
STORE_BATCH_SIZE = 50
REQUEST_DELAY_SECONDS = 0.15
MAX_PAGES_FULL = 3000
MAX_PAGES_INCREMENTAL = 100
MAX_PAGES_CUSTOMERS = 100

LIFECYCLE_STAGE_LABELS: dict[str, str] = {
    # Custom stages carry numeric ids
    "944991848": "HOT",
    "999377175": "Active",
    "958707767": "No Show",
    "946862144": "DNC",
    "81722417": "Zing Employee",
    "1000822942": "Reengage",
    "1009016957": "VC",
    # Standard HubSpot stages
    "customer": "Customer",
    "lead": "Lead",
    "salesqualifiedlead": "Sales Qualified Lead",
    "opportunity": "Opportunity",
    "other": "Other",
    "subscriber": "Subscriber",
    "marketingqualifiedlead": "Marketing Qualified Lead",
    "evangelist": "Evangelist",
}

# Columns written by the merge; created_at/updated_at belong to the database
RECORD_COLUMNS: tuple[str, ...] = tuple(
    name for name in Contact.__table__.columns.keys() if name not in ("created_at", "updated_at")
)

# HubSpot properties that map onto dedicated columns (never copied into properties)
_COLUMN_PROPERTIES: frozenset[str] = frozenset(MAPPED_FIELDS) | {"hs_object_id"}
_LOCATION_PROPERTY = re.compile(r"^location_\d+$")


class SyncMode(str, Enum):
    INSERT = "insert"
    SYNC = "sync"
    INCREMENTAL = "incremental"
    CUSTOMERS = "customers"


def get_lifecycle_label(stage: Optional[str]) -> str:
    """Human-readable lifecycle stage; unknown values pass through."""
    if not stage:
        return "(none)"
    return LIFECYCLE_STAGE_LABELS.get(stage, stage)


@dataclass
class FieldChange:
    field: str
    old_value: Optional[str]
    new_value: Optional[str]


@dataclass
class SyncedContactInfo:
    """A contact touched by an incremental run, for the run report."""

    hubspot_id: str
    email: Optional[str]
    name: str
    company: Optional[str]
    lifecyclestage: Optional[str]
    lifecycle_label: str
    last_modified: Optional[str]
    is_new: bool
    changed_fields: list[FieldChange] = field(default_factory=list)


@dataclass
class ContactSyncResult:
    success: bool
    mode: str
    total_contacts: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    duration: str = "0s"
    timestamp: str = ""
    error_message: Optional[str] = None
    synced_contacts: Optional[list[SyncedContactInfo]] = None
    sync_since_timestamp: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def build_merged_record(
    contact: dict[str, Any],
    existing: Optional[dict[str, Any]],
    user_id: str,
    now: Optional[datetime] = None,
    company_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Merge a HubSpot contact onto its stored row.

    Args:
        contact: HubSpot contact ({"id", "properties", ...})
        existing: Stored row (column -> value) or None for a new contact
        user_id: Owner of the row
        now: Sync time, defaults to the current UTC time
        company_id: Primary associated HubSpot company, when known

    Returns:
        Complete row ready for upsert
    """
    props: dict[str, Any] = contact.get("properties") or {}
    now = now or datetime.now(timezone.utc)

    if existing:
        merged = {key: value for key, value in existing.items() if key not in ("created_at", "updated_at")}
        merged["id"] = existing.get("id") or uuid.uuid4()
    else:
        merged = {column: None for column in RECORD_COLUMNS}
        merged["id"] = uuid.uuid4()

    hubspot_id = str(contact.get("id"))
    merged["hubspot_contact_id"] = hubspot_id
    merged["hs_object_id"] = props.get("hs_object_id") or merged.get("hs_object_id") or hubspot_id
    merged["user_id"] = user_id
    merged["synced_at"] = now
    if company_id:
        merged["hubspot_company_id"] = company_id

    for name in MAPPED_FIELDS:
        value = props.get(name)
        if _is_empty(value):
            continue
        if name == "lifecyclestage":
            merged[name] = get_lifecycle_label(value)
        elif name in TIMESTAMP_FIELDS:
            parsed = parse_timestamp(value)
            if parsed is not None:
                merged[name] = parsed
        else:
            merged[name] = value

    extra: dict[str, Any] = dict(merged.get("properties") or {})
    locations: dict[str, Any] = dict(merged.get("locations") or {})
    for name, value in props.items():
        if _is_empty(value) or name in _COLUMN_PROPERTIES:
            continue
        if _LOCATION_PROPERTY.match(name):
            locations[name] = value
        else:
            extra[name] = value
    merged["properties"] = extra or None
    merged["locations"] = locations or None

    return merged


def detect_field_changes(
    hubspot_props: dict[str, Any],
    existing: Optional[dict[str, Any]],
) -> list[FieldChange]:
    """
    Field-level differences between HubSpot and the stored row.

    Only non-timestamp mapped fields are compared; '' counts as None. A
    change is reported only when HubSpot has a value, since HubSpot blanks
    never overwrite stored data.
    """
    if not existing:
        return []

    changes: list[FieldChange] = []
    for name in ("hs_object_id", *MAPPED_FIELDS):
        if name in TIMESTAMP_FIELDS:
            continue
        new_value = hubspot_props.get(name)
        old_value = existing.get(name)
        normalized_new = None if _is_empty(new_value) else str(new_value)
        normalized_old = None if _is_empty(old_value) else str(old_value)
        if normalized_new is not None and normalized_new != normalized_old:
            changes.append(FieldChange(field=name, old_value=normalized_old, new_value=normalized_new))
    return changes


def _display_name(props: dict[str, Any]) -> str:
    full_name = f"{props.get('firstname') or ''} {props.get('lastname') or ''}".strip()
    return full_name or props.get("email") or "Unknown"


class ContactSource(Protocol):
    async def list_contacts(self, limit: int = ..., after: Optional[str] = ...) -> dict[str, Any]: ...
    async def search_modified_since(self, since: datetime, after: Optional[str] = ...) -> dict[str, Any]: ...
    async def search_customers(self, after: Optional[str] = ...) -> dict[str, Any]: ...
    async def get_company_associations(self, contact_ids: list[str]) -> dict[str, str]: ...


class ContactSyncService:
    """One sync run for one user."""

    def __init__(
        self,
        user_id: str,
        client: Optional[ContactSource] = None,
        store: Optional[ContactStore] = None,
        jobs: Optional[SyncJobRecorder] = None,
        trigger: str = "manual",
        request_delay: float = REQUEST_DELAY_SECONDS,
        retry_backoff: float = 1.0,
    ) -> None:
        self.user_id = user_id
        self.client = client or HubSpotClient()
        self.store = store or ContactStore()
        self.jobs = jobs or SyncJobRecorder()
        self.trigger = trigger
        self.request_delay = request_delay
        self.retry_backoff = retry_backoff

        self._counts = JobCounts()
        self._processed_ids: set[str] = set()
        self._synced: list[SyncedContactInfo] = []

    async def run(self, mode: SyncMode | str = SyncMode.SYNC) -> ContactSyncResult:
        """Run a sync; never raises, failures come back as success=False."""
        mode = SyncMode(mode)
        started = time.monotonic()
        started_at = datetime.now(timezone.utc)
        effective_mode = mode
        since: Optional[datetime] = None

        job_id = await self.jobs.start(f"hubspot_contacts_{mode.value}", trigger=self.trigger)
        logger.info("[ContactSync] Starting %s sync for user %s", mode.value, self.user_id)

        try:
            if mode == SyncMode.INCREMENTAL:
                latest = await self.store.latest_modified(self.user_id)
                if latest is None:
                    logger.info("[ContactSync] No stored contacts - falling back to full sync")
                    effective_mode = SyncMode.SYNC
                else:
                    since = start_of_utc_day(latest)
                    logger.info("[ContactSync] Incremental sync from %s", to_iso8601(since))

            await self._paginate(effective_mode, since)
        except Exception as e:
            logger.exception("[ContactSync] %s sync failed", mode.value)
            self._counts.errors += 1
            result = self._result(mode, started, success=False)
            result.error_message = str(e) or "Unknown error occurred"
            await self.jobs.finish(job_id, self._counts, started_at, error_message=result.error_message)
            return result

        result = self._result(effective_mode, started, success=True)
        if effective_mode == SyncMode.INCREMENTAL and self._synced:
            result.synced_contacts = self._synced
            result.sync_since_timestamp = to_iso8601(since)

        logger.info(
            "[ContactSync] Complete (%s): %d fetched, %d inserted, %d updated, %d skipped, %d failed in %s",
            effective_mode.value, result.total_contacts, result.inserted, result.updated,
            result.skipped, result.errors, result.duration,
        )
        await self.jobs.finish(
            job_id, self._counts, started_at, metadata={"effective_mode": effective_mode.value}
        )
        return result

    def _result(self, mode: SyncMode, started: float, success: bool) -> ContactSyncResult:
        return ContactSyncResult(
            success=success,
            mode=mode.value,
            total_contacts=self._counts.fetched,
            inserted=self._counts.created,
            updated=self._counts.updated,
            skipped=self._counts.skipped,
            errors=self._counts.errors,
            duration=format_duration((time.monotonic() - started) * 1000),
            timestamp=to_iso8601(datetime.now(timezone.utc)) or "",
        )

    async def _fetch_page(
        self, mode: SyncMode, since: Optional[datetime], after: Optional[str]
    ) -> dict[str, Any]:
        if mode == SyncMode.INCREMENTAL:
            if since is None:
                raise ValueError("Incremental sync needs a start timestamp")
            return await retry_with_backoff(
                lambda: self.client.search_modified_since(since, after=after),
                initial_backoff=self.retry_backoff,
            )
        if mode == SyncMode.CUSTOMERS:
            return await retry_with_backoff(
                lambda: self.client.search_customers(after=after),
                initial_backoff=self.retry_backoff,
            )
        return await retry_with_backoff(
            lambda: self.client.list_contacts(limit=HUBSPOT_BATCH_SIZE, after=after),
            initial_backoff=self.retry_backoff,
        )

    async def _paginate(self, mode: SyncMode, since: Optional[datetime]) -> None:
        if mode == SyncMode.INCREMENTAL:
            max_pages = MAX_PAGES_INCREMENTAL
        elif mode == SyncMode.CUSTOMERS:
            max_pages = MAX_PAGES_CUSTOMERS
        else:
            max_pages = MAX_PAGES_FULL

        after: Optional[str] = None
        page_count = 0
        while page_count < max_pages:
            data = await self._fetch_page(mode, since, after)
            contacts: list[dict[str, Any]] = data.get("results") or []
            if not contacts:
                break

            self._counts.fetched += len(contacts)
            await self._process_page(contacts, mode)

            page_count += 1
            if page_count % 10 == 0:
                logger.info(
                    "[ContactSync] Page %d: %d fetched, %d written, %d skipped, %d failed",
                    page_count, self._counts.fetched,
                    self._counts.created + self._counts.updated,
                    self._counts.skipped, self._counts.errors,
                )

            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break
            await asyncio.sleep(self.request_delay)

        if page_count >= max_pages:
            logger.warning("[ContactSync] Stopped at the %d page limit", max_pages)

    async def _process_page(self, contacts: list[dict[str, Any]], mode: SyncMode) -> None:
        unique: list[dict[str, Any]] = []
        for contact in contacts:
            hubspot_id = str(contact.get("id"))
            if hubspot_id in self._processed_ids:
                self._counts.skipped += 1
                continue
            self._processed_ids.add(hubspot_id)
            unique.append(contact)

        duplicates = len(contacts) - len(unique)
        if duplicates:
            logger.info("[ContactSync] Skipped %d contact(s) already processed in this run", duplicates)
        if not unique:
            return

        existing = await self.store.fetch_existing(
            self.user_id, [str(c.get("id")) for c in unique]
        )

        insert_only = mode in (SyncMode.INSERT, SyncMode.CUSTOMERS)
        if insert_only:
            new_contacts = [c for c in unique if str(c.get("id")) not in existing]
            self._counts.skipped += len(unique) - len(new_contacts)
            unique = new_contacts
            if not unique:
                return

        company_ids: dict[str, str] = {}
        if mode == SyncMode.CUSTOMERS:
            company_ids = await self.client.get_company_associations([str(c.get("id")) for c in unique])

        now = datetime.now(timezone.utc)
        records: list[dict[str, Any]] = []
        for contact in unique:
            hubspot_id = str(contact.get("id"))
            stored = existing.get(hubspot_id)
            records.append(
                build_merged_record(contact, stored, self.user_id, now, company_ids.get(hubspot_id))
            )
            if mode == SyncMode.INCREMENTAL:
                self._track_synced(contact, stored)

        await self._write(records, set(existing), insert_only)

    def _track_synced(self, contact: dict[str, Any], existing: Optional[dict[str, Any]]) -> None:
        props: dict[str, Any] = contact.get("properties") or {}
        info = SyncedContactInfo(
            hubspot_id=str(contact.get("id")),
            email=props.get("email") or None,
            name=_display_name(props),
            company=props.get("company") or None,
            lifecyclestage=props.get("lifecyclestage") or None,
            lifecycle_label=get_lifecycle_label(props.get("lifecyclestage")),
            last_modified=props.get("lastmodifieddate") or None,
            is_new=existing is None,
            changed_fields=detect_field_changes(props, existing),
        )
        self._synced.append(info)
        logger.info(
            "[ContactSync] %s | ID: %s | %s | %s | %s | %s",
            "NEW" if info.is_new else "UPD",
            info.hubspot_id, info.name, info.email or "no-email",
            info.company or "no-company", info.lifecycle_label,
        )
        for change in info.changed_fields:
            logger.info(
                "[ContactSync]     %s: %r -> %r", change.field, change.old_value, change.new_value
            )

    async def _write(
        self,
        records: list[dict[str, Any]],
        existing_ids: set[str],
        insert_only: bool,
    ) -> None:
        """Write records in batches; a batch that keeps failing counts every row as an error."""
        unique: dict[tuple[str, str], dict[str, Any]] = {}
        for record in records:
            unique[(record["hubspot_contact_id"], str(record["user_id"]))] = record
        if len(unique) < len(records):
            logger.info("[ContactSync] Removed %d duplicate record(s) from batch", len(records) - len(unique))
        rows = list(unique.values())

        write = self.store.insert_batch if insert_only else self.store.upsert_batch
        for start in range(0, len(rows), STORE_BATCH_SIZE):
            batch = rows[start:start + STORE_BATCH_SIZE]
            try:
                await retry_with_backoff(lambda: write(batch), initial_backoff=self.retry_backoff)
            except Exception as e:
                logger.error(
                    "[ContactSync] Batch write failed for %d record(s): %s", len(batch), e
                )
                self._counts.errors += len(batch)
                self._counts.error_messages.append(str(e))
                continue

            for record in batch:
                if record["hubspot_contact_id"] in existing_ids:
                    self._counts.updated += 1
                else:
                    self._counts.created += 1


async def sync_all_contacts(
    user_id: str,
    mode: SyncMode | str = SyncMode.SYNC,
    trigger: str = "manual",
) -> ContactSyncResult:
    """Sync HubSpot contacts into the store for a user."""
    return await ContactSyncService(user_id, trigger=trigger).run(mode)


async def sync_customers(user_id: str, trigger: str = "manual") -> ContactSyncResult:
    """Insert customer-stage contacts that are not stored yet."""
    return await ContactSyncService(user_id, trigger=trigger).run(SyncMode.CUSTOMERS)
