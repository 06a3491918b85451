"""
BrightLocal cache sync.

Locations are linked to HubSpot through their location_reference, which the
agency sets to the HubSpot company id. Locations without one cannot be
attributed to a client and are skipped.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
import logging
import time
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from config import get_sync_job_type, to_iso8601
from connectors.brightlocal import BrightLocalClient
from models.brightlocal import BrightLocalCampaign, BrightLocalLocation
from models.database import column_values, get_session
from services.gbp_sync import JobResult
from services.sync_jobs import JobCounts, SyncJobRecorder
from services.sync_utils import format_elapsed, parse_timestamp

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 50


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _date(value: Any) -> Optional[date]:
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def map_location(location: dict[str, Any], now: datetime) -> Optional[dict[str, Any]]:
    """BrightLocal location -> brightlocal_locations row, or None without a HubSpot link."""
    location_id = _first(location, "location_id", "id")
    company_id = _first(location, "location_reference", "location-reference")
    if not location_id or not company_id:
        return None

    categories = location.get("business_categories") or location.get("categories") or []
    if isinstance(categories, str):
        categories = [categories]
    return {
        "brightlocal_location_id": str(location_id),
        "brightlocal_client_id": str(location["client_id"]) if location.get("client_id") else None,
        "hubspot_company_id": str(company_id),
        "business_name": _first(location, "location_name", "business_name", "name"),
        "address_line_1": _first(location, "address1", "address_line_1"),
        "address_line_2": _first(location, "address2", "address_line_2"),
        "city": _first(location, "city"),
        "state_province": _first(location, "region", "state", "state_code"),
        "postal_code": _first(location, "postcode", "postal_code", "zip"),
        "country": _first(location, "country"),
        "phone": _first(location, "telephone", "phone"),
        "website_url": _first(location, "url", "website", "website_url"),
        "business_categories": [str(c) for c in categories],
        "primary_category": _first(location, "business_category_id", "primary_category"),
        "latitude": _decimal(location.get("latitude")),
        "longitude": _decimal(location.get("longitude")),
        "location_status": _first(location, "status", "location_status"),
        "synced_at": now,
        "last_sync_status": "success",
        "extra_data": {
            key: location.get(key)
            for key in ("contact_email", "contact_first_name", "contact_last_name", "opening_hours")
            if location.get(key) is not None
        },
    }


def map_campaign(
    campaign: dict[str, Any], location_id: str, company_id: str, now: datetime
) -> Optional[dict[str, Any]]:
    campaign_id = _first(campaign, "campaign_id", "id")
    if not campaign_id:
        return None
    citations = campaign.get("citations") or {}
    return {
        "brightlocal_campaign_id": str(campaign_id),
        "brightlocal_location_id": location_id,
        "hubspot_company_id": company_id,
        "campaign_name": _first(campaign, "campaign_name", "name"),
        "campaign_type": _first(campaign, "campaign_type", "type") or "citation_builder",
        "campaign_status": _first(campaign, "status", "campaign_status"),
        "start_date": _date(_first(campaign, "start_date", "creation_date")),
        "end_date": _date(campaign.get("end_date")),
        "last_run_date": parse_timestamp(_first(campaign, "last_run_date", "last_updated")),
        "citations_built": _int(_first(citations, "built") or campaign.get("citations_built")),
        "citations_pending": _int(_first(citations, "pending") or campaign.get("citations_pending")),
        "citations_live": _int(_first(citations, "live") or campaign.get("citations_live")),
        "citations_failed": _int(_first(citations, "failed") or campaign.get("citations_failed")),
        "total_directories": _int(_first(campaign, "total_directories", "directories_count")),
        "campaign_config": campaign.get("config") or {},
        "report_summary": campaign.get("report") or campaign.get("summary") or {},
        "synced_at": now,
    }


class BrightLocalStore:
    """Upserts into brightlocal_locations and brightlocal_campaigns."""

    async def existing_ids(self, model: Any, column: str, ids: list[str]) -> set[str]:
        if not ids:
            return set()
        async with get_session() as session:
            result = await session.execute(
                select(getattr(model, column)).where(getattr(model, column).in_(ids))
            )
            return set(result.scalars().all())

    async def upsert(self, model: Any, row: dict[str, Any], key: str) -> None:
        values = column_values(model, row)
        stmt = pg_insert(model.__table__).values(**values)
        update_columns = {name: stmt.excluded[name] for name in values if name != key}
        update_columns["updated_at"] = datetime.now(timezone.utc)
        stmt = stmt.on_conflict_do_update(index_elements=[key], set_=update_columns)
        async with get_session() as session:
            await session.execute(stmt)
            await session.commit()


class BrightLocalSyncService:
    def __init__(
        self,
        client: Optional[BrightLocalClient] = None,
        store: Optional[BrightLocalStore] = None,
        jobs: Optional[SyncJobRecorder] = None,
        trigger: str = "cron",
    ) -> None:
        self.client = client
        self.store = store or BrightLocalStore()
        self.jobs = jobs or SyncJobRecorder()
        self.trigger = trigger

    async def _fetch_locations(self) -> list[dict[str, Any]]:
        locations: list[dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            data = await self.client.list_locations(page=page, page_size=PAGE_SIZE)
            items = data["items"]
            locations.extend(items)
            logger.info("[BrightLocalSync] Page %d: %d locations", page, len(items))
            total_count = data.get("total_count")
            if len(items) < PAGE_SIZE or (total_count is not None and len(locations) >= total_count):
                break
        return locations

    async def _sync_campaigns(
        self, counts: JobCounts, location_id: str, company_id: str, now: datetime
    ) -> None:
        campaigns = await self.client.get_campaigns(location_id)
        rows = [
            row
            for row in (map_campaign(c, location_id, company_id, now) for c in campaigns)
            if row is not None
        ]
        counts.fetched += len(campaigns)
        counts.skipped += len(campaigns) - len(rows)
        existing = await self.store.existing_ids(
            BrightLocalCampaign, "brightlocal_campaign_id", [r["brightlocal_campaign_id"] for r in rows]
        )
        for row in rows:
            await self.store.upsert(BrightLocalCampaign, row, "brightlocal_campaign_id")
            if row["brightlocal_campaign_id"] in existing:
                counts.updated += 1
            else:
                counts.created += 1

    async def run(self) -> JobResult:
        """Sync every linked location and its campaigns. Never raises."""
        job_type = get_sync_job_type("brightlocal")
        started = time.monotonic()
        started_at = datetime.now(timezone.utc)
        counts = JobCounts()
        job_id = await self.jobs.start(job_type, trigger=self.trigger)
        error_message: Optional[str] = None

        try:
            if self.client is None:
                self.client = BrightLocalClient()
            locations = await self._fetch_locations()
            counts.fetched += len(locations)
            now = datetime.now(timezone.utc)
            rows = [map_location(location, now) for location in locations]
            existing = await self.store.existing_ids(
                BrightLocalLocation,
                "brightlocal_location_id",
                [r["brightlocal_location_id"] for r in rows if r],
            )

            for location, row in zip(locations, rows):
                if row is None:
                    logger.info(
                        "[BrightLocalSync] Skipping location %s: no HubSpot company reference",
                        _first(location, "location_id", "id"),
                    )
                    counts.skipped += 1
                    continue
                location_id = row["brightlocal_location_id"]
                try:
                    await self.store.upsert(BrightLocalLocation, row, "brightlocal_location_id")
                    if location_id in existing:
                        counts.updated += 1
                    else:
                        counts.created += 1
                    await self._sync_campaigns(counts, location_id, row["hubspot_company_id"], now)
                except Exception as e:
                    logger.error("[BrightLocalSync] Location %s failed: %s", location_id, e)
                    counts.errors += 1
                    counts.error_messages.append(f"{location_id}: {e}")
        except Exception as e:
            logger.exception("[BrightLocalSync] Sync failed")
            counts.errors += 1
            error_message = str(e) or "Unknown error"

        duration = format_elapsed((time.monotonic() - started) * 1000)
        await self.jobs.finish(job_id, counts, started_at, error_message=error_message)
        logger.info(
            "[BrightLocalSync] Complete: %d fetched, %d created, %d updated, %d skipped, %d errors (%s)",
            counts.fetched, counts.created, counts.updated, counts.skipped, counts.errors, duration,
        )
        return JobResult(
            success=counts.errors == 0,
            job_type=job_type,
            records_fetched=counts.fetched,
            records_created=counts.created,
            records_updated=counts.updated,
            records_skipped=counts.skipped,
            errors=counts.errors,
            duration=duration,
            timestamp=to_iso8601(datetime.now(timezone.utc)) or "",
            error_message=error_message,
        )


async def sync_brightlocal(trigger: str = "cron") -> JobResult:
    return await BrightLocalSyncService(trigger=trigger).run()
