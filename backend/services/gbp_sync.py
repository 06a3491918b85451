"""
Google Business Profile cache sync.

Copies reviews, local posts, media, locations and monthly search keyword
impressions into the gbp_* tables so the dashboard reads them without
spending API quota. Each job writes a sync_jobs row and returns a JobResult.

Schedules (see workers/celery_app.py): reviews daily, everything else weekly.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from config import get_sync_job_type, settings, to_iso8601
from connectors.gbp import GBPClient
from models.database import column_values, get_session
from models.gbp import GBPAnalyticsSnapshot, GBPLocation, GBPMedia, GBPPost, GBPReview
from services.sync_jobs import JobCounts, SyncJobRecorder
from services.sync_utils import format_elapsed, parse_timestamp

logger = logging.getLogger(__name__)

MAX_PAGES = 10

STAR_RATINGS: dict[str, int] = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}


@dataclass
class JobResult:
    success: bool
    job_type: str
    records_fetched: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    errors: int = 0
    duration: str = "0ms"
    timestamp: str = ""
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Field mapping
# =============================================================================


def last_segment(name: Optional[str]) -> Optional[str]:
    """'accounts/1/locations/2/reviews/abc' -> 'abc'."""
    if not name:
        return None
    return name.rstrip("/").split("/")[-1] or None


def star_rating(value: Optional[str]) -> Optional[int]:
    return STAR_RATINGS.get(value or "")


def gbp_date(value: Optional[dict[str, Any]]) -> Optional[date]:
    """Google {year, month, day} -> date."""
    if not value or not value.get("year"):
        return None
    return date(int(value["year"]), int(value.get("month") or 1), int(value.get("day") or 1))


def map_review(review: dict[str, Any], account_id: str, location_id: str) -> Optional[dict[str, Any]]:
    review_id = last_segment(review.get("name")) or review.get("reviewId")
    if not review_id:
        return None
    reviewer = review.get("reviewer") or {}
    reply = review.get("reviewReply") or {}
    return {
        "account_id": account_id,
        "location_id": location_id,
        "review_id": review_id,
        "reviewer_display_name": reviewer.get("displayName"),
        "reviewer_profile_photo_url": reviewer.get("profilePhotoUrl"),
        "star_rating": star_rating(review.get("starRating")),
        "comment": review.get("comment"),
        "reply_comment": reply.get("comment"),
        "reply_update_time": parse_timestamp(reply.get("updateTime")),
        "create_time": parse_timestamp(review.get("createTime")),
        "update_time": parse_timestamp(review.get("updateTime")),
    }


def map_post(post: dict[str, Any], account_id: str, location_id: str) -> Optional[dict[str, Any]]:
    post_name = post.get("name")
    if not post_name:
        return None
    call_to_action = post.get("callToAction") or {}
    event = post.get("event") or {}
    schedule = event.get("schedule") or {}
    offer = post.get("offer") or {}
    media = (post.get("media") or [{}])[0] or {}
    return {
        "account_id": account_id,
        "location_id": location_id,
        "post_name": post_name,
        "summary": post.get("summary"),
        "language_code": post.get("languageCode"),
        "topic_type": post.get("topicType"),
        "call_to_action_type": call_to_action.get("actionType"),
        "call_to_action_url": call_to_action.get("url"),
        "event_title": event.get("title"),
        "event_start_date": gbp_date(schedule.get("startDate")),
        "event_end_date": gbp_date(schedule.get("endDate")),
        "offer_coupon_code": offer.get("couponCode"),
        "offer_redeem_online_url": offer.get("redeemOnlineUrl"),
        "offer_terms_conditions": offer.get("termsConditions"),
        "media_url": media.get("googleUrl") or media.get("sourceUrl"),
        "media_format": media.get("mediaFormat"),
        "state": post.get("state"),
        "create_time": parse_timestamp(post.get("createTime")),
        "update_time": parse_timestamp(post.get("updateTime")),
    }


def map_media(item: dict[str, Any], account_id: str, location_id: str) -> Optional[dict[str, Any]]:
    media_name = item.get("name")
    if not media_name:
        return None
    dimensions = item.get("dimensions") or {}
    attribution = item.get("attribution") or {}
    view_count = (item.get("insights") or {}).get("viewCount")
    return {
        "account_id": account_id,
        "location_id": location_id,
        "media_name": media_name,
        "media_format": item.get("mediaFormat"),
        "location_association": (item.get("locationAssociation") or {}).get("category"),
        "google_url": item.get("googleUrl"),
        "thumbnail_url": item.get("thumbnailUrl"),
        "source_url": item.get("sourceUrl"),
        "width_pixels": dimensions.get("widthPixels"),
        "height_pixels": dimensions.get("heightPixels"),
        "attribution_profile_name": attribution.get("profileName"),
        "attribution_profile_url": attribution.get("profilePhotoUrl"),
        "view_count": int(view_count) if view_count else 0,
        "create_time": parse_timestamp(item.get("createTime")),
    }


def map_location(location: dict[str, Any], account_id: str, location_name: str) -> dict[str, Any]:
    address = location.get("storefrontAddress") or {}
    categories = location.get("categories") or {}
    primary = categories.get("primaryCategory") or {}
    metadata = location.get("metadata") or {}
    open_status = (location.get("openInfo") or {}).get("status")
    return {
        "account_id": account_id,
        "location_id": last_segment(location_name),
        "location_name": location_name,
        "title": location.get("title"),
        "store_code": location.get("storeCode"),
        "address_lines": address.get("addressLines"),
        "locality": address.get("locality"),
        "administrative_area": address.get("administrativeArea"),
        "postal_code": address.get("postalCode"),
        "country_code": address.get("regionCode"),
        "primary_phone": (location.get("phoneNumbers") or {}).get("primaryPhone"),
        "website_uri": location.get("websiteUri"),
        "primary_category_id": primary.get("name"),
        "primary_category_name": primary.get("displayName"),
        "additional_categories": categories.get("additionalCategories") or [],
        "verification_state": "VERIFIED" if metadata.get("hasVoiceOfMerchant") else "UNVERIFIED",
        "is_open": not open_status or open_status == "OPEN",
        "extra_data": {
            **metadata,
            "regularHours": location.get("regularHours"),
            "latlng": location.get("latlng"),
        },
        "create_time": parse_timestamp(metadata.get("createTime")),
        "update_time": parse_timestamp(metadata.get("updateTime")),
    }


def build_keywords(response: dict[str, Any]) -> list[dict[str, Any]]:
    """Search keyword counts sorted by impressions, highest first."""
    keywords = [
        {
            "keyword": entry.get("searchKeyword"),
            "impressions": int((entry.get("insightsValue") or {}).get("value") or 0),
            "threshold": (entry.get("insightsValue") or {}).get("threshold"),
        }
        for entry in response.get("searchKeywordsCounts") or []
    ]
    keywords.sort(key=lambda kw: kw["impressions"], reverse=True)
    return keywords


def analytics_range(today: date) -> tuple[tuple[int, int], tuple[int, int]]:
    """(start, end) months covering the current month and the two before it."""
    if today.month <= 2:
        start = (today.year - 1, today.month + 10)
    else:
        start = (today.year, today.month - 2)
    return start, (today.year, today.month)


# =============================================================================
# Storage
# =============================================================================


class GBPStore:
    """Upserts into the gbp_* cache tables."""

    async def existing_keys(self, model: Any, key_column: str, **filters: Any) -> set[Any]:
        async with get_session() as session:
            column = getattr(model, key_column)
            query = select(column)
            for name, value in filters.items():
                query = query.where(getattr(model, name) == value)
            result = await session.execute(query)
            return set(result.scalars().all())

    async def upsert(self, model: Any, row: dict[str, Any], conflict_columns: list[str]) -> None:
        values = column_values(model, {**row, "fetched_at": datetime.now(timezone.utc)})
        stmt = pg_insert(model.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={name: stmt.excluded[name] for name in values if name not in conflict_columns},
        )
        async with get_session() as session:
            await session.execute(stmt)
            await session.commit()


# =============================================================================
# Jobs
# =============================================================================


class GBPSyncService:
    """Runs the GBP cache jobs for one account/location."""

    def __init__(
        self,
        client: Optional[GBPClient] = None,
        store: Optional[GBPStore] = None,
        jobs: Optional[SyncJobRecorder] = None,
        connection_id: Optional[str] = None,
        trigger: str = "cron",
    ) -> None:
        self._client = client
        self.store = store or GBPStore()
        self.jobs = jobs or SyncJobRecorder()
        self.connection_id = connection_id
        self.trigger = trigger

    async def _get_client(self) -> GBPClient:
        if self._client is None:
            self._client = await GBPClient.for_connection(self.connection_id)
        return self._client

    @staticmethod
    def _ids(account_id: Optional[str], location_id: Optional[str]) -> tuple[str, str]:
        account_id = account_id or settings.GBP_DEFAULT_ACCOUNT_ID
        location_id = location_id or settings.GBP_DEFAULT_LOCATION_ID
        if not account_id or not location_id:
            raise ValueError(
                "Account and Location IDs required (or set GBP_DEFAULT_ACCOUNT_ID / GBP_DEFAULT_LOCATION_ID)"
            )
        return account_id, location_id

    async def _run(
        self,
        job_type: str,
        metadata: dict[str, Any],
        body: Callable[[JobCounts], Awaitable[None]],
    ) -> JobResult:
        started = time.monotonic()
        started_at = datetime.now(timezone.utc)
        counts = JobCounts()
        job_id = await self.jobs.start(job_type, trigger=self.trigger, metadata=metadata)
        logger.info("[GBPSync] Starting %s (%s)", job_type, metadata)

        error_message: Optional[str] = None
        try:
            await body(counts)
        except Exception as e:
            logger.exception("[GBPSync] %s failed", job_type)
            counts.errors += 1
            error_message = str(e) or "Unknown error"

        duration = format_elapsed((time.monotonic() - started) * 1000)
        await self.jobs.finish(job_id, counts, started_at, error_message=error_message)
        logger.info(
            "[GBPSync] %s complete: %d fetched, %d created, %d updated, %d skipped, %d errors (%s)",
            job_type, counts.fetched, counts.created, counts.updated, counts.skipped, counts.errors, duration,
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

    @staticmethod
    async def _collect(
        fetch: Callable[[Optional[str]], Awaitable[dict[str, Any]]], items_key: str
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: Optional[str] = None
        for page in range(1, MAX_PAGES + 1):
            response = await fetch(page_token)
            page_items = response.get(items_key) or []
            items.extend(page_items)
            logger.info("[GBPSync] Fetched page %d: %d %s", page, len(page_items), items_key)
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return items

    async def _store_items(
        self,
        counts: JobCounts,
        items: list[dict[str, Any]],
        mapper: Callable[[dict[str, Any]], Optional[dict[str, Any]]],
        model: Any,
        key_column: str,
        location_id: str,
    ) -> None:
        counts.fetched += len(items)
        existing = await self.store.existing_keys(model, key_column, location_id=location_id)
        for item in items:
            try:
                row = mapper(item)
                if row is None:
                    logger.warning("[GBPSync] %s item without an id, skipping", model.__tablename__)
                    counts.skipped += 1
                    continue
                await self.store.upsert(model, row, ["location_id", key_column])
            except Exception as e:
                logger.error("[GBPSync] Failed to store %s item: %s", model.__tablename__, e)
                counts.errors += 1
                counts.error_messages.append(str(e))
                continue
            if row[key_column] in existing:
                counts.updated += 1
            else:
                counts.created += 1

    async def sync_reviews(
        self, account_id: Optional[str] = None, location_id: Optional[str] = None
    ) -> JobResult:
        async def body(counts: JobCounts) -> None:
            acc_id, loc_id = self._ids(account_id, location_id)
            client = await self._get_client()
            reviews = await self._collect(
                lambda token: client.get_reviews(acc_id, loc_id, token), "reviews"
            )
            await self._store_items(
                counts, reviews, lambda r: map_review(r, acc_id, loc_id), GBPReview, "review_id", loc_id
            )

        return await self._run(get_sync_job_type("reviews"), _meta(account_id, location_id), body)

    async def sync_posts(
        self, account_id: Optional[str] = None, location_id: Optional[str] = None
    ) -> JobResult:
        async def body(counts: JobCounts) -> None:
            acc_id, loc_id = self._ids(account_id, location_id)
            client = await self._get_client()
            posts = await self._collect(
                lambda token: client.get_local_posts(acc_id, loc_id, token), "localPosts"
            )
            await self._store_items(
                counts, posts, lambda p: map_post(p, acc_id, loc_id), GBPPost, "post_name", loc_id
            )

        return await self._run(get_sync_job_type("posts"), _meta(account_id, location_id), body)

    async def sync_media(
        self, account_id: Optional[str] = None, location_id: Optional[str] = None
    ) -> JobResult:
        async def body(counts: JobCounts) -> None:
            acc_id, loc_id = self._ids(account_id, location_id)
            client = await self._get_client()
            media = await self._collect(
                lambda token: client.get_media(acc_id, loc_id, token), "mediaItems"
            )
            await self._store_items(
                counts, media, lambda m: map_media(m, acc_id, loc_id), GBPMedia, "media_name", loc_id
            )

        return await self._run(get_sync_job_type("media"), _meta(account_id, location_id), body)

    async def sync_locations(self, account_id: Optional[str] = None) -> JobResult:
        async def body(counts: JobCounts) -> None:
            acc_id = account_id or settings.GBP_DEFAULT_ACCOUNT_ID
            if not acc_id:
                raise ValueError("Account ID required (or set GBP_DEFAULT_ACCOUNT_ID)")
            client = await self._get_client()
            locations = (await client.list_locations(acc_id)).get("locations") or []
            counts.fetched += len(locations)
            existing = await self.store.existing_keys(GBPLocation, "location_id", account_id=acc_id)

            for location in locations:
                location_name = location.get("name")
                location_id = last_segment(location_name)
                if not location_name or not location_id:
                    logger.warning("[GBPSync] Location missing id, skipping")
                    counts.skipped += 1
                    continue
                try:
                    try:
                        detailed = await client.get_location(location_id)
                    except Exception as e:
                        logger.warning(
                            "[GBPSync] Could not fetch details for %s, using list entry: %s", location_id, e
                        )
                        detailed = location
                    row = map_location(detailed, acc_id, location_name)
                    await self.store.upsert(GBPLocation, row, ["account_id", "location_id"])
                except Exception as e:
                    logger.error("[GBPSync] Failed to store location %s: %s", location_id, e)
                    counts.errors += 1
                    counts.error_messages.append(str(e))
                    continue
                if location_id in existing:
                    counts.updated += 1
                else:
                    counts.created += 1

        return await self._run(get_sync_job_type("locations"), _meta(account_id, None), body)

    async def sync_analytics(self, location_id: Optional[str] = None) -> JobResult:
        async def body(counts: JobCounts) -> None:
            loc_id = location_id or settings.GBP_DEFAULT_LOCATION_ID
            if not loc_id:
                raise ValueError("Location ID required (or set GBP_DEFAULT_LOCATION_ID)")
            client = await self._get_client()
            today = datetime.now(timezone.utc).date()
            start, end = analytics_range(today)
            logger.info("[GBPSync] Fetching keywords for %d-%d to %d-%d", *start, *end)

            keywords = build_keywords(await client.get_search_keywords(loc_id, start, end))
            counts.fetched += len(keywords)
            total_impressions = sum(kw["impressions"] for kw in keywords)

            existing = await self.store.existing_keys(
                GBPAnalyticsSnapshot, "snapshot_date", location_id=loc_id
            )
            await self.store.upsert(
                GBPAnalyticsSnapshot,
                {
                    "location_id": loc_id,
                    "snapshot_date": today,
                    "date_range_start": date(start[0], start[1], 1),
                    "date_range_end": date(end[0], end[1], 1),
                    "total_impressions": total_impressions,
                    "total_keywords": len(keywords),
                    "keywords": keywords,
                },
                ["location_id", "snapshot_date"],
            )
            if today in existing:
                counts.updated += 1
            else:
                counts.created += 1

        return await self._run(get_sync_job_type("analytics"), _meta(None, location_id), body)


def _meta(account_id: Optional[str], location_id: Optional[str]) -> dict[str, Any]:
    return {
        key: value
        for key, value in (("account_id", account_id), ("location_id", location_id))
        if value
    }


GBP_JOBS: dict[str, str] = {
    "reviews": "sync_reviews",
    "posts": "sync_posts",
    "media": "sync_media",
    "locations": "sync_locations",
    "analytics": "sync_analytics",
}


async def run_gbp_sync(
    resource: str,
    account_id: Optional[str] = None,
    location_id: Optional[str] = None,
    trigger: str = "cron",
) -> JobResult:
    """Run one GBP job by resource name (reviews, posts, media, locations, analytics)."""
    if resource not in GBP_JOBS:
        raise ValueError(f"Unknown GBP resource: {resource}. Available: {list(GBP_JOBS)}")
    service = GBPSyncService(trigger=trigger)
    if resource == "locations":
        return await service.sync_locations(account_id)
    if resource == "analytics":
        return await service.sync_analytics(location_id)
    return await getattr(service, GBP_JOBS[resource])(account_id, location_id)
