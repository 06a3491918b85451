"""
Read side of the vendor caches and the sync log.

CacheReader runs the queries. The module-level functions turn the rows it
returns into dashboard summaries and never touch the database, so they are
tested with plain dicts.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import select

from models.brightlocal import BrightLocalCampaign, BrightLocalLocation
from models.contact import Contact
from models.database import get_session
from models.gbp import GBPAnalyticsSnapshot, GBPLocation, GBPMedia, GBPPost, GBPReview
from models.sync_job import SyncJob

logger = logging.getLogger(__name__)

HISTORY_DAYS = 7

JOB_LABELS: dict[str, str] = {
    "gbp_reviews": "GBP Reviews",
    "gbp_analytics": "GBP Analytics",
    "gbp_posts": "GBP Posts",
    "gbp_media": "GBP Media",
    "gbp_locations": "GBP Locations",
    "brightlocal": "BrightLocal Locations & Campaigns",
    "hubspot_contacts_sync": "HubSpot Contacts (Full)",
    "hubspot_contacts_incremental": "HubSpot Contacts (Incremental)",
    "hubspot_contacts_insert": "HubSpot Contacts (Insert Only)",
    "hubspot_contacts_customers": "HubSpot Customers",
}

# Must match the beat schedule in workers/celery_app.py
JOB_SCHEDULES: dict[str, str] = {
    "hubspot_contacts_incremental": "Hourly (0 * * * *)",
    "hubspot_contacts_sync": "Manual",
    "hubspot_contacts_insert": "Manual",
    "hubspot_contacts_customers": "Manual",
    "brightlocal": "Daily at 05:00 UTC (0 5 * * *)",
    "gbp_reviews": "Daily at 06:00 UTC (0 6 * * *)",
    "gbp_analytics": "Weekly Sunday 07:00 UTC (0 7 * * 0)",
    "gbp_posts": "Weekly Sunday 09:00 UTC (0 9 * * 0)",
    "gbp_media": "Weekly Sunday 10:00 UTC (0 10 * * 0)",
    "gbp_locations": "Weekly Sunday 11:00 UTC (0 11 * * 0)",
}

COMPLETENESS_FIELDS: tuple[str, ...] = (
    "email",
    "firstname",
    "lastname",
    "phone",
    "company",
    "website",
    "address",
    "city",
    "state",
    "zip",
)

PLACEHOLDER_WEBSITES: frozenset[str] = frozenset({"no", "http://no", "n/a", "none"})

LIFECYCLE_STAGES: frozenset[str] = frozenset({
    "lead",
    "customer",
    "opportunity",
    "subscriber",
    "marketingqualifiedlead",
    "salesqualifiedlead",
    "evangelist",
    "other",
})

US_STATES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}


class CacheReader:
    """Queries over the cache tables. Routes take one so tests can pass a fake."""

    async def gbp_snapshot(self, location_id: Optional[str] = None) -> dict[str, list[dict[str, Any]]]:
        """All cached GBP rows, newest first, optionally for one location."""

        def scoped(query: Any, model: Any) -> Any:
            if location_id:
                return query.where(model.location_id == location_id)
            return query

        async with get_session() as session:
            reviews = await session.execute(
                scoped(select(GBPReview), GBPReview).order_by(GBPReview.create_time.desc().nulls_last())
            )
            analytics = await session.execute(
                scoped(select(GBPAnalyticsSnapshot), GBPAnalyticsSnapshot).order_by(
                    GBPAnalyticsSnapshot.snapshot_date.desc()
                )
            )
            posts = await session.execute(
                scoped(select(GBPPost), GBPPost).order_by(GBPPost.create_time.desc().nulls_last())
            )
            media = await session.execute(
                scoped(select(GBPMedia), GBPMedia).order_by(GBPMedia.create_time.desc().nulls_last())
            )
            locations = await session.execute(
                scoped(select(GBPLocation), GBPLocation).order_by(GBPLocation.fetched_at.desc().nulls_last())
            )
            return {
                "reviews": [row.to_dict() for row in reviews.scalars().all()],
                "analytics": [row.to_dict() for row in analytics.scalars().all()],
                "posts": [row.to_dict() for row in posts.scalars().all()],
                "media": [row.to_dict() for row in media.scalars().all()],
                "locations": [row.to_dict() for row in locations.scalars().all()],
            }

    async def brightlocal_snapshot(
        self, hubspot_company_id: Optional[str] = None
    ) -> dict[str, list[dict[str, Any]]]:
        """Cached BrightLocal locations and campaigns, optionally for one HubSpot company."""
        location_query = select(BrightLocalLocation).order_by(BrightLocalLocation.business_name)
        campaign_query = select(BrightLocalCampaign).order_by(BrightLocalCampaign.campaign_name)
        if hubspot_company_id:
            location_query = location_query.where(
                BrightLocalLocation.hubspot_company_id == hubspot_company_id
            )
            campaign_query = campaign_query.where(
                BrightLocalCampaign.hubspot_company_id == hubspot_company_id
            )

        async with get_session() as session:
            locations = await session.execute(location_query)
            campaigns = await session.execute(campaign_query)
            return {
                "locations": [row.to_dict() for row in locations.scalars().all()],
                "campaigns": [row.to_dict() for row in campaigns.scalars().all()],
            }

    async def recent_jobs(
        self, since: datetime, job_type: Optional[str] = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Jobs started since `since`, newest first."""
        query = (
            select(SyncJob)
            .where(SyncJob.started_at >= since)
            .order_by(SyncJob.started_at.desc())
            .limit(limit)
        )
        if job_type:
            query = query.where(SyncJob.job_type == job_type)
        async with get_session() as session:
            result = await session.execute(query)
            return [job.to_dict() for job in result.scalars().all()]

    async def last_successes(self) -> dict[str, dict[str, Any]]:
        """Newest completed job per job type, across all history."""
        query = (
            select(SyncJob)
            .where(SyncJob.status == "completed")
            .distinct(SyncJob.job_type)
            .order_by(SyncJob.job_type, SyncJob.completed_at.desc().nulls_last())
        )
        async with get_session() as session:
            result = await session.execute(query)
            return {job.job_type: job.to_dict() for job in result.scalars().all()}

    async def contact_records(self, user_id: UUID) -> list[dict[str, Any]]:
        """Every stored contact owned by the user, as column dicts."""
        async with get_session() as session:
            result = await session.execute(select(Contact).where(Contact.user_id == user_id))
            return [contact.to_record() for contact in result.scalars().all()]


def get_cache_reader() -> CacheReader:
    return CacheReader()


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


# =============================================================================
# GBP
# =============================================================================


def gbp_stats(snapshot: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    """Headline numbers for the GBP dashboard. Analytics are newest first."""
    reviews = snapshot.get("reviews", [])
    ratings = [r["star_rating"] for r in reviews if r.get("star_rating")]
    latest = snapshot["analytics"][0] if snapshot.get("analytics") else None

    fetched = [
        row["fetched_at"]
        for key in ("reviews", "analytics", "posts", "media")
        for row in snapshot.get(key, [])
        if row.get("fetched_at")
    ]

    return {
        "total_reviews": len(reviews),
        "average_rating": round(sum(ratings) / len(ratings), 1) if ratings else 0,
        "five_star_count": sum(1 for rating in ratings if rating == 5),
        "one_star_count": sum(1 for rating in ratings if rating == 1),
        "replied_count": sum(1 for r in reviews if r.get("reply_comment")),
        "total_posts": len(snapshot.get("posts", [])),
        "total_media": len(snapshot.get("media", [])),
        "total_impressions": latest["total_impressions"] if latest else 0,
        "total_keywords": latest["total_keywords"] if latest else 0,
        "top_keywords": [
            {"keyword": kw.get("keyword"), "impressions": kw.get("impressions", 0)}
            for kw in (latest["keywords"] if latest else [])[:10]
        ],
        # ISO8601 UTC strings sort chronologically
        "last_sync_date": max(fetched) if fetched else None,
    }


# =============================================================================
# Sync jobs
# =============================================================================


def _empty_summary(job_type: str) -> dict[str, Any]:
    return {
        "job_type": job_type,
        "label": JOB_LABELS.get(job_type, job_type),
        "schedule": JOB_SCHEDULES.get(job_type, "Unknown"),
        "last_successful_sync": None,
        "last_status": None,
        "last_duration_ms": None,
        "total_records_last_sync": None,
        "recent_success_rate": 0,
        "total_jobs_last_7_days": 0,
    }


def _apply_success(summary: dict[str, Any], job: dict[str, Any]) -> None:
    summary["last_successful_sync"] = job.get("completed_at")
    summary["last_duration_ms"] = job.get("duration_ms")
    summary["total_records_last_sync"] = (job.get("records_created") or 0) + (
        job.get("records_updated") or 0
    )


def summarize_jobs(
    recent: list[dict[str, Any]],
    last_successes: dict[str, dict[str, Any]],
) -> dict[str, Any]:
    """
    Per-type summaries plus overall stats for the sync status page.

    `recent` is the 7-day history, newest first. A type with no success in
    that window falls back to its newest success in `last_successes`. Types
    that have neither are left out.
    """
    summaries = {job_type: _empty_summary(job_type) for job_type in JOB_LABELS}
    by_type: dict[str, list[dict[str, Any]]] = {}
    for job in recent:
        job_type = job["job_type"]
        summaries.setdefault(job_type, _empty_summary(job_type))
        by_type.setdefault(job_type, []).append(job)

    for job_type, summary in summaries.items():
        jobs = by_type.get(job_type, [])
        completed = [job for job in jobs if job["status"] == "completed"]
        summary["total_jobs_last_7_days"] = len(jobs)
        if jobs:
            summary["last_status"] = jobs[0]["status"]
            summary["recent_success_rate"] = _percent(len(completed), len(jobs))
        if completed:
            _apply_success(summary, completed[0])
        elif job_type in last_successes:
            _apply_success(summary, last_successes[job_type])

    kept = sorted(
        (s for s in summaries.values() if s["total_jobs_last_7_days"] or s["last_successful_sync"]),
        key=lambda s: s["label"],
    )
    successful = sum(1 for job in recent if job["status"] == "completed")
    return {
        "summaries": kept,
        "stats": {
            "total_jobs_last_7_days": len(recent),
            "successful_jobs": successful,
            "failed_jobs": sum(1 for job in recent if job["status"] == "failed"),
            "running_jobs": sum(1 for job in recent if job["status"] == "running"),
            "overall_success_rate": _percent(successful, len(recent)),
        },
    }


def history_start(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=HISTORY_DAYS)


# =============================================================================
# Contacts
# =============================================================================


def normalize_state(state: Optional[str]) -> str:
    """'ca' -> 'California'; full names are title-cased."""
    if not state or not state.strip():
        return "Unknown"
    cleaned = state.strip()
    return US_STATES.get(cleaned.upper()) or " ".join(
        word.capitalize() for word in cleaned.split()
    )


def normalize_lifecycle(stage: Optional[str]) -> str:
    normalized = (stage or "").strip().lower()
    return normalized if normalized in LIFECYCLE_STAGES else "other"


def _has_value(field: str, value: Any) -> bool:
    if value is None or not str(value).strip():
        return False
    if field == "website" and str(value).strip().lower() in PLACEHOLDER_WEBSITES:
        return False
    return True


def missing_fields(record: dict[str, Any]) -> list[str]:
    return [field for field in COMPLETENESS_FIELDS if not _has_value(field, record.get(field))]


def completeness(record: dict[str, Any]) -> int:
    """Percentage of COMPLETENESS_FIELDS holding a real value."""
    filled = len(COMPLETENESS_FIELDS) - len(missing_fields(record))
    return _percent(filled, len(COMPLETENESS_FIELDS))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _within(value: Optional[datetime], days: int, now: datetime) -> bool:
    value = _as_utc(value)
    return value is not None and now - value <= timedelta(days=days)


def _display_name(record: dict[str, Any]) -> str:
    name = " ".join(p for p in (record.get("firstname"), record.get("lastname")) if p)
    return record.get("company") or name or record.get("email") or "Unknown"


def _month_label(year: int, month: int) -> str:
    return datetime(year, month, 1).strftime("%b %Y")


def _last_months(now: datetime, count: int = 12) -> list[tuple[int, int]]:
    """(year, month) pairs for the `count` months ending with now's month, oldest first."""
    months = []
    year, month = now.year, now.month
    for _ in range(count):
        months.append((year, month))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return list(reversed(months))


def _note_count(record: dict[str, Any]) -> int:
    raw = (record.get("properties") or {}).get("num_notes")
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


NOTE_RANGES: tuple[tuple[str, int, Optional[int]], ...] = (
    ("No Notes", 0, 0),
    ("1-5 Notes", 1, 5),
    ("6-20 Notes", 6, 20),
    ("20+ Notes", 21, None),
)


def _engagement_by_notes(contacts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    notes = [_note_count(c) for c in contacts]
    buckets = []
    for label, low, high in NOTE_RANGES:
        count = sum(1 for n in notes if n >= low and (high is None or n <= high))
        buckets.append({"name": label, "value": count, "percentage": _percent(count, len(contacts))})
    return buckets


def contact_analytics(
    records: Iterable[dict[str, Any]],
    lifecycle: str = "all",
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Dashboard analytics over stored contacts.

    Lifecycle counts, the completeness comparison and the acquisition
    timeline always use every contact; everything else honours the
    `lifecycle` filter ('all' or a normalised stage).
    """
    now = now or datetime.now(timezone.utc)
    contacts = [{**record, "stage": normalize_lifecycle(record.get("lifecyclestage"))} for record in records]
    filtered = contacts if lifecycle == "all" else [c for c in contacts if c["stage"] == lifecycle]
    total = len(filtered)

    by_stage: dict[str, list[dict[str, Any]]] = {"lead": [], "customer": [], "opportunity": []}
    other = 0
    for contact in contacts:
        if contact["stage"] in by_stage:
            by_stage[contact["stage"]].append(contact)
        else:
            other += 1

    recently_active = sum(1 for c in filtered if _within(c.get("lastmodifieddate"), 30, now))
    with_website = sum(1 for c in filtered if _has_value("website", c.get("website")))

    geography: dict[str, int] = {}
    for contact in filtered:
        state = normalize_state(contact.get("state"))
        geography[state] = geography.get(state, 0) + 1

    months = _last_months(now)
    monthly = {key: {"lead": 0, "customer": 0, "other": 0} for key in months}
    cumulative = {"lead": 0, "customer": 0}
    for contact in contacts:
        created = _as_utc(contact.get("createdate"))
        if created is None:
            continue
        bucket = contact["stage"] if contact["stage"] in cumulative else "other"
        key = (created.year, created.month)
        if key in monthly:
            monthly[key][bucket] += 1
        elif key < months[0] and bucket in cumulative:
            # Older contacts seed the running totals
            cumulative[bucket] += 1

    timeline = []
    for key in months:
        counts = monthly[key]
        cumulative["lead"] += counts["lead"]
        cumulative["customer"] += counts["customer"]
        timeline.append({
            "month": _month_label(*key),
            "new_leads": counts["lead"],
            "new_customers": counts["customer"],
            "cumulative_leads": cumulative["lead"],
            "cumulative_customers": cumulative["customer"],
            "total": sum(counts.values()),
        })

    scored = sorted(
        (
            {
                "id": str(c.get("id")),
                "name": _display_name(c),
                "completeness": completeness(c),
                "lifecycle": c["stage"],
                "state": normalize_state(c.get("state")),
                "missing_fields": missing_fields(c),
            }
            for c in filtered
        ),
        key=lambda item: item["completeness"],
    )

    return {
        "kpis": {
            "total_contacts": total,
            "lifecycle_breakdown": {
                "leads": len(by_stage["lead"]),
                "customers": len(by_stage["customer"]),
                "opportunities": len(by_stage["opportunity"]),
                "other": other,
            },
            "avg_completeness": round(sum(completeness(c) for c in filtered) / total) if total else 0,
            "recently_active": recently_active,
            "recently_active_percent": _percent(recently_active, total),
            "website_coverage": with_website,
            "website_coverage_percent": _percent(with_website, total),
        },
        "charts": {
            "completeness_by_lifecycle": [
                {
                    "name": stage,
                    "avg_completeness": round(sum(completeness(c) for c in members) / len(members)),
                    "count": len(members),
                }
                for stage, members in by_stage.items()
                if members
            ],
            "activity_by_period": [
                {
                    "days": days,
                    "leads": sum(1 for c in by_stage["lead"] if _within(c.get("lastmodifieddate"), days, now)),
                    "customers": sum(
                        1 for c in by_stage["customer"] if _within(c.get("lastmodifieddate"), days, now)
                    ),
                    "other": sum(
                        1
                        for c in contacts
                        if c["stage"] not in ("lead", "customer")
                        and _within(c.get("lastmodifieddate"), days, now)
                    ),
                }
                for days in (7, 30, 90)
            ],
            "geographic_distribution": [
                {"name": name, "value": value}
                for name, value in sorted(geography.items(), key=lambda item: item[1], reverse=True)[:10]
            ],
            "engagement_by_notes": _engagement_by_notes(filtered),
            "acquisition_timeline": timeline,
        },
        "lists": {
            "top_by_completeness": [
                {key: value for key, value in item.items() if key != "missing_fields"}
                for item in sorted(scored, key=lambda item: item["completeness"], reverse=True)[:5]
            ],
            "needs_attention": [
                {key: value for key, value in item.items() if key != "state"}
                for item in scored[:5]
            ],
        },
    }
