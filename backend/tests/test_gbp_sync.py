import asyncio
from datetime import date, datetime, timezone
from typing import Any, Optional

from config import settings
from models.gbp import GBPAnalyticsSnapshot, GBPLocation, GBPReview
from services.gbp_sync import (
    GBPSyncService,
    analytics_range,
    build_keywords,
    gbp_date,
    last_segment,
    map_location,
    map_media,
    map_post,
    map_review,
    run_gbp_sync,
)


class FakeJobs:
    def __init__(self) -> None:
        self.started: list[tuple[str, dict[str, Any]]] = []
        self.finished: list[Optional[str]] = []

    async def start(self, job_type: str, trigger: str = "manual", metadata: Optional[dict] = None) -> str:
        self.started.append((job_type, metadata or {}))
        return "job-1"

    async def finish(self, job_id, counts, started_at, error_message=None, metadata=None) -> None:
        self.finished.append(error_message)


class FakeStore:
    def __init__(self, existing: Optional[set[Any]] = None, fail_on: Optional[str] = None) -> None:
        self.existing = existing or set()
        self.fail_on = fail_on
        self.rows: list[tuple[Any, dict[str, Any], list[str]]] = []

    async def existing_keys(self, model: Any, key_column: str, **filters: Any) -> set[Any]:
        return set(self.existing)

    async def upsert(self, model: Any, row: dict[str, Any], conflict_columns: list[str]) -> None:
        if self.fail_on and self.fail_on in row.values():
            raise RuntimeError("duplicate key value")
        self.rows.append((model, row, conflict_columns))


class FakeGBPClient:
    def __init__(self) -> None:
        self.review_pages: dict[Optional[str], dict[str, Any]] = {}
        self.locations: list[dict[str, Any]] = []
        self.details: dict[str, dict[str, Any]] = {}
        self.keywords: dict[str, Any] = {}
        self.keyword_calls: list[tuple[Any, ...]] = []

    async def get_reviews(self, account_id, location_id, page_token=None) -> dict[str, Any]:
        return self.review_pages[page_token]

    async def list_locations(self, account_id=None) -> dict[str, Any]:
        return {"locations": self.locations}

    async def get_location(self, location_id=None) -> dict[str, Any]:
        if location_id not in self.details:
            raise RuntimeError("404 location")
        return self.details[location_id]

    async def get_search_keywords(self, location_id=None, start_month=None, end_month=None) -> dict[str, Any]:
        self.keyword_calls.append((location_id, start_month, end_month))
        return self.keywords


def _review(review_id: str, stars: str = "FIVE") -> dict[str, Any]:
    return {
        "name": f"accounts/1/locations/2/reviews/{review_id}",
        "reviewer": {"displayName": "Sam", "profilePhotoUrl": "https://photo.example/sam"},
        "starRating": stars,
        "comment": "Great bread",
        "createTime": "2025-02-01T10:00:00Z",
        "updateTime": "2025-02-02T10:00:00Z",
        "reviewReply": {"comment": "Thanks!", "updateTime": "2025-02-03T09:00:00Z"},
    }


def test_last_segment_and_dates() -> None:
    assert last_segment("accounts/1/locations/2/reviews/abc") == "abc"
    assert last_segment(None) is None
    assert gbp_date({"year": 2025, "month": 6, "day": 14}) == date(2025, 6, 14)
    assert gbp_date({"year": 0}) is None
    assert gbp_date(None) is None


def test_map_review_flattens_reviewer_reply_and_rating() -> None:
    row = map_review(_review("abc", "THREE"), "1", "2")

    assert row is not None
    assert row["review_id"] == "abc"
    assert row["star_rating"] == 3
    assert row["reviewer_display_name"] == "Sam"
    assert row["reply_comment"] == "Thanks!"
    assert row["create_time"] == datetime(2025, 2, 1, 10, tzinfo=timezone.utc)


def test_map_review_without_id_is_skipped() -> None:
    assert map_review({"comment": "no name"}, "1", "2") is None


def test_map_post_reads_event_offer_and_first_media() -> None:
    post = {
        "name": "accounts/1/locations/2/localPosts/p1",
        "summary": "Spring sale",
        "topicType": "OFFER",
        "callToAction": {"actionType": "LEARN_MORE", "url": "https://bakery.example"},
        "event": {
            "title": "Spring sale",
            "schedule": {"startDate": {"year": 2025, "month": 4, "day": 1}, "endDate": {"year": 2025, "month": 4, "day": 7}},
        },
        "offer": {"couponCode": "SPRING10"},
        "media": [{"googleUrl": "https://lh3.example/p1.jpg", "mediaFormat": "PHOTO"}],
        "state": "LIVE",
    }

    row = map_post(post, "1", "2")

    assert row is not None
    assert row["post_name"] == "accounts/1/locations/2/localPosts/p1"
    assert row["call_to_action_type"] == "LEARN_MORE"
    assert row["event_start_date"] == date(2025, 4, 1)
    assert row["event_end_date"] == date(2025, 4, 7)
    assert row["offer_coupon_code"] == "SPRING10"
    assert row["media_url"] == "https://lh3.example/p1.jpg"
    assert row["state"] == "LIVE"


def test_map_media_defaults_view_count() -> None:
    row = map_media(
        {
            "name": "accounts/1/locations/2/media/m1",
            "mediaFormat": "PHOTO",
            "locationAssociation": {"category": "EXTERIOR"},
            "dimensions": {"widthPixels": 800, "heightPixels": 600},
        },
        "1",
        "2",
    )

    assert row is not None
    assert row["location_association"] == "EXTERIOR"
    assert row["width_pixels"] == 800
    assert row["view_count"] == 0


def test_map_location_derives_verification_and_open_state() -> None:
    location = {
        "title": "Dana's Bakery",
        "storefrontAddress": {"addressLines": ["12 High St"], "locality": "Leeds", "regionCode": "GB"},
        "phoneNumbers": {"primaryPhone": "0113 496 0000"},
        "categories": {"primaryCategory": {"name": "categories/gcid:bakery", "displayName": "Bakery"}},
        "metadata": {"hasVoiceOfMerchant": True},
        "openInfo": {"status": "CLOSED_TEMPORARILY"},
    }

    row = map_location(location, "1", "locations/2")

    assert row["location_id"] == "2"
    assert row["primary_category_name"] == "Bakery"
    assert row["country_code"] == "GB"
    assert row["verification_state"] == "VERIFIED"
    assert row["is_open"] is False
    assert row["additional_categories"] == []


def test_build_keywords_sorts_by_impressions() -> None:
    keywords = build_keywords(
        {
            "searchKeywordsCounts": [
                {"searchKeyword": "bakery", "insightsValue": {"value": "12"}},
                {"searchKeyword": "bread near me", "insightsValue": {"threshold": "15"}},
                {"searchKeyword": "cakes", "insightsValue": {"value": "40"}},
            ]
        }
    )

    assert [kw["keyword"] for kw in keywords] == ["cakes", "bakery", "bread near me"]
    assert keywords[2]["impressions"] == 0
    assert keywords[2]["threshold"] == "15"


def test_analytics_range_spans_three_months() -> None:
    assert analytics_range(date(2025, 6, 20)) == ((2025, 4), (2025, 6))
    assert analytics_range(date(2025, 3, 1)) == ((2025, 1), (2025, 3))


def test_analytics_range_crosses_the_year_boundary() -> None:
    assert analytics_range(date(2025, 2, 1)) == ((2024, 12), (2025, 2))
    assert analytics_range(date(2025, 1, 15)) == ((2024, 11), (2025, 1))


def test_review_sync_pages_and_counts_created_vs_updated() -> None:
    client = FakeGBPClient()
    client.review_pages = {
        None: {"reviews": [_review("r1"), _review("r2")], "nextPageToken": "t2"},
        "t2": {"reviews": [_review("r3"), {"comment": "missing name"}]},
    }
    store = FakeStore(existing={"r1"})
    jobs = FakeJobs()
    service = GBPSyncService(client=client, store=store, jobs=jobs)

    result = asyncio.run(service.sync_reviews("1", "2"))

    assert result.success is True
    assert result.job_type == "gbp_reviews"
    assert result.records_fetched == 4
    assert result.records_created == 2
    assert result.records_updated == 1
    assert result.records_skipped == 1
    assert all(model is GBPReview for model, _, _ in store.rows)
    assert store.rows[0][2] == ["location_id", "review_id"]
    assert jobs.started == [("gbp_reviews", {"account_id": "1", "location_id": "2"})]
    assert jobs.finished == [None]


def test_one_failing_row_does_not_stop_the_job() -> None:
    client = FakeGBPClient()
    client.review_pages = {None: {"reviews": [_review("r1"), _review("r2")]}}
    store = FakeStore(fail_on="r1")

    result = asyncio.run(GBPSyncService(client=client, store=store, jobs=FakeJobs()).sync_reviews("1", "2"))

    assert result.success is False
    assert result.errors == 1
    assert result.records_created == 1


def test_missing_ids_fail_the_job_without_raising(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GBP_DEFAULT_ACCOUNT_ID", None)
    monkeypatch.setattr(settings, "GBP_DEFAULT_LOCATION_ID", None)
    jobs = FakeJobs()

    result = asyncio.run(GBPSyncService(client=FakeGBPClient(), store=FakeStore(), jobs=jobs).sync_reviews())

    assert result.success is False
    assert "required" in (result.error_message or "")
    assert jobs.finished == [result.error_message]


def test_location_sync_falls_back_to_list_entry_when_details_fail() -> None:
    client = FakeGBPClient()
    client.locations = [
        {"name": "locations/10", "title": "Listed only"},
        {"name": "locations/11", "title": "Listed"},
        {"title": "No name"},
    ]
    client.details = {"11": {"name": "locations/11", "title": "Detailed"}}
    store = FakeStore(existing={"11"})

    result = asyncio.run(GBPSyncService(client=client, store=store, jobs=FakeJobs()).sync_locations("1"))

    assert result.success is True
    assert result.records_created == 1
    assert result.records_updated == 1
    assert result.records_skipped == 1
    titles = {row["location_id"]: row["title"] for model, row, _ in store.rows if model is GBPLocation}
    assert titles == {"10": "Listed only", "11": "Detailed"}


def test_analytics_sync_writes_one_snapshot_per_day() -> None:
    client = FakeGBPClient()
    client.keywords = {
        "searchKeywordsCounts": [
            {"searchKeyword": "bakery", "insightsValue": {"value": "12"}},
            {"searchKeyword": "cakes", "insightsValue": {"value": "30"}},
        ]
    }
    store = FakeStore()

    result = asyncio.run(GBPSyncService(client=client, store=store, jobs=FakeJobs()).sync_analytics("2"))

    assert result.success is True
    assert result.records_fetched == 2
    assert result.records_created == 1
    model, row, conflict = store.rows[0]
    assert model is GBPAnalyticsSnapshot
    assert conflict == ["location_id", "snapshot_date"]
    assert row["total_impressions"] == 42
    assert row["total_keywords"] == 2
    assert row["keywords"][0]["keyword"] == "cakes"


def test_run_gbp_sync_rejects_unknown_resource() -> None:
    try:
        asyncio.run(run_gbp_sync("questions"))
    except ValueError as e:
        assert "Unknown GBP resource" in str(e)
    else:
        raise AssertionError("expected ValueError")
