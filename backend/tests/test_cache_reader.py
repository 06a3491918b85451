from datetime import datetime, timezone

from services.cache_reader import (
    completeness,
    contact_analytics,
    gbp_stats,
    normalize_lifecycle,
    normalize_state,
    summarize_jobs,
)


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def test_gbp_stats_uses_latest_snapshot_and_newest_fetch() -> None:
    snapshot = {
        "reviews": [
            {"star_rating": 5, "reply_comment": "Thanks!", "fetched_at": "2025-03-02T06:00:00Z"},
            {"star_rating": 4, "reply_comment": None, "fetched_at": "2025-03-02T06:00:00Z"},
            {"star_rating": 1, "reply_comment": None, "fetched_at": "2025-03-01T06:00:00Z"},
            {"star_rating": None, "reply_comment": None, "fetched_at": None},
        ],
        "analytics": [
            {
                "total_impressions": 120,
                "total_keywords": 12,
                "keywords": [{"keyword": f"kw{i}", "impressions": 12 - i} for i in range(12)],
                "fetched_at": "2025-03-09T07:00:00Z",
            },
            {"total_impressions": 80, "total_keywords": 3, "keywords": [], "fetched_at": "2025-03-02T07:00:00Z"},
        ],
        "posts": [{"fetched_at": "2025-03-09T09:00:00Z"}],
        "media": [],
        "locations": [{"fetched_at": "2025-03-10T11:00:00Z"}],
    }

    stats = gbp_stats(snapshot)

    assert stats["total_reviews"] == 4
    assert stats["average_rating"] == 3.3
    assert stats["five_star_count"] == 1
    assert stats["one_star_count"] == 1
    assert stats["replied_count"] == 1
    assert stats["total_impressions"] == 120
    assert len(stats["top_keywords"]) == 10
    assert stats["top_keywords"][0] == {"keyword": "kw0", "impressions": 12}
    assert stats["last_sync_date"] == "2025-03-09T09:00:00Z"


def test_gbp_stats_on_empty_cache() -> None:
    stats = gbp_stats({"reviews": [], "analytics": [], "posts": [], "media": [], "locations": []})

    assert stats["average_rating"] == 0
    assert stats["top_keywords"] == []
    assert stats["last_sync_date"] is None


def test_job_summary_falls_back_to_older_success() -> None:
    recent = [
        {"job_type": "brightlocal", "status": "failed", "completed_at": "2025-03-14T05:00:02Z"},
        {"job_type": "custom_job", "status": "running", "completed_at": None},
    ]
    older = {
        "brightlocal": {
            "completed_at": "2025-03-01T05:00:30Z",
            "duration_ms": 30000,
            "records_created": 2,
            "records_updated": None,
        },
        "gbp_media": {"completed_at": "2025-02-23T10:00:00Z", "duration_ms": 500},
    }

    result = summarize_jobs(recent, older)

    by_type = {s["job_type"]: s for s in result["summaries"]}
    assert set(by_type) == {"brightlocal", "custom_job", "gbp_media"}
    assert by_type["brightlocal"]["recent_success_rate"] == 0
    assert by_type["brightlocal"]["last_successful_sync"] == "2025-03-01T05:00:30Z"
    assert by_type["brightlocal"]["total_records_last_sync"] == 2
    assert by_type["custom_job"]["label"] == "custom_job"
    assert by_type["custom_job"]["schedule"] == "Unknown"
    assert by_type["gbp_media"]["total_jobs_last_7_days"] == 0
    assert [s["label"] for s in result["summaries"]] == sorted(s["label"] for s in result["summaries"])
    assert result["stats"] == {
        "total_jobs_last_7_days": 2,
        "successful_jobs": 0,
        "failed_jobs": 1,
        "running_jobs": 1,
        "overall_success_rate": 0,
    }


def test_state_and_lifecycle_normalisation() -> None:
    assert normalize_state(" ca ") == "California"
    assert normalize_state("new york") == "New York"
    assert normalize_state("") == "Unknown"
    assert normalize_lifecycle("Customer") == "customer"
    assert normalize_lifecycle("1234567") == "other"
    assert normalize_lifecycle(None) == "other"


def test_placeholder_website_counts_as_missing() -> None:
    record = {
        "email": "jane@bakery.example",
        "firstname": "Jane",
        "lastname": "Baker",
        "phone": "555-0100",
        "company": "Bakery",
        "website": "N/A",
        "address": "1 Main St",
        "city": "Austin",
        "state": "TX",
        "zip": "  ",
    }

    assert completeness(record) == 80


def test_contact_analytics_filters_and_timeline() -> None:
    records = [
        {
            "id": "a",
            "lifecyclestage": "lead",
            "state": "TX",
            "website": "https://a.example",
            "createdate": datetime(2025, 3, 1, tzinfo=timezone.utc),
            "lastmodifieddate": datetime(2025, 3, 10, tzinfo=timezone.utc),
            "properties": {"num_notes": "3"},
        },
        {
            "id": "b",
            "lifecyclestage": "customer",
            "state": "Texas",
            "website": "no",
            "createdate": datetime(2025, 1, 20, tzinfo=timezone.utc),
            "lastmodifieddate": datetime(2024, 12, 1, tzinfo=timezone.utc),
            "properties": {},
        },
        {
            "id": "c",
            "lifecyclestage": "customer",
            "state": None,
            "createdate": datetime(2023, 6, 1, tzinfo=timezone.utc),
            "lastmodifieddate": None,
            "properties": {"num_notes": "25"},
        },
    ]

    data = contact_analytics(records, lifecycle="customer", now=NOW)

    kpis = data["kpis"]
    assert kpis["total_contacts"] == 2
    assert kpis["lifecycle_breakdown"] == {"leads": 1, "customers": 2, "opportunities": 0, "other": 0}
    assert kpis["recently_active"] == 0
    assert kpis["website_coverage"] == 0
    assert data["charts"]["geographic_distribution"] == [
        {"name": "Texas", "value": 1},
        {"name": "Unknown", "value": 1},
    ]
    notes = {bucket["name"]: bucket["value"] for bucket in data["charts"]["engagement_by_notes"]}
    assert notes == {"No Notes": 1, "1-5 Notes": 0, "6-20 Notes": 0, "20+ Notes": 1}

    timeline = data["charts"]["acquisition_timeline"]
    assert len(timeline) == 12
    assert timeline[0]["month"] == "Apr 2024"
    assert timeline[-1]["month"] == "Mar 2025"
    assert timeline[-1]["new_leads"] == 1
    assert timeline[-1]["cumulative_customers"] == 2
    assert timeline[0]["cumulative_customers"] == 1
