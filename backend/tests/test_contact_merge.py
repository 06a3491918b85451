from datetime import datetime, timezone
import uuid

from services.contact_sync import (
    build_merged_record,
    detect_field_changes,
    get_lifecycle_label,
)


USER_ID = "11111111-1111-1111-1111-111111111111"
NOW = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def _contact(hubspot_id: str = "501", **props: object) -> dict:
    return {"id": hubspot_id, "properties": props}


def test_lifecycle_label_maps_custom_and_standard_stages() -> None:
    assert get_lifecycle_label("944991848") == "HOT"
    assert get_lifecycle_label("1000822942") == "Reengage"
    assert get_lifecycle_label("salesqualifiedlead") == "Sales Qualified Lead"
    assert get_lifecycle_label("customer") == "Customer"


def test_lifecycle_label_passes_unknown_values_through() -> None:
    assert get_lifecycle_label("12345") == "12345"
    assert get_lifecycle_label(None) == "(none)"
    assert get_lifecycle_label("") == "(none)"


def test_new_contact_gets_columns_and_leftover_properties() -> None:
    contact = _contact(
        email="owner@bakery.example",
        firstname="Dana",
        lifecyclestage="lead",
        createdate="2024-11-02T08:30:00.000Z",
        hs_object_id="501",
        industry="Food",
        location_1="12 High St",
        location_12="4 Mill Rd",
        jobtitle="",
    )

    record = build_merged_record(contact, None, USER_ID, NOW)

    assert isinstance(record["id"], uuid.UUID)
    assert record["hubspot_contact_id"] == "501"
    assert record["hs_object_id"] == "501"
    assert record["user_id"] == USER_ID
    assert record["email"] == "owner@bakery.example"
    assert record["lifecyclestage"] == "Lead"
    assert record["createdate"] == datetime(2024, 11, 2, 8, 30, tzinfo=timezone.utc)
    assert record["synced_at"] == NOW
    assert record["properties"] == {"industry": "Food"}
    assert record["locations"] == {"location_1": "12 High St", "location_12": "4 Mill Rd"}
    assert record["hubspot_company_id"] is None


def test_blank_hubspot_values_never_erase_stored_data() -> None:
    stored_id = uuid.uuid4()
    existing = {
        "id": stored_id,
        "hubspot_contact_id": "501",
        "hs_object_id": "501",
        "user_id": USER_ID,
        "email": "owner@bakery.example",
        "phone": "555-0100",
        "city": "Leeds",
        "hubspot_company_id": "9001",
        "properties": {"industry": "Food"},
        "locations": {"location_1": "12 High St"},
        "created_at": NOW,
        "updated_at": NOW,
    }
    contact = _contact(email="new@bakery.example", phone="", city=None, industry="Retail")

    record = build_merged_record(contact, existing, USER_ID, NOW)

    assert record["id"] == stored_id
    assert record["email"] == "new@bakery.example"
    assert record["phone"] == "555-0100"
    assert record["city"] == "Leeds"
    assert record["hubspot_company_id"] == "9001"
    assert record["properties"] == {"industry": "Retail"}
    assert record["locations"] == {"location_1": "12 High St"}
    assert "created_at" not in record
    assert "updated_at" not in record


def test_company_id_overrides_stored_link_when_known() -> None:
    existing = {"id": uuid.uuid4(), "hubspot_company_id": "9001"}

    record = build_merged_record(_contact(), existing, USER_ID, NOW, company_id="9002")

    assert record["hubspot_company_id"] == "9002"


def test_unparseable_timestamp_keeps_stored_value() -> None:
    stored = datetime(2024, 1, 1, tzinfo=timezone.utc)
    existing = {"id": uuid.uuid4(), "lastmodifieddate": stored}

    record = build_merged_record(_contact(lastmodifieddate="not-a-date"), existing, USER_ID, NOW)

    assert record["lastmodifieddate"] == stored


def test_epoch_millisecond_timestamps_are_parsed() -> None:
    record = build_merged_record(_contact(lastmodifieddate="1735689600000"), None, USER_ID, NOW)

    assert record["lastmodifieddate"] == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_field_changes_reported_only_when_hubspot_has_a_new_value() -> None:
    existing = {
        "hs_object_id": "501",
        "email": "old@bakery.example",
        "phone": "555-0100",
        "company": "",
        "lastmodifieddate": NOW,
    }
    props = {
        "hs_object_id": "501",
        "email": "new@bakery.example",
        "phone": "",
        "company": "Dana's Bakery",
        "lastmodifieddate": "2025-03-05T00:00:00Z",
    }

    changes = detect_field_changes(props, existing)

    by_field = {change.field: change for change in changes}
    assert set(by_field) == {"email", "company"}
    assert by_field["email"].old_value == "old@bakery.example"
    assert by_field["email"].new_value == "new@bakery.example"
    assert by_field["company"].old_value is None


def test_no_field_changes_for_new_contacts() -> None:
    assert detect_field_changes({"email": "a@b.example"}, None) == []
