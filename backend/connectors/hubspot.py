"""
HubSpot CRM v3 client.

Responsibilities:
- Authenticate with the private-app token from the token manager
- List, search, read and update contacts
- Resolve contact -> company associations (v4 batch read)
- Present customer contacts as "companies" for the dashboard list
- Handle pagination and rate limits (via BaseClient)
"""

import logging
import re
from datetime import datetime
from typing import Any, Optional

import httpx

from connectors.base import BaseClient
from services.token_manager import get_token_manager

logger = logging.getLogger(__name__)

HUBSPOT_API_BASE = "https://api.hubapi.com"
HUBSPOT_PAGE_LIMIT = 100

# Properties fetched for every mirrored contact
CONTACT_PROPERTIES: list[str] = [
    "firstname",
    "lastname",
    "email",
    "phone",
    "mobilephone",
    "company",
    "website",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "lifecyclestage",
    "hs_lead_status",
    "hs_object_id",
    "num_notes",
    "createdate",
    "lastmodifieddate",
    "hs_email_domain",
    "hs_analytics_source",
    "hs_analytics_num_page_views",
    "hs_analytics_num_visits",
    "industry",
    "notes_last_updated",
    "jobtitle",
    "notes_last_contacted",
    "hs_analytics_first_visit_timestamp",
    "hs_analytics_last_visit_timestamp",
    "associatedcompanyid",
]

# Customer-only properties (listing onboarding fields + up to 50 locations)
CUSTOMER_PROPERTIES: list[str] = [
    "firstname",
    "lastname",
    "email",
    "phone",
    "mobilephone",
    "company",
    "business_type",
    "business_category_type",
    "business_hours",
    "current_website",
    "website",
    "website_status",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "active_customer",
    "gbp_ready",
    "published_status",
    "publishing_fee_paid",
    "completeness_score",
    "lifecyclestage",
    *[f"location_{i}" for i in range(1, 51)],
    "createdate",
    "lastmodifieddate",
]

COMPANY_LIST_PROPERTIES: list[str] = [
    "email",
    "firstname",
    "lastname",
    "phone",
    "mobilephone",
    "company",
    "website",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "lifecyclestage",
    "active_customer",
    "business_category_type",
    "createdate",
    "lastmodifieddate",
    "hs_object_id",
]

CUSTOMER_LIFECYCLE_STAGES: list[str] = ["customer", "dnc", "active"]
COMPANY_LIST_MAX_PAGES = 50


class HubSpotClient(BaseClient):
    """Client for the HubSpot CRM API."""

    source_system = "hubspot"
    api_base = HUBSPOT_API_BASE

    def __init__(
        self,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(transport=transport)
        self._token: Optional[str] = access_token

    async def _get_headers(self) -> dict[str, str]:
        """Get authorization headers for HubSpot API."""
        if not self._token:
            self._token = get_token_manager().get_hubspot_token()
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def list_contacts(
        self,
        limit: int = HUBSPOT_PAGE_LIMIT,
        after: Optional[str] = None,
        properties: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """
        Fetch one page of contacts.

        Returns:
            {"results": [...], "paging": {"next": {"after": ...}} | None}
        """
        params: dict[str, Any] = {
            "limit": max(1, min(limit, HUBSPOT_PAGE_LIMIT)),
            "properties": ",".join(properties or CONTACT_PROPERTIES),
            "archived": "false",
        }
        if after:
            params["after"] = after
        return await self._make_request("GET", "/crm/v3/objects/contacts", params=params)

    async def search_contacts(
        self,
        filter_groups: list[dict[str, Any]],
        sorts: Optional[list[Any]] = None,
        limit: int = HUBSPOT_PAGE_LIMIT,
        after: Optional[str] = None,
        properties: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """Run the contacts Search API for one page."""
        payload: dict[str, Any] = {
            "filterGroups": filter_groups,
            "properties": properties or CONTACT_PROPERTIES,
            "limit": max(1, min(limit, HUBSPOT_PAGE_LIMIT)),
        }
        if sorts:
            payload["sorts"] = sorts
        if after:
            payload["after"] = after
        return await self._make_request(
            "POST", "/crm/v3/objects/contacts/search", json_data=payload
        )

    async def search_modified_since(
        self, since: datetime, after: Optional[str] = None
    ) -> dict[str, Any]:
        """Contacts with lastmodifieddate >= since, oldest change first."""
        return await self.search_contacts(
            filter_groups=[
                {
                    "filters": [
                        {
                            "propertyName": "lastmodifieddate",
                            "operator": "GTE",
                            "value": str(int(since.timestamp() * 1000)),
                        }
                    ]
                }
            ],
            sorts=[{"propertyName": "lastmodifieddate", "direction": "ASCENDING"}],
            after=after,
        )

    async def search_customers(self, after: Optional[str] = None) -> dict[str, Any]:
        """Customer contacts (customer, dnc, active), oldest first."""
        return await self.search_contacts(
            filter_groups=[
                {
                    "filters": [
                        {
                            "propertyName": "lifecyclestage",
                            "operator": "IN",
                            "values": CUSTOMER_LIFECYCLE_STAGES,
                        }
                    ]
                }
            ],
            sorts=[{"propertyName": "createdate", "direction": "ASCENDING"}],
            after=after,
            properties=CUSTOMER_PROPERTIES,
        )

    async def get_contact(
        self, contact_id: str, properties: Optional[list[str]] = None
    ) -> dict[str, Any]:
        """Fetch a single contact by HubSpot id."""
        return await self._make_request(
            "GET",
            f"/crm/v3/objects/contacts/{contact_id}",
            params={"properties": ",".join(properties or CONTACT_PROPERTIES)},
        )

    async def update_contact(
        self, contact_id: str, properties: dict[str, Any]
    ) -> dict[str, Any]:
        """Update an existing contact in HubSpot."""
        data = await self._make_request(
            "PATCH",
            f"/crm/v3/objects/contacts/{contact_id}",
            json_data={"properties": properties},
        )
        return {
            "id": data.get("id"),
            "properties": data.get("properties", {}),
            "updatedAt": data.get("updatedAt"),
        }

    async def create_contact(self, properties: dict[str, Any]) -> dict[str, Any]:
        """
        Create a single contact in HubSpot.

        Args:
            properties: Contact properties (email, firstname, lastname, company, phone)

        Returns:
            Created contact data with HubSpot ID
        """
        data = await self._make_request(
            "POST",
            "/crm/v3/objects/contacts",
            json_data={"properties": properties},
        )
        return {
            "id": data.get("id"),
            "properties": data.get("properties", {}),
        }

    async def get_company_associations(self, contact_ids: list[str]) -> dict[str, str]:
        """
        Map contact id -> primary company id using the v4 associations API.

        Each contact can have several companies; the first one wins. Failures
        are logged and return whatever was resolved (usually nothing).
        """
        company_map: dict[str, str] = {}
        if not contact_ids:
            return company_map

        try:
            data = await self._make_request(
                "POST",
                "/crm/v4/associations/contacts/companies/batch/read",
                json_data={"inputs": [{"id": cid} for cid in contact_ids]},
            )
        except httpx.HTTPError as e:
            logger.warning("[HubSpot] Failed to fetch company associations: %s", e)
            return company_map

        for result in data.get("results", []):
            contact_id = (result.get("from") or {}).get("id")
            companies = result.get("to") or []
            if contact_id and companies:
                company_map[str(contact_id)] = str(companies[0].get("toObjectId"))
        return company_map

    # ------------------------------------------------------------------
    # Companies (customer contacts presented as businesses)
    # ------------------------------------------------------------------

    async def list_customer_companies(
        self,
        limit: int = HUBSPOT_PAGE_LIMIT,
        after: Optional[str] = None,
        fetch_all: bool = False,
    ) -> dict[str, Any]:
        """
        List active customers as company records.

        The agency keeps one contact per client business, so "companies" are
        customer contacts (lifecyclestage=customer) reshaped for display.

        Returns:
            {"companies": [...], "next_after": str | None, "pages_fetched": int}
        """
        companies: list[dict[str, Any]] = []
        cursor: Optional[str] = after
        page_count = 0

        while True:
            page_count += 1
            data = await self.search_contacts(
                filter_groups=[
                    {
                        "filters": [
                            {"propertyName": "lifecyclestage", "operator": "EQ", "value": "customer"}
                        ]
                    }
                ],
                sorts=["company"],
                limit=limit,
                after=cursor,
                properties=COMPANY_LIST_PROPERTIES,
            )
            for contact in data.get("results", []):
                if is_customer(contact.get("properties") or {}):
                    companies.append(contact_to_company(contact))

            cursor = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not (fetch_all and cursor and page_count < COMPANY_LIST_MAX_PAGES):
                break

        logger.info("[HubSpot] Listed %d customer companies over %d pages", len(companies), page_count)
        return {"companies": companies, "next_after": cursor, "pages_fetched": page_count}


def is_customer(properties: dict[str, Any]) -> bool:
    return (
        properties.get("lifecyclestage") == "customer"
        or properties.get("active_customer") == "Yes"
    )


def extract_domain(website: Optional[str]) -> Optional[str]:
    """Bare domain from a website URL ("https://www.acme.com/x" -> "acme.com")."""
    if not website:
        return None
    domain = re.sub(r"^https?://(www\.)?", "", website.strip())
    domain = domain.split("/")[0].split(":")[0]
    return domain or None


def company_display_name(properties: dict[str, Any]) -> str:
    """Business name with fallbacks: company, full name, email user, placeholder."""
    company = (properties.get("company") or "").strip()
    if company:
        return company

    full_name = f"{properties.get('firstname') or ''} {properties.get('lastname') or ''}".strip()
    if full_name:
        return full_name

    email = properties.get("email") or ""
    if "@" in email:
        username = email.split("@")[0]
        return username[:1].upper() + username[1:]

    return "Unknown Business"


def contact_to_company(contact: dict[str, Any]) -> dict[str, Any]:
    """Reshape a HubSpot customer contact into a company record."""
    props: dict[str, Any] = contact.get("properties") or {}
    contact_id = str(contact.get("id"))
    website = props.get("website") or None
    return {
        "id": contact_id,
        "name": company_display_name(props),
        "domain": extract_domain(website),
        "website": website,
        "phone": props.get("phone") or props.get("mobilephone") or None,
        "email": props.get("email") or None,
        "address": props.get("address") or None,
        "city": props.get("city") or None,
        "state": props.get("state") or None,
        "zip": props.get("zip") or None,
        "country": props.get("country") or None,
        "industry": props.get("business_category_type") or None,
        "created_at": contact.get("createdAt"),
        "updated_at": contact.get("updatedAt"),
        "archived": bool(contact.get("archived", False)),
        "url": f"https://app.hubspot.com/contacts/contacts/{contact_id}",
    }
