"""
Contact model - local mirror of HubSpot contacts.

One row per (hubspot_contact_id, user_id). HubSpot stays the source of
truth; rows are rewritten by the contact sync and the dual-write updater.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base, utc_now

# Columns overlaid from HubSpot properties of the same name
MAPPED_FIELDS: tuple[str, ...] = (
    "email",
    "firstname",
    "lastname",
    "phone",
    "mobilephone",
    "company",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "website",
    "lifecyclestage",
    "createdate",
    "lastmodifieddate",
)

TIMESTAMP_FIELDS: frozenset[str] = frozenset({"createdate", "lastmodifieddate"})


class Contact(Base):
    """HubSpot contact mirrored for fast dashboard reads."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint(
            "hubspot_contact_id", "user_id", name="uq_contacts_hubspot_contact_user"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    # HubSpot identifiers
    hubspot_contact_id: Mapped[str] = mapped_column(String(50), nullable=False)
    hs_object_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    hubspot_company_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    firstname: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    lastname: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    mobilephone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Human-readable label ("Customer", "HOT"), not the raw HubSpot value
    lifecyclestage: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    createdate: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    lastmodifieddate: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Remaining HubSpot properties (lead status, analytics, custom fields)
    properties: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    # location_1..location_50 custom properties for multi-location customers
    locations: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=True
    )

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(part for part in (self.firstname, self.lastname) if part)
        return name or None

    def to_record(self) -> dict[str, Any]:
        """Column values keyed by column name, as used by the merge logic."""
        return {column.name: getattr(self, column.key) for column in self.__table__.columns}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "hubspot_contact_id": self.hubspot_contact_id,
            "hs_object_id": self.hs_object_id,
            "hubspot_company_id": self.hubspot_company_id,
            "name": self.full_name,
            "email": self.email,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "phone": self.phone,
            "mobilephone": self.mobilephone,
            "company": self.company,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
            "website": self.website,
            "lifecyclestage": self.lifecyclestage,
            "createdate": to_iso8601(self.createdate),
            "lastmodifieddate": to_iso8601(self.lastmodifieddate),
            "properties": self.properties or {},
            "locations": self.locations or {},
            "synced_at": to_iso8601(self.synced_at),
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
        }
