"""
BrightLocal cache tables, linked to HubSpot by company id.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base, utc_now


class BrightLocalLocation(Base):
    """Location managed in BrightLocal's Management API."""

    __tablename__ = "brightlocal_locations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    brightlocal_location_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    brightlocal_client_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    hubspot_company_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line_1: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address_line_2: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    state_province: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    business_categories: Mapped[Optional[list[str]]] = mapped_column(ARRAY(Text), nullable=True)
    primary_category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8), nullable=True)
    longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8), nullable=True)
    location_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "brightlocal_location_id": self.brightlocal_location_id,
            "hubspot_company_id": self.hubspot_company_id,
            "business_name": self.business_name,
            "address_line_1": self.address_line_1,
            "address_line_2": self.address_line_2,
            "city": self.city,
            "state_province": self.state_province,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
            "website_url": self.website_url,
            "business_categories": self.business_categories or [],
            "primary_category": self.primary_category,
            "latitude": float(self.latitude) if self.latitude is not None else None,
            "longitude": float(self.longitude) if self.longitude is not None else None,
            "location_status": self.location_status,
            "synced_at": to_iso8601(self.synced_at),
        }


class BrightLocalCampaign(Base):
    """Citation Builder campaign for a BrightLocal location."""

    __tablename__ = "brightlocal_campaigns"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    brightlocal_campaign_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    brightlocal_location_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    hubspot_company_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    campaign_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    campaign_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    campaign_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_run_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    citations_built: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    citations_pending: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    citations_live: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    citations_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_directories: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    campaign_config: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    report_summary: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "brightlocal_campaign_id": self.brightlocal_campaign_id,
            "brightlocal_location_id": self.brightlocal_location_id,
            "hubspot_company_id": self.hubspot_company_id,
            "campaign_name": self.campaign_name,
            "campaign_type": self.campaign_type,
            "campaign_status": self.campaign_status,
            "citations_built": self.citations_built,
            "citations_pending": self.citations_pending,
            "citations_live": self.citations_live,
            "citations_failed": self.citations_failed,
            "total_directories": self.total_directories,
            "last_run_date": to_iso8601(self.last_run_date),
            "synced_at": to_iso8601(self.synced_at),
        }
