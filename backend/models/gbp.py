"""
Google Business Profile cache tables.

Filled by the GBP sync jobs so the dashboard can read listings, reviews,
posts, media and keyword analytics without spending API quota.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base, utc_now


class GBPLocation(Base):
    """Location listing as returned by the Business Information API."""

    __tablename__ = "gbp_locations_sync"
    __table_args__ = (
        UniqueConstraint("account_id", "location_id", name="uq_gbp_locations_account_location"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    store_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address_lines: Mapped[Optional[list[str]]] = mapped_column(ARRAY(Text), nullable=True)
    locality: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    administrative_area: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    country_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    primary_phone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    website_uri: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    primary_category_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    primary_category_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    additional_categories: Mapped[Optional[list[Any]]] = mapped_column(JSONB, nullable=True)
    verification_state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_open: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB, nullable=True)
    create_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    update_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "account_id": self.account_id,
            "location_id": self.location_id,
            "title": self.title,
            "store_code": self.store_code,
            "address_lines": self.address_lines or [],
            "locality": self.locality,
            "administrative_area": self.administrative_area,
            "postal_code": self.postal_code,
            "country_code": self.country_code,
            "primary_phone": self.primary_phone,
            "website_uri": self.website_uri,
            "primary_category_name": self.primary_category_name,
            "verification_state": self.verification_state,
            "is_open": self.is_open,
            "fetched_at": to_iso8601(self.fetched_at),
        }


class GBPReview(Base):
    """Customer review on a location, with the owner's reply."""

    __tablename__ = "gbp_reviews"
    __table_args__ = (
        UniqueConstraint("location_id", "review_id", name="uq_gbp_reviews_location_review"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    review_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reviewer_display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reviewer_profile_photo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    star_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_update_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    create_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    update_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "location_id": self.location_id,
            "review_id": self.review_id,
            "reviewer_display_name": self.reviewer_display_name,
            "reviewer_profile_photo_url": self.reviewer_profile_photo_url,
            "star_rating": self.star_rating,
            "comment": self.comment,
            "reply_comment": self.reply_comment,
            "reply_update_time": to_iso8601(self.reply_update_time),
            "create_time": to_iso8601(self.create_time),
            "update_time": to_iso8601(self.update_time),
            "fetched_at": to_iso8601(self.fetched_at),
        }


class GBPPost(Base):
    """Local post (update, event or offer) published on a location."""

    __tablename__ = "gbp_posts"
    __table_args__ = (
        UniqueConstraint("location_id", "post_name", name="uq_gbp_posts_location_post"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    post_name: Mapped[str] = mapped_column(String(500), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    topic_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    call_to_action_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    call_to_action_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    event_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    offer_coupon_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    offer_redeem_online_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    offer_terms_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_format: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    create_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    update_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "location_id": self.location_id,
            "post_name": self.post_name,
            "summary": self.summary,
            "topic_type": self.topic_type,
            "call_to_action_type": self.call_to_action_type,
            "call_to_action_url": self.call_to_action_url,
            "event_title": self.event_title,
            "event_start_date": to_iso8601(self.event_start_date),
            "event_end_date": to_iso8601(self.event_end_date),
            "media_url": self.media_url,
            "state": self.state,
            "create_time": to_iso8601(self.create_time),
            "fetched_at": to_iso8601(self.fetched_at),
        }


class GBPMedia(Base):
    """Photo or video attached to a location."""

    __tablename__ = "gbp_media"
    __table_args__ = (
        UniqueConstraint("location_id", "media_name", name="uq_gbp_media_location_media"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    media_name: Mapped[str] = mapped_column(String(500), nullable=False)
    media_format: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    location_association: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    google_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    width_pixels: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height_pixels: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    attribution_profile_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    attribution_profile_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    create_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "location_id": self.location_id,
            "media_name": self.media_name,
            "media_format": self.media_format,
            "location_association": self.location_association,
            "google_url": self.google_url,
            "thumbnail_url": self.thumbnail_url,
            "view_count": self.view_count,
            "create_time": to_iso8601(self.create_time),
            "fetched_at": to_iso8601(self.fetched_at),
        }


class GBPAnalyticsSnapshot(Base):
    """Daily snapshot of monthly search-keyword impressions for a location."""

    __tablename__ = "gbp_analytics_snapshots"
    __table_args__ = (
        UniqueConstraint("location_id", "snapshot_date", name="uq_gbp_analytics_location_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    location_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    date_range_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_range_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_impressions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_keywords: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    keywords: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSONB, nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "location_id": self.location_id,
            "snapshot_date": to_iso8601(self.snapshot_date),
            "date_range_start": to_iso8601(self.date_range_start),
            "date_range_end": to_iso8601(self.date_range_end),
            "total_impressions": self.total_impressions,
            "total_keywords": self.total_keywords,
            "keywords": self.keywords or [],
            "fetched_at": to_iso8601(self.fetched_at),
        }
