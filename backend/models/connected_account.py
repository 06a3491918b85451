"""
Connected account model for GBP accounts linked through Pipedream Connect.

Pipedream holds the Google OAuth credentials; this table only records which
Pipedream account belongs to which dashboard user, plus health flags.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base, utc_now


class ConnectedAccount(Base):
    """OAuth-linked external account keyed by the Pipedream account id."""

    __tablename__ = "pipedream_connected_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    # Pipedream account id ("apn_..."), unique across the project
    pipedream_account_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )
    # external_user_id the account was connected under
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    app_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default="google_my_business"
    )
    account_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    healthy: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    dead: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    hubspot_company_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSONB, nullable=True
    )

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=True
    )

    def record_health(self, healthy: bool, error: Optional[str] = None) -> None:
        """Store the outcome of a health check."""
        self.healthy = healthy
        self.last_error = error[:500] if error else None
        self.last_checked_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "pipedream_account_id": self.pipedream_account_id,
            "external_id": self.external_id,
            "app_name": self.app_name,
            "account_name": self.account_name,
            "account_email": self.account_email,
            "healthy": self.healthy,
            "dead": self.dead,
            "last_checked_at": to_iso8601(self.last_checked_at),
            "last_error": self.last_error,
            "hubspot_company_id": self.hubspot_company_id,
            "metadata": self.extra_data or {},
            "created_at": to_iso8601(self.created_at),
        }
