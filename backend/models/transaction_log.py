"""
Transaction log model for dual-write contact edits.

Each edit that touches HubSpot and the local mirror leaves one row saying
which side was written. A row with critical_error set means HubSpot has the
change but the mirror does not.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base, utc_now


class TransactionLog(Base):
    """Audit row for one dual-write operation."""

    __tablename__ = "transaction_log"
    __table_args__ = (
        CheckConstraint(
            "operation IN ('create', 'update', 'delete')",
            name="ck_transaction_log_operation",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # HubSpot contact id (the edit target)
    contact_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    operation: Mapped[str] = mapped_column(String(10), nullable=False)

    hubspot_updated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    supabase_updated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rolled_back: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    critical_error: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    properties_changed: Mapped[Optional[list[str]]] = mapped_column(ARRAY(Text), nullable=True)
    previous_state: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    new_state: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "contact_id": self.contact_id,
            "user_id": str(self.user_id) if self.user_id else None,
            "operation": self.operation,
            "hubspot_updated": self.hubspot_updated,
            "supabase_updated": self.supabase_updated,
            "rolled_back": self.rolled_back,
            "critical_error": self.critical_error,
            "error_message": self.error_message,
            "properties_changed": self.properties_changed or [],
            "duration_ms": self.duration_ms,
            "request_id": self.request_id,
            "created_at": to_iso8601(self.created_at),
        }
