"""
Sync job model - append-only audit trail of sync runs.

Every contact, GBP and BrightLocal sync writes one row when it starts and
finishes it with counts. Rows are never used for recovery.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base, utc_now


class SyncJob(Base):
    """One sync run and its outcome."""

    __tablename__ = "sync_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # 'hubspot_contacts_incremental', 'gbp_reviews', 'brightlocal', ...
    job_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # 'running', 'completed', 'failed'
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    # 'cron', 'manual', 'cli'
    trigger: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    records_fetched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSONB, nullable=True
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "job_type": self.job_type,
            "status": self.status,
            "trigger": self.trigger,
            "records_fetched": self.records_fetched,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "records_skipped": self.records_skipped,
            "errors": self.errors,
            "error_message": self.error_message,
            "error_details": self.error_details,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "duration_ms": self.duration_ms,
            "metadata": self.extra_data or {},
        }
