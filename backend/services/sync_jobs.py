"""
Sync job log: one sync_jobs row per run.

The log is an audit trail. A failure to write it is logged and never fails
the sync it describes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from models.database import get_session
from models.sync_job import SyncJob

logger = logging.getLogger(__name__)

# asyncpg raises plain OSError (ConnectionRefusedError, gaierror) when the
# database cannot be reached; SQLAlchemy does not wrap those.
LOG_WRITE_ERRORS = (SQLAlchemyError, OSError)


@dataclass
class JobCounts:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)


class SyncJobRecorder:
    """Writes sync_jobs rows. Services take one so tests can pass a fake."""

    async def start(
        self,
        job_type: str,
        trigger: str = "manual",
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[UUID]:
        """Insert a running job; returns its id, or None if the write failed."""
        try:
            async with get_session() as session:
                job = SyncJob(
                    job_type=job_type,
                    status="running",
                    trigger=trigger,
                    extra_data=metadata,
                )
                session.add(job)
                await session.commit()
                return job.id
        except LOG_WRITE_ERRORS as e:
            logger.warning("[SyncJobs] Failed to create %s job: %s", job_type, e)
            return None

    async def finish(
        self,
        job_id: Optional[UUID],
        counts: JobCounts,
        started_at: datetime,
        error_message: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Mark a job completed (or failed when error_message is set)."""
        if job_id is None:
            return

        completed_at = datetime.now(timezone.utc)
        try:
            async with get_session() as session:
                job = await session.get(SyncJob, job_id)
                if job is None:
                    logger.warning("[SyncJobs] Job %s disappeared before completion", job_id)
                    return
                job.status = "failed" if error_message else "completed"
                job.records_fetched = counts.fetched
                job.records_created = counts.created
                job.records_updated = counts.updated
                job.records_skipped = counts.skipped
                job.errors = counts.errors
                job.error_message = error_message
                if counts.error_messages:
                    job.error_details = {"errors": counts.error_messages[:50]}
                job.completed_at = completed_at
                job.duration_ms = int((completed_at - started_at).total_seconds() * 1000)
                if metadata:
                    job.extra_data = {**(job.extra_data or {}), **metadata}
                await session.commit()
        except LOG_WRITE_ERRORS as e:
            logger.warning("[SyncJobs] Failed to finish job %s: %s", job_id, e)

    async def record_failure(
        self,
        job_type: str,
        error_message: str,
        trigger: str = "manual",
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Write a single already-failed row (used by one-off syncs)."""
        now = datetime.now(timezone.utc)
        try:
            async with get_session() as session:
                session.add(
                    SyncJob(
                        job_type=job_type,
                        status="failed",
                        trigger=trigger,
                        errors=1,
                        error_message=error_message,
                        started_at=now,
                        completed_at=now,
                        duration_ms=0,
                        extra_data=metadata,
                    )
                )
                await session.commit()
        except LOG_WRITE_ERRORS as e:
            logger.warning("[SyncJobs] Failed to record %s failure: %s", job_type, e)


async def get_latest_job(job_type: Optional[str] = None) -> Optional[SyncJob]:
    """Most recently started job, optionally filtered by type."""
    async with get_session() as session:
        query = select(SyncJob).order_by(SyncJob.started_at.desc()).limit(1)
        if job_type:
            query = query.where(SyncJob.job_type == job_type)
        result = await session.execute(query)
        return result.scalar_one_or_none()
