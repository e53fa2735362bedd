"""Bounded retry queue for sync passes that failed on a retryable error."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslist.core.enums import SyncJobStatus
from crosslist.core.exceptions import BaseServiceError, SyncInProgressError
from crosslist.core.utils import utc_now
from crosslist.models.sync_job import SyncJob
from crosslist.schemas.sync import SyncResult

logger = logging.getLogger(__name__)

MAX_BACKOFF = timedelta(hours=6)


def backoff_delay(attempts: int, base_delay_seconds: int) -> timedelta:
    """Exponential backoff: base, 2x base, 4x base, ... capped at six hours."""
    exponent = max(attempts - 1, 0)
    return min(timedelta(seconds=base_delay_seconds * (2 ** exponent)), MAX_BACKOFF)


async def enqueue_sync_job(
    db: AsyncSession,
    *,
    listing_id: int,
    platforms: Optional[List[str]] = None,
    max_attempts: int = 3,
    delay_seconds: int = 0,
) -> SyncJob:
    """Queue a sync for a listing; an already queued job for it is reused."""
    stmt = select(SyncJob).where(
        SyncJob.listing_id == listing_id,
        SyncJob.status == SyncJobStatus.QUEUED.value,
    )
    existing = (await db.execute(stmt)).scalars().first()
    if existing is not None:
        return existing

    job = SyncJob(
        listing_id=listing_id,
        platforms=platforms,
        status=SyncJobStatus.QUEUED.value,
        attempts=0,
        max_attempts=max_attempts,
        scheduled_for=utc_now() + timedelta(seconds=delay_seconds),
    )
    db.add(job)
    await db.flush()
    return job


async def fetch_next_due_job(db: AsyncSession, now: Optional[datetime] = None) -> Optional[SyncJob]:
    """Fetch the next due job (using SKIP LOCKED to avoid contention)."""
    stmt = (
        select(SyncJob)
        .where(
            SyncJob.status == SyncJobStatus.QUEUED.value,
            SyncJob.scheduled_for <= (now or utc_now()),
        )
        .order_by(SyncJob.scheduled_for.asc(), SyncJob.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def mark_job_in_progress(db: AsyncSession, job: SyncJob) -> None:
    job.status = SyncJobStatus.IN_PROGRESS.value
    job.last_attempt_at = utc_now()
    job.attempts += 1
    await db.flush()


async def mark_job_completed(db: AsyncSession, job: SyncJob, result: Optional[dict] = None) -> None:
    job.status = SyncJobStatus.COMPLETED.value
    job.error_message = None
    job.result = result
    await db.flush()


async def mark_job_failed(db: AsyncSession, job: SyncJob, error_message: str, result: Optional[dict] = None) -> None:
    job.status = SyncJobStatus.FAILED.value
    job.error_message = error_message[:2000]
    if result is not None:
        job.result = result
    await db.flush()


async def reschedule_job(
    db: AsyncSession,
    job: SyncJob,
    error_message: str,
    base_delay_seconds: int,
    consume_attempt: bool = True,
) -> None:
    if not consume_attempt:
        job.attempts = max(job.attempts - 1, 0)
    job.status = SyncJobStatus.QUEUED.value
    job.error_message = error_message[:2000]
    job.scheduled_for = utc_now() + backoff_delay(max(job.attempts, 1), base_delay_seconds)
    await db.flush()


async def record_job_outcome(
    db: AsyncSession,
    job: SyncJob,
    result: SyncResult,
    base_delay_seconds: int,
) -> str:
    """
    Complete, reschedule or fail a job from its sync result.

    Exceeding max_attempts is terminal, as is a failure no retry can fix.
    """
    payload = result.model_dump(mode="json")
    if result.success:
        await mark_job_completed(db, job, payload)
        return job.status

    failed = result.failed_platforms
    job.platforms = failed
    summary = "; ".join(f"{p.platform}: {p.error}" for p in result.platforms if not p.success)

    if not result.retryable:
        await mark_job_failed(db, job, f"Not retryable: {summary}", payload)
    elif job.attempts >= job.max_attempts:
        await mark_job_failed(db, job, f"Gave up after {job.attempts} attempts: {summary}", payload)
    else:
        job.result = payload
        await reschedule_job(db, job, summary, base_delay_seconds)
        logger.info(f"Sync job {job.id} rescheduled for {job.scheduled_for.isoformat()} ({failed})")
    return job.status


async def peek_queue_count(db: AsyncSession) -> int:
    """Check how many jobs are still queued (without locking)."""
    stmt = select(func.count(SyncJob.id)).where(
        SyncJob.status == SyncJobStatus.QUEUED.value
    )
    result = await db.execute(stmt)
    return result.scalar() or 0


class SyncRetryWorker:
    """Runs due sync jobs through the orchestrator one at a time."""

    def __init__(self, orchestrator, base_delay_seconds: int = 60):
        self.orchestrator = orchestrator
        self.base_delay_seconds = base_delay_seconds

    async def run_once(self, db: AsyncSession) -> Optional[SyncJob]:
        job = await fetch_next_due_job(db)
        if job is None:
            return None

        await mark_job_in_progress(db, job)
        await db.commit()
        logger.info(f"Processing sync job {job.id} for listing {job.listing_id} (attempt {job.attempts}/{job.max_attempts})")

        try:
            result = await self.orchestrator.sync_listing_across_platforms(
                db, job.listing_id, platforms=job.platforms or None
            )
        except SyncInProgressError as e:
            # Someone else is syncing this listing right now; try again without using up an attempt
            await reschedule_job(db, job, e.message, self.base_delay_seconds, consume_attempt=False)
        except BaseServiceError as e:
            await db.refresh(job)
            if e.retryable and job.attempts < job.max_attempts:
                await reschedule_job(db, job, e.message, self.base_delay_seconds)
            else:
                logger.warning(f"Sync job {job.id} failed permanently: {e.message}")
                await mark_job_failed(db, job, e.message)
        except Exception as e:
            # Unexpected failure: the orchestrator already rolled back, keep the job alive until attempts run out
            logger.error(f"Sync job {job.id} crashed: {e}", exc_info=True)
            await db.rollback()
            await db.refresh(job)
            if job.attempts < job.max_attempts:
                await reschedule_job(db, job, str(e), self.base_delay_seconds)
            else:
                await mark_job_failed(db, job, str(e))
        else:
            await record_job_outcome(db, job, result, self.base_delay_seconds)

        await db.commit()
        return job
