# crosslist/routes/sync.py
"""
Listing sync endpoints.

A sync runs inline: the caller gets the per-platform outcome back, and a pass
that failed only on retryable errors is put on the retry queue for the
worker to pick up.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from crosslist.core.config import Settings, get_settings
from crosslist.core.exceptions import (
    BaseServiceError,
    ListingNotFoundError,
    ReconnectRequiredError,
    SyncInProgressError,
    ValidationFailedError,
)
from crosslist.dependencies import get_db, get_services
from crosslist.integrations.registry import SyncServices
from crosslist.models.listing import Listing
from crosslist.schemas.listing import ListingSyncStatusRead
from crosslist.services.sync_queue import backoff_delay, enqueue_sync_job

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["sync"])


def _http_error(exc: BaseServiceError) -> HTTPException:
    if isinstance(exc, ListingNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, SyncInProgressError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationFailedError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, ReconnectRequiredError):
        code = status.HTTP_401_UNAUTHORIZED
    elif exc.retryable:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=exc.to_dict())


@router.post("/listings/{listing_id}/sync")
async def sync_listing(
    listing_id: int,
    queue_retry: bool = True,
    db: AsyncSession = Depends(get_db),
    services: SyncServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Sync one listing to every connected marketplace and settle any sales."""
    try:
        result = await services.orchestrator.sync_listing_across_platforms(db, listing_id)
    except BaseServiceError as e:
        logger.warning(f"Sync of listing {listing_id} rejected: {e.message}")
        raise _http_error(e)

    retry_job_id: Optional[int] = None
    if queue_retry and not result.success and result.retryable:
        job = await enqueue_sync_job(
            db,
            listing_id=listing_id,
            platforms=result.failed_platforms,
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            delay_seconds=int(backoff_delay(1, settings.SYNC_RETRY_BASE_DELAY_SECONDS).total_seconds()),
        )
        await db.commit()
        retry_job_id = job.id
        logger.info(f"Queued retry job {job.id} for listing {listing_id} ({result.failed_platforms})")

    payload = result.model_dump(mode="json")
    payload["retry_job_id"] = retry_job_id
    return payload


@router.get("/listings/{listing_id}/sync-status", response_model=ListingSyncStatusRead)
async def get_sync_status(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    services: SyncServices = Depends(get_services),
):
    try:
        return await services.orchestrator.get_sync_status(db, listing_id)
    except ListingNotFoundError as e:
        raise _http_error(e)


@router.post("/listings/{listing_id}/sync/queue", status_code=status.HTTP_202_ACCEPTED)
async def queue_listing_sync(
    listing_id: int,
    delay_seconds: int = 0,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Hand a sync to the background worker instead of running it now."""
    if delay_seconds < 0:
        raise HTTPException(status_code=400, detail="delay_seconds must not be negative")
    if await db.get(Listing, listing_id) is None:
        raise HTTPException(status_code=404, detail=f"Listing {listing_id} not found")

    job = await enqueue_sync_job(
        db,
        listing_id=listing_id,
        max_attempts=settings.SYNC_MAX_ATTEMPTS,
        delay_seconds=delay_seconds,
    )
    await db.commit()
    return {
        "job_id": job.id,
        "listing_id": listing_id,
        "status": job.status,
        "scheduled_for": job.scheduled_for.isoformat(),
    }
