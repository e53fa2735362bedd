# tests/unit/services/test_sync_queue.py
from datetime import timedelta

import pytest

from crosslist.core.enums import SyncJobStatus
from crosslist.core.exceptions import PlatformRequestFailedError, SyncInProgressError, ValidationFailedError
from crosslist.core.utils import as_utc, utc_now
from crosslist.schemas.sync import PlatformSyncOutcome, SyncResult
from crosslist.services.sync_queue import (
    SyncRetryWorker,
    backoff_delay,
    enqueue_sync_job,
    fetch_next_due_job,
    peek_queue_count,
    record_job_outcome,
)
from tests.conftest import make_listing


def failed_result(listing_id, retryable=True):
    return SyncResult(
        listing_id=listing_id,
        success=False,
        platforms=[
            PlatformSyncOutcome(platform="ebay", success=True),
            PlatformSyncOutcome(platform="reverb", success=False, error="503", retryable=retryable),
        ],
    )


@pytest.fixture
async def listing(db_session):
    listing = await make_listing(db_session)
    await db_session.commit()
    return listing


def test_backoff_doubles_and_caps():
    assert backoff_delay(1, 60) == timedelta(seconds=60)
    assert backoff_delay(2, 60) == timedelta(seconds=120)
    assert backoff_delay(3, 60) == timedelta(seconds=240)
    assert backoff_delay(20, 60) == timedelta(hours=6)


async def test_enqueue_reuses_queued_job(db_session, listing):
    first = await enqueue_sync_job(db_session, listing_id=listing.id)
    second = await enqueue_sync_job(db_session, listing_id=listing.id, platforms=["ebay"])

    assert first.id == second.id
    assert await peek_queue_count(db_session) == 1


async def test_only_due_jobs_are_fetched(db_session, listing):
    await enqueue_sync_job(db_session, listing_id=listing.id, delay_seconds=600)
    await db_session.commit()

    assert await fetch_next_due_job(db_session) is None
    assert await fetch_next_due_job(db_session, now=utc_now() + timedelta(hours=1)) is not None


async def test_retryable_failure_is_rescheduled(db_session, listing):
    job = await enqueue_sync_job(db_session, listing_id=listing.id, max_attempts=3)
    job.attempts = 1

    status = await record_job_outcome(db_session, job, failed_result(listing.id), base_delay_seconds=60)

    assert status == SyncJobStatus.QUEUED.value
    assert job.platforms == ["reverb"]
    assert as_utc(job.scheduled_for) > utc_now() + timedelta(seconds=30)


async def test_exhausted_attempts_fail_the_job(db_session, listing):
    job = await enqueue_sync_job(db_session, listing_id=listing.id, max_attempts=3)
    job.attempts = 3

    status = await record_job_outcome(db_session, job, failed_result(listing.id), base_delay_seconds=60)

    assert status == SyncJobStatus.FAILED.value
    assert "Gave up after 3 attempts" in job.error_message


async def test_non_retryable_failure_fails_at_once(db_session, listing):
    job = await enqueue_sync_job(db_session, listing_id=listing.id)
    job.attempts = 1

    status = await record_job_outcome(db_session, job, failed_result(listing.id, retryable=False), 60)

    assert status == SyncJobStatus.FAILED.value


async def test_worker_completes_successful_job(db_session, listing, mocker):
    orchestrator = mocker.MagicMock()
    orchestrator.sync_listing_across_platforms = mocker.AsyncMock(
        return_value=SyncResult(listing_id=listing.id, success=True)
    )
    await enqueue_sync_job(db_session, listing_id=listing.id)
    await db_session.commit()

    job = await SyncRetryWorker(orchestrator).run_once(db_session)

    assert job.status == SyncJobStatus.COMPLETED.value
    assert job.attempts == 1
    orchestrator.sync_listing_across_platforms.assert_awaited_once_with(db_session, listing.id, platforms=None)


async def test_worker_busy_listing_does_not_use_an_attempt(db_session, listing, mocker):
    orchestrator = mocker.MagicMock()
    orchestrator.sync_listing_across_platforms = mocker.AsyncMock(side_effect=SyncInProgressError("busy"))
    await enqueue_sync_job(db_session, listing_id=listing.id)
    await db_session.commit()

    job = await SyncRetryWorker(orchestrator).run_once(db_session)

    assert job.status == SyncJobStatus.QUEUED.value
    assert job.attempts == 0


async def test_worker_validation_error_is_terminal(db_session, listing, mocker):
    orchestrator = mocker.MagicMock()
    orchestrator.sync_listing_across_platforms = mocker.AsyncMock(
        side_effect=ValidationFailedError("no photos", problems=["at least one photo is required"])
    )
    await enqueue_sync_job(db_session, listing_id=listing.id)
    await db_session.commit()

    job = await SyncRetryWorker(orchestrator).run_once(db_session)

    assert job.status == SyncJobStatus.FAILED.value
    assert job.error_message == "no photos"


async def test_worker_retryable_service_error_is_rescheduled(db_session, listing, mocker):
    orchestrator = mocker.MagicMock()
    orchestrator.sync_listing_across_platforms = mocker.AsyncMock(
        side_effect=PlatformRequestFailedError("connection reset")
    )
    await enqueue_sync_job(db_session, listing_id=listing.id, max_attempts=3)
    await db_session.commit()

    job = await SyncRetryWorker(orchestrator).run_once(db_session)

    assert job.status == SyncJobStatus.QUEUED.value
    assert job.attempts == 1


async def test_worker_with_empty_queue(db_session, mocker):
    assert await SyncRetryWorker(mocker.MagicMock()).run_once(db_session) is None


async def test_worker_retries_only_the_platforms_that_failed(db_session, listing, mocker):
    orchestrator = mocker.MagicMock()
    orchestrator.sync_listing_across_platforms = mocker.AsyncMock(
        return_value=SyncResult(listing_id=listing.id, success=True)
    )
    await enqueue_sync_job(db_session, listing_id=listing.id, platforms=["reverb"])
    await db_session.commit()

    await SyncRetryWorker(orchestrator).run_once(db_session)

    orchestrator.sync_listing_across_platforms.assert_awaited_once_with(db_session, listing.id, platforms=["reverb"])
