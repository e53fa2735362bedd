"""
Background worker that drains the sync retry queue.

Run alongside the API:  python scripts/run_sync_worker.py
"""
import asyncio
import logging
import os
import signal
from typing import Any

from crosslist.core.config import get_settings
from crosslist.core.logging_config import configure_logging
from crosslist.database import async_session, dispose_engine
from crosslist.integrations.registry import build_sync_services
from crosslist.services.notification_service import EmailNotificationService
from crosslist.services.sync_queue import peek_queue_count

logger = logging.getLogger("sync_worker")

# Graceful shutdown flag
_shutdown_requested = False


def _handle_signal(*_: Any) -> None:
    global _shutdown_requested
    if _shutdown_requested:
        # Second signal = force exit
        logger.warning("Forced shutdown requested")
        raise SystemExit(1)
    _shutdown_requested = True
    logger.info("Shutdown requested - will exit after current job completes")


async def worker_loop(worker, poll_interval: float) -> None:
    while not _shutdown_requested:
        async with async_session() as session:
            try:
                job = await worker.run_once(session)
            except Exception as exc:
                await session.rollback()
                logger.error("Sync worker iteration failed: %s", exc, exc_info=True)
                job = None
            else:
                if job is not None:
                    logger.info("Sync job %s finished as %s", job.id, job.status)
                    remaining = await peek_queue_count(session)
                    logger.debug(f"{remaining} sync jobs still queued")

        if job is None:
            await asyncio.sleep(poll_interval)


async def main() -> None:
    settings = get_settings()
    configure_logging(os.environ.get("SYNC_WORKER_LOG_LEVEL", settings.LOG_LEVEL))

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle_signal)

    services = build_sync_services(settings)
    notifier = EmailNotificationService(settings)
    services.event_bus.subscribe(notifier.handle_sync_event)

    logger.info(
        "Starting sync worker (poll=%ss, platforms=%s)",
        settings.SYNC_WORKER_POLL_INTERVAL,
        sorted(services.adapters),
    )
    try:
        await worker_loop(services.retry_worker, settings.SYNC_WORKER_POLL_INTERVAL)
    except SystemExit:
        pass
    finally:
        await dispose_engine()
        logger.info("Sync worker shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
