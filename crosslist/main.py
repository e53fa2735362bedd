# crosslist/main.py

import logging
import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI

from crosslist.core.config import get_settings
from crosslist.core.logging_config import configure_logging
from crosslist.database import dispose_engine
from crosslist.integrations.registry import build_sync_services
from crosslist.routes import pricing, sync, websockets as websocket_router
from crosslist.services.notification_service import EmailNotificationService
from crosslist.services.websockets.manager import ConnectionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    if os.getenv("RUN_MIGRATIONS", "false").lower() == "true":
        logger.info("Running database migrations...")
        result = subprocess.run(["alembic", "upgrade", "head"], capture_output=True, text=True)
        if result.returncode == 0:
            logger.info("Migrations completed successfully")
        else:
            logger.error(f"Migration failed: {result.stderr}")

    services = build_sync_services(settings)
    ws_manager = ConnectionManager()
    notifier = EmailNotificationService(settings)
    unsubscribers = [
        services.event_bus.subscribe(ws_manager.handle_sync_event),
        services.event_bus.subscribe(notifier.handle_sync_event),
    ]

    app.state.settings = settings
    app.state.services = services
    app.state.ws_manager = ws_manager
    app.state.notifier = notifier
    logger.info(f"Sync service ready with platforms: {sorted(services.adapters) or 'none'}")

    try:
        yield  # This is where the app runs
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()
        await dispose_engine()


app = FastAPI(
    title="Crosslist Sync",
    lifespan=lifespan
)

app.include_router(sync.router)
app.include_router(pricing.router)
app.include_router(websocket_router.router)


@app.get("/health")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": "crosslist-sync",
        "platforms": sorted(app.state.services.adapters) if hasattr(app.state, "services") else [],
    }
