# tests/test_routes/test_sync_routes.py
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from crosslist.core.config import get_settings
from crosslist.core.enums import ListingStatus, SyncJobStatus, SyncStatus
from crosslist.core.exceptions import PlatformRequestFailedError
from crosslist.dependencies import get_db
from crosslist.main import app
from crosslist.models import SyncJob
from crosslist.schemas.pricing import Comparable
from crosslist.services.price_research import PriceResearchEngine
from tests.conftest import make_account, make_listing, make_platform_listing


@pytest.fixture
async def client(db_session, settings, orchestrator, ebay_adapter):
    """Async client against the app with test services and the test session"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.services = SimpleNamespace(
        orchestrator=orchestrator,
        price_engine=PriceResearchEngine(ebay_adapter, timeout=1.0),
        adapters={"ebay": ebay_adapter},
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client
    app.dependency_overrides.clear()
    del app.state.services


async def test_sync_creates_listing(client, db_session):
    await make_account(db_session, "ebay")
    listing = await make_listing(db_session)
    await db_session.commit()

    response = await client.post(f"/api/listings/{listing.id}/sync")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["platforms"][0]["action"] == "created"
    assert data["retry_job_id"] is None


async def test_retryable_failure_is_queued(client, db_session, ebay_adapter):
    await make_account(db_session, "ebay")
    listing = await make_listing(db_session)
    await db_session.commit()
    ebay_adapter.error = PlatformRequestFailedError("eBay 503", platform="ebay")

    response = await client.post(f"/api/listings/{listing.id}/sync")

    data = response.json()
    assert response.status_code == 200
    assert data["success"] is False
    job = await db_session.get(SyncJob, data["retry_job_id"])
    assert job.status == SyncJobStatus.QUEUED.value
    assert job.platforms == ["ebay"]


async def test_incomplete_listing_returns_422(client, db_session):
    listing = await make_listing(db_session, photos=[])
    await db_session.commit()

    response = await client.post(f"/api/listings/{listing.id}/sync")

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["kind"] == "validation_failed"
    assert detail["remediation"] == "fix_data"
    assert detail["problems"] == ["at least one photo is required"]


async def test_listing_already_syncing_returns_409(client, db_session, orchestrator):
    listing = await make_listing(db_session)
    await db_session.commit()
    orchestrator._in_flight.add(listing.id)

    response = await client.post(f"/api/listings/{listing.id}/sync")

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "sync_in_progress"


async def test_unknown_listing_returns_404(client):
    response = await client.post("/api/listings/404/sync")

    assert response.status_code == 404


async def test_sync_status(client, db_session):
    listing = await make_listing(db_session, status=ListingStatus.SOLD.value)
    await make_platform_listing(
        db_session, listing, "reverb",
        status=ListingStatus.SOLD.value,
        sold_at=datetime(2026, 3, 14, 10, 0, tzinfo=timezone.utc),
    )
    await make_platform_listing(
        db_session, listing, "ebay",
        status=ListingStatus.ENDED.value,
        sync_status=SyncStatus.CANCELLED.value,
    )
    await db_session.commit()

    response = await client.get(f"/api/listings/{listing.id}/sync-status")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "sold"
    assert {p["platform_name"]: p["sync_status"] for p in data["platforms"]} == {
        "ebay": "cancelled",
        "reverb": "synced",
    }


async def test_queue_sync_job(client, db_session):
    listing = await make_listing(db_session)
    await db_session.commit()

    response = await client.post(f"/api/listings/{listing.id}/sync/queue", params={"delay_seconds": 30})

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "queued"
    assert (await db_session.get(SyncJob, data["job_id"])).listing_id == listing.id


async def test_queue_sync_for_unknown_listing(client):
    response = await client.post("/api/listings/999/sync/queue")

    assert response.status_code == 404


async def test_price_research(client, ebay_adapter):
    ebay_adapter.comparables = {
        "Boss DS-1 pedal": [
            Comparable(item_id=str(i), title="Boss DS-1", price=price, currency="USD")
            for i, price in enumerate([18, 20, 20, 22, 60])
        ],
    }

    response = await client.post("/api/pricing/research", json={"query": "Boss DS-1 pedal"})

    assert response.status_code == 200
    data = response.json()
    assert data["suggested_price"] == pytest.approx(23.04)
    assert data["confidence"] == "medium"
    assert data["analysis"]["brand"] == "Boss"


async def test_price_research_without_platform(client):
    app.state.services.price_engine = PriceResearchEngine(None)

    response = await client.post("/api/pricing/research", json={"query": "Boss DS-1"})

    assert response.status_code == 503


async def test_health(client):
    response = await client.get("/health")

    assert response.json() == {"status": "healthy", "service": "crosslist-sync", "platforms": ["ebay"]}
