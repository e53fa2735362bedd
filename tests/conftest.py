# tests/conftest.py
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crosslist import models  # noqa: F401  registers every table on Base.metadata
from crosslist.core.config import Settings
from crosslist.core.enums import ListingStatus, SyncStatus
from crosslist.core.utils import utc_now
from crosslist.database import Base
from crosslist.integrations.events import SyncEventBus
from crosslist.models import Listing, MarketplaceAccount, PlatformListing
from crosslist.services.conflict_resolver import ConflictResolver
from crosslist.services.sync_orchestrator import SyncOrchestrator
from crosslist.services.token_manager import TokenLifecycleManager
from tests.mocks.mock_platform import MockPlatformAdapter

# In-memory SQLite shared across connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        _env_file=None,
        DATABASE_URL=TEST_DATABASE_URL,
        EBAY_CLIENT_ID="ebay-client",
        EBAY_CLIENT_SECRET="ebay-secret",
        REVERB_CLIENT_ID="reverb-client",
        REVERB_CLIENT_SECRET="reverb-secret",
        SYNC_RETRY_BASE_DELAY_SECONDS=60,
    )


@pytest.fixture(scope="function")
async def test_engine():
    """Create and configure the test database engine (function-scoped)."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def ebay_adapter():
    return MockPlatformAdapter("ebay")


@pytest.fixture
def reverb_adapter():
    return MockPlatformAdapter("reverb")


@pytest.fixture
def adapters(ebay_adapter, reverb_adapter):
    return {"ebay": ebay_adapter, "reverb": reverb_adapter}


@pytest.fixture
def token_manager():
    # No OAuth clients: every account in these tests carries a long-lived token
    return TokenLifecycleManager({})


@pytest.fixture
def event_bus():
    return SyncEventBus()


@pytest.fixture
def published_events(event_bus):
    events = []
    event_bus.subscribe(events.append)
    return events


@pytest.fixture
def resolver(adapters, token_manager, event_bus):
    return ConflictResolver(adapters, token_manager, event_bus=event_bus, timeout=1.0)


@pytest.fixture
def orchestrator(adapters, token_manager, resolver, event_bus):
    return SyncOrchestrator(adapters, token_manager, resolver, event_bus=event_bus, request_timeout=1.0)


async def make_account(db, platform, user_id=1, auto_list=True, **overrides):
    values = dict(
        user_id=user_id,
        platform_name=platform,
        access_token=f"{platform}-token",
        refresh_token=f"{platform}-refresh",
        token_expires_at=utc_now() + timedelta(hours=2),
        is_active=True,
        is_connected=True,
        auto_list=auto_list,
    )
    values.update(overrides)
    account = MarketplaceAccount(**values)
    db.add(account)
    await db.flush()
    return account


async def make_listing(db, user_id=1, **overrides):
    values = dict(
        user_id=user_id,
        sku="GTR-001",
        title="Fender Stratocaster 1972 Sunburst",
        description="Player grade, all original electronics",
        brand="Fender",
        model="Stratocaster",
        condition="excellent",
        category_id="33034",
        price=1850.0,
        currency="USD",
        quantity=1,
        photos=["https://img.example.com/strat-1.jpg"],
        status=ListingStatus.DRAFT.value,
    )
    values.update(overrides)
    listing = Listing(**values)
    db.add(listing)
    await db.flush()
    return listing


async def make_platform_listing(db, listing, platform, **overrides):
    values = dict(
        listing_id=listing.id,
        platform_name=platform,
        external_id=f"{platform}-{listing.id}",
        status=ListingStatus.ACTIVE.value,
        sync_status=SyncStatus.SYNCED.value,
        platform_specific_data={},
    )
    values.update(overrides)
    row = PlatformListing(**values)
    db.add(row)
    await db.flush()
    return row
