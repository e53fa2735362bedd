# tests/unit/services/test_conflict_resolver.py
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from crosslist.core.enums import ErrorKind, ListingStatus, SyncStatus
from crosslist.core.exceptions import InvalidSyncTransitionError, PlatformRequestFailedError
from crosslist.core.utils import as_utc
from crosslist.models import ActivityLog
from crosslist.services.conflict_resolver import CONFLICT_END_REASON, sale_order_key
from tests.conftest import make_account, make_listing, make_platform_listing

TEN_AM = datetime(2026, 3, 14, 10, 0, tzinfo=timezone.utc)
TEN_OH_THREE = datetime(2026, 3, 14, 10, 3, tzinfo=timezone.utc)


@pytest.fixture
async def sold_twice(db_session):
    """A listing reported sold on eBay at 10:03 and on Reverb at 10:00."""
    await make_account(db_session, "ebay")
    await make_account(db_session, "reverb")
    listing = await make_listing(db_session, status=ListingStatus.ACTIVE.value)
    ebay = await make_platform_listing(
        db_session, listing, "ebay", status=ListingStatus.SOLD.value, sold_at=TEN_OH_THREE
    )
    reverb = await make_platform_listing(
        db_session, listing, "reverb", status=ListingStatus.SOLD.value, sold_at=TEN_AM
    )
    await db_session.commit()
    return listing, ebay, reverb


async def test_earliest_sale_wins(db_session, resolver, sold_twice, ebay_adapter, published_events):
    listing, ebay, reverb = sold_twice

    resolution = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])

    assert resolution.winner_platform == "reverb"
    assert resolution.cancelled_platforms == ["ebay"]
    assert resolution.unresolved_platforms == []
    assert resolution.already_resolved is False

    assert reverb.status == ListingStatus.SOLD.value
    assert reverb.sync_status == SyncStatus.SYNCED.value
    assert ebay.status == ListingStatus.ENDED.value
    assert ebay.sync_status == SyncStatus.CANCELLED.value
    assert ebay.platform_specific_data["conflict_winner"] == "reverb"
    assert ebay.platform_specific_data["remote_end_confirmed"] is True

    assert listing.status == ListingStatus.SOLD.value
    assert as_utc(listing.sold_at) == TEN_AM
    assert ebay_adapter.actions("end") == [("end", "ebay-token", ebay.external_id, CONFLICT_END_REASON)]

    statuses = [(e.platform, e.sync_status) for e in published_events]
    assert ("ebay", SyncStatus.CONFLICT.value) in statuses
    assert ("ebay", SyncStatus.CANCELLED.value) in statuses

    logs = (await db_session.execute(select(ActivityLog).where(ActivityLog.action == "conflict_resolved"))).scalars().all()
    assert len(logs) == 1
    assert logs[0].details["winner"] == "reverb"


async def test_winner_does_not_depend_on_argument_order(db_session, resolver, sold_twice):
    listing, _, _ = sold_twice

    resolution = await resolver.handle_simultaneous_sale(db_session, listing.id, ["reverb", "ebay"])

    assert resolution.winner_platform == "reverb"


async def test_resolving_twice_is_idempotent(db_session, resolver, sold_twice, ebay_adapter):
    listing, ebay, reverb = sold_twice

    first = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])
    second = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])

    assert second.winner_platform == first.winner_platform == "reverb"
    assert second.already_resolved is True
    assert reverb.sync_status == SyncStatus.SYNCED.value
    assert ebay.sync_status == SyncStatus.CANCELLED.value
    # Remote cancel already confirmed, so it is not repeated
    assert len(ebay_adapter.actions("end")) == 1

    logs = (await db_session.execute(select(ActivityLog).where(ActivityLog.action == "conflict_resolved"))).scalars().all()
    assert len(logs) == 1


async def test_failed_remote_cancel_keeps_local_resolution(db_session, resolver, sold_twice, ebay_adapter):
    listing, ebay, reverb = sold_twice
    ebay_adapter.end_error = PlatformRequestFailedError("eBay 503", platform="ebay")

    resolution = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])

    assert resolution.winner_platform == "reverb"
    assert resolution.unresolved_platforms == ["ebay"]
    assert ebay.sync_status == SyncStatus.CANCELLED.value
    assert ebay.status == ListingStatus.ENDED.value
    assert ebay.error_kind == ErrorKind.CONFLICT_UNRESOLVED.value
    assert ebay.platform_specific_data["remote_end_confirmed"] is False
    assert listing.status == ListingStatus.SOLD.value

    # The next resolution retries only the unconfirmed cancel
    ebay_adapter.end_error = None
    retry = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])

    assert retry.already_resolved is True
    assert retry.unresolved_platforms == []
    assert ebay.platform_specific_data["remote_end_confirmed"] is True
    assert ebay.error_kind is None
    assert len(ebay_adapter.actions("end")) == 2


async def test_missing_sale_time_falls_back_to_creation_time(db_session, resolver):
    await make_account(db_session, "ebay")
    await make_account(db_session, "reverb")
    listing = await make_listing(db_session, status=ListingStatus.ACTIVE.value)
    await make_platform_listing(
        db_session, listing, "ebay", status=ListingStatus.SOLD.value, sold_at=None,
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    await make_platform_listing(
        db_session, listing, "reverb", status=ListingStatus.SOLD.value, sold_at=TEN_AM,
    )
    await db_session.commit()

    resolution = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])

    assert resolution.winner_platform == "ebay"


async def test_identical_sale_times_break_ties_by_platform_name(db_session, resolver):
    await make_account(db_session, "ebay")
    await make_account(db_session, "reverb")
    listing = await make_listing(db_session, status=ListingStatus.ACTIVE.value)
    await make_platform_listing(db_session, listing, "reverb", status=ListingStatus.SOLD.value, sold_at=TEN_AM)
    await make_platform_listing(db_session, listing, "ebay", status=ListingStatus.SOLD.value, sold_at=TEN_AM)
    await db_session.commit()

    resolution = await resolver.handle_simultaneous_sale(db_session, listing.id, ["reverb", "ebay"])

    assert resolution.winner_platform == "ebay"


async def test_settle_sale_ends_other_live_copies(db_session, resolver, reverb_adapter):
    await make_account(db_session, "ebay")
    await make_account(db_session, "reverb")
    listing = await make_listing(db_session, status=ListingStatus.ACTIVE.value)
    ebay = await make_platform_listing(db_session, listing, "ebay", status=ListingStatus.SOLD.value, sold_at=TEN_AM)
    reverb = await make_platform_listing(db_session, listing, "reverb")
    await db_session.commit()

    outcomes = await resolver.settle_sale(db_session, listing, ebay)

    assert [(o.platform, o.success, o.action) for o in outcomes] == [("reverb", True, "ended")]
    assert reverb.status == ListingStatus.ENDED.value
    assert reverb.sync_status == SyncStatus.SYNCED.value
    assert listing.status == ListingStatus.SOLD.value
    assert as_utc(listing.sold_at) == TEN_AM
    assert reverb_adapter.actions("end")[0][2] == reverb.external_id


def test_sale_order_key_prefers_sale_time():
    class Row:
        def __init__(self, platform_name, row_id, sold_at, created_at):
            self.platform_name = platform_name
            self.id = row_id
            self.sold_at = sold_at
            self.created_at = created_at

    early = Row("reverb", 2, TEN_AM, TEN_OH_THREE)
    late = Row("ebay", 1, TEN_OH_THREE, TEN_AM)

    assert min([late, early], key=sale_order_key) is early


async def test_naming_only_the_cancelled_copy_keeps_the_earlier_winner(db_session, resolver, sold_twice, ebay_adapter):
    listing, ebay, reverb = sold_twice
    await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay", "reverb"])
    ebay_adapter.clear_history()

    again = await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay"])

    assert again.already_resolved is True
    assert again.winner_platform == "reverb"
    assert ebay.sync_status == SyncStatus.CANCELLED.value
    assert ebay_adapter.calls == []


async def test_resolving_with_no_sale_left_to_keep_is_rejected(db_session, resolver):
    listing = await make_listing(db_session, status=ListingStatus.ENDED.value)
    await make_platform_listing(
        db_session, listing, "ebay", status=ListingStatus.ENDED.value, sync_status=SyncStatus.CANCELLED.value
    )
    await db_session.commit()

    with pytest.raises(InvalidSyncTransitionError):
        await resolver.handle_simultaneous_sale(db_session, listing.id, ["ebay"])
