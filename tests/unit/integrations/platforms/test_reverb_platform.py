# tests/unit/integrations/platforms/test_reverb_platform.py
from datetime import datetime, timezone

import pytest

from crosslist.core.enums import ListingStatus
from crosslist.integrations.platforms.reverb import CONDITION_UUIDS, ReverbPlatform
from crosslist.schemas.listing import ListingSpec
from crosslist.services.reverb.client import ReverbClient


@pytest.fixture
def spec():
    return ListingSpec(
        listing_id=3,
        sku="AMP-003",
        title="Fender Deluxe Reverb 1965 Reissue",
        brand="Fender",
        model="Deluxe Reverb",
        condition="very good",
        price=1299.0,
        photos=["https://img.example.com/amp.jpg"],
    )


@pytest.fixture
def platform():
    return ReverbPlatform()


async def test_create_listing_publishes_and_returns_id(mocker, platform, spec):
    create = mocker.patch.object(ReverbClient, "create_listing", return_value={"listing": {"id": 555}})

    external_id = await platform.create_listing("user-token", spec)

    assert external_id == "555"
    payload = create.call_args.args[0]
    assert payload["publish"] is True
    assert payload["price"] == {"amount": "1299.00", "currency": "USD"}
    assert payload["condition"] == {"uuid": CONDITION_UUIDS["very good"]}
    assert payload["make"] == "Fender"
    assert payload["description"] == spec.title


async def test_end_listing_uses_not_sold_reason(mocker, platform):
    end = mocker.patch.object(ReverbClient, "end_listing", return_value={})

    await platform.end_listing("user-token", "555", "sold elsewhere")

    end.assert_awaited_once_with("555", reason="not_sold")


async def test_sold_listing_reports_earliest_matching_order(mocker, platform):
    mocker.patch.object(
        ReverbClient,
        "get_listing",
        return_value={"state": {"slug": "sold"}, "_links": {"web": {"href": "https://reverb.com/item/555-amp"}}},
    )
    mocker.patch.object(
        ReverbClient,
        "get_sold_orders",
        return_value=[
            {"product_id": 555, "paid_at": "2026-03-14T10:05:00Z"},
            {"product_id": 555, "created_at": "2026-03-14T10:01:00Z"},
            {"product_id": 999, "paid_at": "2026-03-14T08:00:00Z"},
        ],
    )

    state = await platform.get_listing_state("user-token", "555")

    assert state.status == ListingStatus.SOLD
    assert state.sold_at == datetime(2026, 3, 14, 10, 1, tzinfo=timezone.utc)
    assert state.listing_url == "https://reverb.com/item/555-amp"


@pytest.mark.parametrize("slug, expected", [
    ("live", ListingStatus.ACTIVE),
    ("ended", ListingStatus.ENDED),
    ("draft", ListingStatus.DRAFT),
    ("something_new", ListingStatus.ENDED),
])
async def test_listing_state_mapping(mocker, platform, slug, expected):
    mocker.patch.object(ReverbClient, "get_listing", return_value={"state": {"slug": slug}})
    orders = mocker.patch.object(ReverbClient, "get_sold_orders")

    state = await platform.get_listing_state("user-token", "555")

    assert state.status == expected
    assert state.sold_at is None
    assert state.listing_url == "https://reverb.com/item/555"
    orders.assert_not_called()


async def test_search_comparables_parses_prices_and_condition(mocker, platform):
    search = mocker.patch.object(
        ReverbClient,
        "search_listings",
        return_value=[
            {
                "id": 1,
                "title": "Deluxe Reverb 65 RI",
                "price": {"amount": "1150.00", "currency": "USD"},
                "condition": {"display_name": "Very Good"},
                "categories": [{"uuid": "amps-uuid"}],
                "_links": {"web": {"href": "https://reverb.com/item/1"}},
            },
            {"id": 2, "title": "Broken price", "price": {"amount": "n/a"}},
        ],
    )

    comparables = await platform.search_comparables("Deluxe Reverb", {"condition": "very-good"}, limit=500)

    assert search.call_args.args[0] == "Deluxe Reverb"
    assert search.call_args.args[1] == {"per_page": 100, "condition": "very-good"}
    assert comparables[0].price == 1150.0
    assert comparables[0].category_id == "amps-uuid"
    assert comparables[0].platform == "reverb"
    assert comparables[1].price is None
