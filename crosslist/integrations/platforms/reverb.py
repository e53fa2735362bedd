import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from crosslist.core.enums import ListingStatus
from crosslist.core.utils import parse_iso_datetime
from crosslist.integrations.base import PlatformAdapter
from crosslist.schemas.listing import ListingSpec
from crosslist.schemas.pricing import Comparable
from crosslist.schemas.sync import RemoteListingState
from crosslist.services.oauth import OAuthClient
from crosslist.services.reverb.client import ReverbClient

logger = logging.getLogger(__name__)

CONDITION_UUIDS = {
    "new": "7c3f45de-2ae0-4c81-8400-fdb6b1d74890",
    "like new": "ec942c5e-fd9d-4a70-af95-ce686ed439e5",  # Mint
    "excellent": "df268ad1-c462-4ba6-b6db-e007e23922ea",
    "very good": "ae4d9114-1bd7-4ec5-a4ba-6653af5ac84d",
    "good": "f7a3f48c-972a-44c6-b01a-0cd27488d3f6",
    "used": "f7a3f48c-972a-44c6-b01a-0cd27488d3f6",
    "fair": "98777886-76d0-44c8-865e-bb40e669e934",
    "poor": "6a9dfcad-600b-46c8-9e08-ce6e5057921e",
}

# Reverb search accepts condition slugs
CONDITION_SLUGS = {
    "new": "brand-new",
    "like new": "mint",
    "excellent": "excellent",
    "very good": "very-good",
    "good": "good",
    "used": "used",
    "fair": "fair",
    "poor": "poor",
}

STATE_MAP = {
    "live": ListingStatus.ACTIVE,
    "sold": ListingStatus.SOLD,
    "sold_out": ListingStatus.SOLD,
    "ended": ListingStatus.ENDED,
    "suspended": ListingStatus.ENDED,
    "draft": ListingStatus.DRAFT,
}


class ReverbPlatform(PlatformAdapter):
    platform = "reverb"

    def __init__(self, oauth: Optional[OAuthClient] = None, *, use_sandbox: bool = False, timeout: float = 30.0):
        super().__init__(oauth=oauth, timeout=timeout)
        self.use_sandbox = use_sandbox

    def _client(self, access_token: Optional[str]) -> ReverbClient:
        return ReverbClient(access_token, use_sandbox=self.use_sandbox, timeout=self.timeout)

    def _listing_payload(self, spec: ListingSpec) -> Dict[str, Any]:
        payload = {
            "title": spec.title,
            "description": spec.description or spec.title,
            "sku": spec.sku,
            "price": {"amount": f"{spec.price:.2f}", "currency": spec.currency},
            "photos": spec.photos,
            "has_inventory": spec.quantity > 1,
            "inventory": spec.quantity,
        }
        condition_uuid = CONDITION_UUIDS.get(self.normalize_condition(spec.condition))
        if condition_uuid:
            payload["condition"] = {"uuid": condition_uuid}
        if spec.brand:
            payload["make"] = spec.brand
        if spec.model:
            payload["model"] = spec.model
        if spec.category_id:
            payload["categories"] = [{"uuid": spec.category_id}]
        return payload

    def listing_url(self, external_id: str) -> Optional[str]:
        host = "sandbox.reverb.com" if self.use_sandbox else "reverb.com"
        return f"https://{host}/item/{external_id}"

    async def create_listing(self, access_token: str, spec: ListingSpec) -> str:
        payload = self._listing_payload(spec)
        payload["publish"] = True
        response = await self._client(access_token).create_listing(payload)
        listing = response.get("listing", response)
        listing_id = str(listing["id"])
        logger.info(f"Created Reverb listing {listing_id} for SKU {spec.sku}")
        return listing_id

    async def update_listing(self, access_token: str, external_id: str, spec: ListingSpec) -> None:
        await self._client(access_token).update_listing(external_id, self._listing_payload(spec))

    async def end_listing(self, access_token: str, external_id: str, reason: str) -> None:
        # Reverb only knows "not_sold" and "reverb_sale"; a sale elsewhere is "not_sold" here
        await self._client(access_token).end_listing(external_id, reason="not_sold")
        logger.info(f"Ended Reverb listing {external_id} ({reason})")

    async def get_listing_state(self, access_token: str, external_id: str) -> RemoteListingState:
        client = self._client(access_token)
        listing = await client.get_listing(external_id)
        slug = ((listing.get("state") or {}).get("slug") or "").lower()
        status = STATE_MAP.get(slug, ListingStatus.ENDED)
        web = ((listing.get("_links") or {}).get("web") or {}).get("href")

        sold_at = None
        if status == ListingStatus.SOLD:
            sold_at = await self._find_sale_time(client, external_id)
        return RemoteListingState(status=status, sold_at=sold_at, listing_url=web or self.listing_url(external_id), raw=listing)

    async def _find_sale_time(self, client: ReverbClient, external_id: str) -> Optional[datetime]:
        orders = await client.get_sold_orders({"per_page": 50})
        times = [
            parse_iso_datetime(order.get("paid_at") or order.get("created_at"))
            for order in orders
            if str(order.get("product_id")) == str(external_id)
        ]
        times = [t for t in times if t is not None]
        return min(times) if times else None

    async def search_comparables(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 50,
    ) -> List[Comparable]:
        filters = filters or {}
        params = {"per_page": min(max(limit, 1), 100)}
        condition = CONDITION_SLUGS.get(self.normalize_condition(filters.get("condition")))
        if condition:
            params["condition"] = condition

        listings = await self._client(None).search_listings(query, params)
        comparables = []
        for item in listings:
            price = item.get("price") or {}
            categories = item.get("categories") or []
            try:
                amount = float(price["amount"]) if price.get("amount") is not None else None
            except (TypeError, ValueError):
                amount = None
            comparables.append(
                Comparable(
                    item_id=str(item.get("id")),
                    title=item.get("title") or "",
                    price=amount,
                    currency=price.get("currency"),
                    condition=(item.get("condition") or {}).get("display_name"),
                    category_id=categories[0].get("uuid") if categories else None,
                    url=((item.get("_links") or {}).get("web") or {}).get("href"),
                    platform=self.platform,
                )
            )
        return comparables
