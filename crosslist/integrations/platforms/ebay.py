import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from crosslist.core.enums import ListingStatus
from crosslist.core.exceptions import PlatformRequestFailedError, ValidationFailedError
from crosslist.core.utils import parse_iso_datetime, utc_now
from crosslist.integrations.base import PlatformAdapter
from crosslist.schemas.listing import ListingSpec
from crosslist.schemas.pricing import Comparable
from crosslist.schemas.sync import RemoteListingState
from crosslist.services.ebay.client import EbayClient
from crosslist.services.oauth import OAuthClient

logger = logging.getLogger(__name__)

# Inventory API condition enums
INVENTORY_CONDITIONS = {
    "new": "NEW",
    "like new": "LIKE_NEW",
    "excellent": "USED_EXCELLENT",
    "very good": "USED_VERY_GOOD",
    "good": "USED_GOOD",
    "used": "USED_GOOD",
    "fair": "USED_ACCEPTABLE",
    "poor": "FOR_PARTS_OR_NOT_WORKING",
}

# Browse API conditionIds filter values
CONDITION_IDS = {
    "new": "1000",
    "like new": "1500",
    "excellent": "2000",
    "very good": "2500",
    "good": "3000",
    "used": "3000",
    "fair": "4000",
    "poor": "5000",
}

APP_SCOPE = "https://api.ebay.com/oauth/api_scope"
APP_TOKEN_BUFFER = timedelta(minutes=5)


class EbayPlatform(PlatformAdapter):
    """
    eBay via the Sell Inventory API.

    The platform identifier stored for a listing is its inventory SKU: every
    offer, order line item and listing id can be reached from it.
    """

    platform = "ebay"

    def __init__(
        self,
        oauth: Optional[OAuthClient] = None,
        *,
        sandbox: bool = False,
        marketplace_id: str = "EBAY_US",
        fulfillment_policy_id: str = "",
        payment_policy_id: str = "",
        return_policy_id: str = "",
        merchant_location_key: str = "",
        timeout: float = 30.0,
    ):
        super().__init__(oauth=oauth, timeout=timeout)
        self.sandbox = sandbox
        self.marketplace_id = marketplace_id
        self.fulfillment_policy_id = fulfillment_policy_id
        self.payment_policy_id = payment_policy_id
        self.return_policy_id = return_policy_id
        self.merchant_location_key = merchant_location_key

        self._app_token: Optional[str] = None
        self._app_token_expires_at: Optional[datetime] = None
        self._app_token_lock = asyncio.Lock()

    def _client(self, access_token: str) -> EbayClient:
        return EbayClient(
            access_token,
            sandbox=self.sandbox,
            marketplace_id=self.marketplace_id,
            timeout=self.timeout,
        )

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------
    def _inventory_item_payload(self, spec: ListingSpec) -> Dict[str, Any]:
        condition = INVENTORY_CONDITIONS.get(self.normalize_condition(spec.condition), "USED_GOOD")
        aspects = {}
        if spec.brand:
            aspects["Brand"] = [spec.brand]
        if spec.model:
            aspects["Model"] = [spec.model]
        return {
            "availability": {"shipToLocationAvailability": {"quantity": spec.quantity}},
            "condition": condition,
            "product": {
                "title": spec.title[:80],
                "description": spec.description or spec.title,
                "imageUrls": spec.photos[:24],
                "aspects": aspects,
            },
        }

    def _offer_payload(self, spec: ListingSpec) -> Dict[str, Any]:
        if not spec.category_id:
            raise ValidationFailedError(
                "eBay listings need a category",
                platform=self.platform,
                problems=["category_id is required for eBay"],
            )
        payload = {
            "sku": spec.sku,
            "marketplaceId": self.marketplace_id,
            "format": "FIXED_PRICE",
            "availableQuantity": spec.quantity,
            "categoryId": spec.category_id,
            "listingDescription": spec.description or spec.title,
            "pricingSummary": {
                "price": {"value": f"{spec.price:.2f}", "currency": spec.currency},
            },
            "listingPolicies": {
                "fulfillmentPolicyId": self.fulfillment_policy_id,
                "paymentPolicyId": self.payment_policy_id,
                "returnPolicyId": self.return_policy_id,
            },
        }
        if self.merchant_location_key:
            payload["merchantLocationKey"] = self.merchant_location_key
        return payload

    # ------------------------------------------------------------------
    # Listing lifecycle
    # ------------------------------------------------------------------
    async def create_listing(self, access_token: str, spec: ListingSpec) -> str:
        offer_payload = self._offer_payload(spec)
        client = self._client(access_token)

        await client.create_or_update_inventory_item(spec.sku, self._inventory_item_payload(spec))

        # An earlier attempt may have created the offer and failed to publish it
        offers = await client.get_offers(spec.sku)
        live = [o for o in offers if (o.get("status") or "").upper() == "PUBLISHED"]
        if live:
            await client.update_offer(live[0]["offerId"], offer_payload)
            logger.info(f"eBay offer {live[0]['offerId']} for SKU {spec.sku} is already published")
            return spec.sku

        if offers:
            offer_id = offers[0]["offerId"]
            await client.update_offer(offer_id, offer_payload)
        else:
            offer_id = (await client.create_offer(offer_payload))["offerId"]
        published = await client.publish_offer(offer_id)
        logger.info(f"Published eBay offer {offer_id} for SKU {spec.sku} (listing {published.get('listingId')})")
        return spec.sku

    async def update_listing(self, access_token: str, external_id: str, spec: ListingSpec) -> None:
        offer_payload = self._offer_payload(spec)
        offer_payload["sku"] = external_id
        client = self._client(access_token)

        await client.create_or_update_inventory_item(external_id, self._inventory_item_payload(spec))
        offers = await client.get_offers(external_id)
        if not offers:
            logger.warning(f"No eBay offer found for SKU {external_id}; creating a new one")
            offer = await client.create_offer(offer_payload)
            await client.publish_offer(offer["offerId"])
            return

        for offer in offers:
            await client.update_offer(offer["offerId"], offer_payload)

    async def end_listing(self, access_token: str, external_id: str, reason: str) -> None:
        client = self._client(access_token)
        offers = await client.get_offers(external_id)
        published = [o for o in offers if (o.get("status") or "").upper() == "PUBLISHED"]
        if not published:
            logger.info(f"No published eBay offer for SKU {external_id}; nothing to end")
            return
        for offer in published:
            await client.withdraw_offer(offer["offerId"])
            logger.info(f"Withdrew eBay offer {offer['offerId']} for SKU {external_id} ({reason})")

    async def get_listing_state(self, access_token: str, external_id: str) -> RemoteListingState:
        client = self._client(access_token)
        offers = await client.get_offers(external_id)
        if not offers:
            return RemoteListingState(status=ListingStatus.ENDED)

        offer = offers[0]
        offer_status = (offer.get("status") or "").upper()
        listing_id = (offer.get("listing") or {}).get("listingId")
        listing_url = f"https://www.ebay.com/itm/{listing_id}" if listing_id else None

        sold = offer_status == "SOLD" or offer.get("availableQuantity") == 0
        if sold:
            sold_at = await self._find_sale_time(client, external_id)
            return RemoteListingState(status=ListingStatus.SOLD, sold_at=sold_at, listing_url=listing_url, raw=offer)
        if offer_status == "PUBLISHED":
            return RemoteListingState(status=ListingStatus.ACTIVE, listing_url=listing_url, raw=offer)
        return RemoteListingState(status=ListingStatus.ENDED, listing_url=listing_url, raw=offer)

    async def _find_sale_time(self, client: EbayClient, sku: str) -> Optional[datetime]:
        since = (utc_now() - timedelta(days=30)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        orders = await client.get_orders(filter_expr=f"creationdate:[{since}..]", limit=200)
        times = [
            parse_iso_datetime(order.get("creationDate"))
            for order in orders
            if any(item.get("sku") == sku for item in order.get("lineItems", []))
        ]
        times = [t for t in times if t is not None]
        return min(times) if times else None

    # ------------------------------------------------------------------
    # Comparables
    # ------------------------------------------------------------------
    async def _get_app_token(self) -> str:
        async with self._app_token_lock:
            if self._app_token and self._app_token_expires_at and utc_now() < self._app_token_expires_at - APP_TOKEN_BUFFER:
                return self._app_token
            if self.oauth is None:
                raise PlatformRequestFailedError(
                    "eBay search requires application credentials", platform=self.platform, retryable=False
                )
            grant = await self.oauth.client_credentials([APP_SCOPE])
            self._app_token = grant.access_token
            self._app_token_expires_at = grant.expires_at
            return self._app_token

    async def search_comparables(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 50,
    ) -> List[Comparable]:
        filters = filters or {}
        filter_parts = ["buyingOptions:{AUCTION|FIXED_PRICE}"]
        condition_id = CONDITION_IDS.get(self.normalize_condition(filters.get("condition")))
        if condition_id:
            filter_parts.append(f"conditionIds:{{{condition_id}}}")

        token = await self._get_app_token()
        items = await self._client(token).search_items(query, filters=filter_parts, limit=limit)

        comparables = []
        for item in items:
            price = item.get("price") or {}
            categories = item.get("categories") or []
            try:
                value = float(price["value"]) if price.get("value") is not None else None
            except (TypeError, ValueError):
                value = None
            comparables.append(
                Comparable(
                    item_id=str(item.get("itemId")),
                    title=item.get("title") or "",
                    price=value,
                    currency=price.get("currency"),
                    condition=item.get("condition"),
                    category_id=str(categories[0]["categoryId"]) if categories and categories[0].get("categoryId") else None,
                    url=item.get("itemWebUrl"),
                    platform=self.platform,
                )
            )
        return comparables
