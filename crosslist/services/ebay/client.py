import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from crosslist.core.enums import Remediation
from crosslist.core.exceptions import (
    BaseServiceError,
    PlatformRequestFailedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

PLATFORM = "ebay"

# eBay error ids grouped by what the user (or we) can do about them
AUTH_ERROR_IDS = {1001, 1002, 1100}
VALIDATION_ERROR_IDS = {2001, 2004, 25002, 25007, 25021} | set(range(21916, 21922))
RETRYABLE_ERROR_IDS = {931, 25001}


def _first_error(body: Any) -> Tuple[Optional[int], str]:
    if isinstance(body, dict):
        errors = body.get("errors") or []
        if errors and isinstance(errors[0], dict):
            first = errors[0]
            try:
                error_id = int(first.get("errorId")) if first.get("errorId") is not None else None
            except (TypeError, ValueError):
                error_id = None
            return error_id, first.get("longMessage") or first.get("message") or ""
        if body.get("error"):
            return None, body.get("error_description") or body["error"]
    return None, ""


def map_ebay_error(status_code: int, body: Any) -> BaseServiceError:
    """Translate an eBay REST error response into the shared error hierarchy."""
    error_id, message = _first_error(body)
    detail = f"eBay {status_code}" + (f" [{error_id}]" if error_id else "") + (f": {message}" if message else "")

    if error_id in AUTH_ERROR_IDS or status_code in (401, 403):
        return PlatformRequestFailedError(
            detail,
            platform=PLATFORM,
            retryable=False,
            remediation=Remediation.RECONNECT,
            status_code=status_code,
            error_code=str(error_id) if error_id else None,
        )
    if error_id in RETRYABLE_ERROR_IDS or status_code == 429 or status_code >= 500:
        return PlatformRequestFailedError(
            detail,
            platform=PLATFORM,
            retryable=True,
            status_code=status_code,
            error_code=str(error_id) if error_id else None,
        )
    if error_id in VALIDATION_ERROR_IDS or status_code in (400, 422):
        return ValidationFailedError(detail, platform=PLATFORM, problems=[message or detail])
    return PlatformRequestFailedError(
        detail,
        platform=PLATFORM,
        retryable=False,
        status_code=status_code,
        error_code=str(error_id) if error_id else None,
    )


class EbayClient:
    """
    Client for the eBay Sell (Inventory, Fulfillment) and Buy (Browse) REST APIs.

    The client is bound to a single bearer token: a user token for the Sell
    APIs or an application token for Browse.
    """

    def __init__(
        self,
        access_token: str,
        sandbox: bool = False,
        marketplace_id: str = "EBAY_US",
        timeout: float = 30.0,
    ):
        self.access_token = access_token
        self.sandbox = sandbox
        self.marketplace_id = marketplace_id
        self.timeout = timeout

        # Set API endpoints
        base = "https://api.sandbox.ebay.com" if sandbox else "https://api.ebay.com"
        self.INVENTORY_API = f"{base}/sell/inventory/v1"
        self.FULFILLMENT_API = f"{base}/sell/fulfillment/v1"
        self.BROWSE_API = f"{base}/buy/browse/v1"

    def _get_headers(self) -> Dict[str, str]:
        """Get headers with auth token for API requests"""
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Content-Language": "en-US",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        expected: Tuple[int, ...] = (200, 201, 204),
    ) -> Dict:
        """
        Make a request to an eBay REST API.

        Returns:
            Dict: Response data ({} for empty bodies)

        Raises:
            PlatformRequestFailedError / ValidationFailedError: mapped from the eBay response
        """
        logger.debug(f"Making {method} request to {url}")
        if data:
            logger.debug(f"Data: {json.dumps(data)[:500]}...")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    json=data,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.error(f"eBay request timed out: {method} {url}")
            raise PlatformRequestFailedError(f"eBay request timed out: {str(e)}", platform=PLATFORM) from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling eBay: {str(e)}")
            raise PlatformRequestFailedError(f"Network error calling eBay: {str(e)}", platform=PLATFORM) from e

        if response.status_code not in expected:
            try:
                body = response.json()
            except ValueError:
                body = {}
            logger.error(f"eBay API error {response.status_code}: {response.text[:500]}")
            raise map_ebay_error(response.status_code, body)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # Inventory items

    async def create_or_update_inventory_item(self, sku: str, item_data: Dict) -> bool:
        await self._make_request("PUT", f"{self.INVENTORY_API}/inventory_item/{sku}", data=item_data)
        return True

    # Offers

    async def get_offers(self, sku: str) -> List[Dict]:
        """Get the offers for a SKU; an unknown SKU yields an empty list."""
        try:
            response = await self._make_request(
                "GET",
                f"{self.INVENTORY_API}/offer",
                params={"sku": sku, "marketplace_id": self.marketplace_id},
            )
        except BaseServiceError as e:
            # eBay answers 404 (error 25713) when the SKU has no offers
            if getattr(e, "status_code", None) == 404:
                return []
            raise
        return response.get("offers", [])

    async def create_offer(self, offer_data: Dict) -> Dict:
        return await self._make_request("POST", f"{self.INVENTORY_API}/offer", data=offer_data)

    async def update_offer(self, offer_id: str, offer_data: Dict) -> Dict:
        return await self._make_request("PUT", f"{self.INVENTORY_API}/offer/{offer_id}", data=offer_data)

    async def publish_offer(self, offer_id: str) -> Dict:
        """Publish an offer to make it active on eBay; the response carries the listingId."""
        return await self._make_request("POST", f"{self.INVENTORY_API}/offer/{offer_id}/publish", expected=(200,))

    async def withdraw_offer(self, offer_id: str) -> Dict:
        """End the live listing behind an offer without deleting the offer."""
        return await self._make_request("POST", f"{self.INVENTORY_API}/offer/{offer_id}/withdraw", expected=(200,))

    # Orders

    async def get_orders(self, filter_expr: Optional[str] = None, limit: int = 50) -> List[Dict]:
        params = {"limit": limit}
        if filter_expr:
            params["filter"] = filter_expr
        response = await self._make_request("GET", f"{self.FULFILLMENT_API}/order", params=params, expected=(200,))
        return response.get("orders", [])

    # Browse

    async def search_items(
        self,
        query: str,
        filters: Optional[List[str]] = None,
        limit: int = 50,
    ) -> List[Dict]:
        params = {"q": query, "limit": min(max(limit, 1), 200)}
        if filters:
            params["filter"] = ",".join(filters)
        response = await self._make_request(
            "GET", f"{self.BROWSE_API}/item_summary/search", params=params, expected=(200,)
        )
        return response.get("itemSummaries", [])
