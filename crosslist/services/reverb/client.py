import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from crosslist.core.enums import Remediation
from crosslist.core.exceptions import (
    BaseServiceError,
    PlatformRequestFailedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

PLATFORM = "reverb"


def _error_message(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    message = body.get("message") or body.get("error_description") or body.get("error") or ""
    errors = body.get("errors")
    if isinstance(errors, dict) and errors:
        details = "; ".join(f"{field}: {', '.join(map(str, msgs)) if isinstance(msgs, list) else msgs}" for field, msgs in errors.items())
        message = f"{message} ({details})" if message else details
    return str(message)


def map_reverb_error(status_code: int, body: Any) -> BaseServiceError:
    """Translate a Reverb error response into the shared error hierarchy."""
    message = _error_message(body)
    detail = f"Reverb {status_code}" + (f": {message}" if message else "")

    if status_code in (401, 403):
        return PlatformRequestFailedError(
            detail,
            platform=PLATFORM,
            retryable=False,
            remediation=Remediation.RECONNECT,
            status_code=status_code,
        )
    if status_code in (400, 422):
        return ValidationFailedError(detail, platform=PLATFORM, problems=[message or detail])
    if status_code == 429 or status_code >= 500:
        return PlatformRequestFailedError(detail, platform=PLATFORM, retryable=True, status_code=status_code)
    return PlatformRequestFailedError(detail, platform=PLATFORM, retryable=False, status_code=status_code)


class ReverbClient:
    """
    Asynchronous client for the Reverb REST API (v3).

    Covers what cross-listing needs: creating, updating and ending listings,
    reading a listing's state, reading sold orders, and public listing search.

    Documentation: https://www.reverb-api.com/docs/
    """

    PRODUCTION_BASE_URL = "https://api.reverb.com/api"
    SANDBOX_BASE_URL = "https://sandbox.reverb.com/api"

    def __init__(self, access_token: Optional[str] = None, use_sandbox: bool = False, timeout: float = 30.0):
        """
        Initialize the Reverb client

        Args:
            access_token: OAuth bearer token; None for public endpoints
            use_sandbox: Whether to use the sandbox environment
        """
        self.access_token = access_token
        self.use_sandbox = use_sandbox
        self.timeout = timeout
        self.BASE_URL = self.SANDBOX_BASE_URL if use_sandbox else self.PRODUCTION_BASE_URL

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests"""
        headers = {
            "Content-Type": "application/hal+json",
            "Accept": "application/hal+json",
            "Accept-Version": "3.0",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """
        Make a request to the Reverb API

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (without base URL)
            data: Request payload for POST/PUT requests
            params: Query parameters

        Returns:
            Dict: Response data

        Raises:
            PlatformRequestFailedError / ValidationFailedError: mapped from the Reverb response
        """
        url = f"{self.BASE_URL}/{endpoint.lstrip('/')}"
        logger.debug(f"Making {method} request to {url}")
        if params:
            logger.debug(f"Params: {params}")
        if data:
            logger.debug(f"Data: {json.dumps(data)[:500]}...")  # Log only first 500 chars of data

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    json=data,
                    params=params
                )
        except httpx.TimeoutException as e:
            logger.error(f"Timeout error: {str(e)}")
            raise PlatformRequestFailedError(f"Reverb request timed out: {str(e)}", platform=PLATFORM) from e
        except httpx.RequestError as e:
            logger.error(f"Network error: {str(e)}")
            raise PlatformRequestFailedError(f"Network error calling Reverb: {str(e)}", platform=PLATFORM) from e

        if response.status_code not in (200, 201, 202, 204):
            try:
                body = response.json()
            except ValueError:
                body = {}
            logger.error(f"Reverb API error {response.status_code}: {response.text[:500]}")
            raise map_reverb_error(response.status_code, body)

        if response.status_code == 204 or not response.content:  # No content
            return {}
        return response.json()

    # Listing operations

    async def create_listing(self, listing_data: Dict) -> Dict:
        return await self._make_request("POST", "/listings", data=listing_data)

    async def update_listing(self, listing_id: str, listing_data: Dict) -> Dict:
        return await self._make_request("PUT", f"/listings/{listing_id}", data=listing_data)

    async def get_listing(self, listing_id: str) -> Dict:
        return await self._make_request("GET", f"/listings/{listing_id}")

    async def end_listing(self, listing_id: str, reason: str = "not_sold") -> Dict:
        """
        End a live listing.

        Args:
            listing_id: Reverb listing ID
            reason: "not_sold" or "reverb_sale"
        """
        return await self._make_request("PUT", f"/my/listings/{listing_id}/state/end", data={"reason": reason})

    # Orders

    async def get_sold_orders(self, params: Optional[Dict] = None) -> List[Dict]:
        response = await self._make_request("GET", "/my/orders/selling/all", params=params or {})
        return response.get("orders", [])

    # Search

    async def search_listings(self, query: str, params: Optional[Dict] = None) -> List[Dict]:
        request_params = {"query": query}
        request_params.update(params or {})
        response = await self._make_request("GET", "/listings", params=request_params)
        return response.get("listings", [])
