"""
OAuth token endpoint client shared by every platform.

Only two grants are needed: renewing a user's access token from their refresh
token, and minting an application token (client credentials) for public
search APIs.
"""

import logging
from typing import Dict, List, Optional

import httpx

from crosslist.core.exceptions import PlatformRequestFailedError, RefreshFailedError
from crosslist.schemas.sync import TokenGrant

logger = logging.getLogger(__name__)


class OAuthClient:
    """Talks to one platform's OAuth token endpoint."""

    def __init__(
        self,
        platform: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: Optional[List[str]] = None,
        timeout: float = 30.0,
    ):
        self.platform = platform
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes or []
        self.timeout = timeout

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            RefreshFailedError: the platform rejected the refresh token
            PlatformRequestFailedError: the token endpoint was unreachable (retryable)
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        if self.scopes:
            data["scope"] = " ".join(self.scopes)

        response = await self._post(data)
        if response.status_code == 200:
            grant = self._parse_grant(response.json())
            logger.info(f"Refreshed {self.platform} access token (expires in {grant.expires_in}s)")
            return grant

        error_text = response.text
        if response.status_code >= 500:
            logger.warning(f"{self.platform} token endpoint unavailable ({response.status_code})")
            raise PlatformRequestFailedError(
                f"{self.platform} token endpoint returned {response.status_code}",
                platform=self.platform,
                status_code=response.status_code,
            )

        logger.error(f"{self.platform} token refresh rejected ({response.status_code}): {error_text[:200]}")
        if "invalid_grant" in error_text:
            raise RefreshFailedError(
                f"{self.platform} refresh token is invalid or revoked; reconnect the account",
                platform=self.platform,
            )
        raise RefreshFailedError(
            f"{self.platform} token refresh failed: {error_text[:500]}",
            platform=self.platform,
        )

    async def client_credentials(self, scopes: Optional[List[str]] = None) -> TokenGrant:
        """Mint an application token for APIs that do not act on behalf of a user."""
        data = {"grant_type": "client_credentials"}
        scopes = scopes or self.scopes
        if scopes:
            data["scope"] = " ".join(scopes)

        response = await self._post(data)
        if response.status_code != 200:
            raise PlatformRequestFailedError(
                f"{self.platform} application token request failed: {response.text[:500]}",
                platform=self.platform,
                retryable=response.status_code >= 500,
                status_code=response.status_code,
            )
        return self._parse_grant(response.json())

    async def _post(self, data: Dict[str, str]) -> httpx.Response:
        auth = httpx.BasicAuth(self.client_id, self.client_secret)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(
                    self.token_url,
                    data=data,
                    auth=auth,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.RequestError as e:
            logger.error(f"Network error calling {self.platform} token endpoint: {str(e)}")
            raise PlatformRequestFailedError(
                f"Network error refreshing {self.platform} token: {str(e)}",
                platform=self.platform,
            ) from e

    def _parse_grant(self, token_data: Dict) -> TokenGrant:
        if not token_data.get("access_token"):
            raise PlatformRequestFailedError(
                f"{self.platform} token response did not include an access token",
                platform=self.platform,
                retryable=False,
            )
        return TokenGrant(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_in=int(token_data.get("expires_in", 7200)),
        )
