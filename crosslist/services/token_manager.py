"""
Per-user, per-platform OAuth token lifecycle.

Access tokens are refreshed when they are within the safety margin of
expiry. Refreshes for one account are serialized: platforms that rotate
refresh tokens invalidate the old one on use, so two concurrent refreshes
with the same refresh token would disconnect the account.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslist.core.exceptions import (
    NoActiveAccountError,
    NoRefreshTokenError,
    PlatformRequestFailedError,
    RefreshFailedError,
)
from crosslist.core.utils import as_utc, utc_now
from crosslist.models.marketplace_account import MarketplaceAccount
from crosslist.services.oauth import OAuthClient

logger = logging.getLogger(__name__)


@dataclass
class _IssuedToken:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime


class TokenLifecycleManager:
    """
    Hands out valid access tokens for MarketplaceAccount rows.

    The manager mutates the account objects it is given; persisting them is
    the caller's unit of work (it never commits on its own).
    """

    def __init__(self, oauth_clients: Dict[str, OAuthClient], refresh_margin: timedelta = timedelta(minutes=30)):
        self.oauth_clients = oauth_clients
        self.refresh_margin = refresh_margin
        self._locks: Dict[int, asyncio.Lock] = {}
        self._issued: Dict[int, _IssuedToken] = {}
        self._refreshing: Dict[int, asyncio.Task] = {}

    async def get_active_account(self, db: AsyncSession, user_id: int, platform: str) -> MarketplaceAccount:
        stmt = select(MarketplaceAccount).where(
            MarketplaceAccount.user_id == user_id,
            MarketplaceAccount.platform_name == platform,
            MarketplaceAccount.is_active.is_(True),
            MarketplaceAccount.is_connected.is_(True),
        )
        result = await db.execute(stmt)
        account = result.scalars().first()
        if account is None:
            raise NoActiveAccountError(
                f"No active {platform} account for user {user_id}; connect the account first",
                platform=platform,
            )
        return account

    async def get_active_accounts(self, db: AsyncSession, user_id: int) -> Dict[str, MarketplaceAccount]:
        stmt = select(MarketplaceAccount).where(
            MarketplaceAccount.user_id == user_id,
            MarketplaceAccount.is_active.is_(True),
            MarketplaceAccount.is_connected.is_(True),
        )
        result = await db.execute(stmt)
        return {account.platform_name: account for account in result.scalars().all()}

    def needs_refresh(self, account: MarketplaceAccount, now: Optional[datetime] = None) -> bool:
        if not account.access_token:
            return True
        expires_at = as_utc(account.token_expires_at)
        if expires_at is None:
            # Unknown expiry: renew when we can, otherwise keep using what we have
            return bool(account.refresh_token)
        now = now or utc_now()
        return expires_at - now <= self.refresh_margin

    async def ensure_valid_token(self, account: MarketplaceAccount) -> str:
        """
        Return an access token good for at least the refresh margin.

        Raises:
            NoActiveAccountError: the account is inactive or disconnected
            NoRefreshTokenError / RefreshFailedError: reconnection required; the
                account is marked inactive
            PlatformRequestFailedError: token endpoint unreachable (retryable)
        """
        if not account.is_active or not account.is_connected:
            raise NoActiveAccountError(
                f"{account.platform_name} account {account.id} is not active; reconnect it",
                platform=account.platform_name,
            )

        self._adopt_issued_token(account)
        if not self.needs_refresh(account):
            return account.access_token

        lock = self._locks.setdefault(account.id, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            self._adopt_issued_token(account)
            if not self.needs_refresh(account):
                return account.access_token

            task = self._refreshing.get(account.id)
            if task is None:
                task = asyncio.ensure_future(self._refresh(account))
                self._refreshing[account.id] = task
                task.add_done_callback(lambda t, account_id=account.id: self._refresh_finished(account_id, t))
            # A caller that times out must not lose a grant the platform already issued
            await asyncio.shield(task)
            self._adopt_issued_token(account)
            return account.access_token

    def _refresh_finished(self, account_id: int, task: asyncio.Task) -> None:
        self._refreshing.pop(account_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Token refresh for account {account_id} failed: {task.exception()}")

    async def _refresh(self, account: MarketplaceAccount) -> str:
        platform = account.platform_name
        if not account.refresh_token:
            self._disconnect(account, "no_refresh_token")
            raise NoRefreshTokenError(
                f"{platform} token expired and no refresh token is stored; reconnect the account",
                platform=platform,
            )

        oauth = self.oauth_clients.get(platform)
        if oauth is None:
            raise PlatformRequestFailedError(
                f"No OAuth client configured for {platform}",
                platform=platform,
                retryable=False,
            )

        logger.info(f"Refreshing {platform} token for account {account.id}")
        try:
            grant = await oauth.refresh(account.refresh_token)
        except RefreshFailedError as e:
            self._disconnect(account, str(e))
            raise

        account.access_token = grant.access_token
        # Platforms that do not rotate refresh tokens omit it from the response
        if grant.refresh_token:
            account.refresh_token = grant.refresh_token
        account.token_expires_at = grant.expires_at
        account.last_refreshed_at = utc_now()
        account.last_error = None

        self._issued[account.id] = _IssuedToken(
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            expires_at=grant.expires_at,
        )
        return account.access_token

    def _adopt_issued_token(self, account: MarketplaceAccount) -> None:
        """Bring a stale copy of the account up to date with a token issued in this process."""
        issued = self._issued.get(account.id)
        if issued is None:
            return
        current_expiry = as_utc(account.token_expires_at)
        if current_expiry is None or current_expiry < issued.expires_at:
            account.access_token = issued.access_token
            account.refresh_token = issued.refresh_token
            account.token_expires_at = issued.expires_at

    def _disconnect(self, account: MarketplaceAccount, reason: str) -> None:
        logger.warning(f"Marking {account.platform_name} account {account.id} as disconnected: {reason}")
        account.is_active = False
        account.is_connected = False
        account.last_error = reason[:2000]
        self._issued.pop(account.id, None)
