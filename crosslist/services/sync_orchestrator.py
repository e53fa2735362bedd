"""
Keeps one listing in step across every marketplace the seller sells on.

A sync pass for a listing:
1. rejects at once if a pass for the same listing is already running;
2. decides per platform whether to create, update or only read back state;
3. runs the platform calls concurrently, each under a timeout;
4. records a per-platform outcome on the PlatformListing rows;
5. hands sales to the ConflictResolver once every call has settled.

Failures on one platform are recorded on its row and never abort the others.
Listing data problems and a busy listing are raised to the caller.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy.ext.asyncio import AsyncSession

from crosslist.core.enums import ErrorKind, ListingStatus, SyncStatus
from crosslist.core.exceptions import (
    BaseServiceError,
    NoActiveAccountError,
    PlatformRequestFailedError,
    SyncInProgressError,
)
from crosslist.core.utils import utc_now
from crosslist.integrations.base import PlatformAdapter
from crosslist.integrations.events import SyncEventBus, SyncStatusEvent
from crosslist.models.listing import Listing
from crosslist.models.marketplace_account import MarketplaceAccount
from crosslist.models.platform_listing import PlatformListing
from crosslist.schemas.listing import ListingSpec, ListingSyncStatusRead, PlatformListingRead
from crosslist.schemas.sync import PlatformSyncOutcome, SyncResult
from crosslist.services.activity_logger import ActivityLogger
from crosslist.services.conflict_resolver import (
    ConflictResolver,
    load_listing_with_platforms,
    status_event,
)
from crosslist.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

AllowedPlatforms = Callable[[int], Union[Optional[Iterable[str]], Awaitable[Optional[Iterable[str]]]]]

LISTING_ENDED_REASON = "listing ended by seller"


def _sold_rows(listing: Listing) -> List[PlatformListing]:
    return [
        r for r in listing.platform_listings
        if r.status == ListingStatus.SOLD.value and r.sync_status != SyncStatus.CANCELLED.value
    ]


@dataclass
class _Target:
    platform: str
    adapter: PlatformAdapter
    row: PlatformListing
    account: Optional[MarketplaceAccount]
    external_id: Optional[str]


@dataclass
class _PlatformCall:
    platform: str
    action: str
    external_id: Optional[str] = None
    listing_url: Optional[str] = None
    sold_at: Optional[datetime] = None
    error: Optional[BaseServiceError] = None


class SyncOrchestrator:

    def __init__(
        self,
        adapters: Dict[str, PlatformAdapter],
        token_manager: TokenLifecycleManager,
        resolver: ConflictResolver,
        event_bus: Optional[SyncEventBus] = None,
        request_timeout: float = 30.0,
        allowed_platforms: Optional[AllowedPlatforms] = None,
    ):
        self.adapters = adapters
        self.token_manager = token_manager
        self.resolver = resolver
        self.event_bus = event_bus or resolver.event_bus
        self.request_timeout = request_timeout
        self.allowed_platforms = allowed_platforms
        self._in_flight: Set[int] = set()

    def is_syncing(self, listing_id: int) -> bool:
        return listing_id in self._in_flight

    async def sync_listing_across_platforms(
        self,
        db: AsyncSession,
        listing_id: int,
        platforms: Optional[Iterable[str]] = None,
    ) -> SyncResult:
        """
        Run one sync pass for a listing.

        ``platforms`` limits the pushes to those platforms (a retry of the ones
        that failed); sales are still settled across every copy.

        Raises:
            SyncInProgressError: a pass for this listing is already running
            ListingNotFoundError: no such listing
            ValidationFailedError: the listing is missing data every platform needs
        """
        # Check-and-add happens without yielding, so it is atomic on the event loop
        if listing_id in self._in_flight:
            logger.info(f"Sync already in progress for listing {listing_id}; rejecting")
            raise SyncInProgressError(f"Sync already in progress for listing {listing_id}")
        self._in_flight.add(listing_id)
        try:
            return await self._sync(db, listing_id, None if platforms is None else set(platforms))
        except Exception:
            await db.rollback()
            raise
        finally:
            self._in_flight.discard(listing_id)

    async def get_sync_status(self, db: AsyncSession, listing_id: int) -> ListingSyncStatusRead:
        listing = await load_listing_with_platforms(db, listing_id)
        return ListingSyncStatusRead(
            listing_id=listing.id,
            status=listing.status,
            sold_at=listing.sold_at,
            platforms=[PlatformListingRead.from_orm_model(r) for r in listing.platform_listings],
        )

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------
    async def _sync(self, db: AsyncSession, listing_id: int, only: Optional[Set[str]] = None) -> SyncResult:
        started_at = utc_now()
        listing = await load_listing_with_platforms(db, listing_id)
        outcomes: Dict[str, PlatformSyncOutcome] = {}

        if listing.status in (ListingStatus.SOLD.value, ListingStatus.ENDED.value):
            logger.info(f"Listing {listing_id} is {listing.status}; only closing out platform copies")
        else:
            spec = ListingSpec.from_listing(listing)
            logger.info(f"Starting sync pass for listing {listing_id}")

            accounts = await self.token_manager.get_active_accounts(db, listing.user_id)
            allowed = await self._resolve_allowed_platforms(listing.user_id)
            targets = self._select_targets(listing, accounts, allowed, only)
            await db.flush()

            calls = await asyncio.gather(
                *(self._sync_platform(target, spec) for target in targets),
                return_exceptions=True,
            )
            events = self._apply_calls(listing, targets, calls, outcomes)

            if listing.status == ListingStatus.DRAFT.value and any(
                r.status == ListingStatus.ACTIVE.value for r in listing.platform_listings
            ):
                listing.status = ListingStatus.ACTIVE.value

            ActivityLogger(db).log_sync(
                listing.id, listing.user_id, [o.model_dump() for o in outcomes.values()]
            )
            await db.commit()
            await self.event_bus.publish_many(events)

        result = SyncResult(listing_id=listing.id, success=True, started_at=started_at)
        for outcome in await self._settle_sales(db, listing, result):
            outcomes[outcome.platform] = outcome
        await db.commit()

        result.platforms = list(outcomes.values())
        result.success = all(o.success for o in result.platforms)
        result.listing_status = listing.status
        result.finished_at = utc_now()
        logger.info(
            f"Sync pass for listing {listing_id} finished: "
            + (", ".join(f"{o.platform}={o.sync_status}" for o in result.platforms) or "no platforms")
        )
        return result

    async def _resolve_allowed_platforms(self, user_id: int) -> Optional[Set[str]]:
        if self.allowed_platforms is None:
            return None
        allowed = self.allowed_platforms(user_id)
        if inspect.isawaitable(allowed):
            allowed = await allowed
        return None if allowed is None else set(allowed)

    def _select_targets(
        self,
        listing: Listing,
        accounts: Dict[str, MarketplaceAccount],
        allowed: Optional[Set[str]],
        only: Optional[Set[str]] = None,
    ) -> List[_Target]:
        """
        Existing copies are always kept in step; new copies are only created
        on accounts with auto-list enabled.
        """
        rows = {r.platform_name: r for r in listing.platform_listings}
        targets = []
        for platform, adapter in self.adapters.items():
            if allowed is not None and platform not in allowed:
                continue
            if only is not None and platform not in only:
                continue
            account = accounts.get(platform)
            row = rows.get(platform)

            if row is None:
                if account is None or not account.auto_list:
                    continue
                row = PlatformListing(
                    platform_name=platform,
                    marketplace_account_id=account.id,
                    status=ListingStatus.DRAFT.value,
                    sync_status=SyncStatus.PENDING.value,
                    platform_specific_data={},
                )
                listing.platform_listings.append(row)
            else:
                if row.status in (ListingStatus.SOLD.value, ListingStatus.ENDED.value):
                    continue
                if row.sync_status in (SyncStatus.CANCELLED.value, SyncStatus.CONFLICT.value):
                    continue
                row.set_sync_status(SyncStatus.PENDING)
                if account is not None:
                    row.marketplace_account_id = account.id

            targets.append(_Target(platform, adapter, row, account, row.external_id))
        return targets

    async def _sync_platform(self, target: _Target, spec: ListingSpec) -> _PlatformCall:
        """One platform's share of the pass. Touches no database state."""
        platform, adapter = target.platform, target.adapter
        try:
            if target.account is None:
                raise NoActiveAccountError(
                    f"No active {platform} account; reconnect it to keep this listing in sync",
                    platform=platform,
                )
            token = await self._bounded(self.token_manager.ensure_valid_token(target.account))

            if target.external_id:
                state = await self._bounded(adapter.get_listing_state(token, target.external_id))
                if state.status == ListingStatus.SOLD:
                    return _PlatformCall(platform, "sold", target.external_id, state.listing_url, state.sold_at)
                if state.status == ListingStatus.ENDED:
                    return _PlatformCall(platform, "ended", target.external_id, state.listing_url)
                await self._bounded(adapter.update_listing(token, target.external_id, spec))
                return _PlatformCall(platform, "updated", target.external_id, state.listing_url)

            external_id = await self._bounded(adapter.create_listing(token, spec))
            return _PlatformCall(platform, "created", external_id, adapter.listing_url(external_id))

        except asyncio.TimeoutError:
            logger.warning(f"{platform} call for listing {spec.listing_id} timed out after {self.request_timeout}s")
            return _PlatformCall(
                platform,
                "failed",
                error=PlatformRequestFailedError(
                    f"{platform} did not respond within {self.request_timeout}s",
                    platform=platform,
                ),
            )
        except BaseServiceError as e:
            logger.warning(f"{platform} sync failed for listing {spec.listing_id}: {e.message}")
            return _PlatformCall(platform, "failed", error=e)

    async def _bounded(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.request_timeout)

    def _apply_calls(
        self,
        listing: Listing,
        targets: List[_Target],
        calls: List[Union[_PlatformCall, BaseException]],
        outcomes: Dict[str, PlatformSyncOutcome],
    ) -> List[SyncStatusEvent]:
        events = []
        now = utc_now()
        for target, call in zip(targets, calls):
            row = target.row
            if isinstance(call, BaseException):
                logger.error(
                    f"Unexpected error syncing listing {listing.id} to {target.platform}: {call}",
                    exc_info=call,
                )
                call = _PlatformCall(
                    target.platform,
                    "failed",
                    error=PlatformRequestFailedError(str(call), platform=target.platform, retryable=False),
                )

            error = call.error
            if error is None:
                if call.external_id:
                    row.external_id = call.external_id
                if call.listing_url:
                    row.listing_url = call.listing_url
                if call.action in ("created", "updated"):
                    row.status = ListingStatus.ACTIVE.value
                elif call.action == "sold":
                    row.status = ListingStatus.SOLD.value
                    row.sold_at = call.sold_at
                elif call.action == "ended":
                    row.status = ListingStatus.ENDED.value
                row.clear_error()
                row.set_sync_status(SyncStatus.SYNCED)
                row.last_synced_at = now
            else:
                row.record_error(error.kind or ErrorKind.PLATFORM_REQUEST_FAILED, error.message)
                row.set_sync_status(SyncStatus.ERROR)

            events.append(status_event(row))
            outcomes[target.platform] = PlatformSyncOutcome(
                platform=target.platform,
                success=error is None,
                platform_listing_id=row.id,
                external_id=row.external_id,
                status=row.status,
                sync_status=row.sync_status,
                action=call.action,
                error_kind=error.kind.value if error is not None and error.kind else None,
                error=error.message if error is not None else None,
                retryable=error.retryable if error is not None else False,
                remediation=error.remediation.value if error is not None else None,
            )
        return events

    async def _settle_sales(self, db: AsyncSession, listing: Listing, result: SyncResult) -> List[PlatformSyncOutcome]:
        """
        Detect sales from the rows as they stand after the pass.

        Two or more sold copies (or a resolved conflict with remote
        cancellations still unconfirmed) go to the resolver; a single sale
        ends the remaining live copies. A copy found sold while it was being
        ended turns the sale into a conflict.
        """
        if listing.status in (ListingStatus.SOLD.value, ListingStatus.ENDED.value):
            # Copies left live by an earlier takedown may have sold since
            open_rows = [
                r for r in listing.platform_listings
                if r.status in (ListingStatus.ACTIVE.value, ListingStatus.DRAFT.value)
                and r.sync_status != SyncStatus.CANCELLED.value
            ]
            await self.resolver.read_remote_sales(db, listing, open_rows)

        outcomes = await self._resolve_sales(db, listing, result)
        if result.conflict is None and len(_sold_rows(listing)) >= 2:
            outcomes.extend(await self._resolve_sales(db, listing, result))
        return outcomes

    async def _resolve_sales(self, db: AsyncSession, listing: Listing, result: SyncResult) -> List[PlatformSyncOutcome]:
        rows = listing.platform_listings
        sold = _sold_rows(listing)
        cancelled = [r for r in rows if r.sync_status == SyncStatus.CANCELLED.value]
        unconfirmed = [r for r in cancelled if not (r.platform_specific_data or {}).get("remote_end_confirmed")]

        winner = None
        if len(sold) >= 2 or (sold and unconfirmed):
            result.conflict = await self.resolver.handle_simultaneous_sale(
                db, listing.id, [r.platform_name for r in sold + cancelled]
            )
            winner = next(r for r in rows if r.id == result.conflict.winner_platform_listing_id)
        elif len(sold) == 1:
            winner = sold[0]

        if winner is not None:
            return await self.resolver.settle_sale(db, listing, winner)

        if listing.status in (ListingStatus.SOLD.value, ListingStatus.ENDED.value):
            live = [
                r for r in rows
                if r.status == ListingStatus.ACTIVE.value and r.sync_status != SyncStatus.CANCELLED.value
            ]
            return await self.resolver.end_rows(db, listing, live, LISTING_ENDED_REASON)
        return []
