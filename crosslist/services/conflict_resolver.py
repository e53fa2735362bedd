"""
Resolves sales reported by more than one platform for the same listing, and
takes down the remaining copies after a single sale.

Local state is the authority for every later sync pass, so it is committed
before any remote cancellation is attempted. Remote cancellations are
best-effort: failures are logged, recorded on the row, and retried on the
next resolution of the same listing.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from crosslist.core.enums import ErrorKind, ListingStatus, SyncStatus
from crosslist.core.exceptions import (
    BaseServiceError,
    ConflictUnresolvedError,
    InvalidSyncTransitionError,
    ListingNotFoundError,
    PlatformRequestFailedError,
)
from crosslist.core.utils import as_utc, utc_now
from crosslist.integrations.base import PlatformAdapter
from crosslist.integrations.events import SyncEventBus, SyncStatusEvent
from crosslist.models.listing import Listing
from crosslist.models.marketplace_account import MarketplaceAccount
from crosslist.models.platform_listing import PlatformListing
from crosslist.schemas.sync import ConflictResolution, PlatformSyncOutcome, RemoteListingState
from crosslist.services.activity_logger import ActivityLogger
from crosslist.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

CONFLICT_END_REASON = "conflict — sold elsewhere"
SALE_END_REASON = "sold elsewhere"

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def sale_order_key(row: PlatformListing) -> Tuple[datetime, str, int]:
    """Earliest reported sale first; creation time stands in when no sale time is known."""
    when = as_utc(row.sold_at) or as_utc(row.created_at) or _LATEST
    return when, row.platform_name or "", row.id or 0


async def load_listing_with_platforms(db: AsyncSession, listing_id: int) -> Listing:
    stmt = (
        select(Listing)
        .where(Listing.id == listing_id)
        .options(selectinload(Listing.platform_listings))
    )
    result = await db.execute(stmt)
    listing = result.scalars().first()
    if listing is None:
        raise ListingNotFoundError(f"Listing {listing_id} not found")
    return listing


def status_event(row: PlatformListing, message: Optional[str] = None) -> SyncStatusEvent:
    return SyncStatusEvent(
        listing_id=row.listing_id,
        platform=row.platform_name,
        sync_status=row.sync_status,
        status=row.status,
        platform_listing_id=row.id,
        external_id=row.external_id,
        error_kind=row.error_kind,
        message=message or row.error_detail,
    )


class ConflictResolver:

    def __init__(
        self,
        adapters: Dict[str, PlatformAdapter],
        token_manager: TokenLifecycleManager,
        event_bus: Optional[SyncEventBus] = None,
        timeout: float = 30.0,
    ):
        self.adapters = adapters
        self.token_manager = token_manager
        self.event_bus = event_bus or SyncEventBus()
        self.timeout = timeout

    async def handle_simultaneous_sale(
        self,
        db: AsyncSession,
        listing_id: int,
        platforms: Sequence[str],
    ) -> ConflictResolution:
        """
        Pick the earliest sale as the winner and cancel every other copy.

        Resolving the same listing again picks the same winner and only
        retries remote cancellations that have not been confirmed.
        """
        listing = await load_listing_with_platforms(db, listing_id)
        wanted = set(platforms)
        rows = [r for r in listing.platform_listings if r.platform_name in wanted]
        if not rows:
            raise ListingNotFoundError(f"Listing {listing_id} has no platform listings on {sorted(wanted)}")

        # A row cancelled by an earlier resolution never wins a later one
        contenders = [r for r in rows if r.sync_status != SyncStatus.CANCELLED.value]
        if not contenders:
            # Only losers were named; the surviving sale is the earlier winner
            contenders = [
                r for r in listing.platform_listings
                if r.status == ListingStatus.SOLD.value and r.sync_status != SyncStatus.CANCELLED.value
            ]
            if not contenders:
                raise InvalidSyncTransitionError(
                    f"Listing {listing_id}: every copy on {sorted(wanted)} is cancelled and no sale is left to keep"
                )
            rows = contenders + rows
        winner = min(contenders, key=sale_order_key)
        losers = sorted((r for r in rows if r is not winner), key=sale_order_key)
        sold_at = as_utc(winner.sold_at) or as_utc(winner.created_at) or utc_now()

        already_resolved = (
            listing.status == ListingStatus.SOLD.value
            and winner.status == ListingStatus.SOLD.value
            and winner.sync_status == SyncStatus.SYNCED.value
            and all(r.sync_status == SyncStatus.CANCELLED.value for r in losers)
        )

        events: List[SyncStatusEvent] = []
        if not already_resolved:
            logger.info(
                f"Resolving simultaneous sale for listing {listing_id}: winner {winner.platform_name} "
                f"(sold {sold_at.isoformat()}), losers {[r.platform_name for r in losers]}"
            )
            for row in [winner] + losers:
                if row.sync_status != SyncStatus.CANCELLED.value:
                    row.advance_sync_status(SyncStatus.CONFLICT)
                    events.append(status_event(row, "Sold on more than one platform"))

            winner.advance_sync_status(SyncStatus.SYNCED)
            winner.status = ListingStatus.SOLD.value
            winner.clear_error()
            events.append(status_event(winner, "Kept: earliest sale"))

            for row in losers:
                if row.sync_status != SyncStatus.CANCELLED.value:
                    row.advance_sync_status(SyncStatus.CANCELLED)
                    row.status = ListingStatus.ENDED.value
                    row.update_platform_data(
                        conflict_winner=winner.platform_name,
                        remote_end_confirmed=not row.external_id,
                    )
                    events.append(status_event(row, f"Cancelled: sold first on {winner.platform_name}"))

            listing.status = ListingStatus.SOLD.value
            listing.sold_at = sold_at

            ActivityLogger(db).log_conflict_resolution(
                listing_id=listing.id,
                winner=winner.platform_name,
                losers=[r.platform_name for r in losers],
                user_id=listing.user_id,
                details={
                    "sold_at": sold_at.isoformat(),
                    "sale_times": {
                        r.platform_name: (as_utc(r.sold_at).isoformat() if r.sold_at else None)
                        for r in [winner] + losers
                    },
                },
            )

        # Local outcome is committed before touching any platform
        await db.commit()
        await self.event_bus.publish_many(events)

        unconfirmed = [r for r in losers if not (r.platform_specific_data or {}).get("remote_end_confirmed")]
        unresolved = await self._cancel_remote(db, listing, unconfirmed, CONFLICT_END_REASON)
        await db.commit()

        return ConflictResolution(
            listing_id=listing.id,
            winner_platform=winner.platform_name,
            winner_platform_listing_id=winner.id,
            sold_at=sold_at,
            cancelled_platforms=[r.platform_name for r in losers],
            unresolved_platforms=unresolved,
            already_resolved=already_resolved,
        )

    async def settle_sale(
        self,
        db: AsyncSession,
        listing: Listing,
        sold_row: PlatformListing,
    ) -> List[PlatformSyncOutcome]:
        """Record a single-platform sale on the listing and end its other live copies."""
        listing = await load_listing_with_platforms(db, listing.id)
        if listing.status != ListingStatus.SOLD.value:
            listing.status = ListingStatus.SOLD.value
            listing.sold_at = as_utc(sold_row.sold_at) or utc_now()
            logger.info(f"Listing {listing.id} sold on {sold_row.platform_name}")
            ActivityLogger(db).log_sale(
                listing_id=listing.id,
                platform=sold_row.platform_name,
                user_id=listing.user_id,
                details={
                    "external_id": sold_row.external_id,
                    "sold_at": listing.sold_at.isoformat(),
                },
            )

        others = [
            r for r in listing.platform_listings
            if r is not sold_row
            and r.status in (ListingStatus.ACTIVE.value, ListingStatus.DRAFT.value)
            and r.sync_status != SyncStatus.CANCELLED.value
        ]
        return await self.end_rows(db, listing, others, SALE_END_REASON)

    async def end_rows(
        self,
        db: AsyncSession,
        listing: Listing,
        rows: List[PlatformListing],
        reason: str,
    ) -> List[PlatformSyncOutcome]:
        """End the given copies remotely and record each outcome; commits and publishes."""
        if not rows:
            return []

        accounts = await self.token_manager.get_active_accounts(db, listing.user_id)
        live = [r for r in rows if r.external_id]
        errors = await asyncio.gather(
            *(self._end_one(r, accounts.get(r.platform_name), reason) for r in live)
        )
        failures = {id(row): error for row, error in zip(live, errors) if error is not None}

        # A copy that refuses to end may have sold in the meantime
        failed = [row for row in live if id(row) in failures]
        sold = {id(row) for row in await self.read_remote_sales(db, listing, failed)}

        outcomes: List[PlatformSyncOutcome] = []
        events: List[SyncStatusEvent] = []
        now = utc_now()
        for row in rows:
            if id(row) in sold:
                events.append(status_event(row, "Sold while being taken down"))
                outcomes.append(
                    PlatformSyncOutcome(
                        platform=row.platform_name,
                        success=True,
                        platform_listing_id=row.id,
                        external_id=row.external_id,
                        status=row.status,
                        sync_status=row.sync_status,
                        action="sold",
                    )
                )
                continue

            error = failures.get(id(row))
            if error is None:
                row.status = ListingStatus.ENDED.value
                row.clear_error()
                row.advance_sync_status(SyncStatus.SYNCED)
                row.last_synced_at = now
            else:
                row.record_error(error.kind or ErrorKind.PLATFORM_REQUEST_FAILED, error.message)
                row.advance_sync_status(SyncStatus.ERROR)
            events.append(status_event(row, reason if error is None else None))
            outcomes.append(
                PlatformSyncOutcome(
                    platform=row.platform_name,
                    success=error is None,
                    platform_listing_id=row.id,
                    external_id=row.external_id,
                    status=row.status,
                    sync_status=row.sync_status,
                    action="ended",
                    error_kind=error.kind.value if error is not None and error.kind else None,
                    error=error.message if error is not None else None,
                    retryable=error.retryable if error is not None else False,
                    remediation=error.remediation.value if error is not None else None,
                )
            )

        await db.commit()
        await self.event_bus.publish_many(events)
        return outcomes

    async def read_remote_sales(
        self,
        db: AsyncSession,
        listing: Listing,
        rows: List[PlatformListing],
    ) -> List[PlatformListing]:
        """
        Ask each platform whether its copy has sold and record the sales.

        Returns the rows newly recorded as sold. A copy whose state cannot
        be read is left as it was.
        """
        rows = [r for r in rows if r.external_id]
        if not rows:
            return []

        accounts = await self.token_manager.get_active_accounts(db, listing.user_id)
        states = await asyncio.gather(
            *(self._read_state(r, accounts.get(r.platform_name)) for r in rows)
        )

        sold = []
        now = utc_now()
        for row, state in zip(rows, states):
            if state is None or state.status != ListingStatus.SOLD:
                continue
            logger.warning(
                f"{row.platform_name} listing {row.external_id} for listing {listing.id} "
                f"sold while the listing was being taken down"
            )
            row.status = ListingStatus.SOLD.value
            row.sold_at = state.sold_at or now
            row.clear_error()
            row.advance_sync_status(SyncStatus.SYNCED)
            row.last_synced_at = now
            sold.append(row)
        return sold

    async def _read_state(
        self,
        row: PlatformListing,
        account: Optional[MarketplaceAccount],
    ) -> Optional[RemoteListingState]:
        adapter = self.adapters.get(row.platform_name)
        if adapter is None or account is None:
            return None
        try:
            token = await self.token_manager.ensure_valid_token(account)
            return await asyncio.wait_for(
                adapter.get_listing_state(token, row.external_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Reading {row.platform_name} listing {row.external_id} timed out after {self.timeout}s")
        except BaseServiceError as e:
            logger.warning(f"Could not read {row.platform_name} listing {row.external_id}: {e.message}")
        return None

    async def _cancel_remote(
        self,
        db: AsyncSession,
        listing: Listing,
        rows: List[PlatformListing],
        reason: str,
    ) -> List[str]:
        if not rows:
            return []

        accounts = await self.token_manager.get_active_accounts(db, listing.user_id)
        errors = await asyncio.gather(
            *(self._end_one(r, accounts.get(r.platform_name), reason) for r in rows)
        )

        unresolved = []
        for row, error in zip(rows, errors):
            if error is None:
                row.update_platform_data(remote_end_confirmed=True)
                row.clear_error()
                logger.info(f"Cancelled {row.platform_name} listing {row.external_id} for listing {listing.id}")
                continue
            unresolved.append(row.platform_name)
            failure = ConflictUnresolvedError(
                f"Could not end {row.platform_name} listing {row.external_id}: {error.message}",
                platform=row.platform_name,
            )
            row.update_platform_data(remote_end_confirmed=False)
            row.record_error(failure.kind, failure.message)
            logger.warning(failure.message)
        return unresolved

    async def _end_one(
        self,
        row: PlatformListing,
        account: Optional[MarketplaceAccount],
        reason: str,
    ) -> Optional[BaseServiceError]:
        """End one remote copy; returns the failure instead of raising."""
        adapter = self.adapters.get(row.platform_name)
        if adapter is None:
            return PlatformRequestFailedError(
                f"No adapter registered for {row.platform_name}",
                platform=row.platform_name,
                retryable=False,
            )
        if account is None:
            return PlatformRequestFailedError(
                f"No active {row.platform_name} account to end listing {row.external_id}",
                platform=row.platform_name,
                retryable=False,
            )
        try:
            token = await self.token_manager.ensure_valid_token(account)
            await asyncio.wait_for(adapter.end_listing(token, row.external_id, reason), timeout=self.timeout)
            return None
        except asyncio.TimeoutError:
            return PlatformRequestFailedError(
                f"Ending {row.platform_name} listing {row.external_id} timed out after {self.timeout}s",
                platform=row.platform_name,
            )
        except BaseServiceError as e:
            return e
