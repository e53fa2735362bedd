# platform_listing.py
from collections import deque
from typing import List

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.orm.attributes import flag_modified

from crosslist.core.enums import ListingStatus, SyncStatus, SYNC_TRANSITIONS
from crosslist.core.exceptions import InvalidSyncTransitionError
from crosslist.core.utils import utc_now
from crosslist.database import Base


class PlatformListing(Base):
    __tablename__ = "platform_listings"
    __table_args__ = (
        UniqueConstraint("listing_id", "platform_name", name="uq_platform_listing_per_platform"),
    )

    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), index=True, nullable=False)
    marketplace_account_id = Column(Integer, ForeignKey("marketplace_accounts.id", ondelete="SET NULL"), nullable=True)
    platform_name = Column(String(20), nullable=False)
    external_id = Column(String(100), nullable=True)
    listing_url = Column(String(500), nullable=True)

    status = Column(String(20), nullable=False, default=ListingStatus.DRAFT.value, index=True)
    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value, index=True)
    sold_at = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    error_kind = Column(String(50), nullable=True)
    error_detail = Column(Text, nullable=True)
    platform_specific_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    listing = relationship("Listing", back_populates="platform_listings")
    marketplace_account = relationship("MarketplaceAccount")

    def set_sync_status(self, new_status: SyncStatus) -> bool:
        """
        Move the row along the sync state machine.

        Returns True when the status changed, False for a same-state no-op.
        Raises InvalidSyncTransitionError for anything else.
        """
        new_status = SyncStatus(new_status)
        current = SyncStatus(self.sync_status or SyncStatus.PENDING.value)
        if new_status == current:
            return False
        if new_status not in SYNC_TRANSITIONS[current]:
            raise InvalidSyncTransitionError(
                f"{self.platform_name} listing {self.id}: {current.value} -> {new_status.value} is not allowed",
                platform=self.platform_name,
            )
        self.sync_status = new_status.value
        return True

    def advance_sync_status(self, target: SyncStatus) -> List[SyncStatus]:
        """
        Walk the shortest legal path to ``target``, one transition at a time.

        Returns the statuses passed through (empty if already there).
        """
        target = SyncStatus(target)
        current = SyncStatus(self.sync_status or SyncStatus.PENDING.value)
        if current == target:
            return []

        # Breadth-first over the transition table
        paths = {current: []}
        queue = deque([current])
        while queue:
            state = queue.popleft()
            for nxt in sorted(SYNC_TRANSITIONS[state], key=lambda s: s.value):
                if nxt in paths:
                    continue
                paths[nxt] = paths[state] + [nxt]
                if nxt == target:
                    queue.clear()
                    break
                queue.append(nxt)

        if target not in paths:
            raise InvalidSyncTransitionError(
                f"{self.platform_name} listing {self.id}: no path from {current.value} to {target.value}",
                platform=self.platform_name,
            )
        for step in paths[target]:
            self.set_sync_status(step)
        return paths[target]

    def record_error(self, kind, detail: str) -> None:
        self.error_kind = kind.value if hasattr(kind, "value") else kind
        self.error_detail = (detail or "")[:2000]

    def clear_error(self) -> None:
        self.error_kind = None
        self.error_detail = None

    def update_platform_data(self, **values) -> None:
        # Copy so SQLAlchemy sees a new value for the JSON column
        data = dict(self.platform_specific_data or {})
        data.update(values)
        self.platform_specific_data = data
        flag_modified(self, "platform_specific_data")

    def __repr__(self):
        return f"<PlatformListing {self.platform_name} listing={self.listing_id} {self.status}/{self.sync_status}>"
