"""
Schemas passed between the sync services and returned by the API.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from crosslist.core.enums import ListingStatus
from crosslist.core.utils import utc_now


class TokenGrant(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 7200
    obtained_at: datetime = Field(default_factory=utc_now)

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(seconds=self.expires_in)


class RemoteListingState(BaseModel):
    """What a platform reports about one of its listings."""
    status: ListingStatus
    sold_at: Optional[datetime] = None
    listing_url: Optional[str] = None
    raw: Dict[str, Any] = {}


class PlatformSyncOutcome(BaseModel):
    platform: str
    success: bool
    platform_listing_id: Optional[int] = None
    external_id: Optional[str] = None
    status: Optional[str] = None
    sync_status: Optional[str] = None
    action: Optional[str] = None  # created / updated / sold / ended / skipped
    error_kind: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    remediation: Optional[str] = None


class ConflictResolution(BaseModel):
    listing_id: int
    winner_platform: str
    winner_platform_listing_id: int
    sold_at: Optional[datetime] = None
    cancelled_platforms: List[str] = []
    unresolved_platforms: List[str] = []
    already_resolved: bool = False


class SyncResult(BaseModel):
    listing_id: int
    success: bool
    platforms: List[PlatformSyncOutcome] = []
    conflict: Optional[ConflictResolution] = None
    listing_status: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def failed_platforms(self) -> List[str]:
        return [p.platform for p in self.platforms if not p.success]

    @property
    def retryable(self) -> bool:
        failures = [p for p in self.platforms if not p.success]
        return any(p.retryable for p in failures)
