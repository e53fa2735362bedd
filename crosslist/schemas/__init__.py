"""
Schema exports for the application.
"""

from .base import BaseSchema
from .listing import ListingSpec, PlatformListingRead, ListingSyncStatusRead
from .pricing import (
    Comparable,
    ScoredComparable,
    QueryAnalysis,
    SearchTier,
    PriceResearchRequest,
    SuggestedPrice,
)
from .sync import (
    TokenGrant,
    RemoteListingState,
    PlatformSyncOutcome,
    ConflictResolution,
    SyncResult,
)
