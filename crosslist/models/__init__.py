from .activity_log import ActivityLog
from .listing import Listing
from .marketplace_account import MarketplaceAccount
from .platform_listing import PlatformListing
from .sync_job import SyncJob

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'ActivityLog',
    'Listing',
    'MarketplaceAccount',
    'PlatformListing',
    'SyncJob',
]
