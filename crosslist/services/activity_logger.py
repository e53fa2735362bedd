# crosslist/services/activity_logger.py
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crosslist.core.utils import utc_now
from crosslist.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


class ActivityLogger:
    """
    Writes the human-auditable trail of sync passes, sales and conflict
    resolutions.

    Entries are added to the caller's session and land with its commit, so
    an audit entry never exists for work that was rolled back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def log_activity(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        platform: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None
    ) -> ActivityLog:
        """
        Log an activity in the system.

        Args:
            action: The action performed (sync, sale, conflict_resolved)
            entity_type: The type of entity affected (listing, platform_listing, ...)
            entity_id: The ID of the affected entity
            platform: Optional platform name
            details: Optional additional details as a dictionary
            user_id: Optional ID of the user who owns the entity
        """
        log_entry = ActivityLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            platform=platform,
            details=details,
            user_id=user_id,
            created_at=utc_now()
        )
        self.db.add(log_entry)

        logger.debug(
            f"Activity logged: {action} {entity_type} {entity_id} "
            f"(platform: {platform or 'N/A'})"
        )
        return log_entry

    def log_sync(self, listing_id: int, user_id: Optional[int], outcomes: List[Dict[str, Any]]) -> ActivityLog:
        failed = [o["platform"] for o in outcomes if not o.get("success")]
        return self.log_activity(
            action="sync",
            entity_type="listing",
            entity_id=str(listing_id),
            user_id=user_id,
            details={
                "status": "error" if failed and len(failed) == len(outcomes) else "partial" if failed else "success",
                "platforms": outcomes,
                "failed": failed,
                "timestamp": utc_now().isoformat(),
            }
        )

    def log_sale(
        self,
        listing_id: int,
        platform: str,
        user_id: Optional[int],
        details: Dict[str, Any]
    ) -> ActivityLog:
        return self.log_activity(
            action="sale",
            entity_type="listing",
            entity_id=str(listing_id),
            platform=platform,
            user_id=user_id,
            details=details,
        )

    def log_conflict_resolution(
        self,
        listing_id: int,
        winner: str,
        losers: List[str],
        user_id: Optional[int],
        details: Dict[str, Any]
    ) -> ActivityLog:
        return self.log_activity(
            action="conflict_resolved",
            entity_type="listing",
            entity_id=str(listing_id),
            platform=winner,
            user_id=user_id,
            details={"winner": winner, "losers": losers, **details},
        )
