# crosslist/models/activity_log.py
from sqlalchemy import Column, Integer, String, DateTime, JSON

from crosslist.core.utils import utc_now
from crosslist.database import Base


class ActivityLog(Base):
    """
    Records all significant activities in the system for auditing and monitoring.

    This includes:
    - Sync passes per listing
    - Token refreshes and disconnections
    - Sales and conflict resolutions
    """
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False, index=True)  # 'sync', 'sale', 'conflict_resolved', 'token_refresh'
    entity_type = Column(String(50), nullable=False, index=True)  # 'listing', 'platform_listing', 'marketplace_account'
    entity_id = Column(String(100), nullable=False, index=True)
    platform = Column(String(50), nullable=True, index=True)

    details = Column(JSON, nullable=True)
    user_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    def __repr__(self):
        return f"<ActivityLog {self.action} {self.entity_type} {self.entity_id}>"
