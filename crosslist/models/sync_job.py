from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text

from crosslist.core.enums import SyncJobStatus
from crosslist.core.utils import utc_now
from crosslist.database import Base


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    platforms = Column(JSON, nullable=True)  # platforms that failed last time; informational
    status = Column(String(32), nullable=False, default=SyncJobStatus.QUEUED.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    scheduled_for = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<SyncJob {self.id} listing={self.listing_id} {self.status} attempts={self.attempts}/{self.max_attempts}>"
