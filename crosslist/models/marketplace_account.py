from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from crosslist.core.utils import utc_now
from crosslist.database import Base


class MarketplaceAccount(Base):
    """A user's OAuth connection to one marketplace."""
    __tablename__ = "marketplace_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "platform_name", name="uq_marketplace_account_user_platform"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    platform_name = Column(String(20), nullable=False, index=True)
    account_username = Column(String(255), nullable=True)

    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    is_connected = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    auto_list = Column(Boolean, nullable=False, default=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<MarketplaceAccount user={self.user_id} {self.platform_name} active={self.is_active}>"
