# listing.py
from sqlalchemy import Column, Integer, String, DateTime, Float, Text, JSON
from sqlalchemy.orm import relationship

from crosslist.core.enums import ListingStatus
from crosslist.core.utils import utc_now
from crosslist.database import Base


class Listing(Base):
    """The user's canonical item; every PlatformListing is a copy of it."""
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    sku = Column(String(100), nullable=True, index=True)

    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    brand = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    condition = Column(String(50), nullable=True)
    category_id = Column(String(50), nullable=True)
    price = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    quantity = Column(Integer, nullable=False, default=1)
    photos = Column(JSON, nullable=False, default=list)

    status = Column(String(20), nullable=False, default=ListingStatus.DRAFT.value, index=True)
    sold_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    platform_listings = relationship(
        "PlatformListing",
        back_populates="listing",
        cascade="all, delete-orphan",
        order_by="PlatformListing.platform_name",
    )

    def __repr__(self):
        return f"<Listing {self.id} {self.sku or ''} status={self.status}>"
