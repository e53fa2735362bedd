"""
Platform-neutral listing payloads.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from crosslist.core.exceptions import ValidationFailedError
from crosslist.schemas.base import BaseSchema


class ListingSpec(BaseSchema):
    """What an adapter needs to publish or update a listing on any platform."""
    listing_id: int
    sku: str
    title: str
    description: str = ""
    brand: Optional[str] = None
    model: Optional[str] = None
    condition: str
    category_id: Optional[str] = None
    price: float = Field(gt=0)
    currency: str = "USD"
    quantity: int = 1
    photos: List[str]

    @classmethod
    def from_listing(cls, listing) -> "ListingSpec":
        """
        Build a ListingSpec from a Listing row.

        Every problem is collected before raising so the user can fix them in one go.
        """
        problems = []
        if not (listing.title or "").strip():
            problems.append("title is required")
        if listing.price is None:
            problems.append("price is required")
        elif listing.price <= 0:
            problems.append("price must be greater than zero")
        if not (listing.condition or "").strip():
            problems.append("condition is required")
        photos = [p for p in (listing.photos or []) if p]
        if not photos:
            problems.append("at least one photo is required")

        if problems:
            raise ValidationFailedError(
                f"Listing {listing.id} is not ready to publish: {'; '.join(problems)}",
                problems=problems,
            )

        return cls(
            listing_id=listing.id,
            sku=listing.sku or f"CL-{listing.id}",
            title=listing.title.strip(),
            description=listing.description or "",
            brand=listing.brand,
            model=listing.model,
            condition=listing.condition.strip().lower(),
            category_id=listing.category_id,
            price=float(listing.price),
            currency=listing.currency or "USD",
            quantity=listing.quantity or 1,
            photos=photos,
        )


class PlatformListingRead(BaseSchema):
    id: int
    platform_name: str
    external_id: Optional[str] = None
    listing_url: Optional[str] = None
    status: str
    sync_status: str
    sold_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None


class ListingSyncStatusRead(BaseSchema):
    listing_id: int
    status: str
    sold_at: Optional[datetime] = None
    platforms: List[PlatformListingRead] = []
