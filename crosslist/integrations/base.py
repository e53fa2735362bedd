from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from crosslist.schemas.listing import ListingSpec
from crosslist.schemas.pricing import Comparable
from crosslist.schemas.sync import RemoteListingState
from crosslist.services.oauth import OAuthClient


class PlatformAdapter(ABC):
    """
    The capability set every marketplace integration provides.

    Adapters are stateless with respect to users: the caller passes a valid
    access token on every call. Failures are raised as the shared
    BaseServiceError hierarchy, never as platform-specific errors.
    """

    platform: str = ""

    def __init__(self, oauth: Optional[OAuthClient] = None, timeout: float = 30.0):
        self.oauth = oauth
        self.timeout = timeout

    @abstractmethod
    async def create_listing(self, access_token: str, spec: ListingSpec) -> str:
        """Publish a new listing and return its platform identifier"""
        pass

    @abstractmethod
    async def update_listing(self, access_token: str, external_id: str, spec: ListingSpec) -> None:
        """Push the current listing data to an existing platform listing"""
        pass

    @abstractmethod
    async def end_listing(self, access_token: str, external_id: str, reason: str) -> None:
        """Take a listing down on the platform"""
        pass

    @abstractmethod
    async def get_listing_state(self, access_token: str, external_id: str) -> RemoteListingState:
        """Read what the platform currently reports for a listing"""
        pass

    @abstractmethod
    async def search_comparables(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 50,
    ) -> List[Comparable]:
        """Search live listings resembling the query"""
        pass

    def listing_url(self, external_id: str) -> Optional[str]:
        return None

    @staticmethod
    def normalize_condition(condition: Optional[str]) -> str:
        return (condition or "").strip().lower().replace("_", " ").replace("-", " ")
