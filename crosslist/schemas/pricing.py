"""
Schemas for price research requests and results.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from crosslist.core.enums import Confidence


class Comparable(BaseModel):
    """A listing found on a platform that resembles the item being priced."""
    item_id: str
    title: str
    price: Optional[float] = None
    currency: Optional[str] = None
    condition: Optional[str] = None
    category_id: Optional[str] = None
    url: Optional[str] = None
    platform: Optional[str] = None


class ScoredComparable(Comparable):
    score: float = 0.0
    matched_tiers: List[str] = []
    condition_match: bool = False


class QueryAnalysis(BaseModel):
    original_query: str
    brand: Optional[str] = None
    model: Optional[str] = None
    part_numbers: List[str] = []
    year: Optional[str] = None
    product_type: Optional[str] = None


class SearchTier(BaseModel):
    name: str
    query: str
    priority: int


class PriceResearchRequest(BaseModel):
    query: str = Field(min_length=1)
    brand: Optional[str] = None
    condition: Optional[str] = None
    limit: Optional[int] = Field(default=None, gt=0, le=200)


class SuggestedPrice(BaseModel):
    suggested_price: float
    weighted_price: float = 0.0
    median: float = 0.0
    mean: float = 0.0
    std_dev: float = 0.0
    coefficient_of_variation: float = 0.0
    discount_rate: float = 0.0
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    sample_size: int = 0
    confidence: Confidence = Confidence.LOW
    currency: Optional[str] = None
    dominant_category_id: Optional[str] = None
    reason: Optional[str] = None
    strategies: List[SearchTier] = []
    analysis: Optional[QueryAnalysis] = None
    comparables: List[ScoredComparable] = []
