# crosslist/routes/pricing.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from crosslist.dependencies import get_services
from crosslist.integrations.registry import SyncServices
from crosslist.schemas.pricing import PriceResearchRequest, SuggestedPrice

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/pricing", tags=["pricing"])


@router.post("/research", response_model=SuggestedPrice)
async def research_price(
    request: PriceResearchRequest,
    services: SyncServices = Depends(get_services),
):
    """Suggest a listing price from comparable active listings."""
    engine = services.price_engine
    if engine.adapter is None:
        raise HTTPException(status_code=503, detail="No marketplace is configured for price research")

    return await engine.research_item_price(
        request.query,
        brand=request.brand,
        condition=request.condition,
        limit=request.limit,
    )
