import logging

from fastapi import APIRouter, Depends, Query

from api.deps import get_deal_cache
from booking_schemas import DealsResponse
from deals.cache import DealCache
from errors import UpstreamFetchError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["deals"])


@router.get("/deals-min-price", response_model=DealsResponse, response_model_exclude_none=True)
def min_price_deals(
    limit: int = Query(20, ge=1, le=100),
    refresh: bool = Query(False),
    cache: DealCache = Depends(get_deal_cache),
):
    try:
        page = cache.get(limit, force_refresh=refresh)
    except UpstreamFetchError as exc:
        # degraded but 200: callers branch on `error`, not on the status
        logger.warning("No deals to serve for limit=%s: %s", limit, exc.message)
        return DealsResponse(deals=[], total=0, from_cache=False, error=exc.message)

    return DealsResponse(
        deals=page.deals,
        total=page.total,
        from_cache=page.from_cache or page.from_store,
        fetched_at=page.fetched_at,
        error=page.error,
    )
