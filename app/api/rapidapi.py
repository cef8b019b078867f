"""RapidAPI proxy routes: CoinRanking passthrough for the coin tables and admin lookups.

The whole router is rate limited per client IP; GET responses are cached
for 30 seconds.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.api.limits import rapidapi_cache, rapidapi_limiter
from app.services.prices.errors import UpstreamError
from app.services.prices.feeds import rapidapi_client

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/rapidapi",
    tags=["rapidapi"],
    dependencies=[Depends(rapidapi_limiter)],
)


class SymbolsRequest(BaseModel):
    """Request body for batch price lookups."""

    symbols: list[str] = Field(..., max_length=2000)


@router.get("/health")
async def rapidapi_health():
    try:
        return await rapidapi_client.ping()
    except UpstreamError as e:
        return {"status": "error", "error": e.message}


@router.get("/coins")
async def list_coins(request: Request, limit: int = Query(default=100, ge=1, le=5000)):
    """Raw CoinRanking ``/coins`` payload, unchanged."""
    cache_key = str(request.url)
    cached = await rapidapi_cache.get(cache_key)
    if cached is not None:
        return cached

    data = await rapidapi_client.list_coins(limit=limit)
    await rapidapi_cache.set(cache_key, data)
    return data


@router.post("/prices/batch")
async def batch_prices(req: SymbolsRequest):
    logger.info("RapidAPI batch lookup for %d symbols", len(req.symbols))
    prices, missing = await rapidapi_client.find_prices(req.symbols)
    return {
        "success": True,
        "prices": prices,
        "stats": {
            "requested": len(req.symbols),
            "found": len(prices),
            "missing": len(missing),
        },
        "missing_symbols": missing,
    }


@router.get("/coin/{uuid}")
async def get_coin(request: Request, uuid: str):
    cache_key = str(request.url)
    cached = await rapidapi_cache.get(cache_key)
    if cached is not None:
        return cached

    data = await rapidapi_client.get_coin(uuid)
    await rapidapi_cache.set(cache_key, data)
    return data


@router.get("/search/{query}")
async def search_coins(query: str):
    results = await rapidapi_client.search(query)
    return {"success": True, "query": query, "results": results}
