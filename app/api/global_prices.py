"""Global price API routes: read-only views over the process-wide price store."""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import require_api_key
from app.api.limits import rapidapi_limiter
from app.database import get_db
from app.models.token import Token
from app.services.prices.feeds import price_store, rapidapi_client
from app.services.prices.rapidapi import refresh_rapidapi_prices
from app.services.prices.store import BINANCE, RAPIDAPI, PriceEntry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/global-prices", tags=["global-prices"])

DEBUG_SAMPLE_SIZE = 10
DEBUG_SYMBOL_LIMIT = 100


class SymbolsRequest(BaseModel):
    """Request body for batch lookups."""

    symbols: list[str] = Field(..., max_length=2000)


def _serialize(prices: dict[str, PriceEntry]) -> dict[str, dict]:
    return {symbol: entry.to_dict(include_coin_data=False) for symbol, entry in prices.items()}


def enrich_token(token: dict, entry: PriceEntry | None) -> dict:
    """Overlay store prices on a DB token row.

    Price preference: Binance, then RapidAPI, then whatever the DB holds.
    """
    rapid_price = None
    binance_price = None
    if entry is not None:
        rapid_price = entry.rapid_price if entry.rapid_price is not None else (
            entry.price if entry.source == RAPIDAPI else None
        )
        binance_price = entry.binance_price if entry.binance_price is not None else (
            entry.price if entry.source == BINANCE else None
        )

    price = binance_price if binance_price is not None else rapid_price
    if price is None:
        price = token.get("price")

    market_cap = entry.market_cap if entry is not None and entry.market_cap is not None else token.get("market_cap")

    return {
        **token,
        "price": price,
        "market_cap": market_cap,
        "price_source": entry.source if entry else None,
        "price_updated_at": entry.last_updated if entry else None,
        "is_live": entry.is_live if entry else False,
    }


@router.get("/all")
async def get_all_prices():
    """Every symbol in the store."""
    prices = price_store.get_all_prices()
    return {
        "success": True,
        "count": len(prices),
        "prices": _serialize(prices),
        "timestamp": time.time(),
    }


@router.post("/batch")
async def get_batch_prices(req: SymbolsRequest):
    """Prices for the requested symbols. Unknown symbols are omitted."""
    prices = price_store.get_batch_prices(req.symbols)
    return {
        "success": True,
        "count": len(prices),
        "prices": _serialize(prices),
        "requested": len(req.symbols),
        "timestamp": time.time(),
    }


@router.post("/refresh-rapidapi", dependencies=[Depends(rapidapi_limiter)])
async def refresh_rapidapi():
    """Pull the RapidAPI ranked list into the store (at most once per 15 minutes)."""
    return await refresh_rapidapi_prices(price_store, rapidapi_client)


@router.get("/symbol/{symbol}")
async def get_symbol_price(symbol: str):
    entry = price_store.get_price(symbol)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Price not found for {symbol}")
    return {"success": True, "price": entry.to_dict()}


@router.get("/tokens")
async def get_tokens(db: AsyncSession = Depends(get_db)):
    """Listed tokens from the database, priced from the store."""
    result = await db.execute(select(Token).order_by(Token.symbol))
    tokens = [token.to_dict() for token in result.scalars().all()]

    enriched = [
        enrich_token(token, price_store.get_price(token["symbol"]) if token.get("symbol") else None)
        for token in tokens
    ]
    return {
        "success": True,
        "count": len(enriched),
        "tokens": enriched,
        "store_stats": price_store.get_stats(),
        "timestamp": time.time(),
    }


@router.get("/health")
async def store_health():
    stats = price_store.get_stats()
    now = time.time()
    return {
        "success": True,
        "stats": {
            "total_prices": stats["total"],
            "binance_prices": stats["binance_prices"],
            "coinbase_prices": stats["coinbase_prices"],
            "rapidapi_prices": stats["rapidapi_prices"],
            "live_prices": stats["live_prices"],
            "last_rapidapi_fetch": stats["last_rapidapi_fetch"],
            "store_age": now - stats["last_rapidapi_fetch"] if stats["last_rapidapi_fetch"] else None,
        },
        "timestamp": now,
    }


@router.get("/debug-store", dependencies=[Depends(require_api_key)])
async def debug_store():
    """Source breakdown and a small sample of entries."""
    prices = price_store.get_all_prices()
    samples = [
        {
            "symbol": symbol,
            "price": entry.price,
            "rapid_price": entry.rapid_price,
            "binance_price": entry.binance_price,
            "coinbase_price": entry.coinbase_price,
            "source": entry.source,
            "is_live": entry.is_live,
            "last_updated": entry.last_updated,
        }
        for symbol, entry in list(prices.items())[:DEBUG_SAMPLE_SIZE]
    ]
    return {
        "success": True,
        "stats": {
            "total": len(prices),
            "source_counts": price_store.source_counts(),
        },
        "samples": samples,
        "all_symbols": list(prices)[:DEBUG_SYMBOL_LIMIT],
    }
