"""Exchange API routes: Binance.US and Coinbase REST prices plus Coinbase stream control."""

import logging
import time

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.services.prices.errors import UpstreamError
from app.services.prices.feeds import binance_rest, coinbase_rest, coinbase_stream
from app.services.prices.symbols import normalize_symbol

logger = logging.getLogger(__name__)
binance_router = APIRouter(prefix="/api/binance", tags=["binance"])
coinbase_router = APIRouter(prefix="/api/coinbase", tags=["coinbase"])

EXCHANGE_INFO_LIMIT = 50


class SymbolsRequest(BaseModel):
    """Request body carrying a list of symbols."""

    symbols: list[str] = Field(..., max_length=500)


# ---------- Binance ----------


@binance_router.get("/price/{symbol}")
async def binance_price(symbol: str):
    """Price for one symbol against USDT. Served from a 30s cache when warm."""
    result = await binance_rest.get_price(symbol)
    if result is None:
        raise HTTPException(
            status_code=404,
            detail=f"Symbol {normalize_symbol(symbol)} not found on Binance",
        )
    return result


@binance_router.post("/prices/batch")
async def binance_prices_batch(req: SymbolsRequest):
    symbols = [s for s in dict.fromkeys(normalize_symbol(s) for s in req.symbols) if s]
    logger.info("Binance batch request for %d symbols", len(symbols))
    prices = await binance_rest.get_prices(symbols)
    return {
        "source": "binance",
        "prices": prices,
        "requested": len(symbols),
        "found": len(prices),
        "missing": len([s for s in symbols if s not in prices]),
        "timestamp": time.time(),
    }


@binance_router.get("/all-prices")
async def binance_all_prices():
    """Snapshot of every USDT pair (also merged into the store)."""
    prices = await binance_rest.all_prices()
    return {
        "exchange": "binance.us",
        "total_pairs": len(prices),
        "prices": prices,
        "timestamp": time.time(),
    }


@binance_router.get("/ticker/24hr")
async def binance_ticker_24h(symbol: str | None = None):
    data = await binance_rest.ticker_24h(normalize_symbol(symbol) if symbol else None)
    return {"success": True, "data": data, "source": "binance", "timestamp": time.time()}


@binance_router.get("/exchange-info")
async def binance_exchange_info():
    symbols = await binance_rest.base_symbols()
    return {
        "exchange": "binance",
        "symbols": symbols[:EXCHANGE_INFO_LIMIT],
        "total_count": len(symbols),
        "timestamp": time.time(),
    }


@binance_router.get("/check/{symbol}")
async def binance_check_symbol(symbol: str):
    normalized = normalize_symbol(symbol)
    exists = await binance_rest.has_symbol(normalized)
    return {
        "symbol": normalized,
        "trading_pair": f"{normalized}USDT",
        "exists_on_binance": exists,
        "timestamp": time.time(),
    }


@binance_router.get("/health")
async def binance_health():
    try:
        latency_ms = await binance_rest.ping()
    except UpstreamError as e:
        return {"exchange": "binance", "status": "offline", "error": e.message, "timestamp": time.time()}
    return {
        "exchange": "binance",
        "status": "online",
        "response_time_ms": round(latency_ms, 1),
        "timestamp": time.time(),
    }


# ---------- Coinbase ----------


@coinbase_router.get("/price/{symbol}")
async def coinbase_price(symbol: str):
    result = await coinbase_rest.get_price(symbol)
    if result is None:
        raise HTTPException(
            status_code=404,
            detail=f"Symbol {normalize_symbol(symbol)} not found on Coinbase",
        )
    return result


@coinbase_router.post("/prices/batch")
async def coinbase_prices_batch(req: SymbolsRequest):
    prices = await coinbase_rest.get_prices(req.symbols)
    return {"source": "coinbase", "prices": prices, "timestamp": time.time()}


@coinbase_router.post("/ws/subscribe")
async def coinbase_subscribe(req: SymbolsRequest):
    """Add symbols to the Coinbase ticker stream (starts it if idle)."""
    symbols = await coinbase_stream.subscribe(req.symbols)
    return {
        "symbols": symbols,
        "status": "WebSocket subscription initiated",
        "subscribed_count": len(coinbase_stream.subscribed),
    }


@coinbase_router.get("/products")
async def coinbase_products():
    symbols = await coinbase_rest.base_symbols()
    return {"exchange": "coinbase", "symbols": symbols, "count": len(symbols), "timestamp": time.time()}


@coinbase_router.get("/health")
async def coinbase_health():
    try:
        latency_ms = await coinbase_rest.ping()
    except UpstreamError as e:
        return {"exchange": "coinbase", "status": "offline", "error": e.message, "timestamp": time.time()}
    return {
        "exchange": "coinbase",
        "status": "online",
        "response_time_ms": round(latency_ms, 1),
        "timestamp": time.time(),
    }
