"""Gridlock Prices: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import exchanges, global_prices, rapidapi, system
from app.config import settings
from app.database import check_connection, engine
from app.services.prices.errors import UpstreamError
from app.services.prices.feeds import binance_stream, coinbase_stream, refresher

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: check DB, start streams and refresh loops. Shutdown: stop them, dispose engine."""
    if await check_connection():
        logger.info("Database connected successfully")
    else:
        logger.error("Database unavailable, /api/global-prices/tokens will fail until it recovers")

    if settings.start_streams:
        binance_stream.ensure_started()
    refresher.start()
    yield
    await refresher.stop()
    await binance_stream.stop()
    await coinbase_stream.stop()
    await engine.dispose()
    logger.info("Price streams stopped, database engine disposed")


app = FastAPI(
    title="Gridlock Prices",
    description="Aggregated crypto prices from Binance, Coinbase and CoinRanking",
    version="0.3.0",
    lifespan=lifespan,
)

# CORS: restrict in production, allow localhost in development
_allowed_origins = (
    ["http://localhost:3000", "http://localhost:3001"]
    if settings.app_env == "development"
    else settings.allowed_hosts.split(",")
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-API-Key"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error("Upstream failure on %s: %s", request.url.path, exc)
    status = 404 if exc.status_code == 404 else 502
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": exc.message, "source": exc.source},
    )


app.include_router(global_prices.router)
app.include_router(exchanges.binance_router)
app.include_router(exchanges.coinbase_router)
app.include_router(rapidapi.router)
app.include_router(system.router)


@app.get("/api")
async def api_root():
    return {
        "name": "Gridlock Prices",
        "version": "0.3.0",
        "status": "running",
        "streams_enabled": settings.start_streams,
    }
