"""System routes: service health, stream status, and the Binance WebSocket relay."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.database import check_connection
from app.services.prices.feeds import binance_stream, coinbase_stream, rapidapi_client

logger = logging.getLogger(__name__)
router = APIRouter(tags=["system"])


@router.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "database": "connected" if await check_connection() else "unavailable",
            "api": "running",
            "rapidapi": "configured" if rapidapi_client.configured else "not configured",
            "binance_stream": "connected" if binance_stream.connected else "disconnected",
            "coinbase_stream": "connected" if coinbase_stream.connected else "disconnected",
        },
    }


@router.get("/api/ws-status")
async def ws_status():
    return {
        "binance": {
            "upstream_connected": binance_stream.connected,
            "clients": binance_stream.client_count,
            "messages_received": binance_stream.messages_received,
        },
        "coinbase": {
            "upstream_connected": coinbase_stream.connected,
            "subscribed": coinbase_stream.subscribed,
        },
    }


@router.websocket("/ws/binance")
async def binance_relay(websocket: WebSocket):
    """Relay raw Binance ticker-array frames to the browser."""
    await websocket.accept()
    send = websocket.send_text
    binance_stream.add_client(send)
    binance_stream.ensure_started()
    logger.info("Client connected to /ws/binance (%d total)", binance_stream.client_count)

    try:
        # Client messages are ignored; receiving keeps the disconnect visible
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        binance_stream.remove_client(send)
        logger.info("Client disconnected from /ws/binance (%d left)", binance_stream.client_count)
