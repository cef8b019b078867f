"""Shared price singletons: one store, one bridge per upstream, for the whole process.

Routes, the WebSocket proxy and the refresh loops must all see the same store,
so everything is built once here and imported where needed.
"""

from app.services.alerting import AlertService
from app.services.prices.binance_stream import BinanceTickerStream
from app.services.prices.coinbase_stream import CoinbaseTickerStream
from app.services.prices.exchange_rest import BinanceRestFeed, CoinbaseRestFeed
from app.services.prices.rapidapi import RapidApiClient
from app.services.prices.refresher import PriceRefresher
from app.services.prices.store import GlobalPriceStore

alert_service = AlertService()

price_store = GlobalPriceStore()

binance_stream = BinanceTickerStream(price_store, alerts=alert_service)
coinbase_stream = CoinbaseTickerStream(price_store, alerts=alert_service)

binance_rest = BinanceRestFeed(price_store)
coinbase_rest = CoinbaseRestFeed(price_store)

rapidapi_client = RapidApiClient()

refresher = PriceRefresher(
    price_store,
    rapidapi=rapidapi_client,
    binance_rest=binance_rest,
    binance_stream=binance_stream,
    alerts=alert_service,
)
