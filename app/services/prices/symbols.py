"""Symbol helpers shared by the exchange feeds and routes."""

import re

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def normalize_symbol(symbol: str) -> str:
    """Strip punctuation and upper-case: ``" eth/ "`` -> ``"ETH"``."""
    return _NON_ALNUM.sub("", symbol or "").upper()


def market_symbol(symbol: str, quote: str = "USDT") -> str:
    """CCXT unified market symbol, e.g. ``BTC/USDT``."""
    return f"{normalize_symbol(symbol)}/{quote}"


def base_from_pair(pair: str, quote: str = "USDT") -> str | None:
    """Base asset of a raw exchange pair (``BTCUSDT`` or ``BTC-USD``), None if the quote doesn't match."""
    if not pair:
        return None
    upper = pair.upper()
    for suffix in (f"-{quote}", f"/{quote}", quote):
        if upper.endswith(suffix) and len(upper) > len(suffix):
            return upper[: -len(suffix)]
    return None
