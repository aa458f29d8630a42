"""
Kalshi adapter (platform B). Market discovery and order books via Dome.

Kalshi market rows quote in cents (1-99); we convert to 0.01-0.99 to match
our Market and OrderBook models. Dome's bids/asks books are already 0-1.
"""

from __future__ import annotations

import logging

from client.dome import DEFAULT_HOST, DEFAULT_TIMEOUT, DomeClient, to_probability
from scanner.errors import AdapterUnavailable
from scanner.models import Market, OrderBook, Platform
from scanner.normalizer import detect_category, extract_entities, normalize

logger = logging.getLogger(__name__)

_MARKET_URL = "https://kalshi.com/markets/{ticker}"


def _cents_level(lvl: object) -> tuple[float, object]:
    if isinstance(lvl, dict):
        return float(lvl["price"]), lvl.get("size", 0)
    return float(lvl[0]), lvl[1]


def to_bid_ask(data: object) -> object:
    """
    Kalshi books list resting bids only, per side: {yes: [[cents, qty]], no: [...]}.
    A NO bid at p is a YES ask at 100 - p. Native books come back as 0-1
    probabilities; books already in bids/asks form pass through untouched.
    """
    if not isinstance(data, dict):
        return data
    book = data.get("orderbook", data)
    if not isinstance(book, dict) or "bids" in book or "asks" in book:
        return data
    if "yes" not in book and "no" not in book:
        return data
    bids = []
    for lvl in book.get("yes") or []:
        price, size = _cents_level(lvl)
        bids.append({"price": price / 100.0, "size": size})
    asks = []
    for lvl in book.get("no") or []:
        price, size = _cents_level(lvl)
        asks.append({"price": (100.0 - price) / 100.0, "size": size})
    return {"bids": bids, "asks": asks}


def parse_market(m: dict) -> Market | None:
    """Translate one Dome Kalshi row. Returns None for rows without ticker or title."""
    ticker = str(m.get("ticker") or "")
    title = m.get("title") or ""
    if not ticker or not title:
        return None

    # YES price: midpoint of the quoted bid/ask when both exist, else whichever exists
    yes_bid = m.get("yes_bid")
    yes_ask = m.get("yes_ask")
    quotes = [to_probability(q, cents=True) for q in (yes_bid, yes_ask) if q not in (None, "", 0)]
    yes_price = sum(quotes) / len(quotes) if quotes else 0.0

    subtitle = m.get("subtitle") or ""
    return Market(
        platform=Platform.KALSHI,
        external_id=ticker,
        raw_title=title,
        normalized_title=normalize(title),
        entities=extract_entities(title),
        category=detect_category(title, subtitle, m.get("category") or ""),
        yes_price=round(yes_price, 6),
        no_price=round(1.0 - yes_price, 6) if yes_price else 0.0,
        volume=float(m.get("volume") or 0),
        liquidity=float(m.get("open_interest") or m.get("liquidity") or 0),
        url=_MARKET_URL.format(ticker=ticker.lower()),
        orderbook_key=ticker,
        end_date=str(m.get("expiration_time") or m.get("close_time") or ""),
    )


class KalshiAdapter:
    """Satisfies the PlatformAdapter protocol for Kalshi."""

    @property
    def platform(self) -> Platform:
        return Platform.KALSHI

    def __init__(
        self,
        api_key: str = "",
        host: str = DEFAULT_HOST,
        timeout: float = DEFAULT_TIMEOUT,
        orderbook_timeout: float | None = None,
        max_markets: int = 500,
    ) -> None:
        self._dome = DomeClient(Platform.KALSHI, api_key=api_key, host=host, timeout=timeout)
        self._orderbook_timeout = orderbook_timeout
        self._max_markets = max_markets

    def close(self) -> None:
        self._dome.close()

    def fetch_markets(self, category: str | None = None) -> list[Market]:
        rows = self._dome.get_paginated("/markets", self._max_markets, params={"status": "open"})
        markets: list[Market] = []
        for row in rows:
            try:
                market = parse_market(row)
            except (TypeError, ValueError, AttributeError) as e:
                raise AdapterUnavailable(
                    self.platform, "/kalshi/markets", f"malformed market row: {e}",
                ) from e
            if market is None:
                continue
            if category and category != "all" and market.category != category:
                continue
            markets.append(market)
        logger.debug("Fetched %d Kalshi markets", len(markets))
        return markets

    def fetch_orderbook(self, market: Market) -> OrderBook:
        endpoint = "/kalshi/orderbooks"
        data = self._dome.get(
            "/orderbooks",
            params={"ticker": market.orderbook_key},
            timeout=self._orderbook_timeout,
        )
        try:
            data = to_bid_ask(data)
        except (TypeError, ValueError, KeyError, IndexError) as e:
            raise AdapterUnavailable(self.platform, endpoint, f"malformed orderbook: {e}") from e
        return self._dome.parse_book(data, market.orderbook_key, endpoint)
