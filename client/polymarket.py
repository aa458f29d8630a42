"""
Polymarket adapter (platform A). Market discovery and YES-token order books via Dome.
"""

from __future__ import annotations

import json
import logging

from client.dome import DEFAULT_HOST, DEFAULT_TIMEOUT, DomeClient, to_probability
from scanner.errors import AdapterUnavailable
from scanner.models import Market, OrderBook, Platform
from scanner.normalizer import detect_category, extract_entities, normalize

logger = logging.getLogger(__name__)

_MARKET_URL = "https://polymarket.com/event/{slug}"


def parse_market(m: dict) -> Market | None:
    """Translate one Dome Polymarket row. Returns None for rows with no YES token."""
    question = m.get("question") or m.get("title") or ""
    external_id = str(m.get("condition_id") or m.get("conditionId") or m.get("market_slug") or "")
    if not question or not external_id:
        return None

    # tokens may be a list of {token_id, outcome, price}; older rows carry clobTokenIds
    tokens = m.get("tokens") or []
    yes_token = ""
    yes_price: float | None = None
    if tokens:
        tok = next(
            (t for t in tokens if str(t.get("outcome", "")).lower() == "yes"),
            tokens[0],
        )
        yes_token = str(tok.get("token_id") or "")
        if tok.get("price") is not None:
            yes_price = to_probability(tok["price"])
    if not yes_token:
        raw_ids = m.get("clobTokenIds") or m.get("clob_token_ids")
        if isinstance(raw_ids, str):
            try:
                raw_ids = json.loads(raw_ids)
            except (json.JSONDecodeError, TypeError):
                raw_ids = None
        if raw_ids:
            yes_token = str(raw_ids[0])
    if not yes_token:
        return None

    if yes_price is None:
        yes_price = 0.0
    slug = m.get("market_slug") or ""
    tags = m.get("tags") or []
    category = detect_category(question, m.get("category") or "", " ".join(map(str, tags)))
    return Market(
        platform=Platform.POLYMARKET,
        external_id=external_id,
        raw_title=question,
        normalized_title=normalize(question),
        entities=extract_entities(question),
        category=category,
        yes_price=yes_price,
        no_price=round(1.0 - yes_price, 6) if yes_price else 0.0,
        volume=float(m.get("volume") or 0),
        liquidity=float(m.get("liquidity") or 0),
        url=_MARKET_URL.format(slug=slug) if slug else "",
        orderbook_key=yes_token,
        end_date=str(m.get("end_date_iso") or m.get("endDateIso") or m.get("end_date") or ""),
    )


class PolymarketAdapter:
    """Satisfies the PlatformAdapter protocol for Polymarket."""

    @property
    def platform(self) -> Platform:
        return Platform.POLYMARKET

    def __init__(
        self,
        api_key: str = "",
        host: str = DEFAULT_HOST,
        timeout: float = DEFAULT_TIMEOUT,
        orderbook_timeout: float | None = None,
        max_markets: int = 500,
    ) -> None:
        self._dome = DomeClient(Platform.POLYMARKET, api_key=api_key, host=host, timeout=timeout)
        self._orderbook_timeout = orderbook_timeout
        self._max_markets = max_markets

    def close(self) -> None:
        self._dome.close()

    def fetch_markets(self, category: str | None = None) -> list[Market]:
        rows = self._dome.get_paginated("/markets", self._max_markets, params={"status": "open"})
        markets: list[Market] = []
        skipped = 0
        for row in rows:
            try:
                market = parse_market(row)
            except (TypeError, ValueError, AttributeError) as e:
                raise AdapterUnavailable(
                    self.platform, "/polymarket/markets", f"malformed market row: {e}",
                ) from e
            if market is None:
                skipped += 1
                continue
            if category and category != "all" and market.category != category:
                continue
            markets.append(market)
        if skipped:
            logger.debug("Skipped %d Polymarket rows without a YES token", skipped)
        logger.debug("Fetched %d Polymarket markets", len(markets))
        return markets

    def fetch_orderbook(self, market: Market) -> OrderBook:
        endpoint = "/polymarket/orderbooks"
        data = self._dome.get(
            "/orderbooks",
            params={"token_id": market.orderbook_key},
            timeout=self._orderbook_timeout,
        )
        return self._dome.parse_book(data, market.orderbook_key, endpoint)
