"""
Opportunity engine. Pure: enriched pairs in, ranked opportunities out. No I/O.

For each pair two directions are priced:
  buy YES on A at A's best ask, sell YES on B at B's best bid
  buy YES on B at B's best ask, sell YES on A at A's best bid
and the better non-negative spread is kept.

    spread_pct = (sell_price - buy_price) / buy_price * 100
"""

from __future__ import annotations

import hashlib
import time

from scanner.models import ArbOpportunity, EnrichedPair, Market, MatchCandidate, OrderBook

DEFAULT_FEE_PCT_PER_PLATFORM = 1.0
_GENERAL = "general"


def opportunity_id(market_a: Market, market_b: Market) -> str:
    """Deterministic id for a cross-platform pair. Independent of trade direction."""
    key = (
        f"{market_a.platform.value}:{market_a.external_id}|"
        f"{market_b.platform.value}:{market_b.external_id}"
    )
    return hashlib.sha1(key.encode()).hexdigest()[:16]


def spread_pct(buy_price: float, sell_price: float) -> float:
    if buy_price <= 0:
        raise ValueError(f"buy_price must be positive, got {buy_price}")
    return (sell_price - buy_price) / buy_price * 100.0


def _pair_category(cand: MatchCandidate) -> str:
    if cand.market_a.category != _GENERAL:
        return cand.market_a.category
    return cand.market_b.category


def _price_direction(
    cand: MatchCandidate,
    buy_market: Market,
    buy_book: OrderBook,
    sell_market: Market,
    sell_book: OrderBook,
    fee_pct: float,
    now: float,
) -> ArbOpportunity | None:
    ask = buy_book.best_ask
    bid = sell_book.best_bid
    if ask is None or bid is None or ask.price <= 0:
        return None
    buy_cents = round(ask.price * 100.0, 4)
    sell_cents = round(bid.price * 100.0, 4)
    spread = spread_pct(buy_cents, sell_cents)
    if spread < 0:
        return None
    a, b = cand.market_a, cand.market_b
    return ArbOpportunity(
        id=opportunity_id(a, b),
        event_title=a.raw_title or b.raw_title,
        category=_pair_category(cand),
        buy_platform=buy_market.platform,
        buy_external_id=buy_market.external_id,
        buy_price=buy_cents,
        sell_platform=sell_market.platform,
        sell_external_id=sell_market.external_id,
        sell_price=sell_cents,
        spread_pct=spread,
        estimated_profit_pct=spread - 2.0 * fee_pct,
        buy_volume=ask.size,
        sell_volume=bid.size,
        match_score=cand.score,
        match_reason=cand.rationale,
        expires_at=a.end_date or b.end_date or None,
        discovered_at=now,
    )


def compute_opportunity(
    pair: EnrichedPair,
    fee_pct_per_platform: float = DEFAULT_FEE_PCT_PER_PLATFORM,
    now: float | None = None,
) -> ArbOpportunity | None:
    """Best non-negative-spread direction for one pair, or None if neither direction qualifies."""
    now = time.time() if now is None else now
    cand = pair.candidate
    options = [
        _price_direction(cand, cand.market_a, pair.book_a, cand.market_b, pair.book_b,
                         fee_pct_per_platform, now),
        _price_direction(cand, cand.market_b, pair.book_b, cand.market_a, pair.book_a,
                         fee_pct_per_platform, now),
    ]
    priced = [o for o in options if o is not None]
    if not priced:
        return None
    return max(priced, key=lambda o: o.spread_pct)


def compute_opportunities(
    pairs: list[EnrichedPair],
    fee_pct_per_platform: float = DEFAULT_FEE_PCT_PER_PLATFORM,
    now: float | None = None,
) -> list[ArbOpportunity]:
    """All non-negative opportunities, ranked by spread descending."""
    now = time.time() if now is None else now
    opps = []
    for pair in pairs:
        opp = compute_opportunity(pair, fee_pct_per_platform, now)
        if opp is not None:
            opps.append(opp)
    return rank_opportunities(opps)


def rank_opportunities(
    opportunities: list[ArbOpportunity] | tuple[ArbOpportunity, ...],
    min_spread: float = 0.0,
    category: str | None = None,
    limit: int | None = None,
    min_match_score: float = 0.0,
) -> list[ArbOpportunity]:
    """
    Drop spreads below max(min_spread, 0), non-matching categories ("all" or
    None disables the filter) and weak matches; sort by spread descending
    (ties by id); apply limit.
    """
    floor = max(min_spread, 0.0)
    kept = [
        o for o in opportunities
        if o.spread_pct >= floor
        and o.match_score >= min_match_score
        and (not category or category == "all" or o.category == category)
    ]
    kept.sort(key=lambda o: (-o.spread_pct, o.id))
    if limit is not None and limit >= 0:
        kept = kept[:limit]
    return kept
