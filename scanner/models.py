"""
Data models for the cross-platform arbitrage scanner. Pure data, no behavior.

Prices on OrderBook levels and Market quotes are probabilities (0.0-1.0).
Prices on ArbOpportunity are cents (0-100), matching what consumers display.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class Platform(Enum):
    POLYMARKET = "polymarket"  # platform A
    KALSHI = "kalshi"          # platform B


class Direction(Enum):
    ABOVE = "above"
    BELOW = "below"


class AlertType(Enum):
    SPREAD_THRESHOLD = "spread_threshold"
    CATEGORY_FILTER = "category_filter"
    MARKET_SPECIFIC = "market_specific"


class SchedulerState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FAILED = "failed"


@dataclass(frozen=True)
class PriceLevel:
    price: float
    size: float


@dataclass(frozen=True)
class OrderBook:
    token_id: str
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]

    @property
    def best_bid(self) -> PriceLevel | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> PriceLevel | None:
        return self.asks[0] if self.asks else None

    @property
    def midpoint(self) -> float | None:
        if self.best_bid and self.best_ask:
            return (self.best_ask.price + self.best_bid.price) / 2.0
        return None


@dataclass(frozen=True)
class Market:
    """One listed contract on one platform, snapshotted for a single cycle."""
    platform: Platform
    external_id: str
    raw_title: str
    normalized_title: str
    entities: tuple[str, ...]
    category: str
    yes_price: float
    no_price: float
    volume: float = 0.0
    liquidity: float = 0.0
    url: str = ""
    orderbook_key: str = ""  # token id on Polymarket, ticker on Kalshi
    end_date: str = ""       # ISO 8601 (empty = unknown)


@dataclass(frozen=True)
class MatchCandidate:
    market_a: Market
    market_b: Market
    score: float
    entities_a: tuple[str, ...]
    entities_b: tuple[str, ...]
    entity_mismatch: frozenset[str]
    passed: bool
    rationale: str


@dataclass(frozen=True)
class EnrichedPair:
    """A passed candidate with both order books fetched."""
    candidate: MatchCandidate
    book_a: OrderBook
    book_b: OrderBook


@dataclass(frozen=True)
class OrderbookError:
    platform: Platform
    market_id: str
    error: str


@dataclass(frozen=True)
class ArbOpportunity:
    id: str
    event_title: str
    category: str
    buy_platform: Platform
    buy_external_id: str
    buy_price: float   # cents
    sell_platform: Platform
    sell_external_id: str
    sell_price: float  # cents
    spread_pct: float
    estimated_profit_pct: float
    buy_volume: float
    sell_volume: float
    match_score: float
    match_reason: str
    expires_at: str | None = None
    discovered_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ScanWarning:
    code: str
    message: str
    platform: Platform | None = None


@dataclass(frozen=True)
class ScanStats:
    platform_a_count: int = 0
    platform_b_count: int = 0
    comparison_attempts: int = 0
    matched_pairs: int = 0
    opportunities_found: int = 0
    orderbook_errors: tuple[OrderbookError, ...] = ()


@dataclass(frozen=True)
class DebugTrace:
    sample_platform_a_titles: tuple[str, ...] = ()
    sample_platform_b_titles: tuple[str, ...] = ()
    top_matches: tuple[MatchCandidate, ...] = ()
    orderbook_errors: tuple[OrderbookError, ...] = ()


@dataclass(frozen=True)
class ScanResult:
    opportunities: tuple[ArbOpportunity, ...]
    stats: ScanStats
    warnings: tuple[ScanWarning, ...] = ()
    scanned_at: float = 0.0
    cycle: int = 0


@dataclass(frozen=True)
class DebugScanResult(ScanResult):
    debug: DebugTrace = field(default_factory=DebugTrace)


@dataclass(frozen=True)
class ScanSnapshot:
    """Everything one cycle produced. Published whole, never mutated."""
    cycle: int
    scanned_at: float
    opportunities: tuple[ArbOpportunity, ...]
    stats: ScanStats
    warnings: tuple[ScanWarning, ...]
    trace: DebugTrace
    min_similarity: float


@dataclass(frozen=True)
class MarketRef:
    """
    What an alert watches: one market (platform + external id) or a
    category-wide wildcard. Category "all" matches every opportunity.
    """
    platform: Platform | None = None
    external_id: str = ""
    category: str = ""

    @property
    def is_wildcard(self) -> bool:
        return self.platform is None

    def to_str(self) -> str:
        if self.platform is None:
            return f"category:{self.category or 'all'}"
        return f"{self.platform.value}:{self.external_id}"

    @classmethod
    def parse(cls, raw: str) -> MarketRef:
        """Parse 'category:<name>', '*' or '<platform>:<external_id>'."""
        raw = raw.strip()
        if raw in ("", "*"):
            return cls(category="all")
        prefix, sep, rest = raw.partition(":")
        if not sep or not rest:
            raise ValueError(f"Invalid market ref: {raw!r}")
        if prefix == "category":
            return cls(category=rest.lower())
        try:
            platform = Platform(prefix.lower())
        except ValueError:
            raise ValueError(f"Unknown platform in market ref: {prefix!r}") from None
        return cls(platform=platform, external_id=rest)


@dataclass(frozen=True)
class Alert:
    id: int
    owner_id: str
    market_ref: MarketRef
    direction: Direction
    target_spread_pct: float
    is_active: bool
    created_at: float
    alert_type: AlertType = AlertType.SPREAD_THRESHOLD
    last_triggered_at: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True)
class TriggeredAlert:
    id: int
    alert_id: int
    owner_id: str
    triggered_at: float
    observed_spread_pct: float
    opportunity_id: str = ""


@dataclass(frozen=True)
class ProfitEstimate:
    profit: float
    roi_pct: float


@dataclass(frozen=True)
class TradeProjection:
    contracts: int
    gross_revenue: float
    gross_profit: float
    total_fees: float
    net_profit: float
    net_roi_pct: float

    @property
    def is_profitable(self) -> bool:
        return self.net_profit > 0
