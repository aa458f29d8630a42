"""
Integration tests for scanner/pipeline.py with in-memory adapters.
"""

import pytest

from scanner.enricher import OrderbookEnricher
from scanner.errors import AdapterTimeout, AdapterUnavailable, ScanAborted, ScanFailed
from scanner.matching import CandidateMatcher
from scanner.models import Market, OrderBook, Platform, PriceLevel
from scanner.normalizer import detect_category, extract_entities, normalize
from scanner.pipeline import NO_CANDIDATES_FOUND, ScanPipeline


def _market(platform: Platform, external_id: str, title: str) -> Market:
    return Market(
        platform=platform,
        external_id=external_id,
        raw_title=title,
        normalized_title=normalize(title),
        entities=extract_entities(title),
        category=detect_category(title),
        yes_price=0.5,
        no_price=0.5,
        orderbook_key=external_id,
    )


class FakeAdapter:
    def __init__(self, platform, markets=None, error=None, books=None, book_errors=None):
        self._platform = platform
        self.markets = markets or []
        self.error = error
        self.books = books or {}
        self.book_errors = book_errors or set()
        self.closed = False
        self.categories: list = []

    @property
    def platform(self):
        return self._platform

    def fetch_markets(self, category=None):
        self.categories.append(category)
        if self.error is not None:
            raise self.error
        return list(self.markets)

    def fetch_orderbook(self, market):
        if market.external_id in self.book_errors:
            raise AdapterTimeout(self._platform, "/orderbooks", "timed out")
        bid, ask = self.books.get(market.external_id, (0.50, 0.55))
        return OrderBook(
            token_id=market.orderbook_key,
            bids=(PriceLevel(bid, 100),),
            asks=(PriceLevel(ask, 100),),
        )

    def close(self):
        self.closed = True


def _pipeline(a: FakeAdapter, b: FakeAdapter, **kw) -> ScanPipeline:
    return ScanPipeline(a, b, CandidateMatcher(min_similarity=60), **kw)


class TestHappyPath:
    def test_finds_cross_platform_spread(self):
        a = FakeAdapter(
            Platform.POLYMARKET,
            markets=[_market(Platform.POLYMARKET, "0xtrump", "Will Trump win the 2028 election?")],
            books={"0xtrump": (0.58, 0.60)},
        )
        b = FakeAdapter(
            Platform.KALSHI,
            markets=[_market(Platform.KALSHI, "KX-TRUMP", "Will Trump win the 2028 election?")],
            books={"KX-TRUMP": (0.65, 0.67)},
        )
        snap = _pipeline(a, b, fee_pct_per_platform=1.0).run(cycle=3)
        assert snap.cycle == 3
        assert snap.min_similarity == 60
        assert snap.stats.platform_a_count == 1
        assert snap.stats.platform_b_count == 1
        assert snap.stats.matched_pairs == 1
        assert snap.stats.opportunities_found == 1
        assert snap.warnings == ()
        opp = snap.opportunities[0]
        assert opp.buy_platform is Platform.POLYMARKET
        assert opp.sell_platform is Platform.KALSHI
        assert opp.spread_pct == pytest.approx(8.3333, rel=1e-3)
        assert snap.trace.sample_platform_a_titles == ("Will Trump win the 2028 election?",)
        assert snap.trace.top_matches[0].score == 100.0

    def test_category_forwarded_to_adapters(self):
        a = FakeAdapter(Platform.POLYMARKET)
        b = FakeAdapter(Platform.KALSHI)
        _pipeline(a, b, category="crypto").run()
        assert a.categories == ["crypto"]
        assert b.categories == ["crypto"]

    def test_orderbook_failure_is_warning(self):
        a = FakeAdapter(
            Platform.POLYMARKET,
            markets=[_market(Platform.POLYMARKET, "0xtrump", "Will Trump win the 2028 election?")],
        )
        b = FakeAdapter(
            Platform.KALSHI,
            markets=[_market(Platform.KALSHI, "KX-TRUMP", "Will Trump win the 2028 election?")],
            book_errors={"KX-TRUMP"},
        )
        snap = _pipeline(a, b).run()
        assert snap.opportunities == ()
        assert snap.stats.matched_pairs == 1
        assert len(snap.stats.orderbook_errors) == 1
        assert snap.trace.orderbook_errors == snap.stats.orderbook_errors
        assert [w.code for w in snap.warnings] == ["orderbook_fetch_failed"]


class TestDegradedCycles:
    def test_platform_a_outage(self):
        a = FakeAdapter(
            Platform.POLYMARKET,
            error=AdapterUnavailable(Platform.POLYMARKET, "/polymarket/markets", "HTTP 503", 503),
        )
        b = FakeAdapter(
            Platform.KALSHI,
            markets=[_market(Platform.KALSHI, f"KX-{i}", f"Kalshi market number {i}") for i in range(50)],
        )
        snap = _pipeline(a, b).run()
        assert snap.stats.platform_a_count == 0
        assert snap.stats.platform_b_count == 50
        assert snap.stats.matched_pairs == 0
        assert snap.opportunities == ()
        codes = [w.code for w in snap.warnings]
        assert "adapter_unavailable" in codes
        assert NO_CANDIDATES_FOUND in codes
        outage = next(w for w in snap.warnings if w.code == "adapter_unavailable")
        assert outage.platform is Platform.POLYMARKET

    def test_timeout_warning_code(self):
        a = FakeAdapter(Platform.POLYMARKET, markets=[])
        b = FakeAdapter(Platform.KALSHI, error=AdapterTimeout(Platform.KALSHI, "/kalshi/markets", "slow"))
        snap = _pipeline(a, b).run()
        assert [w.code for w in snap.warnings][0] == "adapter_timeout"

    def test_both_platforms_down(self):
        a = FakeAdapter(Platform.POLYMARKET, error=AdapterUnavailable(Platform.POLYMARKET, "/m", "down"))
        b = FakeAdapter(Platform.KALSHI, error=AdapterTimeout(Platform.KALSHI, "/m", "slow"))
        with pytest.raises(ScanFailed) as exc:
            _pipeline(a, b).run()
        assert exc.value.retryable
        assert len(exc.value.errors) == 2

    def test_no_candidates_warning(self):
        a = FakeAdapter(Platform.POLYMARKET, markets=[_market(Platform.POLYMARKET, "0x1", "Lakers win NBA finals?")])
        b = FakeAdapter(Platform.KALSHI, markets=[_market(Platform.KALSHI, "KX-1", "Will Trump win?")])
        snap = _pipeline(a, b).run()
        assert [w.code for w in snap.warnings] == [NO_CANDIDATES_FOUND]


class TestCancellation:
    def test_cancelled_before_start(self):
        a = FakeAdapter(Platform.POLYMARKET)
        b = FakeAdapter(Platform.KALSHI)
        with pytest.raises(ScanAborted):
            _pipeline(a, b).run(should_stop=lambda: True)

    def test_cancelled_after_fetch(self):
        a = FakeAdapter(Platform.POLYMARKET, markets=[_market(Platform.POLYMARKET, "0x1", "Will Trump win?")])
        b = FakeAdapter(Platform.KALSHI, markets=[_market(Platform.KALSHI, "KX-1", "Will Trump win?")])
        checks = iter([False, False, True])

        def should_stop():
            return next(checks, True)

        with pytest.raises(ScanAborted):
            _pipeline(a, b).run(should_stop=should_stop)


class TestClose:
    def test_closes_both_adapters(self):
        a = FakeAdapter(Platform.POLYMARKET)
        b = FakeAdapter(Platform.KALSHI)
        _pipeline(a, b, enricher=OrderbookEnricher({})).close()
        assert a.closed and b.closed
