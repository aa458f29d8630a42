"""
One scan cycle: fetch both platforms, match, enrich, price.

    adapters (concurrent) -> matcher -> orderbook enricher -> opportunity engine

A single failing platform degrades the cycle (warning attached, count 0).
Both failing raises ScanFailed. Cancellation raises ScanAborted and discards
everything computed so far.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable

from client.platform import PlatformAdapter
from scanner.enricher import OrderbookEnricher
from scanner.errors import AdapterError, ScanAborted, ScanFailed
from scanner.matching import CandidateMatcher
from scanner.models import (
    DebugTrace,
    Market,
    Platform,
    ScanSnapshot,
    ScanStats,
    ScanWarning,
)
from scanner.opportunities import DEFAULT_FEE_PCT_PER_PLATFORM, compute_opportunities

logger = logging.getLogger(__name__)

NO_CANDIDATES_FOUND = "no_candidates_found"
_POLL_SEC = 0.1


def _check_stop(should_stop: Callable[[], bool] | None, stage: str) -> None:
    if should_stop is not None and should_stop():
        raise ScanAborted(f"Scan cancelled during {stage}")


class ScanPipeline:
    """Runs the fetch -> match -> enrich -> price sequence for one cycle."""

    def __init__(
        self,
        adapter_a: PlatformAdapter,
        adapter_b: PlatformAdapter,
        matcher: CandidateMatcher,
        enricher: OrderbookEnricher | None = None,
        fee_pct_per_platform: float = DEFAULT_FEE_PCT_PER_PLATFORM,
        debug_title_samples: int = 5,
        category: str | None = None,
    ) -> None:
        self.adapter_a = adapter_a
        self.adapter_b = adapter_b
        self.matcher = matcher
        self.enricher = enricher or OrderbookEnricher(
            {adapter_a.platform: adapter_a, adapter_b.platform: adapter_b}
        )
        self.fee_pct_per_platform = fee_pct_per_platform
        self.debug_title_samples = debug_title_samples
        self.category = category

    def close(self) -> None:
        self.adapter_a.close()
        self.adapter_b.close()

    def run(self, cycle: int = 0, should_stop: Callable[[], bool] | None = None) -> ScanSnapshot:
        start = time.time()
        _check_stop(should_stop, "startup")

        markets, errors = self._fetch_markets(should_stop)
        markets_a = markets.get(self.adapter_a.platform, [])
        markets_b = markets.get(self.adapter_b.platform, [])
        if len(errors) == 2:
            raise ScanFailed(errors)
        warnings = [ScanWarning(code=e.code, message=str(e), platform=e.platform) for e in errors]
        _check_stop(should_stop, "market fetch")

        report = self.matcher.match(markets_a, markets_b, should_stop=should_stop)
        _check_stop(should_stop, "matching")
        if not report.matches:
            warnings.append(ScanWarning(
                code=NO_CANDIDATES_FOUND,
                message=(
                    f"No cross-platform matches at similarity >= {self.matcher.min_similarity:g} "
                    f"({len(markets_a)} A x {len(markets_b)} B markets)"
                ),
            ))

        enriched, ob_errors = self.enricher.enrich(report.matches, should_stop=should_stop)
        _check_stop(should_stop, "orderbook enrichment")
        for err in ob_errors:
            warnings.append(ScanWarning(
                code="orderbook_fetch_failed",
                message=f"{err.market_id}: {err.error}",
                platform=err.platform,
            ))

        opportunities = compute_opportunities(enriched, self.fee_pct_per_platform, now=start)
        stats = ScanStats(
            platform_a_count=len(markets_a),
            platform_b_count=len(markets_b),
            comparison_attempts=report.comparison_attempts,
            matched_pairs=len(report.matches),
            opportunities_found=len(opportunities),
            orderbook_errors=tuple(ob_errors),
        )
        trace = DebugTrace(
            sample_platform_a_titles=_sample_titles(markets_a, self.debug_title_samples),
            sample_platform_b_titles=_sample_titles(markets_b, self.debug_title_samples),
            top_matches=report.top_matches,
            orderbook_errors=tuple(ob_errors),
        )
        logger.info(
            "Cycle %d: %d A / %d B markets, %d pairs, %d opportunities (%.1fs)",
            cycle, stats.platform_a_count, stats.platform_b_count,
            stats.matched_pairs, stats.opportunities_found, time.time() - start,
            extra={"cycle": cycle},
        )
        return ScanSnapshot(
            cycle=cycle,
            scanned_at=start,
            opportunities=tuple(opportunities),
            stats=stats,
            warnings=tuple(warnings),
            trace=trace,
            min_similarity=self.matcher.min_similarity,
        )

    def _fetch_markets(
        self, should_stop: Callable[[], bool] | None,
    ) -> tuple[dict[Platform, list[Market]], list[AdapterError]]:
        """Fetch both platforms concurrently. Adapter errors are collected, not raised."""
        markets: dict[Platform, list[Market]] = {}
        errors: list[AdapterError] = []
        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="market-fetch")
        try:
            futures: dict[Future, PlatformAdapter] = {
                pool.submit(adapter.fetch_markets, self.category): adapter
                for adapter in (self.adapter_a, self.adapter_b)
            }
            pending = set(futures)
            while pending:
                _check_stop(should_stop, "market fetch")
                done, pending = wait(pending, timeout=_POLL_SEC, return_when=FIRST_COMPLETED)
                for fut in done:
                    adapter = futures[fut]
                    try:
                        markets[adapter.platform] = fut.result()
                    except AdapterError as e:
                        logger.warning(
                            "%s market fetch failed: %s", adapter.platform.value, e,
                            extra={"platform": adapter.platform.value},
                        )
                        errors.append(e)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        errors.sort(key=lambda e: e.platform.value)
        return markets, errors


def _sample_titles(markets: list[Market], n: int) -> tuple[str, ...]:
    return tuple(m.raw_title for m in sorted(markets, key=lambda m: m.external_id)[:n])
