"""
Orderbook enrichment for matched pairs.

Fetches both sides of every passed candidate on a bounded thread pool.
A failure on either side drops that pair and is recorded, never raised:
partial results always come back. Per-fetch deadlines are enforced here when
timeout_sec is set, on top of the adapters' HTTP client timeouts.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable

from client.platform import PlatformAdapter
from scanner.errors import OrderbookFetchFailed, ScanAborted, ScannerError
from scanner.models import (
    EnrichedPair,
    Market,
    MatchCandidate,
    OrderBook,
    OrderbookError,
    Platform,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 5
_POLL_SEC = 0.1


class OrderbookEnricher:
    def __init__(
        self,
        adapters: dict[Platform, PlatformAdapter],
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout_sec: float | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if timeout_sec is not None and timeout_sec <= 0:
            raise ValueError(f"timeout_sec must be positive, got {timeout_sec}")
        self._adapters = adapters
        self._max_workers = max_workers
        self._timeout_sec = timeout_sec

    def enrich(
        self,
        candidates: list[MatchCandidate] | tuple[MatchCandidate, ...],
        should_stop: Callable[[], bool] | None = None,
    ) -> tuple[list[EnrichedPair], list[OrderbookError]]:
        """
        Returns (enriched pairs in candidate order, per-side fetch errors).
        Raises ScanAborted if should_stop() turns true before all fetches finish.
        """
        if not candidates:
            return [], []

        pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="orderbook")
        futures: dict[Future, tuple[int, str]] = {}
        books: dict[tuple[int, str], OrderBook] = {}
        errors: list[OrderbookError] = []
        failed: set[int] = set()
        # Monotonic start time per (idx, side), set by the worker when the fetch begins
        started: dict[tuple[int, str], float] = {}

        try:
            for idx, cand in enumerate(candidates):
                futures[pool.submit(self._timed_fetch, cand.market_a, started, (idx, "a"))] = (idx, "a")
                futures[pool.submit(self._timed_fetch, cand.market_b, started, (idx, "b"))] = (idx, "b")

            pending = set(futures)
            while pending:
                if should_stop is not None and should_stop():
                    raise ScanAborted(
                        f"Orderbook enrichment cancelled with {len(pending)} fetches pending"
                    )
                done, pending = wait(pending, timeout=_POLL_SEC, return_when=FIRST_COMPLETED)
                for fut in done:
                    idx, side = futures[fut]
                    try:
                        books[(idx, side)] = fut.result()
                    except OrderbookFetchFailed as e:
                        failed.add(idx)
                        errors.append(OrderbookError(
                            platform=e.platform, market_id=e.market_id, error=str(e.cause),
                        ))
                if self._timeout_sec is not None:
                    pending -= self._expire(pending, futures, started, candidates, failed, errors)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        enriched = [
            EnrichedPair(candidate=cand, book_a=books[(idx, "a")], book_b=books[(idx, "b")])
            for idx, cand in enumerate(candidates)
            if idx not in failed
        ]
        if errors:
            logger.warning(
                "Orderbook fetch failed for %d side(s); %d/%d pairs enriched",
                len(errors), len(enriched), len(candidates),
            )
        return enriched, errors

    def _expire(
        self,
        pending: set[Future],
        futures: dict[Future, tuple[int, str]],
        started: dict[tuple[int, str], float],
        candidates: list[MatchCandidate] | tuple[MatchCandidate, ...],
        failed: set[int],
        errors: list[OrderbookError],
    ) -> set[Future]:
        """Fail fetches running longer than timeout_sec. Returns the expired futures."""
        now = time.monotonic()
        expired: set[Future] = set()
        for fut in pending:
            key = futures[fut]
            begun = started.get(key)
            if fut.done() or begun is None or now - begun < self._timeout_sec:
                continue
            idx, side = key
            cand = candidates[idx]
            market = cand.market_a if side == "a" else cand.market_b
            fut.cancel()
            expired.add(fut)
            failed.add(idx)
            errors.append(OrderbookError(
                platform=market.platform,
                market_id=market.external_id,
                error=f"timed out after {self._timeout_sec:.1f}s",
            ))
        return expired

    def _timed_fetch(
        self, market: Market, started: dict[tuple[int, str], float], key: tuple[int, str],
    ) -> OrderBook:
        started[key] = time.monotonic()
        return self._fetch(market)

    def _fetch(self, market: Market) -> OrderBook:
        adapter = self._adapters.get(market.platform)
        if adapter is None:
            raise OrderbookFetchFailed(
                market.platform, market.external_id, LookupError("no adapter configured"),
            )
        try:
            return adapter.fetch_orderbook(market)
        except ScannerError as e:
            logger.debug(
                "Orderbook %s %s failed: %s", market.platform.value, market.external_id, e,
                extra={"platform": market.platform.value, "market_id": market.external_id},
            )
            raise OrderbookFetchFailed(market.platform, market.external_id, e) from e
