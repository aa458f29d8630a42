#!/usr/bin/env python3
"""
Cross-Platform Arbitrage Scanner -- Single entry script.

Wires the scan pipeline end to end:
  1. Fetch Polymarket + Kalshi markets (Dome API)
  2. Normalize titles, match events across platforms
  3. Fetch orderbooks for matched pairs
  4. Price spreads, rank opportunities
  5. Evaluate user alerts
  6. Repeat every SCAN_INTERVAL_SEC

Usage:
  uv run python run.py                       # scan loop, console output
  uv run python run.py --once --debug        # single cycle with match diagnostics
  uv run python run.py --serve --port 8787   # scan loop + HTTP API
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time

from config import Config, load_config
from client.kalshi import KalshiAdapter
from client.polymarket import PolymarketAdapter
from monitor.display import (
    print_cycle_error,
    print_cycle_footer,
    print_cycle_header,
    print_scan_result,
    print_startup,
)
from monitor.logger import setup_logging
from monitor.scan_tracker import ScanTracker
from monitor.scheduler import ScanScheduler
from report.alerts import AlertEvaluator
from report.store import AlertStore
from scanner.enricher import OrderbookEnricher
from scanner.errors import ScanAborted, ScannerError
from scanner.matching import CandidateMatcher, get_scorer
from scanner.models import ScanSnapshot
from scanner.pipeline import ScanPipeline
from scanner.query import ScanQuery

logger = logging.getLogger(__name__)


_BANNER = r"""
    _         _        ____
   / \   _ __| |__    / ___|  ___ __ _ _ __  _ __   ___ _ __
  / _ \ | '__| '_ \   \___ \ / __/ _` | '_ \| '_ \ / _ \ '__|
 / ___ \| |  | |_) |   ___) | (_| (_| | | | | | | |  __/ |
/_/   \_\_|  |_.__/   |____/ \___\__,_|_| |_|_| |_|\___|_|
                     Polymarket x Kalshi Scanner v0.1
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cross-Platform Arbitrage Scanner")
    parser.add_argument("--once", action="store_true", help="Run a single scan cycle and exit")
    parser.add_argument("--debug", action="store_true", help="Include match diagnostics (sample titles, top matches)")
    parser.add_argument("--category", type=str, default=None, help="Only scan one category (politics, crypto, sports, ...)")
    parser.add_argument("--min-spread", type=float, default=None, help="Minimum spread %% to display (default: MIN_SPREAD_PCT)")
    parser.add_argument("--limit", type=int, default=0, help="Max opportunities to display (0 = RESULT_LIMIT)")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    parser.add_argument("--serve", action="store_true", help="Start the HTTP API alongside the scan loop")
    parser.add_argument("--host", type=str, default=None, help="API bind address (default: SERVER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="API port (default: SERVER_PORT)")
    return parser.parse_args(argv)


def build_query(cfg: Config, args: argparse.Namespace) -> ScanQuery:
    """Console query from CLI flags, falling back to config defaults."""
    return ScanQuery(
        category=args.category,
        min_spread=args.min_spread if args.min_spread is not None else cfg.min_spread_pct,
        limit=args.limit if args.limit > 0 else cfg.result_limit,
        debug=args.debug,
    )


def build_scheduler(cfg: Config, args: argparse.Namespace, store: AlertStore | None) -> ScanScheduler:
    """Adapters -> matcher -> enricher -> pipeline -> scheduler."""
    polymarket = PolymarketAdapter(
        api_key=cfg.dome_api_key,
        host=cfg.dome_api_host,
        timeout=cfg.request_timeout_sec,
        orderbook_timeout=cfg.orderbook_timeout_sec,
        max_markets=cfg.max_markets_per_platform,
    )
    kalshi = KalshiAdapter(
        api_key=cfg.dome_api_key,
        host=cfg.dome_api_host,
        timeout=cfg.request_timeout_sec,
        orderbook_timeout=cfg.orderbook_timeout_sec,
        max_markets=cfg.max_markets_per_platform,
    )
    matcher = CandidateMatcher(
        min_similarity=cfg.min_similarity,
        scorer=get_scorer(cfg.match_scorer),
        top_matches_cap=cfg.top_matches_cap,
    )
    enricher = OrderbookEnricher(
        {polymarket.platform: polymarket, kalshi.platform: kalshi},
        max_workers=cfg.orderbook_workers,
        timeout_sec=cfg.orderbook_timeout_sec,
    )
    pipeline = ScanPipeline(
        polymarket,
        kalshi,
        matcher,
        enricher=enricher,
        fee_pct_per_platform=cfg.fee_pct_per_platform,
        debug_title_samples=cfg.debug_title_samples,
        category=args.category,
    )
    return ScanScheduler(
        pipeline,
        interval_sec=cfg.scan_interval_sec,
        alert_evaluator=AlertEvaluator(store) if store is not None else None,
        tracker=ScanTracker(),
    )


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds) // 60
    secs = seconds - minutes * 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    return f"{hours}h {minutes % 60}m"


def _log_debug_trace(scheduler: ScanScheduler, query: ScanQuery) -> None:
    result = scheduler.query(query)
    debug = getattr(result, "debug", None)
    if debug is None:
        return
    logger.info("  Sample polymarket titles: %s", list(debug.sample_platform_a_titles))
    logger.info("  Sample kalshi titles: %s", list(debug.sample_platform_b_titles))
    for c in debug.top_matches:
        logger.info(
            "  %5.1f %s %s <-> %s (%s)",
            c.score, "PASS" if c.passed else "fail",
            c.market_a.raw_title, c.market_b.raw_title, c.rationale,
        )


def run_once(scheduler: ScanScheduler, query: ScanQuery) -> int:
    """Single cycle. Returns the process exit code."""
    print_cycle_header(1)
    start = time.time()
    try:
        scheduler.refresh()
    except ScannerError as e:
        print_cycle_error(e)
        return 1
    print_scan_result(scheduler.query(query), time.time() - start)
    if query.debug:
        _log_debug_trace(scheduler, query)
    print_cycle_footer(scheduler.tracker)
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = load_config()

    log_file_path = setup_logging(cfg.log_level, json_log_file=args.json_log)
    logger.info(_BANNER.strip("\n"))
    logger.info("  Log file: %s", log_file_path)
    print_startup(cfg, args)
    if not cfg.dome_api_key:
        logger.warning("DOME_API_KEY is empty; requests will likely be rejected (401).")

    store = AlertStore(db_path=cfg.alerts_db or None)
    scheduler = build_scheduler(cfg, args, store)
    query = build_query(cfg, args)

    if args.once:
        code = run_once(scheduler, query)
        scheduler.pipeline.close()
        store.close()
        sys.exit(code)

    def on_snapshot(snapshot: ScanSnapshot) -> None:
        print_cycle_header(snapshot.cycle)
        print_scan_result(scheduler.query(query), scheduler.tracker.last_cycle_duration_sec)
        if query.debug:
            _log_debug_trace(scheduler, query)
        print_cycle_footer(scheduler.tracker)

    scheduler.subscribe(on_snapshot)

    if args.serve:
        from report.server import start_server
        start_server(
            scheduler,
            store,
            host=args.host or cfg.server_host,
            port=args.port or cfg.server_port,
        )

    # Graceful shutdown
    shutdown = threading.Event()
    shutdown_signal: int | None = None

    def handle_signal(signum, frame):
        nonlocal shutdown_signal
        if shutdown_signal is None:
            shutdown_signal = signum
        shutdown.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    session_start = time.time()
    scheduler.start()
    last_error_seen: BaseException | None = None
    while not shutdown.wait(0.5):
        error = scheduler.last_error
        if error is not None and error is not last_error_seen and not isinstance(error, ScanAborted):
            print_cycle_error(error)
        last_error_seen = error

    # Shutdown
    logger.info("")
    logger.info("Shutting down gracefully after %s (signal %s)",
                _format_duration(time.time() - session_start), shutdown_signal)
    scheduler.stop()
    scheduler.pipeline.close()
    store.close()

    s = scheduler.tracker.summary()
    logger.info(
        "Session: %d cycles (%d failed, %d aborted, %d coalesced refreshes)",
        s["total_cycles"], s["failed_cycles"], s["aborted_cycles"], s["coalesced_refreshes"],
    )
    logger.info(
        "Opportunities: %d total, %d unique, best spread %.2f%% (%s)",
        s["total_opportunities_found"], s["unique_opportunities"],
        s["best_spread_pct_seen"], s["best_opportunity_title"] or "-",
    )


if __name__ == "__main__":
    main()
